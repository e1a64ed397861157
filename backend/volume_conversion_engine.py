# backend/volume_conversion_engine.py

"""
Volume Conversion Engine

Maps quantities between the canonical storage unit and the unit a user is
viewing:
- Volume: canonical liters, displayed as liters, gallons or milliliters
- Weight: canonical kilograms, displayed as kilograms or pounds
- Temperature: canonical Celsius, displayed as Celsius or Fahrenheit

RULES:
1) Every unit string is normalized via the alias map
2) Unknown units -> HARD ERROR (no silent fallback to liters)
3) Conversions between dimensions (volume <-> weight) are not supported here
4) Zero and negative values pass through unchanged (range checks belong to
   the operation schemas, not to the converter)
5) fromCanonical(toCanonical(x, u), u) is within 0.01 of x
"""

import math
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

# ==================== ENUMS ====================

class Dimension(str, Enum):
    """Physical dimension a unit measures"""
    VOLUME = "VOLUME"
    WEIGHT = "WEIGHT"
    TEMPERATURE = "TEMPERATURE"


class VolumeUnitEnum(str, Enum):
    L = "L"
    GAL = "gal"
    ML = "mL"


class WeightUnitEnum(str, Enum):
    KG = "kg"
    LB = "lb"


class TemperatureUnitEnum(str, Enum):
    C = "C"
    F = "F"


# ==================== CONVERSION CONSTANTS ====================

# Liters per US gallon
GAL_TO_L = 3.78541

# Liters per milliliter
ML_TO_L = 0.001

# Pounds per kilogram
KG_TO_LB = 2.20462

# Round-trip tolerance for display <-> canonical conversions
ROUND_TRIP_TOLERANCE = 0.01

CANONICAL_UNITS: Dict[Dimension, str] = {
    Dimension.VOLUME: VolumeUnitEnum.L.value,
    Dimension.WEIGHT: WeightUnitEnum.KG.value,
    Dimension.TEMPERATURE: TemperatureUnitEnum.C.value,
}

UNIT_DIMENSIONS: Dict[str, Dimension] = {
    "L": Dimension.VOLUME,
    "gal": Dimension.VOLUME,
    "mL": Dimension.VOLUME,
    "kg": Dimension.WEIGHT,
    "lb": Dimension.WEIGHT,
    "C": Dimension.TEMPERATURE,
    "F": Dimension.TEMPERATURE,
}

# Canonical units per one display unit (linear units only)
TO_CANONICAL_FACTORS: Dict[str, float] = {
    "L": 1.0,
    "gal": GAL_TO_L,
    "mL": ML_TO_L,
    "kg": 1.0,
    "lb": 1.0 / KG_TO_LB,
}

# ==================== UNIT ALIAS MAPPING ====================

UNIT_ALIASES: Dict[str, str] = {
    # Liter aliases
    "L": "L",
    "LTR": "L",
    "LITER": "L",
    "LITERS": "L",
    "LITRE": "L",
    "LITRES": "L",

    # Gallon aliases
    "GAL": "gal",
    "GALS": "gal",
    "GALLON": "gal",
    "GALLONS": "gal",

    # Milliliter aliases
    "ML": "mL",
    "MILLILITER": "mL",
    "MILLILITERS": "mL",
    "MILLILITRE": "mL",
    "MILLILITRES": "mL",

    # Kilogram aliases
    "KG": "kg",
    "KGS": "kg",
    "KILOGRAM": "kg",
    "KILOGRAMS": "kg",

    # Pound aliases
    "LB": "lb",
    "LBS": "lb",
    "POUND": "lb",
    "POUNDS": "lb",

    # Temperature aliases
    "C": "C",
    "°C": "C",
    "CELSIUS": "C",
    "F": "F",
    "°F": "F",
    "FAHRENHEIT": "F",
}

# ==================== PRECISION RULES ====================

PRECISION_RULES: Dict[str, int] = {
    "L": 2,
    "gal": 2,
    "mL": 0,
    "kg": 2,
    "lb": 2,
    "C": 1,
    "F": 1,
}

# ==================== ERROR CLASSES ====================

class ConversionError(Exception):
    """Base conversion error"""
    def __init__(self, error_code: str, message: str, field: Optional[str] = None, severity: str = "HARD_ERROR"):
        self.error_code = error_code
        self.message = message
        self.field = field
        self.severity = severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "field": self.field,
            "severity": self.severity,
        }


class UnknownUnitError(ConversionError):
    """Unit not recognized"""
    def __init__(self, unit: str):
        super().__init__(
            "UNKNOWN_UNIT",
            f"Unit '{unit}' is not recognized. Allowed units: {', '.join(UNIT_DIMENSIONS)}",
            field="unit",
        )


class IncompatibleUnitsError(ConversionError):
    """Conversion between different dimensions"""
    def __init__(self, from_unit: str, to_unit: str):
        super().__init__(
            "INCOMPATIBLE_UNITS",
            f"Cannot convert from '{from_unit}' to '{to_unit}'. Units measure different dimensions.",
            field="unit",
        )


# ==================== NORMALIZATION ====================

def normalize_unit(unit: str) -> str:
    """
    Normalize a unit string via the alias map.

    Raises:
        UnknownUnitError: If the unit is empty or not in the alias map
    """
    if isinstance(unit, Enum):
        unit = unit.value
    if not unit:
        raise UnknownUnitError(unit or "")

    normalized = UNIT_ALIASES.get(unit.strip().upper())
    if not normalized:
        raise UnknownUnitError(unit)
    return normalized


def dimension_of(unit: str) -> Dimension:
    return UNIT_DIMENSIONS[normalize_unit(unit)]


# ==================== LINEAR CONVERSIONS ====================

def to_canonical(value: float, unit: str) -> float:
    """
    Convert a display value into the canonical unit of its dimension.

    to_canonical(1, "gal") -> 3.78541
    to_canonical(1000, "mL") -> 1.0
    to_canonical(10, "lb") -> ~4.536
    """
    normalized = normalize_unit(unit)
    if UNIT_DIMENSIONS[normalized] == Dimension.TEMPERATURE:
        return to_celsius(value, normalized)
    return value * TO_CANONICAL_FACTORS[normalized]


def from_canonical(value: float, unit: str) -> float:
    """
    Convert a canonical value (L, kg or °C) into the given display unit.

    from_canonical(3.78541, "gal") -> ~1.0
    from_canonical(1, "mL") -> 1000.0
    """
    normalized = normalize_unit(unit)
    if UNIT_DIMENSIONS[normalized] == Dimension.TEMPERATURE:
        return from_celsius(value, normalized)
    return value / TO_CANONICAL_FACTORS[normalized]


def convert(value: float, from_unit: str, to_unit: str) -> float:
    """Convert between two units of the same dimension."""
    source = normalize_unit(from_unit)
    target = normalize_unit(to_unit)
    if UNIT_DIMENSIONS[source] != UNIT_DIMENSIONS[target]:
        raise IncompatibleUnitsError(source, target)
    if source == target:
        return value
    return from_canonical(to_canonical(value, source), target)


def to_liters(value: float, unit: str) -> float:
    if dimension_of(unit) != Dimension.VOLUME:
        raise IncompatibleUnitsError(unit, "L")
    return to_canonical(value, unit)


def to_kilograms(value: float, unit: str) -> float:
    if dimension_of(unit) != Dimension.WEIGHT:
        raise IncompatibleUnitsError(unit, "kg")
    return to_canonical(value, unit)


# ==================== TEMPERATURE ====================

def to_celsius(value: float, unit: str) -> float:
    if normalize_unit(unit) == "F":
        return (value - 32) * 5 / 9
    return value


def from_celsius(celsius: float, unit: str) -> float:
    if normalize_unit(unit) == "F":
        return celsius * 9 / 5 + 32
    return celsius


# ==================== PRECISION ====================

def apply_precision(value: float, unit: str, decimal_places: Optional[int] = None) -> Tuple[float, bool]:
    """
    Round a value using ROUND_HALF_UP.

    Returns (rounded_value, was_rounded); was_rounded is True only when
    rounding actually changed the value.
    """
    if decimal_places is None:
        decimal_places = PRECISION_RULES.get(normalize_unit(unit), 2)

    decimal_value = Decimal(str(value))
    rounded_decimal = decimal_value.quantize(
        Decimal(10) ** -decimal_places,
        rounding=ROUND_HALF_UP
    )
    return (float(rounded_decimal), decimal_value != rounded_decimal)


# ==================== FORMATTING ====================

def format_volume(liters: float, unit: str, decimals: int = 2) -> str:
    """format_volume(3.78541, "gal", 1) -> "1.0 gal" """
    normalized = normalize_unit(unit)
    return f"{from_canonical(liters, normalized):.{decimals}f} {normalized}"


def format_weight(kg: float, unit: str, decimals: int = 2) -> str:
    normalized = normalize_unit(unit)
    return f"{from_canonical(kg, normalized):.{decimals}f} {normalized}"


def format_temperature(celsius: float, unit: str, decimals: int = 1) -> str:
    normalized = normalize_unit(unit)
    return f"{from_celsius(celsius, normalized):.{decimals}f}°{normalized}"


def format_unit_conversion(value: float, from_unit: str, to_unit: str, decimals: int = 1) -> str:
    """Hint shown next to an input, e.g. "≈ 26.4 gal" for 100 L."""
    target = normalize_unit(to_unit)
    return f"≈ {convert(value, from_unit, target):.{decimals}f} {target}"


# ==================== VALIDATION ====================

def is_valid_volume(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0


def is_valid_weight(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0


# ==================== QUANTITY ====================

class Quantity(BaseModel):
    """
    A numeric amount stored in its canonical unit.

    The display unit is independent: switching it never touches
    canonical_value, so toggling L -> gal -> L is lossless.
    """
    model_config = ConfigDict(frozen=True)

    canonical_value: float = Field(allow_inf_nan=False)
    dimension: Dimension = Dimension.VOLUME
    display_unit: str = "L"

    @classmethod
    def from_display(cls, value: float, unit: str) -> "Quantity":
        normalized = normalize_unit(unit)
        return cls(
            canonical_value=to_canonical(value, normalized),
            dimension=UNIT_DIMENSIONS[normalized],
            display_unit=normalized,
        )

    @classmethod
    def liters(cls, value: float, display_unit: str = "L") -> "Quantity":
        return cls(canonical_value=value, dimension=Dimension.VOLUME, display_unit=normalize_unit(display_unit))

    @classmethod
    def kilograms(cls, value: float, display_unit: str = "kg") -> "Quantity":
        return cls(canonical_value=value, dimension=Dimension.WEIGHT, display_unit=normalize_unit(display_unit))

    @property
    def canonical_unit(self) -> str:
        return CANONICAL_UNITS[self.dimension]

    @property
    def display_value(self) -> float:
        return from_canonical(self.canonical_value, self.display_unit)

    def with_display_unit(self, unit: str) -> "Quantity":
        normalized = normalize_unit(unit)
        if UNIT_DIMENSIONS[normalized] != self.dimension:
            raise IncompatibleUnitsError(self.display_unit, normalized)
        return self.model_copy(update={"display_unit": normalized})

    def with_display_value(self, value: float) -> "Quantity":
        """Replace the amount as typed in the current display unit."""
        return type(self)(
            canonical_value=to_canonical(value, self.display_unit),
            dimension=self.dimension,
            display_unit=self.display_unit,
        )

    def format(self, decimals: int = 2) -> str:
        return f"{self.display_value:.{decimals}f} {self.display_unit}"


class ConversionRequest(BaseModel):
    """Input contract for the conversion endpoint"""
    value: float
    from_unit: str
    to_unit: str
    decimal_places: Optional[int] = Field(default=None, ge=0)


class ConversionResult(BaseModel):
    """Output contract for the conversion endpoint"""
    value: float
    from_unit: Optional[str] = None
    to_unit: Optional[str] = None
    converted_value: Optional[float] = None
    rounded_value: Optional[float] = None
    status: str = "SUCCESS"
    errors: list = Field(default_factory=list)


def convert_request(request: ConversionRequest) -> ConversionResult:
    """Run a conversion request, reporting conversion errors in the result."""
    try:
        source = normalize_unit(request.from_unit)
        target = normalize_unit(request.to_unit)
        converted = convert(request.value, source, target)
        rounded, _ = apply_precision(converted, target, request.decimal_places)
        return ConversionResult(
            value=request.value,
            from_unit=source,
            to_unit=target,
            converted_value=converted,
            rounded_value=rounded,
        )
    except ConversionError as e:
        return ConversionResult(value=request.value, status="ERROR", errors=[e.to_dict()])
