# backend/carbonation_calculator.py

"""
Carbonation Calculator

Forced and natural carbonation formulas:
- CO2 volumes from gauge pressure and temperature (Henry's law)
- Required gauge pressure for a target CO2 level
- Rough duration estimate for forced carbonation
- Priming sugar for bottle conditioning (and the inverse)
- Safety checks for pressure and temperature

Formula: CO2 volumes = (gauge PSI + 14.7) x temperature factor
"""

import math
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

ATMOSPHERIC_PRESSURE_PSI = 14.7

# Volumes of CO2 per absolute PSI, by temperature in °C
TEMP_FACTORS_CELSIUS: Dict[int, float] = {
    0: 0.11417,
    2: 0.10568,
    4: 0.09474,
    6: 0.08899,
    8: 0.08458,
    10: 0.08016,
    12: 0.07470,
    15: 0.06923,
    18: 0.06417,
    20: 0.05911,
    22: 0.05506,
    25: 0.04959,
}

# Grams of sugar per liter per volume of CO2
SUGAR_FACTORS: Dict[str, float] = {
    "sucrose": 4.0,
    "dextrose": 3.8,
    "honey": 3.5,
}

# Forced carbonation base rate: hours per volume at 15 PSI
BASE_HOURS_PER_VOLUME = 24
BASE_PRESSURE_PSI = 15

SAFETY_LIMITS = {
    "max_pressure_psi": 50,
    "min_temperature_c": -5,
    "max_temperature_c": 25,
    "optimal_temperature_range_c": (0, 10),
}


class CarbonationLevel(str, Enum):
    STILL = "still"
    PETILLANT = "petillant"
    SPARKLING = "sparkling"


class SugarType(str, Enum):
    SUCROSE = "sucrose"
    DEXTROSE = "dextrose"
    HONEY = "honey"


CO2_RANGES = {
    CarbonationLevel.STILL: {"min": 0, "max": 1.0, "label": "Still"},
    CarbonationLevel.PETILLANT: {"min": 1.0, "max": 2.5, "label": "Pétillant (lightly sparkling)"},
    CarbonationLevel.SPARKLING: {"min": 2.5, "max": 4.0, "label": "Sparkling"},
}


class TemperatureCheck(BaseModel):
    is_valid: bool
    is_optimal: bool
    message: Optional[str] = None


def _round(value: float, places: int) -> float:
    # Half-up; round() rounds half to even
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def temperature_factor(temperature_c: float) -> float:
    """
    Factor for a temperature, linearly interpolated between table entries and
    clamped to the table's ends.
    """
    temps = sorted(TEMP_FACTORS_CELSIUS)
    if temperature_c in TEMP_FACTORS_CELSIUS:
        return TEMP_FACTORS_CELSIUS[temperature_c]
    if temperature_c <= temps[0]:
        return TEMP_FACTORS_CELSIUS[temps[0]]
    if temperature_c >= temps[-1]:
        return TEMP_FACTORS_CELSIUS[temps[-1]]

    for lower, upper in zip(temps, temps[1:]):
        if lower <= temperature_c <= upper:
            lower_factor = TEMP_FACTORS_CELSIUS[lower]
            upper_factor = TEMP_FACTORS_CELSIUS[upper]
            return lower_factor + (temperature_c - lower) * (upper_factor - lower_factor) / (upper - lower)

    return TEMP_FACTORS_CELSIUS[temps[-1]]


def calculate_co2_volumes(pressure_psi: float, temperature_c: float) -> float:
    """CO2 volumes dissolved at a gauge pressure and temperature, 2 decimals."""
    absolute = pressure_psi + ATMOSPHERIC_PRESSURE_PSI
    return _round(absolute * temperature_factor(temperature_c), 2)


def calculate_required_pressure(target_co2_volumes: float, temperature_c: float) -> float:
    """Gauge PSI needed to reach a CO2 level; never negative, 2 decimals."""
    absolute = target_co2_volumes / temperature_factor(temperature_c)
    return _round(max(0.0, absolute - ATMOSPHERIC_PRESSURE_PSI), 2)


def estimate_carbonation_duration(current_co2: float, target_co2: float, pressure_psi: float) -> float:
    """
    Rough hours to go from current to target CO2 at a pressure, 1 decimal.

    Higher pressure shortens the time with diminishing returns (square root).
    """
    delta = target_co2 - current_co2
    if delta <= 0:
        return 0.0
    pressure_factor = math.sqrt(BASE_PRESSURE_PSI / max(1.0, pressure_psi))
    return _round(delta * BASE_HOURS_PER_VOLUME * pressure_factor, 1)


def get_carbonation_level(co2_volumes: float) -> CarbonationLevel:
    if co2_volumes < 1.0:
        return CarbonationLevel.STILL
    if co2_volumes < 2.5:
        return CarbonationLevel.PETILLANT
    return CarbonationLevel.SPARKLING


def is_pressure_safe(pressure_psi: float, vessel_max_pressure_psi: float) -> bool:
    return 0 <= pressure_psi <= vessel_max_pressure_psi


def is_temperature_safe(temperature_c: float) -> bool:
    return SAFETY_LIMITS["min_temperature_c"] <= temperature_c <= SAFETY_LIMITS["max_temperature_c"]


def validate_temperature(temperature_c: float) -> TemperatureCheck:
    if temperature_c < SAFETY_LIMITS["min_temperature_c"]:
        return TemperatureCheck(is_valid=False, is_optimal=False, message="Temperature too low (risk of freezing)")
    if temperature_c > SAFETY_LIMITS["max_temperature_c"]:
        return TemperatureCheck(is_valid=False, is_optimal=False, message="Temperature too high (poor CO2 absorption)")

    low, high = SAFETY_LIMITS["optimal_temperature_range_c"]
    if low <= temperature_c <= high:
        return TemperatureCheck(is_valid=True, is_optimal=True)
    return TemperatureCheck(
        is_valid=True,
        is_optimal=False,
        message=f"Temperature is valid but not optimal (best: {low}-{high}°C)",
    )


def calculate_priming_sugar(
    target_co2_volumes: float,
    volume_liters: float,
    residual_co2_volumes: float = 0,
    sugar_type: SugarType = SugarType.SUCROSE,
) -> float:
    """Grams of priming sugar for a volume of cider, 1 decimal."""
    delta = target_co2_volumes - residual_co2_volumes
    if delta <= 0:
        return 0.0
    factor = SUGAR_FACTORS[SugarType(sugar_type).value]
    return _round(delta * factor * volume_liters, 1)


def calculate_co2_from_sugar(
    sugar_grams_per_liter: float,
    residual_co2_volumes: float = 0,
    sugar_type: SugarType = SugarType.SUCROSE,
) -> float:
    """CO2 volumes reached from a sugar dose, 2 decimals."""
    factor = SUGAR_FACTORS[SugarType(sugar_type).value]
    return _round(residual_co2_volumes + sugar_grams_per_liter / factor, 2)


# ==================== REQUEST MODELS ====================

class CO2VolumesRequest(BaseModel):
    pressure_psi: float = Field(ge=0, le=SAFETY_LIMITS["max_pressure_psi"], allow_inf_nan=False)
    temperature_c: float = Field(allow_inf_nan=False)


class RequiredPressureRequest(BaseModel):
    target_co2_volumes: float = Field(gt=0, allow_inf_nan=False)
    temperature_c: float = Field(allow_inf_nan=False)
    current_co2_volumes: float = Field(default=0, ge=0, allow_inf_nan=False)
    vessel_max_pressure_psi: Optional[float] = Field(default=None, gt=0)


class PrimingSugarRequest(BaseModel):
    target_co2_volumes: float = Field(gt=0, allow_inf_nan=False)
    volume_liters: float = Field(gt=0, allow_inf_nan=False)
    residual_co2_volumes: float = Field(default=0, ge=0, allow_inf_nan=False)
    sugar_type: SugarType = SugarType.SUCROSE
