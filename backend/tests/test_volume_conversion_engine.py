# backend/tests/test_volume_conversion_engine.py

"""
Unit tests for Volume Conversion Engine

Tests cover:
- Unit normalization and aliases
- Unknown unit -> ERROR
- L <-> gal, kg <-> lb, mL, °C <-> °F
- Round-trip within 0.01 for every supported unit
- Zero and negative pass-through
- Cross-dimension conversion -> ERROR
- Quantity unit-switch stability
- Precision rounding (ROUND_HALF_UP)
"""

import pytest
import sys
from pathlib import Path

from pydantic import ValidationError

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from volume_conversion_engine import (
    ROUND_TRIP_TOLERANCE,
    ConversionRequest,
    Dimension,
    IncompatibleUnitsError,
    Quantity,
    UnknownUnitError,
    apply_precision,
    convert,
    convert_request,
    format_temperature,
    format_unit_conversion,
    format_volume,
    format_weight,
    from_canonical,
    is_valid_volume,
    is_valid_weight,
    normalize_unit,
    to_canonical,
    to_kilograms,
    to_liters,
)

LINEAR_UNITS = ["L", "gal", "mL", "kg", "lb"]
SAMPLE_VALUES = [0.0, 0.005, 1.0, 3.78541, 19.99, 132.086, 500.0, 875.5, 13200.0, 50000.0]


class TestUnitNormalization:
    """Test unit normalization"""

    def test_normalize_canonical_units(self):
        assert normalize_unit("L") == "L"
        assert normalize_unit("gal") == "gal"
        assert normalize_unit("mL") == "mL"
        assert normalize_unit("kg") == "kg"
        assert normalize_unit("lb") == "lb"

    def test_normalize_aliases(self):
        assert normalize_unit("liters") == "L"
        assert normalize_unit("LITRES") == "L"
        assert normalize_unit("Gallons") == "gal"
        assert normalize_unit("lbs") == "lb"
        assert normalize_unit("kilograms") == "kg"
        assert normalize_unit("ml") == "mL"
        assert normalize_unit("°F") == "F"

    def test_whitespace_is_ignored(self):
        assert normalize_unit("  gal ") == "gal"

    def test_unknown_unit_error(self):
        with pytest.raises(UnknownUnitError) as exc_info:
            normalize_unit("BARREL")

        assert exc_info.value.error_code == "UNKNOWN_UNIT"
        assert exc_info.value.field == "unit"

    def test_empty_unit_error(self):
        with pytest.raises(UnknownUnitError):
            normalize_unit("")


class TestVolumeConversion:
    """Test liters <-> gallons <-> milliliters"""

    def test_gallons_to_liters(self):
        assert to_canonical(1, "gal") == pytest.approx(3.78541)

    def test_liters_to_gallons(self):
        assert from_canonical(3.78541, "gal") == pytest.approx(1.0)

    def test_milliliters(self):
        assert to_canonical(1000, "mL") == pytest.approx(1.0)
        assert from_canonical(1, "mL") == pytest.approx(1000.0)

    def test_liters_identity(self):
        assert to_canonical(5.5, "L") == 5.5
        assert from_canonical(5.5, "L") == 5.5

    def test_convert_gal_to_ml(self):
        assert convert(1, "gal", "mL") == pytest.approx(3785.41)

    def test_to_liters_rejects_weight(self):
        with pytest.raises(IncompatibleUnitsError):
            to_liters(10, "kg")


class TestWeightConversion:
    """Test kilograms <-> pounds"""

    def test_kilograms_to_pounds(self):
        assert from_canonical(1, "lb") == pytest.approx(2.20462)

    def test_pounds_to_kilograms(self):
        assert to_canonical(2.20462, "lb") == pytest.approx(1.0)
        assert to_kilograms(10, "lb") == pytest.approx(4.53592, abs=1e-4)

    def test_to_kilograms_rejects_volume(self):
        with pytest.raises(IncompatibleUnitsError):
            to_kilograms(10, "gal")


class TestTemperatureConversion:

    def test_fahrenheit_to_celsius(self):
        assert to_canonical(32, "F") == pytest.approx(0)
        assert to_canonical(212, "F") == pytest.approx(100)

    def test_celsius_to_fahrenheit(self):
        assert from_canonical(0, "F") == pytest.approx(32)
        assert from_canonical(100, "F") == pytest.approx(212)

    def test_format_temperature(self):
        assert format_temperature(0, "F", 0) == "32°F"
        assert format_temperature(20, "C") == "20.0°C"


class TestRoundTrip:
    """fromCanonical(toCanonical(x, u), u) is within 0.01 of x"""

    @pytest.mark.parametrize("unit", LINEAR_UNITS)
    @pytest.mark.parametrize("value", SAMPLE_VALUES)
    def test_round_trip(self, unit, value):
        assert from_canonical(to_canonical(value, unit), unit) == pytest.approx(value, abs=ROUND_TRIP_TOLERANCE)

    @pytest.mark.parametrize("unit", LINEAR_UNITS)
    def test_zero_passes_through(self, unit):
        assert to_canonical(0, unit) == 0
        assert from_canonical(0, unit) == 0

    @pytest.mark.parametrize("unit", ["L", "gal", "kg", "lb"])
    def test_negative_passes_through(self, unit):
        # No clamping at this layer
        assert to_canonical(-10, unit) < 0
        assert from_canonical(to_canonical(-10, unit), unit) == pytest.approx(-10, abs=0.01)


class TestIncompatibleUnits:

    def test_volume_to_weight_error(self):
        with pytest.raises(IncompatibleUnitsError) as exc_info:
            convert(10, "L", "kg")

        assert exc_info.value.error_code == "INCOMPATIBLE_UNITS"

    def test_convert_same_unit(self):
        assert convert(12.345, "L", "liters") == 12.345


class TestQuantity:
    """Test canonical storage and display unit switching"""

    def test_from_display_stores_canonical(self):
        q = Quantity.from_display(10, "gal")

        assert q.canonical_value == pytest.approx(37.8541)
        assert q.dimension == Dimension.VOLUME
        assert q.display_unit == "gal"
        assert q.display_value == pytest.approx(10)

    def test_unit_switch_stability(self):
        q = Quantity.from_display(875.5, "L")

        switched = q.with_display_unit("gal").with_display_unit("L")

        assert switched.canonical_value == q.canonical_value
        assert switched.display_value == pytest.approx(875.5, abs=0.01)

    def test_unit_switch_does_not_touch_canonical(self):
        q = Quantity.liters(100)

        gal = q.with_display_unit("gallons")

        assert gal.canonical_value == 100
        assert gal.display_value == pytest.approx(26.417, abs=0.001)

    def test_unit_switch_across_dimensions_error(self):
        with pytest.raises(IncompatibleUnitsError):
            Quantity.liters(100).with_display_unit("lb")

    def test_with_display_value(self):
        q = Quantity.liters(0, display_unit="gal").with_display_value(2)

        assert q.canonical_value == pytest.approx(7.57082)

    def test_weight_quantity(self):
        q = Quantity.from_display(100, "lb")

        assert q.dimension == Dimension.WEIGHT
        assert q.canonical_unit == "kg"
        assert q.canonical_value == pytest.approx(45.359, abs=0.001)

    def test_format_in_display_unit(self):
        assert Quantity.from_display(10, "gal").format(1) == "10.0 gal"

    def test_quantity_is_frozen(self):
        q = Quantity.liters(1)

        with pytest.raises(Exception):
            q.canonical_value = 2

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_amount_rejected(self, value):
        with pytest.raises(ValidationError):
            Quantity(canonical_value=value)

    def test_overflowing_display_value_rejected(self):
        with pytest.raises(ValidationError):
            Quantity.liters(0, display_unit="gal").with_display_value(1e308)


class TestPrecision:
    """Test ROUND_HALF_UP precision rules"""

    def test_round_half_up(self):
        assert apply_precision(2.345, "L") == (2.35, True)
        assert apply_precision(2.5, "mL") == (3.0, True)

    def test_no_rounding_needed(self):
        assert apply_precision(2.5, "L") == (2.5, False)

    def test_override_decimal_places(self):
        value, was_rounded = apply_precision(26.41720, "gal", decimal_places=1)

        assert value == 26.4
        assert was_rounded is True


class TestFormatting:

    def test_format_volume(self):
        assert format_volume(3.78541, "gal", 1) == "1.0 gal"
        assert format_volume(5.5, "L") == "5.50 L"

    def test_format_weight(self):
        assert format_weight(0.453592, "lb", 1) == "1.0 lb"

    def test_format_unit_conversion(self):
        assert format_unit_conversion(100, "L", "gal") == "≈ 26.4 gal"


class TestValidation:

    def test_valid_volume(self):
        assert is_valid_volume(5.5) is True
        assert is_valid_volume(0) is False
        assert is_valid_volume(-1) is False
        assert is_valid_volume(float("inf")) is False
        assert is_valid_volume(float("nan")) is False

    def test_valid_weight(self):
        assert is_valid_weight(1) is True
        assert is_valid_weight(0) is False


class TestConversionRequest:

    def test_success(self):
        result = convert_request(ConversionRequest(value=10, from_unit="gal", to_unit="L"))

        assert result.status == "SUCCESS"
        assert result.converted_value == pytest.approx(37.8541)
        assert result.rounded_value == 37.85

    def test_unknown_unit_reported(self):
        result = convert_request(ConversionRequest(value=10, from_unit="hogshead", to_unit="L"))

        assert result.status == "ERROR"
        assert any(e["error_code"] == "UNKNOWN_UNIT" for e in result.errors)

    def test_incompatible_units_reported(self):
        result = convert_request(ConversionRequest(value=10, from_unit="L", to_unit="lb"))

        assert result.status == "ERROR"
        assert result.errors[0]["error_code"] == "INCOMPATIBLE_UNITS"
