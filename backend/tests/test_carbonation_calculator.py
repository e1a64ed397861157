# backend/tests/test_carbonation_calculator.py

"""
Unit tests for the carbonation calculator
"""

import pytest
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from carbonation_calculator import (
    CarbonationLevel,
    SugarType,
    calculate_co2_from_sugar,
    calculate_co2_volumes,
    calculate_priming_sugar,
    calculate_required_pressure,
    estimate_carbonation_duration,
    get_carbonation_level,
    is_pressure_safe,
    is_temperature_safe,
    temperature_factor,
    validate_temperature,
)


class TestTemperatureFactor:

    def test_table_value(self):
        assert temperature_factor(4) == 0.09474

    def test_interpolated(self):
        assert temperature_factor(3) == pytest.approx(0.10021)

    def test_clamped_to_table(self):
        assert temperature_factor(-3) == 0.11417
        assert temperature_factor(30) == 0.04959


class TestForcedCarbonation:

    def test_co2_volumes(self):
        assert calculate_co2_volumes(12, 4) == 2.53

    def test_required_pressure(self):
        assert calculate_required_pressure(2.5, 4) == 11.69

    def test_required_pressure_never_negative(self):
        assert calculate_required_pressure(0.5, 4) == 0.0

    def test_pressure_and_volumes_agree(self):
        pressure = calculate_required_pressure(2.7, 2)

        assert calculate_co2_volumes(pressure, 2) == pytest.approx(2.7, abs=0.01)

    def test_duration(self):
        assert estimate_carbonation_duration(0, 2.5, 15) == 60.0
        assert estimate_carbonation_duration(0, 1, 60) == 12.0

    def test_duration_when_already_carbonated(self):
        assert estimate_carbonation_duration(2.5, 2.0, 20) == 0.0


class TestLevelsAndSafety:

    def test_levels(self):
        assert get_carbonation_level(0.5) == CarbonationLevel.STILL
        assert get_carbonation_level(1.0) == CarbonationLevel.PETILLANT
        assert get_carbonation_level(2.5) == CarbonationLevel.SPARKLING

    def test_pressure_safety(self):
        assert is_pressure_safe(30, 40) is True
        assert is_pressure_safe(45, 40) is False
        assert is_pressure_safe(-1, 40) is False

    def test_temperature_safety(self):
        assert is_temperature_safe(-5) is True
        assert is_temperature_safe(26) is False

    def test_validate_temperature(self):
        assert validate_temperature(4).is_optimal is True
        assert validate_temperature(15).is_valid is True
        assert validate_temperature(15).is_optimal is False
        assert "freezing" in validate_temperature(-10).message
        assert validate_temperature(30).is_valid is False


class TestPrimingSugar:

    def test_sucrose(self):
        assert calculate_priming_sugar(2.5, 20) == 200.0

    def test_dextrose(self):
        assert calculate_priming_sugar(2.5, 20, sugar_type=SugarType.DEXTROSE) == 190.0

    def test_sugar_type_as_string(self):
        assert calculate_priming_sugar(2.5, 20, sugar_type="honey") == 175.0

    def test_residual_co2(self):
        assert calculate_priming_sugar(2.5, 20, residual_co2_volumes=0.8) == 136.0

    def test_no_sugar_when_residual_meets_target(self):
        assert calculate_priming_sugar(2.5, 20, residual_co2_volumes=2.5) == 0.0

    def test_co2_from_sugar(self):
        assert calculate_co2_from_sugar(10) == 2.5
        assert calculate_co2_from_sugar(7.6, 0.5, SugarType.DEXTROSE) == 2.5
