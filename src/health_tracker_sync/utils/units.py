"""
Display unit conversion.

Entries are stored in canonical units (pounds, fluid ounces). Conversion to
the user's preferred unit happens only when reading for display or when
accepting user input; converted values are never persisted.
"""

from enum import Enum

POUNDS_PER_KILOGRAM = 2.20462262185
MILLILITERS_PER_OUNCE = 29.5735295625


class WeightUnit(str, Enum):
    """Weight display units."""

    POUNDS = "lbs"
    KILOGRAMS = "kg"

    def to_pounds(self, value: float) -> float:
        if self is WeightUnit.KILOGRAMS:
            return value * POUNDS_PER_KILOGRAM
        return value

    def from_pounds(self, value: float) -> float:
        if self is WeightUnit.KILOGRAMS:
            return value / POUNDS_PER_KILOGRAM
        return value


class HydrationUnit(str, Enum):
    """Hydration display units."""

    OUNCES = "oz"
    MILLILITERS = "ml"

    def to_ounces(self, value: float) -> float:
        if self is HydrationUnit.MILLILITERS:
            return value / MILLILITERS_PER_OUNCE
        return value

    def from_ounces(self, value: float) -> float:
        if self is HydrationUnit.MILLILITERS:
            return value * MILLILITERS_PER_OUNCE
        return value
