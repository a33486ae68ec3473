"""
Shared value types for the city-onboarding pipeline.

OnboardingRequest is the single input to a run; everything downstream
(prompt building, hotspot placement, run creation) reads from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TemperatureUnit(str, Enum):
    CELSIUS = "celsius"
    FAHRENHEIT = "fahrenheit"

    @property
    def symbol(self) -> str:
        return "°F" if self is TemperatureUnit.FAHRENHEIT else "°C"

    @property
    def label(self) -> str:
        return "Fahrenheit (°F)" if self is TemperatureUnit.FAHRENHEIT else "Celsius (°C)"


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def offset(self, lat_offset: float, lng_offset: float) -> "Coordinates":
        return Coordinates(lat=self.lat + lat_offset, lng=self.lng + lng_offset)

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class OnboardingRequest:
    """Everything needed to onboard one city."""

    city_id: str
    city_name: str
    country: str
    coordinates: Coordinates
    population: int
    unit: TemperatureUnit = TemperatureUnit.CELSIUS
    initiated_by: Optional[str] = None
    """User id of whoever triggered the run, or None for system/CLI runs."""
