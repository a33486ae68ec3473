"""
SQLAlchemy schema of record for the onboarding tables.
"""

from services.climate_api.db.engine import create_engine
from services.climate_api.db.models import (
    Base,
    City,
    CityOnboarding,
    Hotspot,
    Module,
    QuickWin,
)

__all__ = [
    "create_engine",
    "Base",
    "City",
    "CityOnboarding",
    "Hotspot",
    "Module",
    "QuickWin",
]
