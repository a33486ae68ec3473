"""
SQLAlchemy DeclarativeBase models -- schema of record for the tables the
onboarding pipeline reads and writes.

Column names use camelCase to match the wire shape the dashboard reads; SQL
in the pipeline quotes them ("cityId", "moduleProgress", ...).

Tables are created by scripts/init_db.py (Base.metadata.create_all). The
pipeline itself talks to PostgreSQL through asyncpg, not through these
classes.
"""

import uuid as _uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, Float, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


SeverityEnum = Enum("low", "medium", "high", "critical", name="Severity")
LevelEnum = Enum("low", "medium", "high", name="Level")
HotspotStatusEnum = Enum("active", "monitoring", "resolved", name="HotspotStatus")
ModuleCategoryEnum = Enum("pollution", "climate", "ecosystem", name="ModuleCategory")
OnboardingStatusEnum = Enum("pending", "generating", "completed", "failed", name="OnboardingStatus")


def _new_id() -> str:
    return str(_uuid.uuid4())


class Base(DeclarativeBase):
    pass


class City(Base):
    __tablename__ = "cities"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    slug: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String)
    country: Mapped[str] = mapped_column(String)
    region: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    population: Mapped[int] = mapped_column(Integer)
    # {totalHotspots, totalQuickWins, activeModules, completedQuickWins, activeActionPlans}
    stats: Mapped[dict] = mapped_column(JSONB)
    isActive: Mapped[bool] = mapped_column(Boolean, default=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Module(Base):
    __tablename__ = "modules"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    slug: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(Text)
    category: Mapped[str] = mapped_column(ModuleCategoryEnum)
    isActive: Mapped[bool] = mapped_column(Boolean, default=True)
    sortOrder: Mapped[int] = mapped_column(Integer, default=0)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Hotspot(Base):
    __tablename__ = "hotspots"
    __table_args__ = (
        Index("hotspots_city_module_idx", "cityId", "moduleId"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    cityId: Mapped[str] = mapped_column(String, index=True)
    moduleId: Mapped[str] = mapped_column(String)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(Text)
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    address: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    neighborhood: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    severity: Mapped[str] = mapped_column(SeverityEnum)
    status: Mapped[str] = mapped_column(HotspotStatusEnum, default="active")
    metrics: Mapped[list] = mapped_column(JSONB, default=list)
    displayValue: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    detectedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    lastUpdated: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class QuickWin(Base):
    __tablename__ = "quick_wins"
    __table_args__ = (
        Index("quick_wins_city_module_idx", "cityId", "moduleId"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    cityId: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    moduleId: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(Text)
    impact: Mapped[str] = mapped_column(LevelEnum)
    effort: Mapped[str] = mapped_column(LevelEnum)
    estimatedDays: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    co2ReductionTons: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    steps: Mapped[Optional[list[str]]] = mapped_column(ARRAY(String), nullable=True)
    sortOrder: Mapped[int] = mapped_column(Integer, default=0)
    isActive: Mapped[bool] = mapped_column(Boolean, default=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class CityOnboarding(Base):
    """One row per onboarding run. Latest row per city (by startedAt) is current."""

    __tablename__ = "city_onboarding"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    cityId: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(OnboardingStatusEnum, index=True)
    currentStage: Mapped[str] = mapped_column(String)
    currentStageLabel: Mapped[str] = mapped_column(String)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    moduleProgress: Mapped[list] = mapped_column(JSONB, default=list)
    initiatedBy: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    startedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completedAt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
