"""
Onboarding run state: status enums, transition tables and the run record.

An OnboardingRun is mutated only through its methods, which validate every
status change against RUN_TRANSITIONS / MODULE_TRANSITIONS and refuse to
move progress backwards. The orchestrator is the only caller; readers get
snapshots through OnboardingStateStore.

Progress layout (0-100):
    0-5    setup (stage "locating")
    5-95   six modules, 15 points each
    95     finalization (stage "insights")
    100    completed only
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from services.climate_api.onboarding.errors import IllegalTransitionError


class RunStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class ModuleStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.GENERATING, RunStatus.FAILED}),
    RunStatus.GENERATING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED}),
    RunStatus.COMPLETED: frozenset(),  # Terminal
    RunStatus.FAILED: frozenset(),  # Terminal
}

MODULE_TRANSITIONS: dict[ModuleStatus, frozenset[ModuleStatus]] = {
    ModuleStatus.PENDING: frozenset({ModuleStatus.GENERATING}),
    ModuleStatus.GENERATING: frozenset({ModuleStatus.COMPLETED, ModuleStatus.FAILED}),
    ModuleStatus.COMPLETED: frozenset(),
    ModuleStatus.FAILED: frozenset(),
}

STAGE_LOCATING = "locating"
STAGE_INSIGHTS = "insights"

SETUP_PROGRESS = 5
MODULE_BUDGET = 90
FINALIZE_PROGRESS = 95
COMPLETE_PROGRESS = 100


def can_transition_run(current: RunStatus, target: RunStatus) -> bool:
    return target in RUN_TRANSITIONS[current]


def can_transition_module(current: ModuleStatus, target: ModuleStatus) -> bool:
    return target in MODULE_TRANSITIONS[current]


def module_progress_bounds(index: int, module_count: int) -> tuple[int, int]:
    """(start, end) progress for the module at `index`."""
    per_module = MODULE_BUDGET / module_count
    return (
        round(SETUP_PROGRESS + index * per_module),
        round(SETUP_PROGRESS + (index + 1) * per_module),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ModuleProgress:
    module_slug: str
    status: ModuleStatus = ModuleStatus.PENDING
    hotspots_created: int = 0
    quick_wins_created: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "moduleSlug": self.module_slug,
            "status": self.status.value,
            "hotspotsCreated": self.hotspots_created,
            "quickWinsCreated": self.quick_wins_created,
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModuleProgress":
        return cls(
            module_slug=data["moduleSlug"],
            status=ModuleStatus(data.get("status", "pending")),
            hotspots_created=int(data.get("hotspotsCreated", 0)),
            quick_wins_created=int(data.get("quickWinsCreated", 0)),
            error=data.get("error"),
        )


@dataclass
class OnboardingRun:
    """Mutable progress record for one city onboarding."""

    city_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: RunStatus = RunStatus.PENDING
    current_stage: str = STAGE_LOCATING
    current_stage_label: str = "Locating city data..."
    progress: int = 0
    module_progress: list[ModuleProgress] = field(default_factory=list)
    initiated_by: Optional[str] = None
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def new(
        cls,
        city_id: str,
        module_slugs: Iterable[str],
        *,
        run_id: Optional[str] = None,
        initiated_by: Optional[str] = None,
    ) -> "OnboardingRun":
        run = cls(
            city_id=city_id,
            module_progress=[ModuleProgress(module_slug=s) for s in module_slugs],
            initiated_by=initiated_by,
        )
        if run_id:
            run.id = run_id
        return run

    # -- Lookups --

    def module(self, slug: str) -> ModuleProgress:
        for mp in self.module_progress:
            if mp.module_slug == slug:
                return mp
        raise KeyError(slug)

    @property
    def is_terminal(self) -> bool:
        return not RUN_TRANSITIONS[self.status]

    # -- Transitions --

    def _set_status(self, target: RunStatus) -> None:
        if not can_transition_run(self.status, target):
            raise IllegalTransitionError(
                f"run {self.id}: {self.status.value} -> {target.value} not allowed"
            )
        self.status = target

    def _set_module_status(self, slug: str, target: ModuleStatus) -> ModuleProgress:
        mp = self.module(slug)
        if not can_transition_module(mp.status, target):
            raise IllegalTransitionError(
                f"module {slug}: {mp.status.value} -> {target.value} not allowed"
            )
        mp.status = target
        return mp

    def advance(self, progress: int, stage: str, label: str) -> None:
        """Move the progress bar forward. Going backwards is rejected."""
        if self.status is not RunStatus.GENERATING:
            raise IllegalTransitionError(
                f"run {self.id}: cannot report progress while {self.status.value}"
            )
        if progress < self.progress:
            raise IllegalTransitionError(
                f"run {self.id}: progress {self.progress} -> {progress} would decrease"
            )
        if progress >= COMPLETE_PROGRESS:
            raise IllegalTransitionError(
                f"run {self.id}: progress {COMPLETE_PROGRESS} is reserved for completion"
            )
        self.progress = progress
        self.current_stage = stage
        self.current_stage_label = label

    def start(self) -> None:
        self._set_status(RunStatus.GENERATING)

    def start_module(self, slug: str, progress: int, label: str) -> None:
        self.advance(progress, slug, label)
        self._set_module_status(slug, ModuleStatus.GENERATING)

    def complete_module(
        self,
        slug: str,
        *,
        hotspots_created: int,
        quick_wins_created: int,
        progress: int,
        label: str,
    ) -> None:
        self.advance(progress, slug, label)
        mp = self._set_module_status(slug, ModuleStatus.COMPLETED)
        mp.hotspots_created = hotspots_created
        mp.quick_wins_created = quick_wins_created
        mp.error = None

    def fail_module(
        self,
        slug: str,
        error: str,
        *,
        progress: int,
        label: str,
    ) -> None:
        self.advance(progress, slug, label)
        mp = self._set_module_status(slug, ModuleStatus.FAILED)
        mp.error = error

    def complete(self) -> None:
        self._set_status(RunStatus.COMPLETED)
        self.progress = COMPLETE_PROGRESS
        self.current_stage_label = "City data ready"
        self.completed_at = _utcnow()

    def fail(self, error: str) -> None:
        self._set_status(RunStatus.FAILED)
        self.error = error
        self.completed_at = _utcnow()

    # -- Serialization --

    def module_progress_json(self) -> list[dict[str, Any]]:
        return [mp.to_dict() for mp in self.module_progress]

    def to_dict(self) -> dict[str, Any]:
        """camelCase wire shape, as read by polling clients."""
        return {
            "id": self.id,
            "cityId": self.city_id,
            "status": self.status.value,
            "currentStage": self.current_stage,
            "currentStageLabel": self.current_stage_label,
            "progress": self.progress,
            "moduleProgress": self.module_progress_json(),
            "initiatedBy": self.initiated_by,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }
