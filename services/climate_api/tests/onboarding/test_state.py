"""Tests for run/module status transitions and progress bookkeeping."""

import pytest

from services.climate_api.onboarding.catalog import MODULE_SLUGS
from services.climate_api.onboarding.errors import IllegalTransitionError
from services.climate_api.onboarding.state import (
    COMPLETE_PROGRESS,
    ModuleProgress,
    ModuleStatus,
    OnboardingRun,
    RunStatus,
    can_transition_module,
    can_transition_run,
    module_progress_bounds,
)


def _run() -> OnboardingRun:
    return OnboardingRun.new("city-1", MODULE_SLUGS)


class TestTransitionTables:
    def test_run_happy_path(self):
        assert can_transition_run(RunStatus.PENDING, RunStatus.GENERATING)
        assert can_transition_run(RunStatus.GENERATING, RunStatus.COMPLETED)

    def test_run_can_fail_from_pending_and_generating(self):
        assert can_transition_run(RunStatus.PENDING, RunStatus.FAILED)
        assert can_transition_run(RunStatus.GENERATING, RunStatus.FAILED)

    @pytest.mark.parametrize("terminal", [RunStatus.COMPLETED, RunStatus.FAILED])
    def test_run_terminal_states(self, terminal):
        assert not any(can_transition_run(terminal, target) for target in RunStatus)

    def test_run_cannot_skip_generating(self):
        assert not can_transition_run(RunStatus.PENDING, RunStatus.COMPLETED)

    def test_module_transitions(self):
        assert can_transition_module(ModuleStatus.PENDING, ModuleStatus.GENERATING)
        assert can_transition_module(ModuleStatus.GENERATING, ModuleStatus.COMPLETED)
        assert can_transition_module(ModuleStatus.GENERATING, ModuleStatus.FAILED)
        assert not can_transition_module(ModuleStatus.PENDING, ModuleStatus.COMPLETED)
        assert not can_transition_module(ModuleStatus.FAILED, ModuleStatus.GENERATING)


class TestProgressBounds:
    def test_six_modules_fifteen_points_each(self):
        bounds = [module_progress_bounds(i, 6) for i in range(6)]
        assert bounds == [(5, 20), (20, 35), (35, 50), (50, 65), (65, 80), (80, 95)]

    def test_uneven_split_stays_within_budget(self):
        bounds = [module_progress_bounds(i, 7) for i in range(7)]
        assert bounds[0][0] == 5
        assert bounds[-1][1] == 95
        assert all(a[1] == b[0] for a, b in zip(bounds, bounds[1:]))


class TestOnboardingRun:
    def test_new_run_initial_state(self):
        run = _run()
        assert run.status is RunStatus.PENDING
        assert run.current_stage == "locating"
        assert run.current_stage_label == "Locating city data..."
        assert run.progress == 0
        assert [mp.module_slug for mp in run.module_progress] == list(MODULE_SLUGS)
        assert all(mp.status is ModuleStatus.PENDING for mp in run.module_progress)
        assert run.started_at.tzinfo is not None
        assert run.completed_at is None

    def test_preassigned_run_id(self):
        run = OnboardingRun.new("city-1", MODULE_SLUGS, run_id="run-42")
        assert run.id == "run-42"

    def test_module_lifecycle(self):
        run = _run()
        run.start()
        run.start_module("urban-heat", 5, "Analyzing urban heat patterns...")
        assert run.module("urban-heat").status is ModuleStatus.GENERATING
        assert run.current_stage == "urban-heat"

        run.complete_module(
            "urban-heat", hotspots_created=5, quick_wins_created=4,
            progress=20, label="Urban Heat analysis complete",
        )
        mp = run.module("urban-heat")
        assert mp.status is ModuleStatus.COMPLETED
        assert (mp.hotspots_created, mp.quick_wins_created) == (5, 4)
        assert run.progress == 20

    def test_fail_module_records_error(self):
        run = _run()
        run.start()
        run.start_module("biodiversity", 65, "Analyzing biodiversity patterns...")
        run.fail_module("biodiversity", "OpenAI API error (500): Internal Server Error",
                        progress=80, label="Biodiversity analysis failed")
        mp = run.module("biodiversity")
        assert mp.status is ModuleStatus.FAILED
        assert mp.error == "OpenAI API error (500): Internal Server Error"
        assert mp.hotspots_created == 0

    def test_progress_cannot_decrease(self):
        run = _run()
        run.start()
        run.advance(50, "x", "x")
        with pytest.raises(IllegalTransitionError):
            run.advance(49, "x", "x")

    def test_progress_100_reserved_for_completion(self):
        run = _run()
        run.start()
        with pytest.raises(IllegalTransitionError):
            run.advance(COMPLETE_PROGRESS, "insights", "done")

    def test_cannot_report_progress_before_start(self):
        with pytest.raises(IllegalTransitionError):
            _run().advance(5, "urban-heat", "x")

    def test_cannot_complete_module_twice(self):
        run = _run()
        run.start()
        run.start_module("restoration", 80, "x")
        run.complete_module("restoration", hotspots_created=1, quick_wins_created=1,
                            progress=95, label="x")
        with pytest.raises(IllegalTransitionError):
            run.fail_module("restoration", "late", progress=95, label="x")

    def test_complete_sets_terminal_fields(self):
        run = _run()
        run.start()
        run.complete()
        assert run.status is RunStatus.COMPLETED
        assert run.progress == 100
        assert run.completed_at is not None
        assert run.is_terminal

    def test_cannot_complete_from_pending(self):
        with pytest.raises(IllegalTransitionError):
            _run().complete()

    def test_fail_from_pending(self):
        run = _run()
        run.fail("OpenAI API key not configured")
        assert run.status is RunStatus.FAILED
        assert run.error == "OpenAI API key not configured"
        assert all(mp.status is ModuleStatus.PENDING for mp in run.module_progress)

    def test_no_transition_out_of_failed(self):
        run = _run()
        run.fail("boom")
        with pytest.raises(IllegalTransitionError):
            run.start()

    def test_unknown_module_slug(self):
        run = _run()
        run.start()
        with pytest.raises(KeyError):
            run.start_module("air-quality", 5, "x")


class TestSerialization:
    def test_to_dict_camel_case(self):
        run = _run()
        run.start()
        data = run.to_dict()
        assert data["cityId"] == "city-1"
        assert data["status"] == "generating"
        assert data["currentStageLabel"] == "Locating city data..."
        assert data["completedAt"] is None
        assert data["moduleProgress"][0] == {
            "moduleSlug": "urban-heat",
            "status": "pending",
            "hotspotsCreated": 0,
            "quickWinsCreated": 0,
        }

    def test_module_progress_from_dict(self):
        mp = ModuleProgress.from_dict({
            "moduleSlug": "ocean-plastic", "status": "failed",
            "hotspotsCreated": 2, "quickWinsCreated": 0, "error": "timeout",
        })
        assert mp.status is ModuleStatus.FAILED
        assert mp.to_dict()["error"] == "timeout"
