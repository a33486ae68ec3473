"""
In-process registry of running onboarding tasks.

Each run is an asyncio.Task keyed by its run id. The HTTP layer uses the
registry to hand out run ids immediately and to refuse a second start for a
city that is already being onboarded. On shutdown, drain() waits for
outstanding runs instead of cancelling them, so no run is left half-written.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from services.climate_api.onboarding.orchestrator import RunOutcome, run_city_onboarding
from services.climate_api.onboarding.types import OnboardingRequest

logger = logging.getLogger(__name__)


@dataclass
class OnboardingHandle:
    run_id: str
    city_id: str
    task: "asyncio.Task[Optional[RunOutcome]]"

    @property
    def done(self) -> bool:
        return self.task.done()


async def _run_onboarding_safe(
    request: OnboardingRequest,
    run_id: str,
    **kwargs: Any,
) -> Optional[RunOutcome]:
    """
    Wraps run_city_onboarding so a background failure is logged rather than
    lost in an unawaited task. The run record keeps whatever state the
    orchestrator last wrote.
    """
    try:
        return await run_city_onboarding(request, run_id=run_id, **kwargs)
    except Exception as exc:
        logger.exception(
            "onboarding uncaught exception run=%s city=%s: %s",
            run_id, request.city_id, exc,
        )
        return None


class OnboardingTaskRegistry:
    """Tracks onboarding tasks spawned by this process."""

    def __init__(self, **run_kwargs: Any):
        # pool / api_key / client forwarded to every run
        self._run_kwargs = run_kwargs
        self._handles: dict[str, OnboardingHandle] = {}

    def start(self, request: OnboardingRequest, **overrides: Any) -> OnboardingHandle:
        """Spawn a run for the city and return its handle without waiting."""
        run_id = str(uuid.uuid4())
        kwargs = {**self._run_kwargs, **overrides}
        task = asyncio.create_task(
            _run_onboarding_safe(request, run_id, **kwargs),
            name=f"onboarding-{run_id}",
        )
        handle = OnboardingHandle(run_id=run_id, city_id=request.city_id, task=task)
        self._handles[run_id] = handle
        task.add_done_callback(lambda _t: self._on_done(run_id))
        logger.info("Started onboarding run %s for city %s", run_id, request.city_id)
        return handle

    def _on_done(self, run_id: str) -> None:
        self._handles.pop(run_id, None)

    def get(self, run_id: str) -> Optional[OnboardingHandle]:
        return self._handles.get(run_id)

    def running(self) -> list[OnboardingHandle]:
        return [h for h in self._handles.values() if not h.done]

    def is_running_for_city(self, city_id: str) -> bool:
        return any(h.city_id == city_id for h in self.running())

    async def drain(self) -> None:
        """Wait for every outstanding run to finish."""
        pending = [h.task for h in self._handles.values()]
        if not pending:
            return
        logger.info("Waiting for %d onboarding run(s) to finish", len(pending))
        await asyncio.gather(*pending, return_exceptions=True)
