"""
Step Tracker — records each stage of a pipeline run (resolve, compose,
build, verify) with its status, timing and a short summary.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Iterator

from models.schemas import Step, StepStatus

log = logging.getLogger(__name__)


class StepTracker:
    """Manages the chain of steps for a single pipeline run."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        self.steps: list[Step] = []
        self._active: dict[str, float] = {}  # step_id → start time

    def create(self, name: str, category: str, input_summary: str = "") -> Step:
        step = Step(
            id=f"step-{uuid.uuid4().hex[:8]}",
            name=name,
            category=category,
            input_summary=input_summary,
        )
        self.steps.append(step)
        log.debug("[STEP] Created: %s — %s (%s)", step.id, name, category)
        return step

    def start(self, step: Step) -> None:
        step.status = StepStatus.RUNNING
        step.started_at = datetime.now(timezone.utc).isoformat()
        self._active[step.id] = time.monotonic()
        log.info("[STEP] Started: %s", step.name)

    def complete(self, step: Step, output_summary: str = "", metadata: dict | None = None) -> None:
        step.status = StepStatus.COMPLETED
        step.output_summary = output_summary
        if metadata:
            step.metadata.update(metadata)
        self._finish(step)
        log.info("[STEP] Completed: %s (%.2fs) %s", step.name, step.duration_sec or 0, output_summary)

    def fail(self, step: Step, error: str) -> None:
        step.status = StepStatus.FAILED
        step.error = error
        self._finish(step)
        log.error("[STEP] Failed: %s: %s", step.name, error)

    def skip(self, step: Step, reason: str = "") -> None:
        step.status = StepStatus.SKIPPED
        step.output_summary = reason
        log.info("[STEP] Skipped: %s: %s", step.name, reason)

    @contextmanager
    def track(self, name: str, category: str, input_summary: str = "") -> Iterator[Step]:
        """Run the body as a step; an exception marks the step failed and propagates."""
        step = self.create(name, category, input_summary)
        self.start(step)
        try:
            yield step
        except Exception as e:
            self.fail(step, str(e))
            raise
        if step.status == StepStatus.RUNNING:
            self.complete(step, output_summary=step.output_summary)

    def _finish(self, step: Step) -> None:
        step.completed_at = datetime.now(timezone.utc).isoformat()
        start = self._active.pop(step.id, None)
        if start is not None:
            step.duration_sec = round(time.monotonic() - start, 2)

    def to_list(self) -> list[dict]:
        return [asdict(s) for s in self.steps]

    def summary(self) -> dict:
        statuses: dict[str, int] = {}
        for s in self.steps:
            statuses[s.status.value] = statuses.get(s.status.value, 0) + 1
        total_duration = sum(s.duration_sec or 0 for s in self.steps)
        return {
            "run_id": self.run_id,
            "total_steps": len(self.steps),
            "statuses": statuses,
            "total_duration_sec": round(total_duration, 2),
        }
