"""
Build Pipeline

Orchestrates a feature build:
  1. Resolve requested features (store)
  2. Compose the Dockerfile
  3. Write the test spec
  4. Build the image (runtime)
  5. Optionally verify the image against the test spec

Verification can also run on its own in a later process: it only needs the
image reference and the test spec file.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

import config
from activities.compose import compose_dockerfile
from activities.context import build_context_archive
from activities.docker_ops import Runtime
from activities.plan import build_plan, load_plan, write_plan
from activities.verify import run_test_plan
from models.schemas import ResolvedSet, TestOutcome, TestReport, TestSpecEntry
from storage import FeatureStore
from workflows.tracker import StepTracker

log = logging.getLogger(__name__)


@dataclass
class Composition:
    """Everything derived from one resolution, before touching the runtime."""
    resolved: ResolvedSet
    dockerfile: str
    plan: list[TestSpecEntry] = field(default_factory=list)


@dataclass
class BuildResult:
    image: str
    composition: Composition
    test_spec: str
    report: TestReport | None = None


def new_run_id() -> str:
    return f"run-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


class BuildPipeline:
    """
    Runs compose/build/verify against a store and a runtime.

    Each stage is tracked as a step; when ``settings.runs_dir`` is set the
    run record is saved there as JSON, whatever the outcome.
    """

    def __init__(self, store: FeatureStore, runtime: Runtime | None,
                 settings: config.Settings, run_id: str | None = None):
        self.store = store
        self.runtime = runtime
        self.settings = settings
        self.run_id = run_id or new_run_id()
        self.tracker = StepTracker(self.run_id)
        self.record: dict = {
            "run_id": self.run_id,
            "started_at": datetime.now(timezone.utc).isoformat(),
            "status": "running",
        }
        self._started = time.monotonic()

    # ── Stages ──

    def compose(self, names: Iterable[str], base_image: str | None = None) -> Composition:
        """Resolve, compose the Dockerfile and derive the test plan."""
        names = list(names)
        base = base_image or self.settings.base

        with self.tracker.track("Resolve Features", "resolve", ", ".join(names)) as step:
            resolved = self.store.resolve(names)
            step.output_summary = " -> ".join(resolved.order)
        self.record["features"] = list(resolved.order)

        features = resolved.ordered_features()
        with self.tracker.track("Compose Dockerfile", "compose", base) as step:
            dockerfile = compose_dockerfile(base, features)
            step.output_summary = f"{len(dockerfile.splitlines())} lines"

        plan = build_plan(features)
        self.record["base_image"] = base
        return Composition(resolved, dockerfile, plan)

    def build(self, names: Iterable[str], image: str, test_spec: Path | str,
              verify: bool = False, base_image: str | None = None,
              on_outcome: Callable[[TestOutcome], None] | None = None,
              cancel: threading.Event | None = None) -> BuildResult:
        """Compose, persist the test spec, build the image and optionally verify it."""
        runtime = self._require_runtime()
        self.record.update({"command": "build", "image": image})
        try:
            composition = self.compose(names, base_image)

            with self.tracker.track("Write Test Spec", "test-plan", str(test_spec)) as step:
                write_plan(test_spec, composition.plan)
                step.output_summary = f"{len(composition.plan)} entries"

            with self.tracker.track("Build Image", "build", image):
                context = build_context_archive(
                    composition.dockerfile, composition.resolved.ordered_features(),
                )
                runtime.build_image(image, context)

            result = BuildResult(image, composition, str(test_spec))
            if verify:
                result.report = self._verify(image, composition.plan, on_outcome, cancel)
            else:
                self.tracker.skip(self.tracker.create("Verify Image", "verify"), "not requested")
            self._finish("completed" if result.report is None or result.report.passed else "failed")
            return result
        except Exception as e:
            self._finish("failed", error=str(e))
            raise

    def verify(self, image: str, test_spec: Path | str,
               on_outcome: Callable[[TestOutcome], None] | None = None,
               cancel: threading.Event | None = None) -> TestReport:
        """Load a persisted test spec and replay it against ``image``."""
        self.record.update({"command": "verify", "image": image})
        try:
            with self.tracker.track("Load Test Spec", "test-plan", str(test_spec)) as step:
                plan = load_plan(test_spec)
                step.output_summary = f"{len(plan)} entries"
            report = self._verify(image, plan, on_outcome, cancel)
            self._finish("completed" if report.passed else "failed")
            return report
        except Exception as e:
            self._finish("failed", error=str(e))
            raise

    # ── Helpers ──

    def _verify(self, image: str, plan: list[TestSpecEntry],
                on_outcome: Callable[[TestOutcome], None] | None,
                cancel: threading.Event | None) -> TestReport:
        runtime = self._require_runtime()
        with self.tracker.track("Verify Image", "verify", f"{len(plan)} test specs") as step:
            report = run_test_plan(
                runtime, image, plan,
                timeout=self.settings.exec_timeout,
                cancel=cancel,
                on_outcome=on_outcome,
            )
            step.output_summary = f"{report.failure_count} failed"
            step.metadata.update(report.summary())
        self.record["test_report"] = {
            **report.summary(),
            "outcomes": [
                {"feature": o.feature, "status": o.status.value, "exit_code": o.exit_code,
                 "error": o.error, "duration_sec": o.duration_sec}
                for o in report.outcomes
            ],
        }
        return report

    def _require_runtime(self) -> Runtime:
        if self.runtime is None:
            raise ValueError("This pipeline was created without a container runtime")
        return self.runtime

    def _finish(self, status: str, error: str | None = None) -> None:
        self.record["status"] = status
        if error:
            self.record["error"] = error
        self.record["completed_at"] = datetime.now(timezone.utc).isoformat()
        self.record["duration_sec"] = round(time.monotonic() - self._started, 2)
        self.record["steps"] = self.tracker.to_list()
        self.record["step_summary"] = self.tracker.summary()
        if self.settings.runs_dir:
            self.record["log_file"] = _save_run_log(
                Path(self.settings.runs_dir), self.run_id, self.record,
            )
        log.info("Pipeline %s complete in %.1fs: %s",
                 self.run_id, self.record["duration_sec"], status)


def _save_run_log(runs_dir: Path, run_id: str, run_record: dict) -> str:
    """Save the pipeline run record to ``runs_dir/<run_id>.json``."""
    runs_dir.mkdir(parents=True, exist_ok=True)
    file_path = runs_dir / f"{run_id}.json"
    with open(file_path, "w") as f:
        json.dump(run_record, f, indent=2, default=str)
    log.info("Run log saved: %s", file_path)
    return str(file_path)
