"""
Activity: Test Runner — replays a test plan against a built image.

All entries run sequentially inside one container, because an instruction may
rely on side effects of the instructions before it. A failing instruction is
recorded and the run moves on; container lifecycle failures abort the run.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

import config
from activities.docker_ops import DEFAULT_SHELL, Runtime
from models.errors import ExecFailure, ForgeError, RunCancelled
from models.schemas import TestOutcome, TestReport, TestSpecEntry, TestStatus

log = logging.getLogger(__name__)


@contextmanager
def running_container(runtime: Runtime, image: str,
                      command: list[str] | None = None) -> Iterator[str]:
    """
    Yield a running container and always stop/remove it afterwards.

    On the normal path a failing stop propagates. When the body raised, the
    stop is best effort and the original exception wins.
    """
    container = runtime.start_container(image, command or DEFAULT_SHELL)
    try:
        yield container
    except BaseException:
        try:
            runtime.stop(container)
        except ForgeError as e:
            log.warning("Cleanup of container %s failed: %s", container[:12], e)
        raise
    runtime.stop(container)


def run_test_plan(
    runtime: Runtime,
    image: str,
    plan: list[TestSpecEntry],
    timeout: float | None = None,
    cancel: threading.Event | None = None,
    on_outcome: Callable[[TestOutcome], None] | None = None,
) -> TestReport:
    """
    Run every plan entry inside a single container started from ``image``.

    Entries with an empty ``cmd`` are reported as skipped. ``timeout`` bounds
    each instruction; a timed-out instruction counts as a failure of that
    feature. Setting ``cancel`` stops the run before the next entry.

    Returns:
        TestReport with one outcome per executed entry.

    Raises:
        InfrastructureFailure: the container could not be started or stopped.
        RunCancelled: ``cancel`` was set; carries the partial report.
    """
    report = TestReport(image=image, planned=len(plan))
    log.info("Running %d test specs against %s", len(plan), image)

    with running_container(runtime, image) as container:
        for entry in plan:
            if cancel is not None and cancel.is_set():
                raise RunCancelled(report)
            outcome = _run_entry(runtime, container, entry, timeout)
            report.outcomes.append(outcome)
            if on_outcome:
                on_outcome(outcome)

    summary = report.summary()
    log.info("All tests complete for %s: %s", image, summary["statuses"])
    return report


def _run_entry(runtime: Runtime, container: str, entry: TestSpecEntry,
               timeout: float | None) -> TestOutcome:
    if not entry.cmd:
        log.info("No test spec for feature '%s', skipping", entry.feature)
        return TestOutcome(entry.feature, entry.cmd, TestStatus.SKIPPED)

    log.info("Running test spec for feature '%s': %s", entry.feature, entry.cmd)
    start = time.monotonic()
    try:
        result = runtime.exec(container, entry.cmd, timeout=timeout)
    except ExecFailure as e:
        log.error("Test for '%s': ERROR: %s", entry.feature, e)
        return TestOutcome(
            entry.feature, entry.cmd, TestStatus.FAILED,
            exit_code=-1, error=str(e),
            duration_sec=round(time.monotonic() - start, 2),
        )

    duration = round(time.monotonic() - start, 2)
    output = result.output[:config.MAX_OUTPUT_CHARS]
    if result.exit_code != 0:
        log.warning("Test for '%s' failed (exit=%d)", entry.feature, result.exit_code)
        return TestOutcome(
            entry.feature, entry.cmd, TestStatus.FAILED,
            exit_code=result.exit_code, output=output,
            error=f"exit code {result.exit_code}", duration_sec=duration,
        )
    return TestOutcome(
        entry.feature, entry.cmd, TestStatus.PASSED,
        exit_code=0, output=output, duration_sec=duration,
    )
