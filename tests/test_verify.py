import threading

import pytest

import config
from activities.verify import run_test_plan, running_container
from conftest import FakeRuntime
from models.errors import InfrastructureFailure, RunCancelled
from models.schemas import ExecResult, TestSpecEntry, TestStatus

PLAN = [
    TestSpecEntry(feature="B", cmd="test -f /f.txt"),
    TestSpecEntry(feature="A", cmd="false"),
]


def test_failure_is_recorded_and_the_run_continues(runtime):
    plan = PLAN + [TestSpecEntry(feature="C", cmd="true")]
    report = run_test_plan(runtime, "img", plan)

    assert [(o.feature, o.status) for o in report.outcomes] == [
        ("B", TestStatus.PASSED), ("A", TestStatus.FAILED), ("C", TestStatus.PASSED),
    ]
    assert report.failure_count == 1
    assert not report.passed
    failed = report.outcomes[1]
    assert failed.exit_code == 1
    assert failed.output == "boom\n"
    assert failed.error == "exit code 1"


def test_entries_share_one_container_in_order(runtime):
    run_test_plan(runtime, "img", PLAN)
    assert [c[0] for c in runtime.calls] == ["start", "exec", "exec", "stop"]
    assert runtime.calls[0] == ("start", "img", ("/bin/bash",))
    assert runtime.executed == ["test -f /f.txt", "false"]


def test_all_passing(runtime):
    report = run_test_plan(runtime, "img", PLAN[:1])
    assert report.passed
    assert report.summary() == {
        "image": "img", "planned": 1, "executed": 1,
        "statuses": {"passed": 1}, "failure_count": 0,
    }


def test_empty_plan_still_starts_and_stops(runtime):
    report = run_test_plan(runtime, "img", [])
    assert report.outcomes == []
    assert report.passed
    assert runtime.stopped


def test_empty_command_is_skipped(runtime):
    report = run_test_plan(runtime, "img", [TestSpecEntry(feature="x", cmd="")])
    assert report.outcomes[0].status == TestStatus.SKIPPED
    assert report.failure_count == 0
    assert runtime.executed == []


def test_timeout_fails_only_that_feature(exec_timeout):
    runtime = FakeRuntime(results={"sleep 10": exec_timeout})
    plan = [TestSpecEntry(feature="slow", cmd="sleep 10"), TestSpecEntry(feature="ok", cmd="true")]
    report = run_test_plan(runtime, "img", plan, timeout=1)

    slow, ok = report.outcomes
    assert slow.status == TestStatus.FAILED
    assert slow.exit_code == -1
    assert "timed out" in slow.error
    assert ok.status == TestStatus.PASSED


def test_output_is_truncated():
    runtime = FakeRuntime(results={"noisy": ExecResult(0, "x" * (config.MAX_OUTPUT_CHARS + 10))})
    report = run_test_plan(runtime, "img", [TestSpecEntry(feature="n", cmd="noisy")])
    assert len(report.outcomes[0].output) == config.MAX_OUTPUT_CHARS


def test_start_failure_is_fatal(infra_failure):
    runtime = FakeRuntime(start_error=infra_failure)
    with pytest.raises(InfrastructureFailure):
        run_test_plan(runtime, "img", PLAN)
    assert runtime.executed == []


def test_stop_failure_is_fatal(infra_failure):
    runtime = FakeRuntime(stop_error=infra_failure)
    with pytest.raises(InfrastructureFailure):
        run_test_plan(runtime, "img", PLAN)
    assert runtime.executed == ["test -f /f.txt", "false"]


def test_container_is_removed_when_exec_breaks(infra_failure):
    runtime = FakeRuntime(results={"false": infra_failure})
    with pytest.raises(InfrastructureFailure):
        run_test_plan(runtime, "img", PLAN)
    assert runtime.stopped


def test_body_error_wins_over_cleanup_error(infra_failure):
    runtime = FakeRuntime(stop_error=infra_failure)
    with pytest.raises(KeyError):
        with running_container(runtime, "img"):
            raise KeyError("body")
    assert runtime.stopped


def test_callback_sees_each_outcome(runtime):
    seen = []
    run_test_plan(runtime, "img", PLAN, on_outcome=lambda o: seen.append(o.feature))
    assert seen == ["B", "A"]


def test_cancel_stops_before_the_next_entry(runtime):
    cancel = threading.Event()
    with pytest.raises(RunCancelled) as exc:
        run_test_plan(runtime, "img", PLAN, cancel=cancel,
                      on_outcome=lambda o: cancel.set())
    assert [o.feature for o in exc.value.report.outcomes] == ["B"]
    assert exc.value.report.planned == 2
    assert runtime.stopped
