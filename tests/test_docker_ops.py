import subprocess

import pytest

from activities import docker_ops
from activities.docker_ops import DockerRuntime
from models.errors import BuildError, ExecFailure, InfrastructureFailure


class FakeRun:
    """Stands in for subprocess.run; answers by docker subcommand."""

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.calls = []

    def __call__(self, args, input=None, capture_output=False, timeout=None):
        self.calls.append({"args": args, "input": input, "timeout": timeout})
        answer = self.answers.get(args[1], (0, b"", b""))
        if isinstance(answer, Exception):
            raise answer
        code, out, err = answer
        return subprocess.CompletedProcess(args, code, out, err)


@pytest.fixture
def fake_run(monkeypatch):
    fake = FakeRun()
    monkeypatch.setattr(docker_ops.subprocess, "run", fake)
    return fake


def test_build_streams_context_on_stdin(fake_run):
    DockerRuntime("podman").build_image("img:1", b"TAR")
    call = fake_run.calls[0]
    assert call["args"] == ["podman", "build", "-t", "img:1", "-"]
    assert call["input"] == b"TAR"


def test_build_failure(fake_run):
    fake_run.answers["build"] = (1, b"", b"step 3 failed")
    with pytest.raises(BuildError, match="step 3 failed"):
        DockerRuntime().build_image("img", b"")


def test_start_returns_container_id(fake_run):
    fake_run.answers["run"] = (0, b"abc123\n", b"")
    assert DockerRuntime().start_container("img", ["/bin/bash"]) == "abc123"
    assert fake_run.calls[0]["args"] == ["docker", "run", "-d", "-t", "img", "/bin/bash"]


def test_start_failure(fake_run):
    fake_run.answers["run"] = (125, b"", b"no such image")
    with pytest.raises(InfrastructureFailure):
        DockerRuntime().start_container("img", ["/bin/bash"])


def test_exec_runs_through_bash(fake_run):
    fake_run.answers["exec"] = (3, b"out", b"err")
    result = DockerRuntime().exec("abc", "echo hi | grep x")
    assert fake_run.calls[0]["args"] == ["docker", "exec", "abc", "/bin/bash", "-c", "echo hi | grep x"]
    assert fake_run.calls[0]["timeout"] is None
    assert (result.exit_code, result.output) == (3, "outerr")


def test_exec_timeout_is_enforced_inside_the_container(fake_run):
    fake_run.answers["exec"] = (1, b"", b"")
    result = DockerRuntime().exec("abc", "make check", timeout=2.5)
    assert fake_run.calls[0]["args"] == [
        "docker", "exec", "abc",
        "timeout", "-k", "5", "2.5", "/bin/bash", "-c", "make check",
    ]
    # the local client outlives the in-container bound
    assert fake_run.calls[0]["timeout"] > 2.5 + 5
    assert result.exit_code == 1


@pytest.mark.parametrize("code", [124, 137])
def test_exec_killed_by_the_timeout_wrapper(fake_run, code):
    fake_run.answers["exec"] = (code, b"partial", b"")
    with pytest.raises(ExecFailure, match="timed out after 5s"):
        DockerRuntime().exec("abc", "sleep 60", timeout=5)


def test_exit_124_without_timeout_is_a_plain_failure(fake_run):
    fake_run.answers["exec"] = (124, b"", b"")
    assert DockerRuntime().exec("abc", "exit 124").exit_code == 124


def test_exec_client_timeout(fake_run):
    fake_run.answers["exec"] = subprocess.TimeoutExpired(["docker"], 40)
    with pytest.raises(ExecFailure, match="timed out"):
        DockerRuntime().exec("abc", "sleep 60", timeout=5)


def test_stop_also_removes(fake_run):
    DockerRuntime().stop("abc")
    assert [c["args"][1:] for c in fake_run.calls] == [["stop", "-t", "1", "abc"], ["rm", "abc"]]


def test_stop_failure(fake_run):
    fake_run.answers["rm"] = (1, b"", b"removal in progress")
    with pytest.raises(InfrastructureFailure, match="removal in progress"):
        DockerRuntime().stop("abc")


def test_missing_binary(fake_run):
    fake_run.answers["run"] = FileNotFoundError("docker")
    with pytest.raises(InfrastructureFailure):
        DockerRuntime().start_container("img", ["/bin/bash"])
