from __future__ import annotations

import pytest

from models.errors import ExecFailure, InfrastructureFailure
from models.schemas import ExecResult, Feature, FeatureMeta
from storage import MemoryStorage


def make_feature(name, deps=(), snippet="", test="", files=None, **meta) -> Feature:
    return Feature(
        meta=FeatureMeta(name=name, dependencies=tuple(deps), **meta),
        snippet=snippet,
        test_instruction=test,
        files=files or {},
    )


class FakeRuntime:
    """Records every call; commands listed in ``results`` return that result
    (or raise it, when it is an exception), anything else exits 0."""

    def __init__(self, results=None, start_error=None, stop_error=None):
        self.results = results or {}
        self.start_error = start_error
        self.stop_error = stop_error
        self.calls: list[tuple] = []
        self.built: dict[str, bytes] = {}

    def build_image(self, name, context):
        self.calls.append(("build", name))
        self.built[name] = context

    def start_container(self, image, command):
        self.calls.append(("start", image, tuple(command)))
        if self.start_error:
            raise self.start_error
        return "c0ffee"

    def exec(self, container, command, timeout=None):
        self.calls.append(("exec", container, command))
        result = self.results.get(command, ExecResult(0, "ok\n"))
        if isinstance(result, Exception):
            raise result
        return result

    def stop(self, container):
        self.calls.append(("stop", container))
        if self.stop_error:
            raise self.stop_error

    @property
    def executed(self) -> list[str]:
        return [c[2] for c in self.calls if c[0] == "exec"]

    @property
    def stopped(self) -> bool:
        return any(c[0] == "stop" for c in self.calls)


@pytest.fixture
def features():
    return [
        make_feature("A", deps=["B"], snippet="RUN a", test="false",
                     description="Feature A"),
        make_feature("B", snippet="COPY f.txt /f.txt", test="test -f /f.txt",
                     files={"f.txt": b"hello\n"}),
    ]


@pytest.fixture
def store(features):
    return MemoryStorage(features)


@pytest.fixture
def runtime():
    return FakeRuntime(results={"false": ExecResult(1, "", "boom\n")})


@pytest.fixture
def exec_timeout():
    return ExecFailure("Command timed out after 1s: sleep 10")


@pytest.fixture
def infra_failure():
    return InfrastructureFailure("docker daemon went away")
