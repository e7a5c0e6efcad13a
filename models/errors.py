"""
Exception hierarchy for the build pipeline.

Resolution and composition errors abort the whole operation and always name
the offending feature. Test-plan persistence errors name the plan file.
ExecFailure is the only soft error: the test runner records it per feature
instead of letting it escape.
"""

from __future__ import annotations


class ForgeError(Exception):
    """Base class for every failure raised by the pipeline."""


# ── Resolution ────────────────────────────────────────────────────────

class NotFound(ForgeError):
    def __init__(self, name: str):
        super().__init__(f"Feature '{name}' was not found")
        self.name = name


class StoreError(ForgeError):
    """The storage backend failed to deliver data (network, IO, git)."""


class EmptyInput(ForgeError):
    def __init__(self):
        super().__init__("No features provided to resolve")


class CycleDetected(ForgeError):
    def __init__(self, cycle: list[str]):
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")
        self.cycle = cycle
        self.name = cycle[0] if cycle else ""


# ── Composition ───────────────────────────────────────────────────────

class SnippetParseError(ForgeError):
    def __init__(self, feature: str, detail: str, line: int | None = None):
        where = f" (line {line})" if line is not None else ""
        super().__init__(f"Invalid snippet for feature '{feature}'{where}: {detail}")
        self.feature = feature
        self.detail = detail
        self.line = line


class InvalidReferenceSyntax(SnippetParseError):
    """A copy-class directive is missing its source or destination."""


# ── Test plan ─────────────────────────────────────────────────────────

class PlanNotFound(ForgeError):
    def __init__(self, path: str):
        super().__init__(f"Test spec file not found: {path}")
        self.path = path


class PlanCorrupt(ForgeError):
    def __init__(self, path: str, detail: str):
        super().__init__(f"Test spec file {path} is corrupt: {detail}")
        self.path = path
        self.detail = detail


# ── Runtime ───────────────────────────────────────────────────────────

class BuildError(ForgeError):
    """The container runtime failed to build the image."""


class ExecFailure(ForgeError):
    """A single command could not be completed inside the container."""


class InfrastructureFailure(ForgeError):
    """Container lifecycle failure (start/stop/remove); fatal to a test run."""


class RunCancelled(ForgeError):
    def __init__(self, report):
        super().__init__(
            f"Test run cancelled after {len(report.outcomes)} of {report.planned} entries"
        )
        self.report = report


class TestsFailed(ForgeError):
    __test__ = False

    def __init__(self, failure_count: int):
        super().__init__(f"number of failing tests: {failure_count}")
        self.failure_count = failure_count


# ── Configuration ─────────────────────────────────────────────────────

class ConfigError(ForgeError):
    """Unknown configuration key, bad value, or unknown storage type."""
