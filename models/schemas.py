"""
Data models for features, resolution results, test plans and run tracking.

Domain records are plain dataclasses. TestSpecEntry is a pydantic model
because it is the schema of the persisted test-plan file and is validated
on load.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


@dataclass(frozen=True)
class FeatureMeta:
    """Metadata describing a feature as stored in the catalog."""
    name: str
    description: str = ""
    author: str = ""
    dependencies: tuple[str, ...] = ()
    updated_at: datetime | None = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Feature name must not be empty")
        # Accept any sequence from loaders but keep the record immutable
        object.__setattr__(self, "dependencies", tuple(self.dependencies))


@dataclass(frozen=True)
class Feature:
    """A reusable build fragment: metadata, Dockerfile snippet, test instruction.

    ``files`` holds auxiliary files (relative path -> content) that the
    snippet may COPY; they are placed under ``<name>/`` in the build context.
    """
    meta: FeatureMeta
    snippet: str = ""
    test_instruction: str = ""
    files: dict[str, bytes] = field(default_factory=dict, compare=False)

    @property
    def name(self) -> str:
        return self.meta.name


@dataclass
class ResolvedSet:
    """Dependency-ordered feature names plus a name -> Feature lookup."""
    order: list[str] = field(default_factory=list)
    features: dict[str, Feature] = field(default_factory=dict)

    def add(self, feature: Feature) -> None:
        if feature.name in self.features:
            raise ValueError(f"Feature '{feature.name}' already resolved")
        self.order.append(feature.name)
        self.features[feature.name] = feature

    def ordered_features(self) -> list[Feature]:
        return [self.features[name] for name in self.order]

    def __contains__(self, name: str) -> bool:
        return name in self.features

    def __len__(self) -> int:
        return len(self.order)


class TestSpecEntry(BaseModel):
    """One persisted test-plan record. The file schema is exactly these two fields."""
    __test__ = False

    model_config = ConfigDict(extra="forbid", frozen=True)

    feature: str
    cmd: str


class TestStatus(str, Enum):
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ExecResult:
    """Outcome of running one command inside a container."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


@dataclass
class TestOutcome:
    """Result of one test-plan entry."""
    __test__ = False

    feature: str
    cmd: str
    status: TestStatus
    exit_code: int | None = None
    output: str = ""
    error: str | None = None
    duration_sec: float = 0.0


@dataclass
class TestReport:
    """Per-feature results of replaying a test plan against an image."""
    __test__ = False

    image: str
    planned: int = 0
    outcomes: list[TestOutcome] = field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == TestStatus.FAILED)

    @property
    def passed(self) -> bool:
        return self.failure_count == 0

    def summary(self) -> dict:
        statuses: dict[str, int] = {}
        for o in self.outcomes:
            statuses[o.status.value] = statuses.get(o.status.value, 0) + 1
        return {
            "image": self.image,
            "planned": self.planned,
            "executed": len(self.outcomes),
            "statuses": statuses,
            "failure_count": self.failure_count,
        }


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class Step:
    """A single tracked stage of a pipeline run."""
    id: str
    name: str
    category: str
    status: StepStatus = StepStatus.PENDING
    started_at: str | None = None
    completed_at: str | None = None
    duration_sec: float | None = None
    input_summary: str = ""
    output_summary: str = ""
    error: str | None = None
    metadata: dict = field(default_factory=dict)
