"""
Activity: Test Plan — derives the per-feature verification plan from a
resolved feature sequence and persists it between the build and verify phases.

The plan file is a JSON list of ``{"feature": ..., "cmd": ...}`` objects in
build order.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable

from pydantic import TypeAdapter, ValidationError

from models.errors import PlanCorrupt, PlanNotFound
from models.schemas import Feature, TestSpecEntry

log = logging.getLogger(__name__)

_PLAN_ADAPTER = TypeAdapter(list[TestSpecEntry])


def build_plan(features: Iterable[Feature]) -> list[TestSpecEntry]:
    """One entry per feature, in order. Features without a test instruction
    keep an entry with an empty ``cmd`` so the plan mirrors the build order."""
    plan = [TestSpecEntry(feature=f.name, cmd=f.test_instruction.strip()) for f in features]
    untested = [e.feature for e in plan if not e.cmd]
    if untested:
        log.info("Features without a test instruction: %s", ", ".join(untested))
    return plan


def write_plan(path: Path | str, plan: list[TestSpecEntry]) -> Path:
    """Write the plan as indented JSON and return the path written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump([entry.model_dump() for entry in plan], f, indent=2)
        f.write("\n")
    log.info("Test spec saved: %s (%d entries)", path, len(plan))
    return path


def load_plan(path: Path | str) -> list[TestSpecEntry]:
    """
    Read a plan written by :func:`write_plan`.

    Raises:
        PlanNotFound: the file does not exist.
        PlanCorrupt: the file is unreadable, not JSON, or not a list of
            exactly ``feature``/``cmd`` records.
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise PlanNotFound(str(path)) from None
    except OSError as e:
        raise PlanCorrupt(str(path), str(e)) from e

    try:
        plan = _PLAN_ADAPTER.validate_json(raw)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise PlanCorrupt(str(path), errors) from e

    log.info("Loaded test spec %s (%d entries)", path, len(plan))
    return plan
