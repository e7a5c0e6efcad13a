"""
Activity: Resolve Features — turns requested feature names into a
dependency-ordered, duplicate-free build sequence.

The traversal is an explicit worklist over an index-addressed node table.
Each node is coloured white (unseen), grey (on the current path) or black
(emitted). Reaching a grey node again means the dependency chain loops back
on itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

from models.errors import CycleDetected, EmptyInput
from models.schemas import Feature, ResolvedSet

log = logging.getLogger(__name__)

WHITE, GREY, BLACK = 0, 1, 2


class FeatureSource(Protocol):
    def get_feature(self, name: str) -> Feature: ...


@dataclass
class _Node:
    feature: Feature
    colour: int = WHITE


def resolve_features(store: FeatureSource, names: Iterable[str]) -> ResolvedSet:
    """
    Resolve ``names`` and all their transitive dependencies.

    Names are processed in the order given; each feature's dependencies are
    emitted before the feature itself, in the order they are listed. A feature
    required from several places is fetched and emitted exactly once.

    Raises:
        EmptyInput: no names were given.
        NotFound: a requested or transitively required feature is missing.
        StoreError: the backend failed while fetching.
        CycleDetected: a dependency chain revisits a feature still in progress.
    """
    requested = list(names)
    if not requested:
        raise EmptyInput()

    result = ResolvedSet()
    nodes: list[_Node] = []
    index: dict[str, int] = {}

    def visit(name: str) -> int:
        idx = index.get(name)
        if idx is None:
            feature = store.get_feature(name)
            idx = len(nodes)
            nodes.append(_Node(feature))
            index[name] = idx
            log.debug("Fetched feature %s (deps: %s)", name, list(feature.meta.dependencies))
        return idx

    for root in requested:
        if root in result:
            continue

        root_idx = visit(root)
        nodes[root_idx].colour = GREY
        # Each frame is [node index, position of the next dependency to visit]
        stack: list[list[int]] = [[root_idx, 0]]

        while stack:
            frame = stack[-1]
            node = nodes[frame[0]]
            deps = node.feature.meta.dependencies

            if frame[1] < len(deps):
                dep_name = deps[frame[1]]
                frame[1] += 1
                if dep_name in result:
                    continue

                dep_idx = visit(dep_name)
                if nodes[dep_idx].colour == GREY:
                    path = [nodes[f[0]].feature.name for f in stack]
                    cycle = path[path.index(dep_name):] + [dep_name]
                    raise CycleDetected(cycle)

                nodes[dep_idx].colour = GREY
                stack.append([dep_idx, 0])
            else:
                node.colour = BLACK
                result.add(node.feature)
                stack.pop()

    log.info("Resolved %d requested features into %d: %s",
             len(requested), len(result), ", ".join(result.order))
    return result
