"""
Storage interface shared by every feature catalog backend.
"""

from __future__ import annotations

import re
from typing import Iterable, Protocol

from activities.resolve import resolve_features
from models.errors import StoreError
from models.schemas import Feature, FeatureMeta, ResolvedSet


class FeatureStore(Protocol):
    def get_feature(self, name: str) -> Feature: ...

    def get_meta(self, name: str) -> FeatureMeta: ...

    def search_meta(self, pattern: str | re.Pattern) -> list[FeatureMeta]: ...

    def resolve(self, names: Iterable[str]) -> ResolvedSet: ...


class ResolvingStore:
    """Mixin giving a store the standard client-side dependency resolution."""

    def resolve(self, names: Iterable[str]) -> ResolvedSet:
        return resolve_features(self, names)


def compile_pattern(pattern: str | re.Pattern) -> re.Pattern:
    """Compile a feature-name search pattern (unanchored regular expression)."""
    if isinstance(pattern, re.Pattern):
        return pattern
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ValueError(f"Invalid search pattern {pattern!r}: {e}") from None


def dependency_names(value, feature: str) -> tuple[str, ...]:
    """Normalise a ``dependencies`` field: absent, a single name, or a list of names."""
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)):
        raise StoreError(
            f"Feature '{feature}': dependencies must be a list of names, got {type(value).__name__}"
        )
    return tuple(str(d) for d in value)
