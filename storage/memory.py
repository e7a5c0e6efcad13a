"""
In-memory feature storage, optionally seeded from a YAML catalog file.

Catalog format::

    features:
      - name: java
        description: OpenJDK runtime
        author: someone
        dependencies: [curl]
        snippet: |
          RUN apt-get install -y openjdk-17-jre
        test_instruction: java -version
        files:
          java.conf: "opts=-Xmx1g"
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable

import yaml

from models.errors import NotFound, StoreError
from models.schemas import Feature, FeatureMeta
from storage.base import ResolvingStore, compile_pattern, dependency_names

log = logging.getLogger(__name__)


class MemoryStorage(ResolvingStore):
    """Feature store holding a fixed set of features in a dict."""

    def __init__(self, features: Iterable[Feature] = ()):
        self._features: dict[str, Feature] = {}
        for feature in features:
            if feature.name in self._features:
                raise StoreError(f"Duplicate feature '{feature.name}' in memory storage")
            self._features[feature.name] = feature

    def get_feature(self, name: str) -> Feature:
        try:
            return self._features[name]
        except KeyError:
            raise NotFound(name) from None

    def get_meta(self, name: str) -> FeatureMeta:
        return self.get_feature(name).meta

    def search_meta(self, pattern: str | re.Pattern) -> list[FeatureMeta]:
        regex = compile_pattern(pattern)
        return [f.meta for name, f in self._features.items() if regex.search(name)]

    def __len__(self) -> int:
        return len(self._features)


def feature_from_record(record: dict) -> Feature:
    """Build a Feature from one catalog entry."""
    updated_at = record.get("updated_at")
    if isinstance(updated_at, str):
        updated_at = datetime.fromisoformat(updated_at)
    files = {
        path: content.encode() if isinstance(content, str) else bytes(content)
        for path, content in (record.get("files") or {}).items()
    }
    return Feature(
        meta=FeatureMeta(
            name=str(record["name"]),
            description=record.get("description") or "",
            author=record.get("author") or "",
            dependencies=dependency_names(record.get("dependencies"), str(record["name"])),
            updated_at=updated_at,
        ),
        snippet=record.get("snippet") or "",
        test_instruction=record.get("test_instruction") or "",
        files=files,
    )


def load_catalog(path: Path | str) -> MemoryStorage:
    """Load a YAML catalog file into a MemoryStorage."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise StoreError(f"Cannot open feature catalog {path}: {e}") from e
    except yaml.YAMLError as e:
        raise StoreError(f"Cannot parse feature catalog {path}: {e}") from e

    records = data.get("features") if isinstance(data, dict) else None
    if not isinstance(records, list):
        raise StoreError(f"Feature catalog {path} must contain a 'features' list")
    try:
        features = [feature_from_record(r) for r in records]
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise StoreError(f"Invalid feature record in {path}: {e}") from e

    log.info("Loaded %d features from %s", len(features), path)
    return MemoryStorage(features)
