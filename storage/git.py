"""
Git-backed feature storage.

The repository is shallow-cloned once; features are read from the checkout:

    features/<name>/meta.yml     description, author, dependencies, test_instruction
    features/<name>/Dockerfile   build snippet (optional)
    features/<name>/test.sh      test instruction, used when meta.yml has none
    features/<name>/...          any other file is an auxiliary build file
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
from datetime import datetime
from pathlib import Path

import yaml

from models.errors import ConfigError, NotFound, StoreError
from models.schemas import Feature, FeatureMeta
from storage.base import ResolvingStore, compile_pattern, dependency_names

log = logging.getLogger(__name__)

FEATURE_DIR = "features"
META_FILE = "meta.yml"
SNIPPET_FILE = "Dockerfile"
TEST_FILE = "test.sh"
RESERVED_FILES = {META_FILE, SNIPPET_FILE, TEST_FILE}

GIT_TIMEOUT = 120


class GitStorage(ResolvingStore):
    """Feature store reading from a shallow clone of a git repository."""

    def __init__(self, url: str, ref: str = "", checkout_dir: Path | str | None = None,
                 git_bin: str = "git"):
        if not url:
            raise ConfigError("git.url is not set")
        self.url = url
        self.git_bin = git_bin
        self._tmp: tempfile.TemporaryDirectory | None = None
        if checkout_dir is None:
            self._tmp = tempfile.TemporaryDirectory(prefix="forge-features-")
            checkout_dir = Path(self._tmp.name) / "repo"
        self.root = Path(checkout_dir)

        args = ["clone", "--depth", "1", "--single-branch"]
        if ref:
            args += ["--branch", ref]
        self._meta_cache: dict[str, FeatureMeta] = {}
        log.info("Cloning feature repository %s", url)
        self.root.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._git(*args, url, str(self.root), cwd=self.root.parent)
        except StoreError:
            self.close()
            raise

    def close(self) -> None:
        if self._tmp is not None:
            self._tmp.cleanup()
            self._tmp = None

    def __enter__(self) -> "GitStorage":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── Store interface ──

    def feature_names(self) -> list[str]:
        features_dir = self.root / FEATURE_DIR
        if not features_dir.is_dir():
            return []
        return sorted(
            p.name for p in features_dir.iterdir()
            if p.is_dir() and (p / META_FILE).is_file()
        )

    def search_meta(self, pattern: str | re.Pattern) -> list[FeatureMeta]:
        regex = compile_pattern(pattern)
        return [self.get_meta(name) for name in self.feature_names() if regex.search(name)]

    def get_meta(self, name: str) -> FeatureMeta:
        cached = self._meta_cache.get(name)
        if cached is not None:
            return cached
        meta, _ = self._read_meta(name)
        return meta

    def get_feature(self, name: str) -> Feature:
        meta, raw = self._read_meta(name)
        feature_dir = self._feature_dir(name)

        snippet_path = feature_dir / SNIPPET_FILE
        snippet = snippet_path.read_text() if snippet_path.is_file() else ""

        test_instruction = raw.get("test_instruction") or ""
        test_path = feature_dir / TEST_FILE
        if not test_instruction and test_path.is_file():
            test_instruction = test_path.read_text().strip()

        files: dict[str, bytes] = {}
        # regular files only; symlinks are skipped, symlinked directories not entered
        for dirpath, dirnames, filenames in os.walk(feature_dir):
            dirnames.sort()
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                rel = path.relative_to(feature_dir).as_posix()
                if rel in RESERVED_FILES:
                    continue
                if path.is_symlink():
                    log.warning("Skipping symlink %s in feature '%s'", rel, name)
                    continue
                files[rel] = path.read_bytes()

        return Feature(meta=meta, snippet=snippet, test_instruction=test_instruction, files=files)

    # ── Helpers ──

    def _feature_dir(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise NotFound(name)
        return self.root / FEATURE_DIR / name

    def _read_meta(self, name: str) -> tuple[FeatureMeta, dict]:
        meta_path = self._feature_dir(name) / META_FILE
        try:
            content = meta_path.read_text()
        except FileNotFoundError:
            raise NotFound(name) from None
        except OSError as e:
            raise StoreError(f"Cannot read {meta_path}: {e}") from e

        try:
            raw = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise StoreError(f"Invalid {META_FILE} for feature '{name}': {e}") from e
        if not isinstance(raw, dict):
            raise StoreError(f"Invalid {META_FILE} for feature '{name}': not a mapping")

        meta = FeatureMeta(
            name=name,
            description=raw.get("description") or "",
            author=raw.get("author") or "",
            dependencies=dependency_names(raw.get("dependencies"), name),
            updated_at=self._updated_at(name),
        )
        self._meta_cache[name] = meta
        return meta, raw

    def _updated_at(self, name: str) -> datetime | None:
        stamp = self._git("log", "-1", "--format=%cI", "--", f"{FEATURE_DIR}/{name}").strip()
        return datetime.fromisoformat(stamp) if stamp else None

    def _git(self, *args: str, cwd: Path | None = None) -> str:
        """Run a git command in the checkout, raising StoreError on failure."""
        try:
            result = subprocess.run(
                [self.git_bin, *args],
                capture_output=True,
                text=True,
                cwd=str(cwd or self.root),
                timeout=GIT_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise StoreError(f"git {args[0]} failed: {e}") from e
        if result.returncode != 0:
            log.warning("git %s failed: %s", " ".join(args), result.stderr)
            raise StoreError(f"git {args[0]} failed: {result.stderr.strip()}")
        return result.stdout
