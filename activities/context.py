"""
Activity: Build Context — packs the composed Dockerfile and every feature's
auxiliary files into a tar archive the container runtime can build from.

Each feature's files land under ``<feature name>/``, which is where the
rewritten COPY/ADD sources point.
"""

from __future__ import annotations

import io
import logging
import posixpath
import tarfile
import time
from typing import Iterable

from models.errors import SnippetParseError
from models.schemas import Feature

log = logging.getLogger(__name__)


def _add_file(tar: tarfile.TarFile, name: str, data: bytes, mtime: float) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mtime = mtime
    info.mode = 0o644
    tar.addfile(info, io.BytesIO(data))


def build_context_archive(dockerfile: str, features: Iterable[Feature]) -> bytes:
    """Return an uncompressed tar archive holding the build context."""
    now = time.time()
    buf = io.BytesIO()
    file_count = 0
    with tarfile.open(fileobj=buf, mode="w") as tar:
        _add_file(tar, "Dockerfile", dockerfile.encode(), now)
        for feature in features:
            for rel_path, data in sorted(feature.files.items()):
                member = posixpath.normpath(posixpath.join(feature.name, rel_path.lstrip("/")))
                if not member.startswith(feature.name + "/"):
                    raise SnippetParseError(
                        feature.name, f"auxiliary file '{rel_path}' escapes the feature directory",
                    )
                _add_file(tar, member, data, now)
                file_count += 1
    log.info("Build context: Dockerfile + %d feature files (%d bytes)", file_count, buf.tell())
    return buf.getvalue()
