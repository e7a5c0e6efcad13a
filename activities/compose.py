"""
Activity: Compose Dockerfile — merges the per-feature snippets of a resolved
feature sequence into one Dockerfile.

Only copy-class directives (COPY, ADD) are understood. Their sources are
prefixed with the feature name because the composed build context keeps each
feature's auxiliary files under a directory of that name. Every other line is
opaque text and is emitted exactly as written.
"""

from __future__ import annotations

import json
import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from models.errors import InvalidReferenceSyntax, SnippetParseError
from models.schemas import Feature

log = logging.getLogger(__name__)

COPY_VERBS = {"copy", "add"}
HEREDOC_VERBS = {"run", "copy", "add"}
TRAILING_CMD = "CMD /bin/bash"

_INSTRUCTION_RE = re.compile(r"^([A-Za-z]+)(?:\s+|$)")
# a shell word: runs of unquoted text and quoted strings, quotes kept
_WORD_RE = re.compile(r"""(?:[^\s"']+|"(?:\\.|[^"\\])*"|'[^']*')+""")
_HEREDOC_RE = re.compile(r"^\d*<<(-?)([\"']?)([A-Za-z_][A-Za-z0-9_]*)\2$")
_URL_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
_FLAGS_RE = re.compile(r"^(?:--\S+\s*)*")


@dataclass
class _Chunk:
    """One instruction (or opaque comment/blank line) of a snippet."""
    lineno: int
    physical: list[str]
    verb: str | None = None
    arguments: str = ""
    body: list[str] = field(default_factory=list)

    def lines(self) -> list[str]:
        return self.physical + self.body


def _continues(line: str) -> bool:
    return line.rstrip().endswith("\\")


def _strip_continuation(line: str) -> str:
    stripped = line.rstrip()
    return stripped[:-1].strip() if stripped.endswith("\\") else stripped.strip()


def _is_opaque(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def _heredocs(arguments: str) -> Iterator[tuple[str, str]]:
    """Yield (strip-tabs flag, terminator) for each shell word that opens a heredoc.

    Only a whole unquoted word such as '<<EOF', '<<-"EOF"' or '2<<EOF' counts, so
    here-strings, quoted text and arithmetic shifts are left alone.
    """
    for word in _WORD_RE.findall(arguments):
        match = _HEREDOC_RE.match(word)
        if match:
            yield match.group(1), match.group(3)


def _split_snippet(feature: str, snippet: str) -> Iterator[_Chunk]:
    """Split a snippet into instructions, joining continuation lines and heredoc bodies."""
    lines = snippet.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        if _is_opaque(line):
            yield _Chunk(i + 1, [line])
            i += 1
            continue

        start = i
        physical = [line]
        logical = [_strip_continuation(line)]
        continued = _continues(line)
        while continued:
            i += 1
            if i >= len(lines):
                raise SnippetParseError(feature, "line continuation at end of snippet", start + 1)
            nxt = lines[i]
            physical.append(nxt)
            # comments and blank lines inside a continued instruction are dropped by docker
            if _is_opaque(nxt):
                continue
            logical.append(_strip_continuation(nxt))
            continued = _continues(nxt)

        text = " ".join(part for part in logical if part)
        match = _INSTRUCTION_RE.match(text)
        if not match:
            raise SnippetParseError(feature, f"expected an instruction, got {text!r}", start + 1)
        chunk = _Chunk(start + 1, physical, match.group(1), text[match.end():].strip())

        if chunk.verb.lower() in HEREDOC_VERBS:
            for strip_tabs, terminator in _heredocs(chunk.arguments):
                while True:
                    i += 1
                    if i >= len(lines):
                        raise SnippetParseError(
                            feature, f"unterminated heredoc '{terminator}'", start + 1,
                        )
                    body = lines[i]
                    chunk.body.append(body)
                    candidate = body.lstrip("\t") if strip_tabs else body
                    if candidate == terminator:
                        break
        yield chunk
        i += 1


def _prefix_source(feature: str, source: str, lineno: int) -> str:
    if source.startswith("<<") or _URL_RE.match(source):
        return source
    rewritten = posixpath.normpath(posixpath.join(feature, source.lstrip("/")))
    if rewritten != feature and not rewritten.startswith(feature + "/"):
        raise InvalidReferenceSyntax(
            feature, f"source '{source}' points outside the feature directory", lineno,
        )
    return rewritten


def fix_copy_cmd(feature: str, chunk: _Chunk) -> list[str]:
    """Rewrite a COPY/ADD instruction so its sources live under ``feature/``."""
    flags_match = _FLAGS_RE.match(chunk.arguments)
    flags = flags_match.group(0).split()
    rest = chunk.arguments[flags_match.end():].strip()

    # Copies from another build stage or image do not read the build context
    if any(flag.startswith("--from=") for flag in flags):
        return chunk.lines()

    if rest.startswith("["):
        try:
            args = json.loads(rest)
        except json.JSONDecodeError as e:
            raise InvalidReferenceSyntax(feature, f"malformed {chunk.verb} arguments: {e}", chunk.lineno)
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise InvalidReferenceSyntax(feature, f"{chunk.verb} arguments must be strings", chunk.lineno)
        json_form = True
    else:
        args = rest.split()
        json_form = False

    if len(args) < 2:
        raise InvalidReferenceSyntax(
            feature, f"{chunk.verb} needs a source and a destination", chunk.lineno,
        )

    *sources, destination = args
    sources = [_prefix_source(feature, src, chunk.lineno) for src in sources]
    if json_form:
        arguments = json.dumps([*sources, destination])
    else:
        arguments = " ".join([*sources, destination])

    fixed = " ".join([chunk.verb, *flags, arguments])
    return [fixed] + chunk.body


class DockerfileWriter:
    """Accumulates Dockerfile text, one feature at a time."""

    def __init__(self):
        self._lines: list[str] = []

    def append_raw(self, chunk: str) -> None:
        self._lines.append(chunk)

    def append_feature(self, feature: Feature) -> None:
        """Append a feature's comment header and its rewritten snippet.

        The snippet is fully parsed before anything is written, so a malformed
        snippet never leaves partial output behind.
        """
        rendered = [f"# {feature.name}"]
        for chunk in _split_snippet(feature.name, feature.snippet):
            if chunk.verb and chunk.verb.lower() in COPY_VERBS:
                rendered.extend(fix_copy_cmd(feature.name, chunk))
            else:
                rendered.extend(chunk.lines())
        self._lines.extend(rendered)

    def getvalue(self) -> str:
        return "\n".join(self._lines) + "\n"


def compose_dockerfile(base_image: str, features: Iterable[Feature]) -> str:
    """
    Compose a single Dockerfile from dependency-ordered features.

    Raises:
        SnippetParseError: a snippet cannot be split into instructions.
        InvalidReferenceSyntax: a COPY/ADD directive lacks a source or destination.
    """
    writer = DockerfileWriter()
    writer.append_raw(f"FROM {base_image}")
    count = 0
    for feature in features:
        writer.append_feature(feature)
        count += 1
    writer.append_raw(TRAILING_CMD)
    log.info("Composed Dockerfile from %d features on %s", count, base_image)
    return writer.getvalue()
