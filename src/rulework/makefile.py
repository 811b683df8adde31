"""Dependency lists from compiler-generated Makefile fragments.

Only the small subset of Makefile syntax emitted by ``gcc -MM`` (and the
compatible ``-MD``/``-MMD`` outputs of clang) is understood::

    >>> parse_makefile("a: b c\\nd : e")
    [('a', ['b', 'c']), ('d', ['e'])]
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, TypeAlias
import os
import re

from rulework.engine import need, needed

DependencyRecord: TypeAlias = tuple[str, list[str]]

_WHITESPACE_RE = re.compile(r"\s")


def _logical_lines(text: str) -> Iterator[str]:
    pending: list[str] = []
    for raw in text.split("\n"):
        line = raw[:-1] if raw.endswith("\r") else raw
        if line.endswith("\\"):
            pending.append(line[:-1])
            continue
        yield " ".join([*pending, line])
        pending = []
    if pending:
        yield " ".join(pending)


def _words(text: str) -> list[str]:
    pieces = _WHITESPACE_RE.split(text)
    words: list[str] = []
    carry: str | None = None
    for piece in pieces:
        if carry is not None:
            piece = carry + " " + piece
            carry = None
        if piece.endswith("\\"):
            carry = piece[:-1]
            continue
        if piece:
            words.append(piece)
    if carry is not None:
        # nothing followed the backslash, so it is part of the word
        words.append(carry + "\\")
    return words


def parse_makefile(text: str) -> list[DependencyRecord]:
    """Return ``(target, dependencies)`` records in source order."""
    records: list[DependencyRecord] = []
    for line in _logical_lines(text):
        body = line.split("#", 1)[0]
        head, sep, tail = body.partition(":")
        depends = _words(tail) if sep else []
        for target in _words(head):
            records.append((target, list(depends)))
    return records


def makefile_dependencies(path: str | os.PathLike[str]) -> list[str]:
    """All dependency paths in the file at ``path``, concatenated in order."""
    text = Path(path).read_text(encoding="utf-8")
    return [dep for _target, depends in parse_makefile(text) for dep in depends]


def need_makefile_dependencies(path: str | os.PathLike[str]) -> None:
    """Depend on the files listed in a Makefile, not on the Makefile itself."""
    need(makefile_dependencies(path))


def needed_makefile_dependencies(path: str | os.PathLike[str]) -> None:
    """Like need_makefile_dependencies, for files that were already used."""
    needed(makefile_dependencies(path))
