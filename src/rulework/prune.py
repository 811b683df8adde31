"""Stale output removal driven by a live-file list."""

from __future__ import annotations

from fnmatch import fnmatchcase
from pathlib import Path
from typing import Callable, Iterable, Sequence
import logging
import os

logger = logging.getLogger(__name__)


def _is_excluded(relative: str, exclude: Sequence[str]) -> bool:
    return any(fnmatchcase(relative, pattern) for pattern in exclude)


def _is_protected(path: str, protect: Sequence[str]) -> bool:
    return any(path == kept or path.startswith(kept + os.sep) for kept in protect)


def stale_files(
    root: Path,
    live: Iterable[str],
    exclude: Sequence[str] = (),
    protect: Iterable[str | os.PathLike[str]] = (),
) -> list[Path]:
    """Files under ``root`` that are not in ``live``, sorted.

    Relative live paths are taken relative to the current directory, the
    same directory the build ran in. Paths in ``protect`` (files, or
    directories and everything below them) are never stale.
    """
    keep = {os.path.abspath(path) for path in live}
    protected = [os.path.abspath(path) for path in protect]
    stale: list[Path] = []
    if not root.is_dir():
        return stale
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        absolute = os.path.abspath(path)
        if absolute in keep or _is_protected(absolute, protected):
            continue
        if _is_excluded(path.relative_to(root).as_posix(), exclude):
            continue
        stale.append(path)
    return stale


def _remove_empty_dirs(root: Path) -> None:
    for directory in sorted(root.rglob("*"), reverse=True):
        if directory.is_dir() and not any(directory.iterdir()):
            directory.rmdir()


def delete_stale(
    root: Path,
    live: Iterable[str],
    *,
    exclude: Sequence[str] = (),
    protect: Iterable[str | os.PathLike[str]] = (),
    dry_run: bool = False,
) -> list[Path]:
    """Delete the stale files under ``root`` and return their paths."""
    stale = stale_files(root, live, exclude, protect)
    for path in stale:
        if dry_run:
            logger.info("Would remove %s", path)
            continue
        logger.info("Removing %s", path)
        path.unlink()
    if dry_run:
        logger.info("Would prune %s stale files under %s", len(stale), root)
    else:
        _remove_empty_dirs(root)
        logger.info("Pruned %s stale files under %s", len(stale), root)
    return stale


def pruner(
    root: Path,
    *,
    exclude: Sequence[str] = (),
    protect: Iterable[str | os.PathLike[str]] = (),
    dry_run: bool = False,
) -> Callable[[list[str]], None]:
    """A prune callback for build_args_prune that cleans ``root``."""
    protected = list(protect)

    def _prune(live: list[str]) -> None:
        delete_stale(root, live, exclude=exclude, protect=protected, dry_run=dry_run)

    return _prune
