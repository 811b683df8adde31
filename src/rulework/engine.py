"""A small file-rule engine: rule sets, need/needed, and live-file reporting.

Targets are rebuilt when they are missing or when any dependency recorded on
their previous build has changed. Fingerprints are ``st_mtime_ns`` values kept
in ``<files_dir>/database.json``. Rules run sequentially on the calling thread.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from enum import IntEnum
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Callable, Iterable, Iterator
import json
import logging
import os

from rulework.exceptions import BuildError, MissingFileError, NoActiveBuild

logger = logging.getLogger(__name__)

_DATABASE_NAME = "database.json"
_DATABASE_VERSION = 1

Builder = Callable[[str], None]
PathLike = str | os.PathLike[str]


class Verbosity(IntEnum):
    SILENT = 0
    QUIET = 1
    NORMAL = 2
    LOUD = 3
    DIAGNOSTIC = 4

    @property
    def log_level(self) -> int:
        return {
            Verbosity.SILENT: logging.CRITICAL,
            Verbosity.QUIET: logging.WARNING,
            Verbosity.NORMAL: logging.INFO,
            Verbosity.LOUD: logging.DEBUG,
            Verbosity.DIAGNOSTIC: logging.DEBUG,
        }[self]

    @classmethod
    def parse(cls, value: object) -> Verbosity:
        if isinstance(value, Verbosity):
            return value
        if isinstance(value, bool):
            raise ValueError(f"invalid verbosity: {value!r}")
        if isinstance(value, int):
            clamped = min(max(value, cls.SILENT), cls.DIAGNOSTIC)
            return cls(clamped)
        text = str(value).strip()
        if text.isdigit():
            return cls.parse(int(text))
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"invalid verbosity: {value!r}") from None

    def louder(self) -> Verbosity:
        return Verbosity.parse(int(self) + 1)

    def quieter(self) -> Verbosity:
        return Verbosity.parse(int(self) - 1)


@dataclass(frozen=True)
class BuildOptions:
    files_dir: Path = Path(".rulework")
    live_files: tuple[Path, ...] = ()
    verbosity: Verbosity = Verbosity.NORMAL

    @property
    def database_path(self) -> Path:
        return self.files_dir / _DATABASE_NAME

    def with_live_file(self, path: PathLike) -> BuildOptions:
        return replace(self, live_files=(Path(path), *self.live_files))

    def with_verbosity(self, verbosity: Verbosity) -> BuildOptions:
        return replace(self, verbosity=Verbosity.parse(verbosity))

    def with_files_dir(self, path: PathLike) -> BuildOptions:
        return replace(self, files_dir=Path(path))


@dataclass(frozen=True)
class _FileRule:
    pattern: str
    build: Builder

    def matches(self, path: str) -> bool:
        return fnmatchcase(path, self.pattern)


@dataclass(frozen=True)
class _PhonyRule:
    name: str
    build: Builder


class Rules:
    """A rule set: start-up actions plus file and phony rules."""

    def __init__(self) -> None:
        self._actions: list[Callable[[], None]] = []
        self._file_rules: list[_FileRule] = []
        self._phony: dict[str, _PhonyRule] = {}

    @property
    def actions(self) -> tuple[Callable[[], None], ...]:
        return tuple(self._actions)

    def action(self, fn: Callable[[], None]) -> Callable[[], None]:
        self._actions.append(fn)
        return fn

    def want(self, targets: Iterable[PathLike]) -> Rules:
        wanted = [_normalize(target) for target in _as_path_list(targets)]
        self._actions.append(lambda: need(wanted))
        return self

    def file(self, pattern: str) -> Callable[[Builder], Builder]:
        def _register(fn: Builder) -> Builder:
            self._file_rules.append(_FileRule(pattern=_normalize(pattern), build=fn))
            return fn

        return _register

    def phony(self, name: str) -> Callable[[Builder], Builder]:
        def _register(fn: Builder) -> Builder:
            self._phony[name] = _PhonyRule(name=name, build=fn)
            return fn

        return _register

    def without_actions(self) -> Rules:
        copy = Rules()
        copy._file_rules = list(self._file_rules)
        copy._phony = dict(self._phony)
        return copy

    def lookup(self, path: str) -> _FileRule | _PhonyRule | None:
        phony = self._phony.get(path)
        if phony is not None:
            return phony
        for rule in self._file_rules:
            if rule.matches(path):
                return rule
        return None


def _normalize(path: PathLike) -> str:
    text = os.fspath(path)
    normalized = os.path.normpath(text)
    if os.sep != "/":
        normalized = normalized.replace(os.sep, "/")
    return normalized


def _as_path_list(paths: PathLike | Iterable[PathLike]) -> list[PathLike]:
    if isinstance(paths, (str, os.PathLike)):
        return [paths]
    return list(paths)


def _mtime_ns(path: str) -> int | None:
    try:
        return os.stat(path).st_mtime_ns
    except FileNotFoundError:
        return None


@dataclass
class _Entry:
    mtime_ns: int
    depends: list[tuple[str, int | None]]


@dataclass
class _Database:
    path: Path
    entries: dict[str, _Entry] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> _Database:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return cls(path=path)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable build database %s: %s", path, exc)
            return cls(path=path)
        if not isinstance(payload, dict) or payload.get("version") != _DATABASE_VERSION:
            return cls(path=path)
        raw_targets = payload.get("targets")
        entries: dict[str, _Entry] = {}
        if isinstance(raw_targets, dict):
            for target, raw in raw_targets.items():
                if not isinstance(raw, dict):
                    continue
                mtime = raw.get("mtime_ns")
                depends = raw.get("depends")
                if not isinstance(mtime, int) or not isinstance(depends, list):
                    continue
                entries[str(target)] = _Entry(
                    mtime_ns=mtime,
                    depends=[
                        (str(item[0]), item[1] if isinstance(item[1], int) else None)
                        for item in depends
                        if isinstance(item, list) and len(item) == 2
                    ],
                )
        return cls(path=path, entries=entries)

    def save(self) -> None:
        payload = {
            "version": _DATABASE_VERSION,
            "targets": {
                target: {
                    "mtime_ns": entry.mtime_ns,
                    "depends": [[dep, mtime] for dep, mtime in entry.depends],
                }
                for target, entry in sorted(self.entries.items())
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


@dataclass
class _Frame:
    build: _Build
    target: str | None
    depends: list[str] = field(default_factory=list)


_CURRENT_FRAME: ContextVar[_Frame | None] = ContextVar(
    "rulework_current_frame",
    default=None,
)


@contextmanager
def _frame_scope(frame: _Frame) -> Iterator[_Frame]:
    token = _CURRENT_FRAME.set(frame)
    try:
        yield frame
    finally:
        _CURRENT_FRAME.reset(token)


class _Build:
    def __init__(self, rules: Rules, options: BuildOptions):
        self.rules = rules
        self.options = options
        self.database = _Database.load(options.database_path)
        self.live: list[str] = []
        self._results: dict[str, bool] = {}
        self._stack: list[str] = []

    def ensure(self, key: str) -> bool:
        """Bring ``key`` up to date; return True when it changed in this run."""
        if key in self._results:
            return self._results[key]
        if key in self._stack:
            cycle = " -> ".join([*self._stack[self._stack.index(key):], key])
            raise BuildError(f"dependency cycle: {cycle}", target=key)
        self._stack.append(key)
        try:
            changed = self._ensure_uncached(key)
        finally:
            self._stack.pop()
        self._results[key] = changed
        return changed

    def _ensure_uncached(self, key: str) -> bool:
        rule = self.rules.lookup(key)
        if isinstance(rule, _PhonyRule):
            self._run_builder(key, rule.build)
            return True
        if rule is None:
            if not os.path.exists(key):
                raise MissingFileError(
                    f"no rule to build {key} and the file does not exist",
                    target=key,
                )
            self.live.append(key)
            return False
        if self._up_to_date(key):
            logger.debug("Up to date: %s", key)
            self.live.append(key)
            return False
        depends = self._run_builder(key, rule.build)
        mtime = _mtime_ns(key)
        if mtime is None:
            raise BuildError(f"rule for {key} did not produce the file", target=key)
        self.database.entries[key] = _Entry(
            mtime_ns=mtime,
            depends=[(dep, self.fingerprint(dep)) for dep in depends],
        )
        self.live.append(key)
        return True

    def _up_to_date(self, key: str) -> bool:
        entry = self.database.entries.get(key)
        if entry is None or _mtime_ns(key) != entry.mtime_ns:
            return False
        for dep, recorded in entry.depends:
            if self.rules.lookup(dep) is None and not os.path.exists(dep):
                return False
            changed = self.ensure(dep)
            if changed and isinstance(self.rules.lookup(dep), _PhonyRule):
                return False
            if self.fingerprint(dep) != recorded:
                return False
        return True

    def fingerprint(self, key: str) -> int | None:
        if isinstance(self.rules.lookup(key), _PhonyRule):
            return None
        return _mtime_ns(key)

    def _run_builder(self, key: str, build: Builder) -> list[str]:
        logger.info("# %s", key)
        with _frame_scope(_Frame(build=self, target=key)) as frame:
            build(key)
        return frame.depends

    def write_live_files(self) -> None:
        for sink in self.options.live_files:
            sink.parent.mkdir(parents=True, exist_ok=True)
            with sink.open("a", encoding="utf-8") as handle:
                for path in self.live:
                    handle.write(path + "\n")


def _current_frame(operation: str) -> _Frame:
    frame = _CURRENT_FRAME.get()
    if frame is None:
        raise NoActiveBuild(f"{operation}() called outside a running rule action")
    return frame


def need(paths: PathLike | Iterable[PathLike]) -> None:
    """Bring every path up to date and record it as a dependency."""
    frame = _current_frame("need")
    for path in _as_path_list(paths):
        key = _normalize(path)
        frame.build.ensure(key)
        frame.depends.append(key)


def needed(paths: PathLike | Iterable[PathLike]) -> None:
    """Record paths that were already used; fail if any had to be rebuilt."""
    frame = _current_frame("needed")
    for path in _as_path_list(paths):
        key = _normalize(path)
        before = _mtime_ns(key)
        frame.build.ensure(key)
        if frame.build.fingerprint(key) != before and before is not None:
            raise BuildError(
                f"{key} was rebuilt after being used; call need() before using it",
                target=key,
            )
        frame.depends.append(key)


def run_rules(rules: Rules, options: BuildOptions) -> list[str]:
    """Run the start-up actions of ``rules`` and return the live paths."""
    build = _Build(rules, options)
    try:
        for act in rules.actions:
            with _frame_scope(_Frame(build=build, target=None)):
                act()
    finally:
        build.database.save()
        build.write_live_files()
    logger.debug("Build finished with %d live paths", len(build.live))
    return list(build.live)
