from __future__ import annotations

from datetime import date, datetime, time
from pathlib import Path
from typing import TypeAlias
import tomllib

from rulework.engine import BuildOptions, Verbosity

DEFAULT_CONFIG_NAME = "rulework.toml"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def _section(data: TomlTable, name: str) -> TomlTable:
    section = data.get(name, {})
    return section if isinstance(section, dict) else {}


def build_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return _section(load_config(root=root, config_path=config_path), "build")


def prune_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return _section(load_config(root=root, config_path=config_path), "prune")


def _normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def build_options_from_section(
    section: TomlTable | None, base: BuildOptions | None = None
) -> BuildOptions:
    options = base if base is not None else BuildOptions()
    if not isinstance(section, dict):
        return options
    files_dir = section.get("files_dir")
    if isinstance(files_dir, str) and files_dir.strip():
        options = options.with_files_dir(Path(files_dir.strip()))
    verbosity = section.get("verbosity")
    if isinstance(verbosity, (str, int)) and not isinstance(verbosity, bool):
        try:
            options = options.with_verbosity(Verbosity.parse(verbosity))
        except ValueError:
            pass
    for live in reversed(_normalize_name_list(section.get("live_files"))):
        options = options.with_live_file(Path(live))
    return options


def build_options_from_config(
    root: Path | None = None, config_path: Path | None = None
) -> BuildOptions:
    return build_options_from_section(build_defaults(root=root, config_path=config_path))


def prune_exclude_list(section: TomlTable | None) -> list[str]:
    if not isinstance(section, dict):
        return []
    return _normalize_name_list(section.get("exclude"))


def prune_dry_run(section: TomlTable | None) -> bool:
    if not isinstance(section, dict):
        return False
    return _as_bool(section.get("dry_run"))


def prune_root(section: TomlTable | None) -> Path | None:
    if not isinstance(section, dict):
        return None
    value = section.get("root")
    if isinstance(value, str) and value.strip():
        return Path(value.strip())
    return None


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged
