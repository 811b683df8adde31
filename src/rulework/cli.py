from __future__ import annotations

from pathlib import Path
from typing import Optional
import json

import typer

from rulework.args import read_live_files
from rulework.config import (
    DEFAULT_CONFIG_NAME,
    build_options_from_config,
    merge_payload,
    prune_defaults,
    prune_dry_run,
    prune_exclude_list,
    prune_root,
)
from rulework.engine import Verbosity
from rulework.logging_setup import configure_logging
from rulework.makefile import parse_makefile
from rulework.prune import delete_stale

app = typer.Typer(add_completion=False)

_FILE_ACCESS_EXIT = 2


def _fail(exc: OSError | str) -> typer.Exit:
    typer.secho(str(exc), err=True, fg=typer.colors.RED)
    return typer.Exit(code=_FILE_ACCESS_EXIT)


@app.command("deps")
def deps(
    path: Path = typer.Argument(..., help="Makefile fragment, e.g. a gcc -MM output."),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON records."),
) -> None:
    """Print the targets and dependencies listed in a Makefile fragment."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise _fail(exc) from exc
    records = parse_makefile(text)
    if json_output:
        payload = [{"target": target, "depends": depends} for target, depends in records]
        typer.echo(json.dumps(payload, indent=2))
        return
    for target, depends in records:
        typer.echo(f"{target}: {' '.join(depends)}".rstrip())


@app.command("prune")
def prune(
    live: Path = typer.Option(..., "--live", help="Live-file list written by a build."),
    root: Optional[Path] = typer.Option(None, "--root", help="Directory to clean."),
    exclude: list[str] = typer.Option([], "--exclude", help="Glob (relative to root) to keep."),
    dry_run: Optional[bool] = typer.Option(
        None,
        "--dry-run/--no-dry-run",
        help="List stale files without deleting them.",
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to rulework.toml."),
    verbose: int = typer.Option(0, "-V", "--verbose", count=True),
) -> None:
    """Delete files under ROOT that the recorded build did not find live.

    ROOT comes from --root or the [prune] table of rulework.toml. The live
    list itself, the config file and the build database directory are never
    removed.
    """
    configure_logging(Verbosity.parse(Verbosity.QUIET + verbose))
    settings = merge_payload(
        {
            "root": str(root) if root is not None else None,
            "exclude": list(exclude) or None,
            "dry_run": dry_run,
        },
        prune_defaults(config_path=config),
    )
    target_root = prune_root(settings)
    if target_root is None:
        raise _fail("no prune root: pass --root or set root in the [prune] table")
    try:
        live_paths = read_live_files(live)
    except OSError as exc:
        raise _fail(exc) from exc
    config_file = config if config is not None else Path(DEFAULT_CONFIG_NAME)
    files_dir = build_options_from_config(config_path=config_file).files_dir
    dry = prune_dry_run(settings)
    removed = delete_stale(
        target_root,
        live_paths,
        exclude=prune_exclude_list(settings),
        protect=[live, config_file, files_dir],
        dry_run=dry,
    )
    verb = "would remove" if dry else "removed"
    for path in removed:
        typer.echo(f"{verb} {path}")
    typer.echo(f"{len(removed)} stale file(s) under {target_root}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
