from __future__ import annotations

from pathlib import Path

import pytest

from rulework import args
from rulework.engine import BuildOptions, Rules, need
from rulework.exceptions import MissingFileError, OptionDecodeError
from rulework.options import Failed, Ok, flag, option


def _sinks(directory: Path) -> list[Path]:
    return sorted(directory.glob("rulework-live-*"))


class _Recorder:
    def __init__(self, sink_dir: Path, rules: Rules | None = None) -> None:
        self.sink_dir = sink_dir
        self.rules = rules
        self.actions: list[tuple[list[object], list[str]]] = []
        self.sinks_during_action: list[list[Path]] = []
        self.pruned: list[list[str]] = []

    def action(self, values, targets):
        self.actions.append((list(values), list(targets)))
        self.sinks_during_action.append(_sinks(self.sink_dir))
        return self.rules

    def prune(self, live: list[str]) -> None:
        self.pruned.append(list(live))


def _copy_rules(workdir: Path) -> Rules:
    (workdir / "src.txt").write_text("source", encoding="utf-8")
    rules = Rules()

    @rules.file("out.txt")
    def _out(out: str) -> None:
        need(["src.txt"])
        Path(out).write_text(Path("src.txt").read_text(encoding="utf-8"), encoding="utf-8")

    return rules.want(["out.txt"])


_FLAGS = [
    flag("fast", value="fast"),
    option("level", decode=lambda raw: Ok(int(raw)) if raw.isdigit() else Failed("bad level")),
]


def test_prune_option_set_prepends_sentinel() -> None:
    combined = args.prune_option_set(_FLAGS)
    assert combined[0] is args.PRUNE_OPTION
    assert combined[1:] == _FLAGS
    assert args.PRUNE_OPTION.spellings == ["-P", "--prune"]
    assert args.PRUNE_OPTION.help == "Remove stale files"
    assert args.PRUNE_OPTION.apply() == Ok(args.PRUNE_REQUESTED)


def test_detect_prune_intent_variants() -> None:
    option_set = args.prune_option_set(_FLAGS)
    plain = args.decode_args(BuildOptions(), option_set, ["--fast", "t"])
    assert args.detect_prune_intent(plain, ["--fast", "t"]) == args.OptionsReady(decoded=plain)

    pruning = args.decode_args(BuildOptions(), option_set, ["--fast", "-P", "t"])
    intent = args.detect_prune_intent(pruning, ["--fast", "-P", "t"])
    assert intent == args.PruningPending(argv=("--fast", "-P", "t"))


def test_without_sentinel_drops_only_the_sentinel() -> None:
    values = ["a", args.PRUNE_REQUESTED, 3]
    assert args.without_sentinel(values) == ["a", 3]


def test_without_prune_runs_once_and_never_prunes(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    recorder = _Recorder(sink_dir, _copy_rules(workdir))
    args.build_args_prune_with(
        build_options, recorder.prune, _FLAGS, recorder.action, ["--fast", "--level", "2", "x"]
    )
    assert recorder.actions == [(["fast", 2], ["x"])]
    assert recorder.sinks_during_action == [[]]
    assert recorder.pruned == []
    assert (workdir / "out.txt").exists()
    assert _sinks(sink_dir) == []


def test_with_prune_runs_action_once_and_prunes_live_files(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    recorder = _Recorder(sink_dir, _copy_rules(workdir))
    args.build_args_prune_with(
        build_options, recorder.prune, _FLAGS, recorder.action, ["--fast", "--prune", "--level", "5"]
    )
    assert recorder.actions == [(["fast", 5], [])]
    assert len(recorder.sinks_during_action[0]) == 1
    assert recorder.pruned == [["src.txt", "out.txt"]]
    assert _sinks(sink_dir) == []


def test_short_prune_flag_reports_up_to_date_files(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    rules = _copy_rules(workdir)
    args.build_args(build_options, rules, [])
    recorder = _Recorder(sink_dir, rules)
    args.build_args_prune_with(build_options, recorder.prune, [], recorder.action, ["-P"])
    assert recorder.actions == [([], [])]
    assert recorder.pruned == [["src.txt", "out.txt"]]


def test_prune_with_empty_sink_still_invokes_callback(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    recorder = _Recorder(sink_dir, None)
    args.build_args_prune_with(build_options, recorder.prune, _FLAGS, recorder.action, ["-P"])
    assert recorder.actions == [([], [])]
    assert recorder.pruned == [[]]
    assert _sinks(sink_dir) == []


def test_prune_keeps_user_live_files(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    recorder = _Recorder(sink_dir, _copy_rules(workdir))
    args.build_args_prune_with(
        build_options, recorder.prune, [], recorder.action, ["-P", "--live", "mine.txt"]
    )
    assert (workdir / "mine.txt").read_text(encoding="utf-8") == "src.txt\nout.txt\n"
    assert recorder.pruned == [["src.txt", "out.txt"]]


def test_action_failure_before_any_live_file_skips_prune_and_cleans_sink(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    pruned: list[list[str]] = []

    def _action(values, targets):
        raise RuntimeError("action exploded")

    with pytest.raises(RuntimeError, match="action exploded"):
        args.build_args_prune_with(build_options, pruned.append, [], _action, ["--prune"])
    assert pruned == []
    assert _sinks(sink_dir) == []


def test_build_failure_prunes_partial_list_then_propagates(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    rules = _copy_rules(workdir)
    rules.want(["missing.txt"])
    pruned: list[list[str]] = []

    with pytest.raises(MissingFileError):
        args.build_args_prune(build_options, pruned.append, rules, ["--prune"])
    assert pruned == [["src.txt", "out.txt"]]
    assert _sinks(sink_dir) == []


def test_prune_callback_failure_still_removes_sink(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    def _prune(live: list[str]) -> None:
        raise OSError("cannot delete")

    with pytest.raises(OSError, match="cannot delete"):
        args.build_args_prune(build_options, _prune, _copy_rules(workdir), ["-P"])
    assert _sinks(sink_dir) == []


def test_decode_failure_stops_before_any_action(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    recorder = _Recorder(sink_dir, None)
    with pytest.raises(OptionDecodeError, match="bad level"):
        args.build_args_prune_with(
            build_options, recorder.prune, _FLAGS, recorder.action, ["-P", "--level", "x"]
        )
    assert recorder.actions == []
    assert recorder.pruned == []
    assert _sinks(sink_dir) == []


def test_repeated_invocations_decode_identically(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    recorder = _Recorder(sink_dir, _copy_rules(workdir))
    argv = ["--level", "3", "--fast", "out.txt"]
    args.build_args_prune_with(build_options, recorder.prune, _FLAGS, recorder.action, argv)
    args.build_args_prune_with(build_options, recorder.prune, _FLAGS, recorder.action, argv)
    assert recorder.actions == [([3, "fast"], ["out.txt"]), ([3, "fast"], ["out.txt"])]
    assert recorder.pruned == []


def test_build_args_prune_wants_named_targets(
    workdir: Path, build_options: BuildOptions, sink_dir: Path
) -> None:
    rules = _copy_rules(workdir)

    @rules.file("other.txt")
    def _other(out: str) -> None:
        Path(out).write_text("other", encoding="utf-8")

    pruned: list[list[str]] = []
    args.build_args_prune(build_options, pruned.append, rules, ["-P", "other.txt"])
    assert pruned == [["other.txt"]]
    assert not (workdir / "out.txt").exists()


def test_live_file_sink_is_removed_on_error(sink_dir: Path) -> None:
    with pytest.raises(KeyError):
        with args.live_file_sink() as sink:
            assert sink.exists()
            assert sink.read_text(encoding="utf-8") == ""
            raise KeyError("boom")
    assert not sink.exists()


def test_read_live_files_skips_blank_lines(tmp_path: Path) -> None:
    path = tmp_path / "live.txt"
    path.write_text("a\n\nb/c\n", encoding="utf-8")
    assert args.read_live_files(path) == ["a", "b/c"]
