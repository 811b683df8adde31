"""Command line entry points for build scripts.

``build_args_with`` decodes the engine's own flags together with the
caller's flag descriptors, hands the decoded values and positional targets to
an action function, and runs the rule set it returns. The other entry points
are built on top of it:

* ``build_args`` takes a fixed rule set, wanting any targets named on the
  command line instead of the rule set's own wants.
* ``build_args_accumulate`` folds flag values (update functions) over a
  default configuration value.
* ``build_args_prune`` / ``build_args_prune_with`` add ``-P/--prune``: the
  build runs with a temporary live-file sink attached and the paths found
  up to date are passed to a prune callback afterwards.
"""

from __future__ import annotations

import argparse
from contextlib import contextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
import sys
import tempfile
from typing import Any, Callable, Iterator, Sequence, TypeAlias, TypeVar

from rulework.engine import BuildOptions, Rules, run_rules
from rulework.exceptions import OptionDecodeError
from rulework.logging_setup import configure_logging
from rulework.options import ArgKind, Failed, OptionDescriptor, flag, fold_options

logger = logging.getLogger(__name__)

A = TypeVar("A")

Action: TypeAlias = Callable[[list[Any], list[str]], Rules | None]
PruneCallback: TypeAlias = Callable[[list[str]], None]

_DECODED_ATTR = "rulework_decoded"
_SINK_PREFIX = "rulework-live-"


class _DecoderParser(argparse.ArgumentParser):
    def error(self, message: str):  # type: ignore[override]
        raise OptionDecodeError([message])


class _DecodeAction(argparse.Action):
    def __init__(self, option_strings, dest, descriptor: OptionDescriptor[Any], **kwargs):
        self.descriptor = descriptor
        super().__init__(option_strings, dest, **kwargs)

    def __call__(self, parser, namespace, values, option_string=None):
        raw = values if isinstance(values, str) else None
        decoded = getattr(namespace, _DECODED_ATTR)
        decoded.append(self.descriptor.apply(raw))


@dataclass(frozen=True)
class DecodedArgs:
    options: BuildOptions
    values: list[Any]
    targets: list[str]


def _build_parser(flags: Sequence[OptionDescriptor[Any]]) -> argparse.ArgumentParser:
    parser = _DecoderParser(
        usage="%(prog)s [options] [target ...]",
        description="Build the given targets, or the default targets when none are given.",
    )
    parser.add_argument(
        "--live",
        metavar="FILE",
        action="append",
        default=[],
        help="Append the paths found up to date in this build to FILE.",
    )
    parser.add_argument(
        "-V",
        "--verbose",
        action="count",
        default=0,
        help="Print more output (repeat for more).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Print less output (repeat for less).",
    )
    parser.add_argument(
        "--files-dir",
        metavar="DIR",
        help="Directory holding the build database.",
    )
    for index, descriptor in enumerate(flags):
        optional = descriptor.kind is ArgKind.OPTIONAL
        parser.add_argument(
            *descriptor.spellings,
            dest=f"rulework_flag_{index}",
            action=_DecodeAction,
            descriptor=descriptor,
            nargs=0 if descriptor.kind is ArgKind.NONE or optional else None,
            metavar=None if descriptor.kind is ArgKind.NONE else descriptor.metavar,
            default=argparse.SUPPRESS,
            help=descriptor.help,
        )
        if optional:
            # Attached values (--name=value, -xvalue) are rewritten to this
            # hidden spelling; a bare optional flag never takes the next word.
            parser.add_argument(
                _attached_spelling(index),
                dest=f"rulework_flag_{index}",
                action=_DecodeAction,
                descriptor=descriptor,
                default=argparse.SUPPRESS,
                help=argparse.SUPPRESS,
            )
    parser.add_argument("targets", nargs="*", metavar="target")
    return parser


def _attached_spelling(index: int) -> str:
    return f"--rulework-attached-{index}"


def _split_attached(
    flags: Sequence[OptionDescriptor[Any]], argv: Sequence[str]
) -> list[str]:
    """Rewrite attached optional-flag values into the hidden ``--x=value`` form."""
    long_names: dict[str, int] = {}
    short_names: dict[str, int] = {}
    for index, descriptor in enumerate(flags):
        if descriptor.kind is not ArgKind.OPTIONAL:
            continue
        for name in descriptor.long:
            long_names[name] = index
        for name in descriptor.short:
            short_names[name] = index
    rewritten: list[str] = []
    for position, word in enumerate(argv):
        if word == "--":
            rewritten.extend(argv[position:])
            break
        if word.startswith("--") and "=" in word:
            name, value = word[2:].split("=", 1)
            if name in long_names:
                rewritten.append(f"{_attached_spelling(long_names[name])}={value}")
                continue
        elif word.startswith("-") and not word.startswith("--") and len(word) > 2:
            if word[1] in short_names:
                rewritten.append(f"{_attached_spelling(short_names[word[1]])}={word[2:]}")
                continue
        rewritten.append(word)
    return rewritten


def decode_args(
    options: BuildOptions,
    flags: Sequence[OptionDescriptor[Any]],
    argv: Sequence[str],
) -> DecodedArgs:
    """Decode ``argv`` against the engine flags plus ``flags``.

    Flag values come back in command line order. Any decode failure raises
    ``OptionDecodeError`` carrying every failure message.
    """
    parser = _build_parser(flags)
    namespace = argparse.Namespace(**{_DECODED_ATTR: []})
    parsed = parser.parse_intermixed_args(_split_attached(flags, argv), namespace)
    results = getattr(parsed, _DECODED_ATTR)
    failures = [result.message for result in results if isinstance(result, Failed)]
    if failures:
        raise OptionDecodeError(failures)
    decoded_options = options
    if parsed.files_dir:
        decoded_options = decoded_options.with_files_dir(Path(parsed.files_dir))
    shift = int(parsed.verbose) - int(parsed.quiet)
    if shift:
        decoded_options = decoded_options.with_verbosity(
            decoded_options.verbosity + shift
        )
    for live in parsed.live:
        decoded_options = decoded_options.with_live_file(Path(live))
    return DecodedArgs(
        options=decoded_options,
        values=[result.value for result in results],
        targets=[str(target) for target in parsed.targets or []],
    )


def _argv(argv: Sequence[str] | None) -> list[str]:
    return list(sys.argv[1:] if argv is None else argv)


def _run_action(decoded: DecodedArgs, values: list[Any], action: Action) -> None:
    configure_logging(decoded.options.verbosity)
    rules = action(values, list(decoded.targets))
    if rules is not None:
        run_rules(rules, decoded.options)


def build_args_with(
    options: BuildOptions,
    flags: Sequence[OptionDescriptor[Any]],
    action: Action,
    argv: Sequence[str] | None = None,
) -> None:
    decoded = decode_args(options, flags, _argv(argv))
    _run_action(decoded, decoded.values, action)


def _targets_or_rules(rules: Rules) -> Action:
    def _action(_values: list[Any], targets: list[str]) -> Rules:
        if not targets:
            return rules
        return rules.without_actions().want(targets)

    return _action


def build_args(
    options: BuildOptions,
    rules: Rules,
    argv: Sequence[str] | None = None,
) -> None:
    build_args_with(options, [], _targets_or_rules(rules), argv)


def build_args_accumulate(
    options: BuildOptions,
    flags: Sequence[OptionDescriptor[Callable[[A], A]]],
    initial: A,
    action: Callable[[A, list[str]], Rules | None],
    argv: Sequence[str] | None = None,
) -> None:
    """Like build_args_with, folding each flag's update function over ``initial``.

    Usually used to populate a dataclass of build settings::

        flags = [flag("distcc", value=lambda s: replace(s, distcc=True))]
        build_args_accumulate(BuildOptions(), flags, Settings(), make_rules)
    """

    def _accumulate(values: list[Any], targets: list[str]) -> Rules | None:
        return action(fold_options(values, initial), targets)

    build_args_with(options, flags, _accumulate, argv)


class _PruneRequested:
    def __repr__(self) -> str:
        return "PRUNE_REQUESTED"


PRUNE_REQUESTED = _PruneRequested()

PRUNE_OPTION: OptionDescriptor[Any] = flag(
    "P", "prune", value=PRUNE_REQUESTED, help="Remove stale files"
)


def prune_option_set(
    flags: Sequence[OptionDescriptor[Any]],
) -> list[OptionDescriptor[Any]]:
    """The caller's flags preceded by ``-P/--prune``; shared by both phases."""
    return [PRUNE_OPTION, *flags]


@dataclass(frozen=True)
class PruningPending:
    argv: tuple[str, ...]


@dataclass(frozen=True)
class OptionsReady:
    decoded: DecodedArgs


PruneIntent: TypeAlias = PruningPending | OptionsReady


def detect_prune_intent(decoded: DecodedArgs, argv: Sequence[str]) -> PruneIntent:
    if any(value is PRUNE_REQUESTED for value in decoded.values):
        return PruningPending(argv=tuple(argv))
    return OptionsReady(decoded=decoded)


def without_sentinel(values: Sequence[Any]) -> list[Any]:
    return [value for value in values if value is not PRUNE_REQUESTED]


@contextmanager
def live_file_sink() -> Iterator[Path]:
    """A fresh empty temporary file, removed when the block exits."""
    with tempfile.NamedTemporaryFile(
        prefix=_SINK_PREFIX, suffix=".txt", delete=False
    ) as handle:
        sink = Path(handle.name)
    try:
        yield sink
    finally:
        sink.unlink(missing_ok=True)


def read_live_files(path: Path) -> list[str]:
    text = path.read_text(encoding="utf-8")
    return [line for line in text.splitlines() if line]


def _capture_and_prune(
    options: BuildOptions,
    option_set: Sequence[OptionDescriptor[Any]],
    intent: PruningPending,
    prune: PruneCallback,
    action: Action,
) -> None:
    with live_file_sink() as sink:
        decoded = decode_args(options.with_live_file(sink), option_set, intent.argv)
        try:
            _run_action(decoded, without_sentinel(decoded.values), action)
        except Exception:
            partial = read_live_files(sink)
            if partial:
                logger.warning(
                    "Build failed; pruning with the %d live paths recorded so far",
                    len(partial),
                )
                prune(partial)
            raise
        live = read_live_files(sink)
        logger.info("Build recorded %d live paths", len(live))
        prune(live)


def build_args_prune_with(
    options: BuildOptions,
    prune: PruneCallback,
    flags: Sequence[OptionDescriptor[Any]],
    action: Action,
    argv: Sequence[str] | None = None,
) -> None:
    """Like build_args_with, with an extra ``-P/--prune`` flag.

    Without the flag the build runs once, exactly as build_args_with would.
    With it, the command line is decoded a second time against options that
    carry a temporary live-file sink, the build runs once, and ``prune`` is
    called with the paths the build found up to date.
    """
    option_set = prune_option_set(flags)
    args = _argv(argv)
    intent = detect_prune_intent(decode_args(options, option_set, args), args)
    if isinstance(intent, OptionsReady):
        logger.debug("Prune not requested; running the build directly")
        _run_action(intent.decoded, intent.decoded.values, action)
        return
    logger.debug("Prune requested; running the build with a live-file sink")
    _capture_and_prune(options, option_set, intent, prune, action)


def build_args_prune(
    options: BuildOptions,
    prune: PruneCallback,
    rules: Rules,
    argv: Sequence[str] | None = None,
) -> None:
    build_args_prune_with(options, prune, [], _targets_or_rules(rules), argv)
