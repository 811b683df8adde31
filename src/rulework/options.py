"""Flag descriptors and the decode result type shared by the build entry points."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Callable, Generic, Iterable, Sequence, TypeAlias, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")
A = TypeVar("A")


class ArgKind(StrEnum):
    NONE = "none"
    REQUIRED = "required"
    OPTIONAL = "optional"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failed:
    message: str


DecodedOption: TypeAlias = Union[Ok[T], Failed]


@dataclass(frozen=True)
class OptionDescriptor(Generic[T]):
    """A command line flag: its spellings, argument kind, decoder and help.

    ``decode`` takes no argument for ``ArgKind.NONE``, the argument string for
    ``ArgKind.REQUIRED`` and the argument string or ``None`` for
    ``ArgKind.OPTIONAL``. It returns ``Ok(value)`` or ``Failed(message)``.
    """

    short: tuple[str, ...]
    long: tuple[str, ...]
    kind: ArgKind
    decode: Callable[..., DecodedOption[T]]
    help: str = ""
    metavar: str = "VALUE"

    def __post_init__(self) -> None:
        if not self.short and not self.long:
            raise ValueError("option descriptor needs at least one name")
        for name in self.short:
            if len(name) != 1 or name == "-":
                raise ValueError(f"invalid short option name: {name!r}")
        for name in self.long:
            if not name or name.startswith("-"):
                raise ValueError(f"invalid long option name: {name!r}")

    @property
    def spellings(self) -> list[str]:
        return [f"-{name}" for name in self.short] + [f"--{name}" for name in self.long]

    @property
    def display_name(self) -> str:
        return self.spellings[-1]

    def apply(self, raw: str | None = None) -> DecodedOption[T]:
        if self.kind is ArgKind.NONE:
            return self.decode()
        if self.kind is ArgKind.REQUIRED:
            if raw is None:
                return Failed(f"option {self.display_name} requires an argument")
            return self.decode(raw)
        return self.decode(raw)

    def map(self, fn: Callable[[T], U]) -> OptionDescriptor[U]:
        """Post-process successful decodes, keeping names, kind and help."""
        decode = self.decode

        def _mapped(*args: str | None) -> DecodedOption[U]:
            result = decode(*args)
            if isinstance(result, Ok):
                return Ok(fn(result.value))
            return result

        return replace(self, decode=_mapped)  # type: ignore[return-value]


def _split_names(names: Sequence[str]) -> tuple[tuple[str, ...], tuple[str, ...]]:
    short: list[str] = []
    long: list[str] = []
    for raw in names:
        name = raw.lstrip("-")
        if len(name) == 1:
            short.append(name)
        else:
            long.append(name)
    return tuple(short), tuple(long)


def flag(*names: str, value: T, help: str = "") -> OptionDescriptor[T]:
    """A no-argument flag that always decodes to ``value``."""
    short, long = _split_names(names)
    return OptionDescriptor(
        short=short,
        long=long,
        kind=ArgKind.NONE,
        decode=lambda: Ok(value),
        help=help,
    )


def option(
    *names: str,
    decode: Callable[..., DecodedOption[T]],
    help: str = "",
    metavar: str = "VALUE",
    optional: bool = False,
) -> OptionDescriptor[T]:
    """A flag taking a string argument, decoded by ``decode``."""
    short, long = _split_names(names)
    return OptionDescriptor(
        short=short,
        long=long,
        kind=ArgKind.OPTIONAL if optional else ArgKind.REQUIRED,
        decode=decode,
        help=help,
        metavar=metavar,
    )


def fold_options(functions: Iterable[Callable[[A], A]], initial: A) -> A:
    """Apply each update function to ``initial`` in the order given."""
    value = initial
    for fn in functions:
        value = fn(value)
    return value
