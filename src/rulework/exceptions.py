"""Exception types raised by rulework."""

from __future__ import annotations

from typing import Sequence


class RuleworkError(RuntimeError):
    """Base class for errors raised by rulework itself."""


class OptionDecodeError(RuleworkError):
    """One or more command line flags failed to decode.

    Every failure message is kept so the caller can report them verbatim.
    """

    def __init__(self, messages: Sequence[str]):
        self.messages = tuple(str(message) for message in messages)
        super().__init__("\n".join(self.messages))


class BuildError(RuleworkError):
    """A rule could not produce its target."""

    def __init__(self, message: str, *, target: str | None = None):
        super().__init__(message)
        self.target = target


class MissingFileError(BuildError):
    """A required file has no rule to build it and does not exist."""


class NoActiveBuild(RuleworkError):
    """need()/needed() was called outside a running rule action."""
