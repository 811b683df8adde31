"""Logging helpers for rulework builds."""

from __future__ import annotations

import logging

from rulework.engine import Verbosity

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(verbosity: Verbosity = Verbosity.NORMAL) -> None:
    """Configure root logging at the level matching ``verbosity``."""
    level = Verbosity.parse(verbosity).log_level
    logging.basicConfig(level=level, format=DEFAULT_FORMAT)
    logging.getLogger("rulework").setLevel(level)
