"""rulework package root."""

from rulework.args import (
    build_args,
    build_args_accumulate,
    build_args_prune,
    build_args_prune_with,
    build_args_with,
)
from rulework.engine import BuildOptions, Rules, Verbosity, need, needed, run_rules
from rulework.exceptions import (
    BuildError,
    MissingFileError,
    NoActiveBuild,
    OptionDecodeError,
    RuleworkError,
)
from rulework.makefile import (
    need_makefile_dependencies,
    needed_makefile_dependencies,
    parse_makefile,
)
from rulework.options import ArgKind, Failed, Ok, OptionDescriptor, flag, fold_options, option

__all__ = [
    "__version__",
    "ArgKind",
    "BuildError",
    "BuildOptions",
    "Failed",
    "MissingFileError",
    "NoActiveBuild",
    "Ok",
    "OptionDecodeError",
    "OptionDescriptor",
    "Rules",
    "RuleworkError",
    "Verbosity",
    "build_args",
    "build_args_accumulate",
    "build_args_prune",
    "build_args_prune_with",
    "build_args_with",
    "flag",
    "fold_options",
    "need",
    "need_makefile_dependencies",
    "needed",
    "needed_makefile_dependencies",
    "option",
    "parse_makefile",
    "run_rules",
]

__version__ = "0.1.0"
