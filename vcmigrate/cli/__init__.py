# SPDX-License-Identifier: LGPL-3.0-or-later
# vcmigrate/cli/__init__.py
from .args import build_parser, parse_args_with_config
from .commands import run_command

__all__ = ["build_parser", "parse_args_with_config", "run_command"]
