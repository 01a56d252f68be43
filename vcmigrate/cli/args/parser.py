# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/cli/args/parser.py
from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, Optional, Sequence, Tuple

import yaml

from ...config.config_loader import Config
from ...core.logger import Log, c
from .builder import HelpFormatter, _build_epilog
from .groups import (
    _add_global_config_logging,
    _add_migrate_command,
    _add_rollback_command,
    _add_status_command,
    _add_thumbprint_command,
)
from .helpers import _redacted


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="vcmigrate",
        description=c("vcmigrate: move vSphere CSI volumes between vCenters", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=_build_epilog(),
    )
    _add_global_config_logging(p)

    sub = p.add_subparsers(dest="cmd", metavar="<command>")
    sub.required = True
    _add_migrate_command(sub)
    _add_rollback_command(sub)
    _add_status_command(sub)
    _add_thumbprint_command(sub)
    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("-q", "--quiet", action="count", default=0)
    pre.add_argument("--log-file", dest="log_file", default=None)
    pre.add_argument("--json-logs", dest="json_logs", action="store_true")
    pre.add_argument("--no-color", dest="no_color", action="store_true")
    pre.add_argument("--dump-config", action="store_true")
    return pre


def _load_merged_config(logger: Any, cfgs: Sequence[str]) -> Dict[str, Any]:
    return Config.load_many(logger, Config.expand_configs(logger, list(cfgs))) if cfgs else {}


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Any = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], Any]:
    """
    Parse ``argv`` with YAML config folded in.

    Logging and ``--config`` flags are read first so config loading can log;
    the merged config then becomes parser defaults and the full command line
    is parsed on top, so an explicit flag always beats the file. Returns
    (args, merged config, logger).
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()

    args0, _ = _build_preparser().parse_known_args(argv)

    if logger is None:
        logger = Log.setup(
            args0.verbose,
            args0.log_file,
            quiet=args0.quiet,
            color=not args0.no_color,
            json_logs=args0.json_logs,
        )

    conf = _load_merged_config(logger, args0.config or [])

    if args0.dump_config:
        print(yaml.safe_dump(_redacted(conf), sort_keys=True, default_flow_style=False), end="")
        raise SystemExit(0)

    Config.apply_as_defaults(logger, parser, conf)

    args = parser.parse_args(argv)
    return args, conf, logger
