# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/__main__.py
from __future__ import annotations

import sys
import traceback
from typing import Optional, Sequence

from .cli.args import parse_args_with_config
from .cli.commands import run_command
from .core.exceptions import Fatal, VcMigrateError, format_exception_for_cli

EXIT_INTERRUPTED = 130


def _report(logger, level: str, msg: str) -> None:
    """Log through ``logger`` when there is one, otherwise write to stderr."""
    fn = getattr(logger, level, None) if logger is not None else None
    if callable(fn):
        fn(msg)
    else:
        print(msg, file=sys.stderr)


def main(argv: Optional[Sequence[str]] = None) -> None:
    # Config errors surface before logging is configured.
    try:
        args, conf, logger = parse_args_with_config(argv)
    except Fatal as e:
        print(f"💥 ERROR    {e}", file=sys.stderr)
        raise SystemExit(e.code)
    except KeyboardInterrupt:
        raise SystemExit(EXIT_INTERRUPTED)

    verbose = int(getattr(args, "verbose", 0) or 0)
    try:
        rc = run_command(logger, args, conf)
    except VcMigrateError as e:
        _report(logger, "error", format_exception_for_cli(e, verbose=verbose))
        rc = e.code
    except KeyboardInterrupt:
        # State was persisted after the last transition; rerunning resumes there.
        _report(logger, "warning", "Interrupted; rerun the same command to resume.")
        rc = EXIT_INTERRUPTED
    except Exception as e:
        _report(logger, "error", f"💥 UNHANDLED {type(e).__name__}: {e}")
        _report(logger, "debug", traceback.format_exc())
        rc = 1
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
