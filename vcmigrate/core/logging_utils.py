# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Shared logging helpers for vcmigrate.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Generator, Union

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


def emoji_for_level(level: int) -> str:
    if level >= logging.ERROR:
        return "❌"
    if level >= logging.WARNING:
        return "⚠️"
    if level >= logging.INFO:
        return "✅"
    return "🔍"


def log_with_emoji(logger: LoggerLike, level: int, msg: str, *args: Any) -> None:
    logger.log(level, f"{emoji_for_level(level)} {msg}", *args)


@contextmanager
def log_step(logger: LoggerLike, description: str) -> Generator[None, None, None]:
    """
    Log and time one step of a workflow.

    Logs the start, then either the elapsed time on success or the error
    (which is re-raised unchanged).

    Example:
        with log_step(logger, "Relocating carrier VM"):
            relocator.relocate(vm, spec)
    """
    t0 = time.monotonic()
    log_with_emoji(logger, logging.INFO, "%s ...", description)
    try:
        yield
    except Exception as e:
        log_with_emoji(logger, logging.ERROR, "%s failed (%.2fs): %s", description, time.monotonic() - t0, e)
        raise
    log_with_emoji(logger, logging.INFO, "%s done (%.2fs)", description, time.monotonic() - t0)
