# SPDX-License-Identifier: LGPL-3.0-or-later
# vcmigrate/core/logger.py
"""
Logging for vcmigrate.

A console line looks like::

    14:02:11 ✅ INFO     [pv-data-0] Carrier VM relocated step=relocate

The ``pv`` key bound with ``Log.bind`` becomes the bracketed volume tag so
interleaved per-volume output stays readable; any other context trails the
message as ``key=value`` pairs. ``--json-logs`` switches to NDJSON with the
volume as a top-level ``pv`` field.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from termcolor import colored as _colored

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Context key rendered as the volume tag rather than as key=value.
VOLUME_KEY = "pv"

_LEVELS: Dict[str, Tuple[str, str]] = {
    # levelname: (emoji, color)
    "TRACE": ("🔍", "cyan"),
    "DEBUG": ("🔍", "blue"),
    "INFO": ("✅", "green"),
    "WARNING": ("⚠️", "yellow"),
    "ERROR": ("💥", "red"),
    "CRITICAL": ("🧨", "red"),
}


def c(
    text: str,
    color: Optional[str] = None,
    attrs: Optional[List[str]] = None,
    *,
    enable: bool = True,
) -> str:
    """Colorize text when enabled."""
    if not enable or not color:
        return text
    return _colored(text, color=color, attrs=attrs or [])


def _stderr_is_tty() -> bool:
    try:
        return bool(sys.stderr.isatty())
    except (AttributeError, ValueError):
        return False


def _stderr_takes_emoji() -> bool:
    enc = getattr(sys.stderr, "encoding", None) or "utf-8"
    try:
        "✅".encode(enc)
    except (LookupError, UnicodeEncodeError):
        return False
    return True


def _clip(v: Any, limit: int = 240) -> str:
    s = str(v).replace("\r", "\\r").replace("\n", "\\n")
    return s if len(s) <= limit else s[: limit - 1] + "…"


def _split_ctx(record: logging.LogRecord) -> Tuple[Optional[str], Dict[str, Any]]:
    """Pull the volume tag out of a record's context, return (pv, rest)."""
    ctx = dict(getattr(record, "ctx", None) or {})
    pv = ctx.pop(VOLUME_KEY, None)
    return (str(pv) if pv else None), ctx


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Carries a persistent context dict; ``extra={"ctx": {...}}`` at the call
    site is merged on top for that one record.
    """

    def __init__(self, logger: logging.Logger, ctx: Optional[Mapping[str, Any]] = None):
        super().__init__(logger, extra={"ctx": dict(ctx or {})})

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["ctx"] = {**self.extra["ctx"], **(extra.get("ctx") or {})}
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **ctx: Any) -> "ContextLoggerAdapter":
        return ContextLoggerAdapter(self.logger, {**self.extra["ctx"], **ctx})


@dataclass(frozen=True)
class LogStyle:
    color: bool = True
    show_ms: bool = False
    show_thread: bool = False
    utc: bool = False
    unicode: bool = True


class EmojiFormatter(logging.Formatter):
    def __init__(self, style: LogStyle):
        super().__init__()
        self._style = style

    def _clock(self, created: float) -> str:
        tz = _dt.timezone.utc if self._style.utc else None
        dt = _dt.datetime.fromtimestamp(created, tz=tz)
        return dt.strftime("%H:%M:%S.%f")[:-3] if self._style.show_ms else dt.strftime("%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        emoji, color = _LEVELS.get(record.levelname, ("•", None))
        if not self._style.unicode:
            emoji = "·"
        colorize = self._style.color and _stderr_is_tty()

        level = c(f"{record.levelname:<8}", color, enable=colorize)
        msg = record.getMessage()
        if record.levelno >= logging.WARNING:
            msg = c(msg, color, ["bold"], enable=colorize)

        pv, rest = _split_ctx(record)
        parts = [self._clock(record.created), emoji, level]
        if self._style.show_thread:
            parts.append(f"({record.threadName})")
        if pv:
            parts.append(c(f"[{pv}]", "cyan", enable=colorize))
        parts.append(msg)
        parts.extend(f"{k}={_clip(v)}" for k, v in sorted(rest.items()))
        line = " ".join(parts)

        if record.exc_info:
            tb = "\n".join("  " + ln for ln in self.formatException(record.exc_info).splitlines())
            line += "\n" + c(tb, "red", enable=colorize)
        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        pv, rest = _split_ctx(record)
        obj: Dict[str, Any] = {
            "ts": _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "pid": os.getpid(),
            "thread": record.threadName,
        }
        if pv:
            obj["pv"] = pv
        if rest:
            obj["ctx"] = {str(k): _clip(v) for k, v in rest.items()}
        if record.exc_info:
            obj["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else "Exception"
            obj["traceback"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False, default=str)


_setup_lock = threading.Lock()


class Log:
    @staticmethod
    def _level_from_flags(verbose: int, quiet: int) -> int:
        """-q WARNING, -qq ERROR, -vv DEBUG, -vvv TRACE; quiet wins."""
        if quiet >= 2:
            return logging.ERROR
        if quiet == 1:
            return logging.WARNING
        if verbose >= 3:
            return TRACE
        if verbose >= 2:
            return logging.DEBUG
        return logging.INFO

    @staticmethod
    def bind(logger: logging.Logger, **ctx: Any) -> ContextLoggerAdapter:
        if isinstance(logger, ContextLoggerAdapter):
            return logger.bind(**ctx)
        return ContextLoggerAdapter(logger, ctx)

    @staticmethod
    def banner(logger: logging.Logger, title: str, *, char: str = "─") -> None:
        width = 72
        t = f" {title.strip()} "
        side = char * max(8, (width - len(t)) // 2)
        logger.info((side + t + side)[:width])

    @staticmethod
    def ok(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("✅ %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def warn(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.warning("⚠️  %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def fail(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.error("💥 %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def trace(logger: logging.Logger, msg: str, *args: Any, **ctx: Any) -> None:
        logger.log(TRACE, msg, *args, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def setup(
        verbose: int = 0,
        log_file: Optional[str] = None,
        *,
        quiet: int = 0,
        color: bool = True,
        utc: bool = False,
        logger_name: str = "vcmigrate",
        json_logs: bool = False,
    ) -> logging.Logger:
        """
        Configure and return the project logger. Calling it again replaces
        the handlers, so tests and re-entrant CLIs do not double-log.

        A log file is always uncolored and records DEBUG and up, even when
        the console is quieter.
        """
        with _setup_lock:
            logger = logging.getLogger(logger_name)
            logger.propagate = False
            level = Log._level_from_flags(verbose, quiet)

            for h in list(logger.handlers):
                logger.removeHandler(h)
                h.close()

            console = logging.StreamHandler(stream=sys.stderr)
            console.setLevel(level)
            console.setFormatter(
                JsonFormatter()
                if json_logs
                else EmojiFormatter(
                    LogStyle(
                        color=bool(color),
                        show_ms=verbose >= 3,
                        show_thread=verbose >= 2,
                        utc=bool(utc),
                        unicode=_stderr_takes_emoji(),
                    )
                )
            )
            logger.addHandler(console)

            if log_file:
                fp = Path(log_file).expanduser().resolve()
                fp.parent.mkdir(parents=True, exist_ok=True)
                fh = logging.FileHandler(fp, encoding="utf-8")
                fh.setLevel(min(level, logging.DEBUG))
                fh.setFormatter(
                    JsonFormatter()
                    if json_logs
                    else EmojiFormatter(LogStyle(color=False, show_ms=True, show_thread=True, utc=bool(utc)))
                )
                logger.addHandler(fh)
                level = min(level, logging.DEBUG)

            logger.setLevel(level)
            return logger
