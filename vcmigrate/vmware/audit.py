# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/vmware/audit.py
from __future__ import annotations

import datetime as _dt
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Deque, Generator, List, Optional

from ..core.logger import TRACE


@dataclass(frozen=True)
class CallAuditEntry:
    timestamp: str
    method: str
    duration_s: float
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CallAuditLog:
    """Bounded record of vSphere calls, kept for diagnostics only."""

    def __init__(self, logger: logging.Logger, *, endpoint: str = "", max_entries: int = 500) -> None:
        self.logger = logger
        self.endpoint = endpoint
        self._entries: Deque[CallAuditEntry] = deque(maxlen=max(1, int(max_entries)))
        self._lock = threading.Lock()

    @contextmanager
    def call(self, method: str) -> Generator[None, None, None]:
        ts = _dt.datetime.now(tz=_dt.timezone.utc).isoformat(timespec="milliseconds")
        t0 = time.monotonic()
        error: Optional[str] = None
        try:
            yield
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            raise
        finally:
            entry = CallAuditEntry(ts, method, round(time.monotonic() - t0, 4), error)
            with self._lock:
                self._entries.append(entry)
            self.logger.log(
                TRACE,
                "vSphere call %s on %s took %.3fs%s",
                method,
                self.endpoint or "?",
                entry.duration_s,
                f" ({error})" if error else "",
            )

    def entries(self) -> List[CallAuditEntry]:
        with self._lock:
            return list(self._entries)

    def failures(self) -> List[CallAuditEntry]:
        return [e for e in self.entries() if not e.ok]
