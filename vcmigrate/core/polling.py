# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/core/polling.py
"""
Cancellation and polling primitives.

Every timed wait in vcmigrate (task waits, detach waits, pod termination
waits, retry backoff) goes through :class:`CancelToken` so that a single
``cancel()`` makes all of them return promptly with :class:`Cancelled`.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .exceptions import Cancelled, PollErrorLimit, WaitTimeout


class CancelToken:
    """Thread-safe cancellation signal shared by a whole migration pass."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if cancelled meanwhile."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(f"operation cancelled: {self.reason or 'cancelled'}")


def poll_until(
    query: Callable[[], bool],
    *,
    interval_s: float,
    timeout_s: Optional[float] = None,
    cancel: Optional[CancelToken] = None,
    max_consecutive_errors: int = 1,
    description: str = "condition",
    logger: Optional[logging.Logger] = None,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """
    Call ``query()`` until it returns truthy.

    - ``timeout_s`` elapsing raises WaitTimeout.
    - cancellation raises Cancelled (checked before every query and during sleeps).
    - an exception from ``query()`` counts as an error; ``max_consecutive_errors``
      errors in a row raise PollErrorLimit with the last one as cause. With the
      default of 1 the first error aborts. A successful query resets the count.
    """
    token = cancel or CancelToken()
    deadline = (clock() + float(timeout_s)) if timeout_s is not None else None
    limit = max(1, int(max_consecutive_errors))
    errors = 0

    while True:
        token.raise_if_cancelled()
        try:
            done = query()
        except (Cancelled, WaitTimeout):
            raise
        except Exception as e:
            errors += 1
            if errors >= limit:
                raise PollErrorLimit(
                    f"{description}: query failed {errors} consecutive time(s): {e}",
                    cause=e,
                ) from e
            if logger:
                logger.debug("%s: query failed (%d/%d), retrying: %s", description, errors, limit, e)
            done = False
        else:
            errors = 0

        if done:
            return

        sleep_s = float(interval_s)
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                raise WaitTimeout(f"timeout after {timeout_s}s waiting for {description}")
            sleep_s = min(sleep_s, remaining)

        if token.wait(sleep_s):
            token.raise_if_cancelled()
