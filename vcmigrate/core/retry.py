# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Retry utilities with exponential backoff.
"""

from __future__ import annotations

import logging
import random
from typing import Callable, Optional, Tuple, Type, TypeVar, Union

from .exceptions import Cancelled, RetryExhausted
from .polling import CancelToken

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    *,
    base_backoff_s: float,
    factor: float,
    max_backoff_s: float,
    jitter_ratio: float,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """
    Delay before retry number ``attempt`` (1-based).

    base * factor**(attempt-1), capped at max_backoff_s, then scaled by a
    random factor in [1 - jitter_ratio, 1 + jitter_ratio].
    """
    delay = min(base_backoff_s * (factor ** (attempt - 1)), max_backoff_s)
    if jitter_ratio > 0:
        delay *= rng(1.0 - jitter_ratio, 1.0 + jitter_ratio)
    return max(0.0, delay)


def retry_operation(
    operation: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_backoff_s: float = 1.0,
    factor: float = 2.0,
    max_backoff_s: float = 10.0,
    jitter_ratio: float = 0.1,
    exceptions: Union[Type[Exception], Tuple[Type[Exception], ...]] = Exception,
    cancel: Optional[CancelToken] = None,
    operation_name: str = "operation",
    logger: Optional[logging.Logger] = None,
    log_level: int = logging.WARNING,
) -> T:
    """
    Retry an operation with exponential backoff.

    Args:
        operation: Callable that returns T
        max_attempts: Maximum number of attempts (default: 3)
        base_backoff_s: First delay in seconds (default: 1.0)
        factor: Multiplier applied per attempt (default: 2.0)
        max_backoff_s: Cap for a single delay (default: 10.0)
        jitter_ratio: Relative jitter applied to each delay (default: 0.1)
        exceptions: Exception type(s) to catch and retry (default: Exception)
        cancel: Token that aborts the backoff sleep with Cancelled
        operation_name: Name for logging and the final error
        logger: Logger to use for retry messages

    Raises:
        RetryExhausted: after the last attempt failed; the last error is its cause.

    Example:
        retry_operation(lambda: restorer.upsert(manifest), operation_name="restore Deployment/web")
    """
    token = cancel or CancelToken()
    attempts = max(1, int(max_attempts))
    last_exception: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        token.raise_if_cancelled()
        try:
            return operation()
        except Cancelled:
            raise
        except exceptions as e:
            last_exception = e
            if attempt >= attempts:
                break

            sleep_time = backoff_delay(
                attempt,
                base_backoff_s=base_backoff_s,
                factor=factor,
                max_backoff_s=max_backoff_s,
                jitter_ratio=jitter_ratio,
            )
            if logger:
                logger.log(
                    log_level,
                    "%s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                    operation_name,
                    attempt,
                    attempts,
                    e,
                    sleep_time,
                )
            if token.wait(sleep_time):
                token.raise_if_cancelled()

    if logger:
        logger.error("%s failed after %d attempts: %s", operation_name, attempts, last_exception)
    raise RetryExhausted(
        msg=f"{operation_name} failed after {attempts} attempts: {last_exception}",
        cause=last_exception,
        attempts=attempts,
    )

