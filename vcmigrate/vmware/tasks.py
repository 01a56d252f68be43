# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/vmware/tasks.py
from __future__ import annotations

import logging
from typing import Any, Optional

from pyVmomi import vim

from ..core.exceptions import PollErrorLimit, VMwareError
from ..core.polling import CancelToken, poll_until


def task_fault_message(task: Any) -> str:
    err = getattr(getattr(task, "info", None), "error", None)
    if err is None:
        return "unknown error"
    return str(getattr(err, "localizedMessage", None) or getattr(err, "msg", None) or err)


def wait_for_task(
    task: Any,
    *,
    description: str = "task",
    cancel: Optional[CancelToken] = None,
    interval_s: float = 1.0,
    timeout_s: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
) -> Any:
    """
    Block until a vSphere task finishes; returns ``task.info.result``.

    A task in the error state raises VMwareError carrying the fault's
    localized message. Status queries are not retried here.
    """
    def _finished() -> bool:
        return task.info.state in (vim.TaskInfo.State.success, vim.TaskInfo.State.error)

    try:
        poll_until(
            _finished,
            interval_s=interval_s,
            timeout_s=timeout_s,
            cancel=cancel,
            description=description,
            logger=logger,
        )
    except PollErrorLimit as e:
        raise VMwareError(f"{description}: cannot read task state: {e.cause}", cause=e.cause) from e

    if task.info.state == vim.TaskInfo.State.error:
        raise VMwareError(f"{description} failed: {task_fault_message(task)}")
    return task.info.result
