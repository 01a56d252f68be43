# SPDX-License-Identifier: LGPL-3.0-or-later
# vcmigrate/core/exceptions.py
"""
Error hierarchy for vcmigrate.

Every error the tool raises on purpose derives from ``VcMigrateError``. The
message is what lands in a volume record's ``message`` and on the terminal,
so it is kept to one line; ``code`` is the process exit status when the
error reaches ``main()``; ``context`` holds identifiers (pv, vm, fcd) and is
redacted on the way out because endpoint credentials travel alongside them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

_REDACTED = "<redacted>"

# Substrings that mark a context or config key as secret.
_SECRET_KEY_PARTS = ("pass", "secret", "token", "auth", "cookie", "session", "credential")


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except (TypeError, ValueError):
        return default


def _clamp_exit_code(code: int) -> int:
    return 1 if code < 0 else min(code, 255)


def _one_line(s: str, limit: int = 600) -> str:
    s = " ".join((s or "").split())
    return s if len(s) <= limit else s[: limit - 3] + "..."


def _is_secret_key(k: str) -> bool:
    k = (k or "").lower()
    return any(p in k for p in _SECRET_KEY_PARTS)


def _redact(ctx: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {k: (_REDACTED if _is_secret_key(str(k)) else v) for k, v in (ctx or {}).items()}


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    items = sorted(ctx.items(), key=lambda kv: str(kv[0]))
    return ", ".join(f"{k}={_REDACTED}" if _is_secret_key(str(k)) else f"{k}={v!r}" for k, v in items)


@dataclass(eq=False)
class VcMigrateError(Exception):
    """
    Base error. The message comes first so call sites read
    ``raise DetachError(f"detach of {fcd} failed", cause=e)``.
    """
    msg: str = "error"
    code: int = 1
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code))
        self.msg = _one_line(self.msg) or type(self).__name__
        super().__init__(self.msg)
        self.args = (self.msg,)
        if self.cause is not None and self.__cause__ is None:
            self.__cause__ = self.cause

    def with_context(self, **ctx: Any) -> "VcMigrateError":
        self.context = {**(self.context or {}), **ctx}
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        out = self.msg
        if include_context and self.context:
            out += f" [{_one_line(_format_context_compact(self.context))}]"
        if include_cause and self.cause is not None:
            out += f" (cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})"
        return out

    def __str__(self) -> str:
        return self.msg

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.msg,
            "context": _redact(self.context),
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


class Fatal(VcMigrateError):
    """Bad configuration or unusable local state; main() exits with ``code``."""


@dataclass(eq=False)
class VMwareError(VcMigrateError):
    """A vCenter call (inventory, VSLM, CNS, relocation) failed."""
    code: int = 50


@dataclass(eq=False)
class KubernetesError(VcMigrateError):
    """Cluster API operation failed."""
    code: int = 60


# ---------------------------------------------------------------------------
# Snapshot / restore
# ---------------------------------------------------------------------------

class TypeResolutionError(KubernetesError):
    """No resolver could determine apiVersion/kind for an object."""


class DecodeError(KubernetesError):
    """A backup manifest could not be decoded back into an object."""


class ConflictError(KubernetesError):
    """Optimistic-concurrency conflict while writing an object."""


# ---------------------------------------------------------------------------
# vSphere disk objects / carrier VMs / CNS
# ---------------------------------------------------------------------------

class NotFoundError(VcMigrateError):
    """Lookup of a disk object, managed volume or cluster object found nothing."""


class InvalidPathFormat(VMwareError):
    pass


class AttachError(VMwareError):
    pass


class DetachError(VMwareError):
    pass


class DeleteError(VMwareError):
    pass


class CreateError(VMwareError):
    pass


class RelocateError(VMwareError):
    pass


class TaskStatusUnavailable(VMwareError):
    pass


class NoFreeUnits(VMwareError):
    pass


class NoController(VMwareError):
    pass


class CreateFailed(VMwareError):
    """CNS volume registration task reported a fault."""


class UnexpectedResultType(VMwareError):
    """A task result did not have the expected shape."""


class SafetyGateError(VMwareError):
    """
    A disk is still attached where it must not be.

    Never retried; callers must stop the operation that raised it.
    """


# ---------------------------------------------------------------------------
# Waiting / retrying
# ---------------------------------------------------------------------------

class WaitTimeout(VcMigrateError):
    pass


class Cancelled(VcMigrateError):
    pass


class PollErrorLimit(VcMigrateError):
    """A poll query failed too many times in a row."""


@dataclass(eq=False)
class RetryExhausted(VcMigrateError):
    attempts: int = 0


@dataclass(eq=False)
class AggregateError(VcMigrateError):
    """Several independent operations failed; all of them are kept."""
    errors: List[BaseException] = field(default_factory=list)

    @classmethod
    def from_errors(cls, what: str, errors: List[BaseException], **context: Any) -> "AggregateError":
        details = "; ".join(_one_line(str(e), limit=200) for e in errors)
        return cls(
            msg=f"{what} completed with {len(errors)} errors: {details}",
            errors=list(errors),
            context=context or None,
        )


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    Render an error for the terminal. ``-v`` adds context and, for an
    AggregateError, one indented line per collected error; ``-vv`` adds
    the cause.
    """
    if not isinstance(e, VcMigrateError):
        text = _one_line(str(e)) or type(e).__name__
        return f"{type(e).__name__}: {text}" if verbose >= 2 else text

    out = e.user_message(include_context=verbose >= 1, include_cause=verbose >= 2)
    if verbose >= 1 and isinstance(e, AggregateError):
        for sub in e.errors:
            out += "\n  - " + format_exception_for_cli(sub, verbose=verbose - 1)
    return out
