# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/orchestrator/state_store.py
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Tuple

from ..core.exceptions import Fatal
from ..core.logger import Log
from ..models.migration import BackupManifest, CSIVolumeMigrationStatus

STATE_VERSION = 1


def _atomic_write_text(path: Path, content: str, suffix: str = ".tmp.vcmigrate") -> None:
    """
    Atomic write:
      - write temp file in the same directory
      - flush + fsync temp
      - os.replace to target
      - fsync directory (best-effort)

    Unlike a report, a half-written state file is worse than none, so any
    failure before the rename propagates and the old file stays intact.
    """
    tmp = Path(str(path) + suffix)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(tmp, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp), str(path))
    except BaseException:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise

    try:
        dir_fd = os.open(str(path.parent), os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except OSError:
        pass


class StateStore:
    """
    JSON file holding the migration status and the backup manifests.

    Saved after every state transition so a restarted run resumes from the
    last completed step.
    """

    def __init__(self, logger: logging.Logger, path: str) -> None:
        self.logger = logger
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Tuple[CSIVolumeMigrationStatus, List[BackupManifest]]:
        if not self.exists():
            self.logger.debug("No state file at %s; starting fresh", self.path)
            return CSIVolumeMigrationStatus(), []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise Fatal(f"Cannot read state file {self.path}: {e}", code=2, cause=e) from e
        if not isinstance(data, dict):
            raise Fatal(f"State file {self.path} is not a JSON object", code=2)

        status = CSIVolumeMigrationStatus.from_dict(data.get("status") or {})
        backups = [BackupManifest.from_dict(x) for x in data.get("backups") or []]
        self.logger.debug(
            "Loaded state from %s: %d volume(s), %d backup(s)", self.path, len(status.volumes), len(backups)
        )
        return status, backups

    def save(self, status: CSIVolumeMigrationStatus, backups: List[BackupManifest]) -> None:
        doc = {
            "version": STATE_VERSION,
            "status": status.to_dict(),
            "backups": [b.to_dict() for b in backups],
        }
        _atomic_write_text(self.path, json.dumps(doc, indent=2, sort_keys=True) + "\n")
        Log.trace(self.logger, "Saved state to %s", self.path)
