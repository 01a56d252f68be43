# SPDX-License-Identifier: LGPL-3.0-or-later
# vcmigrate/backup/__init__.py
from .restore import RestoreManager, decode_manifest
from .snapshot import BackupManager

__all__ = ["BackupManager", "RestoreManager", "decode_manifest"]
