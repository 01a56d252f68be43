# SPDX-License-Identifier: LGPL-3.0-or-later
# vcmigrate/models/__init__.py
from .inventory import DiskObjectInfo, ManagedVolumeInfo, WorkloadRef
from .migration import (
    BackupManifest,
    CSIVolumeMigrationStatus,
    PersistentVolumeMigrationState,
    ScaledResource,
    VolumeStatus,
)

__all__ = [
    "BackupManifest",
    "CSIVolumeMigrationStatus",
    "DiskObjectInfo",
    "ManagedVolumeInfo",
    "PersistentVolumeMigrationState",
    "ScaledResource",
    "VolumeStatus",
    "WorkloadRef",
]
