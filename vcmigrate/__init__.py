# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/__init__.py
"""
vcmigrate - cross-vCenter migration of vSphere CSI persistent volumes

Moves the first-class disks behind a cluster's PersistentVolumes from one
vCenter to another by relocating a carrier VM, re-registers them with CNS
at the destination and repoints the PVs.

Usage as a library:

    from vcmigrate import MigrationRunner, MigrationSettings, StateStore

    settings = MigrationSettings.from_dict(yaml.safe_load(open("migration.yaml")))
    ...
"""

__version__ = "0.1.0"

from .config import MigrationSettings
from .core.exceptions import Fatal, VcMigrateError
from .orchestrator import MigrationRunner, StateStore, VolumeMigrator

__all__ = [
    "__version__",
    "Fatal",
    "MigrationRunner",
    "MigrationSettings",
    "StateStore",
    "VcMigrateError",
    "VolumeMigrator",
]
