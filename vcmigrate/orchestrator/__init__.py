# SPDX-License-Identifier: LGPL-3.0-or-later
# vcmigrate/orchestrator/__init__.py
from .state_store import StateStore
from .volume_migration import MigrationRunner, VolumeMigrator

__all__ = ["MigrationRunner", "StateStore", "VolumeMigrator"]
