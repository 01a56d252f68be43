# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/models/inventory.py
"""Transient read-only projections; rebuilt on every query, never persisted."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class DiskObjectInfo:
    id: str
    name: str
    backing_path: str
    datastore: Any
    capacity_mb: int = 0


@dataclass(frozen=True)
class ManagedVolumeInfo:
    id: str
    name: str
    volume_type: str = ""
    datastore_url: str = ""
    backing_path: str = ""
    capacity_mb: int = 0
    health: str = ""


@dataclass(frozen=True)
class WorkloadRef:
    """A workload that mounts a claim and currently runs replicas."""

    kind: str
    name: str
    namespace: str
    replicas: int
    obj: Optional[Any] = None
