# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/vmware/backing.py
"""
Disk backings that can refer to a first-class disk.

A VM disk may be an FCD under any of several backing representations;
attachment checks must look at all of them.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional, Tuple

from pyVmomi import vim


class BackingKind(str, Enum):
    FLAT_V2 = "flatVer2"
    SPARSE_V2 = "sparseVer2"
    SE_SPARSE = "seSparse"
    RDM_V1 = "rawDiskMappingVer1"


_BACKING_TYPES: Tuple[Tuple[BackingKind, type], ...] = (
    (BackingKind.FLAT_V2, vim.vm.device.VirtualDisk.FlatVer2BackingInfo),
    (BackingKind.SPARSE_V2, vim.vm.device.VirtualDisk.SparseVer2BackingInfo),
    (BackingKind.SE_SPARSE, vim.vm.device.VirtualDisk.SeSparseBackingInfo),
    (BackingKind.RDM_V1, vim.vm.device.VirtualDisk.RawDiskMappingVer1BackingInfo),
)


@dataclass(frozen=True)
class DiskBacking:
    kind: BackingKind
    object_id: str
    file_name: str = ""
    controller_key: Optional[int] = None
    unit_number: Optional[int] = None

    def backing_object_id(self) -> str:
        return self.object_id


def classify_backing(backing: Any) -> Optional[BackingKind]:
    for kind, cls in _BACKING_TYPES:
        if isinstance(backing, cls):
            return kind
    return None


def vm_devices(vm: Any) -> list:
    config = getattr(vm, "config", None)
    hardware = getattr(config, "hardware", None) if config is not None else None
    if hardware is None:
        raise AttributeError(f"VM {getattr(vm, 'name', '?')} has no hardware configuration")
    return list(getattr(hardware, "device", None) or [])


def disk_backings(vm: Any) -> Iterator[DiskBacking]:
    """Every virtual disk of ``vm`` whose backing is one of the known kinds."""
    for dev in vm_devices(vm):
        if not isinstance(dev, vim.vm.device.VirtualDisk):
            continue
        kind = classify_backing(dev.backing)
        if kind is None:
            continue
        yield DiskBacking(
            kind=kind,
            object_id=str(getattr(dev.backing, "backingObjectId", "") or ""),
            file_name=str(getattr(dev.backing, "fileName", "") or ""),
            controller_key=getattr(dev, "controllerKey", None),
            unit_number=getattr(dev, "unitNumber", None),
        )
