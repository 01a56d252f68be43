# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/models/migration.py
"""
Persisted migration records.

These are the only objects that must survive a process restart. They are
serialized with camelCase keys so the JSON matches the status block of the
umbrella migration object.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class VolumeStatus(str, Enum):
    PENDING = "Pending"
    QUIESCED = "Quiesced"
    RELOCATING = "Relocating"
    RELOCATED = "Relocated"
    REGISTERED = "Registered"
    COMPLETE = "Complete"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (VolumeStatus.COMPLETE, VolumeStatus.FAILED)


def _opt_str(v: Any) -> Optional[str]:
    return None if v in (None, "") else str(v)


@dataclass
class ScaledResource:
    kind: str
    name: str
    namespace: str
    original_replicas: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "namespace": self.namespace,
            "originalReplicas": self.original_replicas,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ScaledResource":
        return ScaledResource(
            kind=str(d.get("kind", "")),
            name=str(d.get("name", "")),
            namespace=str(d.get("namespace", "")),
            original_replicas=int(d.get("originalReplicas", 0)),
        )


@dataclass
class PersistentVolumeMigrationState:
    pv_name: str
    pvc_name: str = ""
    pvc_namespace: str = ""
    source_volume_handle: str = ""
    target_volume_handle: str = ""
    target_volume_id: str = ""
    carrier_vm_name: str = ""
    original_reclaim_policy: str = ""
    status: VolumeStatus = VolumeStatus.PENDING
    message: str = ""
    # Append-only once populated; rollback depends on it.
    scaled_down_resources: List[ScaledResource] = field(default_factory=list)

    def fail(self, message: str) -> None:
        self.status = VolumeStatus.FAILED
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pvName": self.pv_name,
            "pvcName": self.pvc_name,
            "pvcNamespace": self.pvc_namespace,
            "sourceVolumeHandle": self.source_volume_handle,
            "targetVolumeHandle": self.target_volume_handle,
            "targetVolumeID": self.target_volume_id,
            "carrierVMName": self.carrier_vm_name,
            "originalReclaimPolicy": self.original_reclaim_policy,
            "status": self.status.value,
            "message": self.message,
            "scaledDownResources": [r.to_dict() for r in self.scaled_down_resources],
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "PersistentVolumeMigrationState":
        return PersistentVolumeMigrationState(
            pv_name=str(d.get("pvName", "")),
            pvc_name=str(d.get("pvcName", "")),
            pvc_namespace=str(d.get("pvcNamespace", "")),
            source_volume_handle=str(d.get("sourceVolumeHandle", "")),
            target_volume_handle=str(d.get("targetVolumeHandle", "")),
            target_volume_id=str(d.get("targetVolumeID", "")),
            carrier_vm_name=str(d.get("carrierVMName", "")),
            original_reclaim_policy=str(d.get("originalReclaimPolicy", "")),
            status=VolumeStatus(d.get("status") or VolumeStatus.PENDING.value),
            message=str(d.get("message", "")),
            scaled_down_resources=[ScaledResource.from_dict(x) for x in d.get("scaledDownResources") or []],
        )


@dataclass
class BackupManifest:
    """Snapshot of one cluster object; replaced wholesale, never edited."""

    resource_type: str
    name: str
    namespace: str
    backup_data: str
    backup_time: str

    @property
    def key(self) -> tuple:
        return (self.resource_type, self.name, self.namespace)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resourceType": self.resource_type,
            "name": self.name,
            "namespace": self.namespace,
            "backupData": self.backup_data,
            "backupTime": self.backup_time,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "BackupManifest":
        return BackupManifest(
            resource_type=str(d.get("resourceType", "")),
            name=str(d.get("name", "")),
            namespace=str(d.get("namespace", "")),
            backup_data=str(d.get("backupData", "")),
            backup_time=str(d.get("backupTime", "")),
        )


@dataclass
class CSIVolumeMigrationStatus:
    volumes: List[PersistentVolumeMigrationState] = field(default_factory=list)
    total_volumes: int = 0
    migrated_volumes: int = 0
    failed_volumes: int = 0
    message: Optional[str] = None

    def recompute(self) -> None:
        """Derive the counters from ``volumes``; they are never incremented."""
        self.total_volumes = len(self.volumes)
        self.migrated_volumes = sum(1 for v in self.volumes if v.status == VolumeStatus.COMPLETE)
        self.failed_volumes = sum(1 for v in self.volumes if v.status == VolumeStatus.FAILED)

    def get(self, pv_name: str) -> Optional[PersistentVolumeMigrationState]:
        for v in self.volumes:
            if v.pv_name == pv_name:
                return v
        return None

    def to_dict(self) -> Dict[str, Any]:
        self.recompute()
        return {
            "totalVolumes": self.total_volumes,
            "migratedVolumes": self.migrated_volumes,
            "failedVolumes": self.failed_volumes,
            "message": self.message,
            "volumes": [v.to_dict() for v in self.volumes],
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "CSIVolumeMigrationStatus":
        st = CSIVolumeMigrationStatus(
            volumes=[PersistentVolumeMigrationState.from_dict(x) for x in d.get("volumes") or []],
            message=_opt_str(d.get("message")),
        )
        st.recompute()
        return st
