# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/vmware/cns.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pyVmomi import vim

from ..core.exceptions import (
    Cancelled,
    CreateFailed,
    DeleteError,
    NotFoundError,
    UnexpectedResultType,
    VMwareError,
)
from ..core.polling import CancelToken
from ..models.inventory import ManagedVolumeInfo
from .client import VSphereClient
from .paths import parse_datastore_path
from .tasks import wait_for_task

CLUSTER_TYPE_KUBERNETES = "KUBERNETES"
CLUSTER_FLAVOR_VANILLA = "VANILLA"
VOLUME_TYPE_BLOCK = "BLOCK"
ENTITY_TYPE_PV = "PERSISTENT_VOLUME"


def _fault_text(fault: Any) -> str:
    return str(
        getattr(fault, "localizedMessage", None)
        or getattr(getattr(fault, "fault", None), "msg", None)
        or getattr(fault, "msg", None)
        or fault
    )


def volume_info(vol: Any) -> ManagedVolumeInfo:
    details = getattr(vol, "backingObjectDetails", None)
    return ManagedVolumeInfo(
        id=str(vol.volumeId.id),
        name=str(getattr(vol, "name", "") or ""),
        volume_type=str(getattr(vol, "volumeType", "") or ""),
        datastore_url=str(getattr(vol, "datastoreUrl", "") or ""),
        backing_path=str(getattr(details, "backingDiskPath", "") or ""),
        capacity_mb=int(getattr(details, "capacityInMb", 0) or 0),
        health=str(getattr(vol, "healthStatus", "") or ""),
    )


class CNSManager:
    """Registers, queries and deletes CNS managed volumes on one vCenter."""

    def __init__(
        self,
        logger: logging.Logger,
        client: VSphereClient,
        datacenter: str,
        *,
        task_poll_interval_s: float = 1.0,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        self.logger = logger
        self.client = client
        self.datacenter = datacenter
        self.task_poll_interval_s = task_poll_interval_s
        self.cancel = cancel or CancelToken()

    def _manager(self) -> Any:
        return self.client.cns_volume_manager()

    def _wait(self, task: Any, description: str) -> Any:
        return wait_for_task(
            task,
            description=description,
            cancel=self.cancel,
            interval_s=self.task_poll_interval_s,
            logger=self.logger,
        )

    def _query(self, query_filter: Any) -> List[Any]:
        try:
            with self.client.audit("CnsQueryVolume"):
                result = self._manager().CnsQueryVolume(filter=query_filter)
        except Exception as e:
            raise VMwareError(f"failed to query CNS volumes: {e}", cause=e) from e
        return list(getattr(result, "volumes", None) or [])

    def query(self, volume_id: str) -> ManagedVolumeInfo:
        self.logger.debug("Querying CNS volume %s", volume_id)
        vols = self._query(vim.cns.QueryFilter(volumeIds=[vim.cns.VolumeId(id=volume_id)]))
        if not vols:
            raise NotFoundError(f"CNS volume {volume_id} not found", context={"volume": volume_id})
        return volume_info(vols[0])

    def list_volumes(self) -> List[ManagedVolumeInfo]:
        vols = [volume_info(v) for v in self._query(vim.cns.QueryFilter())]
        self.logger.debug("Listed %d CNS volume(s)", len(vols))
        return vols

    def query_by_backing_path(self, backing_path: str) -> ManagedVolumeInfo:
        # Linear scan; CNS has no server-side filter on backing path.
        for info in self.list_volumes():
            if info.backing_path == backing_path:
                return info
        raise NotFoundError(f"CNS volume with backing path {backing_path} not found")

    def register(self, backing_path: str, name: str, datastore_url: str, cluster_id: str) -> ManagedVolumeInfo:
        """
        Register an existing disk file as a CNS block volume owned by ``cluster_id``.

        Raises CreateFailed with the vCenter fault text, or UnexpectedResultType
        when the task result is not a batch result with one volume entry.
        """
        self.logger.info("Registering CNS volume %s from %s", name, backing_path)
        ds_name, _ = parse_datastore_path(backing_path)
        datastore = self.client.datastore(self.datacenter, ds_name)

        spec = vim.cns.VolumeCreateSpec(
            name=name,
            volumeType=VOLUME_TYPE_BLOCK,
            datastores=[datastore],
            backingObjectDetails=vim.cns.BlockBackingDetails(backingDiskPath=backing_path),
            metadata=vim.cns.VolumeMetadata(
                containerCluster=vim.cns.ContainerCluster(
                    clusterType=CLUSTER_TYPE_KUBERNETES,
                    clusterId=cluster_id,
                    clusterFlavor=CLUSTER_FLAVOR_VANILLA,
                ),
            ),
        )
        try:
            with self.client.audit("CnsCreateVolume"):
                task = self._manager().CnsCreateVolume(createSpecs=[spec])
            result = self._wait(task, f"register CNS volume {name}")
        except Cancelled:
            raise
        except Exception as e:
            raise CreateFailed(f"CNS volume creation failed: {e}", cause=e) from e

        volume_results = getattr(result, "volumeResults", None)
        if not isinstance(volume_results, (list, tuple)):
            raise UnexpectedResultType(
                f"unexpected result type from CNS create volume: {type(result).__name__}"
            )
        if not volume_results:
            raise UnexpectedResultType("no volume results returned from CNS create volume")

        entry = volume_results[0]
        fault = getattr(entry, "fault", None)
        if fault is not None:
            raise CreateFailed(f"CNS volume creation failed: {_fault_text(fault)}")

        volume_id = getattr(getattr(entry, "volumeId", None), "id", None)
        if not volume_id:
            raise UnexpectedResultType("CNS create volume result carries no volume id")

        info = ManagedVolumeInfo(
            id=str(volume_id),
            name=name,
            volume_type=VOLUME_TYPE_BLOCK,
            datastore_url=datastore_url or "",
            backing_path=backing_path,
        )
        self.logger.info("Registered CNS volume %s (%s)", info.id, info.name)
        return info

    def delete(self, volume_id: str, delete_disk: bool) -> None:
        self.logger.info("Deleting CNS volume %s (delete_disk=%s)", volume_id, delete_disk)
        try:
            with self.client.audit("CnsDeleteVolume"):
                task = self._manager().CnsDeleteVolume(
                    volumeIds=[vim.cns.VolumeId(id=volume_id)], deleteDisk=bool(delete_disk)
                )
            self._wait(task, f"delete CNS volume {volume_id}")
        except Cancelled:
            raise
        except Exception as e:
            raise DeleteError(f"failed to delete CNS volume {volume_id}: {e}", cause=e) from e
        self.logger.info("Deleted CNS volume %s", volume_id)

    def update_metadata(self, volume_id: str, metadata: Dict[str, str]) -> None:
        """Attach entity metadata: each key is an entity name, each value its namespace."""
        entities = [
            vim.cns.KubernetesEntityMetadata(entityName=key, entityType=ENTITY_TYPE_PV, namespace=value)
            for key, value in sorted(metadata.items())
        ]
        spec = vim.cns.VolumeMetadataUpdateSpec(
            volumeId=vim.cns.VolumeId(id=volume_id),
            metadata=vim.cns.VolumeMetadata(entityMetadata=entities),
        )
        try:
            with self.client.audit("CnsUpdateVolumeMetadata"):
                task = self._manager().CnsUpdateVolumeMetadata(updateSpecs=[spec])
            self._wait(task, f"update CNS volume {volume_id} metadata")
        except Cancelled:
            raise
        except Exception as e:
            raise VMwareError(f"failed to update CNS volume {volume_id} metadata: {e}", cause=e) from e
        self.logger.debug("Updated CNS volume %s metadata", volume_id)
