# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/k8s/volumes.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..core.exceptions import KubernetesError, NotFoundError

VSPHERE_CSI_DRIVER = "csi.vsphere.vmware.com"


@dataclass(frozen=True)
class CSIVolume:
    name: str
    volume_handle: str
    capacity: str = ""
    storage_class: str = ""
    reclaim_policy: str = ""
    claim_name: str = ""
    claim_namespace: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)


def _api_error(what: str, e: ApiException) -> Exception:
    if e.status == 404:
        return NotFoundError(f"{what}: not found", cause=e)
    return KubernetesError(f"{what}: {e.status} {e.reason}", cause=e)


class PersistentVolumeManager:
    def __init__(
        self,
        logger: logging.Logger,
        api_client: Optional[client.ApiClient] = None,
        *,
        core: Optional[client.CoreV1Api] = None,
        driver: str = VSPHERE_CSI_DRIVER,
    ) -> None:
        self.logger = logger
        self.core = core or client.CoreV1Api(api_client)
        self.driver = driver

    def list_vsphere_csi_volumes(self) -> List[CSIVolume]:
        """PVs served by the vSphere CSI driver, minus any that are being deleted."""
        try:
            pvs = self.core.list_persistent_volume().items or []
        except ApiException as e:
            raise _api_error("failed to list PersistentVolumes", e) from e

        out: List[CSIVolume] = []
        for pv in pvs:
            csi = pv.spec.csi if pv.spec else None
            if csi is None or csi.driver != self.driver:
                continue
            if pv.metadata.deletion_timestamp is not None:
                continue
            claim = pv.spec.claim_ref
            out.append(
                CSIVolume(
                    name=pv.metadata.name,
                    volume_handle=csi.volume_handle or "",
                    capacity=str((pv.spec.capacity or {}).get("storage", "")),
                    storage_class=pv.spec.storage_class_name or "",
                    reclaim_policy=pv.spec.persistent_volume_reclaim_policy or "",
                    claim_name=(claim.name or "") if claim else "",
                    claim_namespace=(claim.namespace or "") if claim else "",
                    attributes=dict(csi.volume_attributes or {}),
                )
            )
        self.logger.info("Found %d vSphere CSI PersistentVolume(s)", len(out))
        return out

    def get(self, pv_name: str) -> Any:
        try:
            return self.core.read_persistent_volume(pv_name)
        except ApiException as e:
            raise _api_error(f"failed to get PV {pv_name}", e) from e

    def set_volume_handle(self, pv_name: str, volume_handle: str) -> None:
        pv = self.get(pv_name)
        if pv.spec is None or pv.spec.csi is None:
            raise KubernetesError(f"PV {pv_name} is not a CSI volume")
        old = pv.spec.csi.volume_handle
        pv.spec.csi.volume_handle = volume_handle
        try:
            self.core.replace_persistent_volume(pv_name, pv)
        except ApiException as e:
            raise _api_error(f"failed to update PV {pv_name}", e) from e
        self.logger.info("Updated PV %s volumeHandle: %s -> %s", pv_name, old, volume_handle)

    def set_reclaim_policy(self, pv_name: str, policy: str) -> str:
        """Set ``persistentVolumeReclaimPolicy``; returns the previous value."""
        pv = self.get(pv_name)
        previous = (pv.spec.persistent_volume_reclaim_policy if pv.spec else None) or ""
        if previous == policy:
            self.logger.debug("PV %s already has reclaim policy %s", pv_name, policy)
            return previous
        body = {"spec": {"persistentVolumeReclaimPolicy": policy}}
        try:
            self.core.patch_persistent_volume(pv_name, body)
        except ApiException as e:
            raise _api_error(f"failed to set reclaim policy of PV {pv_name}", e) from e
        self.logger.info("PV %s reclaim policy: %s -> %s", pv_name, previous or "<unset>", policy)
        return previous

    def find_pods_using_claim(self, namespace: str, claim_name: str) -> List[Any]:
        try:
            pods = self.core.list_namespaced_pod(namespace).items or []
        except ApiException as e:
            raise _api_error(f"failed to list pods in namespace {namespace}", e) from e
        using = []
        for pod in pods:
            for vol in (pod.spec.volumes if pod.spec else None) or []:
                pvc = vol.persistent_volume_claim
                if pvc is not None and pvc.claim_name == claim_name:
                    using.append(pod)
                    break
        self.logger.debug("Found %d pod(s) using PVC %s/%s", len(using), namespace, claim_name)
        return using
