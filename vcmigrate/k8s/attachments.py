# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/k8s/attachments.py
"""
VolumeAttachment objects: the cluster's record of which node a CSI volume
is attached to.

The CSI external-attacher deletes a PV's VolumeAttachment only after the
driver's ControllerUnpublishVolume returned, i.e. after the vSphere-level
detach finished. Waiting for it to disappear is the Kubernetes-side half of
the detach check; the vSphere folder scan is the other half.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..core.exceptions import KubernetesError, WaitTimeout
from ..core.polling import CancelToken, poll_until


class VolumeAttachmentManager:
    def __init__(
        self,
        logger: logging.Logger,
        api_client: Optional[client.ApiClient] = None,
        *,
        storage: Optional[client.StorageV1Api] = None,
        poll_interval_s: float = 3.0,
    ) -> None:
        self.logger = logger
        self.storage = storage or client.StorageV1Api(api_client)
        self.poll_interval_s = poll_interval_s

    def list_all(self) -> List[Any]:
        try:
            return self.storage.list_volume_attachment().items or []
        except ApiException as e:
            raise KubernetesError(f"failed to list VolumeAttachments: {e.status} {e.reason}", cause=e) from e

    def for_pv(self, pv_name: str) -> Optional[Any]:
        """The VolumeAttachment whose source is ``pv_name``, or None."""
        # VolumeAttachments carry no PV label, so list and filter.
        for va in self.list_all():
            source = va.spec.source if va.spec else None
            if source is not None and source.persistent_volume_name == pv_name:
                self.logger.debug(
                    "PV %s has VolumeAttachment %s on node %s (attached=%s)",
                    pv_name,
                    va.metadata.name,
                    va.spec.node_name,
                    getattr(va.status, "attached", None),
                )
                return va
        return None

    def is_attached(self, pv_name: str) -> Tuple[bool, str]:
        """(attached, node) as far as the cluster knows."""
        va = self.for_pv(pv_name)
        if va is None:
            return False, ""
        return True, va.spec.node_name or ""

    def wait_for_detached(self, pv_name: str, timeout_s: float, cancel: Optional[CancelToken] = None) -> None:
        """
        Poll until the PV has no VolumeAttachment.

        List errors are retried until the timeout; the timeout names the node
        still holding the volume, or the last list error.
        """
        self.logger.info("Waiting for VolumeAttachment of PV %s to be deleted", pv_name)
        seen = {"node": "", "error": ""}

        def _gone() -> bool:
            try:
                attached, node = self.is_attached(pv_name)
            except KubernetesError as e:
                seen["error"] = str(e)
                self.logger.debug("Error checking VolumeAttachments, will retry: %s", e)
                return False
            seen["node"], seen["error"] = node, ""
            if attached:
                self.logger.debug("PV %s still attached to node %s", pv_name, node)
            return not attached

        try:
            poll_until(
                _gone,
                interval_s=self.poll_interval_s,
                timeout_s=timeout_s,
                cancel=cancel,
                description=f"VolumeAttachment of PV {pv_name} to be deleted",
                logger=self.logger,
            )
        except WaitTimeout as e:
            why = f"last error: {seen['error']}" if seen["error"] else f"still attached to node {seen['node'] or '?'}"
            raise WaitTimeout(
                f"timeout waiting for VolumeAttachment of PV {pv_name} to be deleted after {timeout_s:g}s ({why})",
                cause=e,
                context={"pv": pv_name, "node": seen["node"]},
            ) from e
        self.logger.info("PV %s has no VolumeAttachment; detach confirmed by the cluster", pv_name)
