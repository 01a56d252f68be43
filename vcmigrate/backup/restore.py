# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/backup/restore.py
from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional, Sequence

import yaml
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ConflictError as _ApiConflict
from kubernetes.dynamic.exceptions import DynamicApiError
from kubernetes.dynamic.exceptions import NotFoundError as _ApiNotFound

from ..core.exceptions import (
    AggregateError,
    ConflictError,
    DecodeError,
    KubernetesError,
    NotFoundError,
    RetryExhausted,
)
from ..core.polling import CancelToken
from ..core.retry import retry_operation
from ..models.migration import BackupManifest


def decode_manifest(manifest: BackupManifest) -> Dict[str, Any]:
    """Return the object stored in ``manifest``; raises DecodeError."""
    try:
        raw = base64.b64decode(manifest.backup_data.encode("ascii"), validate=True)
        body = yaml.safe_load(raw.decode("utf-8"))
    except (binascii.Error, ValueError, yaml.YAMLError) as e:
        raise DecodeError(
            f"failed to decode backup data for {manifest.resource_type}/{manifest.name}: {e}", cause=e
        ) from e

    if not isinstance(body, dict):
        raise DecodeError(f"backup data for {manifest.resource_type}/{manifest.name} is not a mapping")
    meta = body.get("metadata")
    if not body.get("apiVersion") or not body.get("kind") or not isinstance(meta, dict) or not meta.get("name"):
        raise DecodeError(
            f"backup data for {manifest.resource_type}/{manifest.name} lacks apiVersion, kind or metadata.name"
        )
    return body


class RestoreManager:
    """Replays backup manifests onto the cluster through the dynamic client."""

    def __init__(
        self,
        logger: logging.Logger,
        dynamic_client: DynamicClient,
        *,
        max_attempts: int = 3,
        base_backoff_s: float = 1.0,
        factor: float = 2.0,
        max_backoff_s: float = 10.0,
        jitter_ratio: float = 0.1,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        self.logger = logger
        self.dynamic = dynamic_client
        self.max_attempts = max_attempts
        self.base_backoff_s = base_backoff_s
        self.factor = factor
        self.max_backoff_s = max_backoff_s
        self.jitter_ratio = jitter_ratio
        self.cancel = cancel or CancelToken()

    def upsert(self, manifest: BackupManifest) -> None:
        """
        Create or overwrite the object in ``manifest``.

        Absent objects are created with no resourceVersion. Present objects are
        replaced with the backed-up body carrying the *live* resourceVersion, so
        concurrent edits are overwritten rather than merged.
        """
        body = decode_manifest(manifest)
        meta = body["metadata"]
        name = meta["name"]
        namespace = meta.get("namespace") or None
        what = f"{body['kind']} {namespace or '-'}/{name}"

        self.logger.info("Restoring %s (%s)", what, manifest.resource_type)
        try:
            resource = self.dynamic.resources.get(api_version=body["apiVersion"], kind=body["kind"])
        except Exception as e:
            raise KubernetesError(f"cannot resolve API resource for {what}: {e}", cause=e) from e

        try:
            live = resource.get(name=name, namespace=namespace)
        except _ApiNotFound:
            live = None
        except DynamicApiError as e:
            raise KubernetesError(f"failed to get current {what}: {e}", cause=e) from e

        try:
            if live is None:
                meta.pop("resourceVersion", None)
                self.logger.info("%s does not exist, creating it from backup", what)
                resource.create(body=body, namespace=namespace)
            else:
                meta["resourceVersion"] = live.metadata.resourceVersion
                resource.replace(body=body, namespace=namespace)
        except _ApiConflict as e:
            raise ConflictError(f"conflict writing {what}: {e}", cause=e) from e
        except _ApiNotFound as e:
            raise NotFoundError(f"{what} disappeared while restoring: {e}", cause=e) from e
        except DynamicApiError as e:
            raise KubernetesError(f"failed to write {what}: {e}", cause=e) from e

        self.logger.info("Restored %s", what)

    def upsert_with_retry(self, manifest: BackupManifest) -> None:
        retry_operation(
            lambda: self.upsert(manifest),
            max_attempts=self.max_attempts,
            base_backoff_s=self.base_backoff_s,
            factor=self.factor,
            max_backoff_s=self.max_backoff_s,
            jitter_ratio=self.jitter_ratio,
            cancel=self.cancel,
            operation_name=f"restore {manifest.resource_type}/{manifest.name}",
            logger=self.logger,
        )

    def restore_all(self, manifests: Sequence[BackupManifest]) -> None:
        """
        Restore every manifest, last captured first.

        Individual failures are collected; one AggregateError is raised at the end.
        """
        self.logger.info("Restoring %d backup(s)", len(manifests))
        errors: List[BaseException] = []
        for manifest in reversed(list(manifests)):
            try:
                self.upsert_with_retry(manifest)
            except RetryExhausted as e:
                self.logger.error("Failed to restore %s/%s: %s", manifest.resource_type, manifest.name, e)
                errors.append(e)

        if errors:
            raise AggregateError.from_errors("restore", errors)
        self.logger.info("Completed restoring all backups")
