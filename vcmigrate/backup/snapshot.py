# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/backup/snapshot.py
from __future__ import annotations

import base64
import copy
import datetime as _dt
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml
from kubernetes.client import ApiClient

from ..core.exceptions import KubernetesError
from ..models.migration import BackupManifest
from .resolvers import DEFAULT_RESOLVERS, Resolver, resolve_type


def _now_ts() -> str:
    return _dt.datetime.now(tz=_dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class BackupManager:
    """
    Captures cluster objects as self-describing manifests.

    The manifest body is the full object (apiVersion + kind + metadata + spec)
    rendered as YAML and base64 encoded, so restoring needs no type hints.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        resolvers: Sequence[Resolver] = DEFAULT_RESOLVERS,
        api_client: Optional[ApiClient] = None,
    ) -> None:
        self.logger = logger
        self.resolvers = tuple(resolvers)
        self._api_client = api_client

    def _to_plain(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, Mapping):
            return copy.deepcopy(dict(obj))
        if self._api_client is None:
            self._api_client = ApiClient()
        plain = self._api_client.sanitize_for_serialization(obj)
        if not isinstance(plain, dict):
            raise KubernetesError(f"cannot serialize {type(obj).__name__} to a mapping")
        return plain

    def snapshot(self, obj: Any, resource_type: str) -> BackupManifest:
        api_version, kind = resolve_type(obj, resource_type, self.resolvers)

        body = self._to_plain(obj)
        body["apiVersion"] = api_version
        body["kind"] = kind

        meta = body.get("metadata") or {}
        name = str(meta.get("name") or "")
        namespace = str(meta.get("namespace") or "")
        if not name:
            raise KubernetesError(f"refusing to snapshot {kind} without metadata.name")

        text = yaml.safe_dump(body, default_flow_style=False, sort_keys=False)
        manifest = BackupManifest(
            resource_type=resource_type,
            name=name,
            namespace=namespace,
            backup_data=base64.b64encode(text.encode("utf-8")).decode("ascii"),
            backup_time=_now_ts(),
        )
        self.logger.info(
            "Backed up %s %s/%s (apiVersion=%s kind=%s)",
            resource_type,
            namespace or "-",
            name,
            api_version,
            kind,
        )
        return manifest

    @staticmethod
    def add_backup(manifests: List[BackupManifest], manifest: BackupManifest) -> None:
        """Insert ``manifest``; an existing entry with the same key is replaced in place."""
        for i, existing in enumerate(manifests):
            if existing.key == manifest.key:
                manifests[i] = manifest
                return
        manifests.append(manifest)

    @staticmethod
    def get_backup(
        manifests: Sequence[BackupManifest], resource_type: str, name: str, namespace: str
    ) -> Optional[BackupManifest]:
        for m in manifests:
            if m.key == (resource_type, name, namespace):
                return m
        return None
