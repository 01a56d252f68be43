# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/backup/resolvers.py
"""
Type-identity resolution for snapshots.

A resolver takes ``(obj, resource_type)`` and returns ``(apiVersion, kind)``
or None. :func:`resolve_type` walks an ordered list of them and raises
TypeResolutionError when none answers.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

from kubernetes import client

from ..core.exceptions import TypeResolutionError

TypeIdentity = Tuple[str, str]
Resolver = Callable[[Any, str], Optional[TypeIdentity]]

# Generated models do not carry apiVersion/kind once read back from a typed
# list call, so map the classes we snapshot to their identities.
REGISTERED_TYPES: Mapping[type, TypeIdentity] = MappingProxyType(
    {
        client.V1Deployment: ("apps/v1", "Deployment"),
        client.V1StatefulSet: ("apps/v1", "StatefulSet"),
        client.V1ReplicaSet: ("apps/v1", "ReplicaSet"),
        client.V1DaemonSet: ("apps/v1", "DaemonSet"),
        client.V1PersistentVolume: ("v1", "PersistentVolume"),
        client.V1PersistentVolumeClaim: ("v1", "PersistentVolumeClaim"),
        client.V1Pod: ("v1", "Pod"),
    }
)

# Last resort, keyed by the caller's resource type name.
WELL_KNOWN_TYPES: Mapping[str, TypeIdentity] = MappingProxyType(
    {
        "infrastructure": ("config.openshift.io/v1", "Infrastructure"),
        "secret": ("v1", "Secret"),
        "configmap": ("v1", "ConfigMap"),
    }
)


def _field(obj: Any, dict_key: str, attr: str) -> Optional[str]:
    if isinstance(obj, Mapping):
        v = obj.get(dict_key)
    else:
        v = getattr(obj, attr, None)
    return str(v) if v else None


def embedded_identity(obj: Any, resource_type: str) -> Optional[TypeIdentity]:
    """apiVersion/kind already present on the object."""
    api_version = _field(obj, "apiVersion", "api_version")
    kind = _field(obj, "kind", "kind")
    if api_version and kind:
        return api_version, kind
    return None


def registered_identity(registry: Mapping[type, TypeIdentity] = REGISTERED_TYPES) -> Resolver:
    def _resolve(obj: Any, resource_type: str) -> Optional[TypeIdentity]:
        for cls in type(obj).__mro__:
            hit = registry.get(cls)
            if hit:
                return hit
        return None

    return _resolve


def well_known_identity(table: Mapping[str, TypeIdentity] = WELL_KNOWN_TYPES) -> Resolver:
    def _resolve(obj: Any, resource_type: str) -> Optional[TypeIdentity]:
        return table.get((resource_type or "").strip().lower())

    return _resolve


DEFAULT_RESOLVERS: Tuple[Resolver, ...] = (
    embedded_identity,
    registered_identity(),
    well_known_identity(),
)


def resolve_type(obj: Any, resource_type: str, resolvers: Sequence[Resolver] = DEFAULT_RESOLVERS) -> TypeIdentity:
    for resolver in resolvers:
        hit = resolver(obj, resource_type)
        if hit:
            return hit
    raise TypeResolutionError(
        f"cannot determine apiVersion/kind for {type(obj).__name__} (resource type {resource_type!r})",
        context={"resource_type": resource_type},
    )
