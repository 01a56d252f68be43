# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/k8s/workloads.py
"""
Workloads that keep a claim mounted, and scaling them down and back up.

Deployments, StatefulSets and ReplicaSets not owned by a Deployment are
the controllers that recreate pods; scaling them to zero is what releases
a claim. Bare pods are not managed here.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..core.exceptions import AggregateError, KubernetesError, NotFoundError
from ..core.polling import CancelToken, poll_until
from ..models.inventory import WorkloadRef
from ..models.migration import ScaledResource
from .volumes import PersistentVolumeManager

KIND_DEPLOYMENT = "Deployment"
KIND_STATEFULSET = "StatefulSet"
KIND_REPLICASET = "ReplicaSet"

TERMINAL_POD_PHASES = frozenset({"Succeeded", "Failed"})


def template_uses_claim(template: Any, claim_name: str) -> bool:
    spec = getattr(template, "spec", None)
    for vol in (getattr(spec, "volumes", None) or []):
        pvc = getattr(vol, "persistent_volume_claim", None)
        if pvc is not None and pvc.claim_name == claim_name:
            return True
    return False


def claim_from_template(claim_name: str, template_name: str, statefulset_name: str) -> bool:
    """
    True when ``claim_name`` was stamped from a volumeClaimTemplate. The
    StatefulSet controller names those claims ``<template>-<set>-<ordinal>``.
    """
    if claim_name == template_name:
        return True
    prefix = f"{template_name}-{statefulset_name}-"
    return claim_name.startswith(prefix) and claim_name[len(prefix):].isdigit()


def _owned_by(obj: Any, kind: str) -> bool:
    return any(ref.kind == kind for ref in (obj.metadata.owner_references or []))


class WorkloadManager:
    def __init__(
        self,
        logger: logging.Logger,
        api_client: Optional[client.ApiClient] = None,
        *,
        apps: Optional[client.AppsV1Api] = None,
        volumes: Optional[PersistentVolumeManager] = None,
        pod_poll_interval_s: float = 5.0,
    ) -> None:
        self.logger = logger
        self.apps = apps or client.AppsV1Api(api_client)
        self.volumes = volumes or PersistentVolumeManager(logger, api_client)
        self.pod_poll_interval_s = pod_poll_interval_s

    def _scalers(self) -> Dict[str, Callable[..., Any]]:
        return {
            KIND_DEPLOYMENT: self.apps.patch_namespaced_deployment_scale,
            KIND_STATEFULSET: self.apps.patch_namespaced_stateful_set_scale,
            KIND_REPLICASET: self.apps.patch_namespaced_replica_set_scale,
        }

    def _list(self, kind: str, namespace: str) -> List[Any]:
        listers = {
            KIND_DEPLOYMENT: self.apps.list_namespaced_deployment,
            KIND_STATEFULSET: self.apps.list_namespaced_stateful_set,
            KIND_REPLICASET: self.apps.list_namespaced_replica_set,
        }
        try:
            return listers[kind](namespace).items or []
        except ApiException as e:
            raise KubernetesError(f"failed to list {kind}s in namespace {namespace}: {e.status} {e.reason}", cause=e) from e

    def _candidates(self, namespace: str, claim_name: str) -> Iterable[Tuple[str, Any]]:
        for deploy in self._list(KIND_DEPLOYMENT, namespace):
            if template_uses_claim(deploy.spec.template, claim_name):
                yield KIND_DEPLOYMENT, deploy
        for sts in self._list(KIND_STATEFULSET, namespace):
            templates = sts.spec.volume_claim_templates or []
            if template_uses_claim(sts.spec.template, claim_name) or any(
                t.metadata is not None and claim_from_template(claim_name, t.metadata.name, sts.metadata.name)
                for t in templates
            ):
                yield KIND_STATEFULSET, sts
        for rs in self._list(KIND_REPLICASET, namespace):
            if _owned_by(rs, KIND_DEPLOYMENT):
                continue
            if template_uses_claim(rs.spec.template, claim_name):
                yield KIND_REPLICASET, rs

    def find_consumers(self, namespace: str, claim_name: str) -> List[WorkloadRef]:
        """Controllers in ``namespace`` that mount ``claim_name`` and run at least one replica."""
        refs: List[WorkloadRef] = []
        for kind, obj in self._candidates(namespace, claim_name):
            replicas = obj.spec.replicas or 0
            if replicas <= 0:
                continue
            refs.append(WorkloadRef(kind=kind, name=obj.metadata.name, namespace=namespace, replicas=int(replicas), obj=obj))
        self.logger.debug("Found %d running workload(s) using PVC %s/%s", len(refs), namespace, claim_name)
        return refs

    def set_replicas(self, kind: str, name: str, namespace: str, replicas: int) -> None:
        scaler = self._scalers().get(kind)
        if scaler is None:
            raise KubernetesError(f"unknown resource kind: {kind}")
        self.logger.info("Scaling %s %s/%s to %d replica(s)", kind, namespace, name, replicas)
        try:
            scaler(name, namespace, {"spec": {"replicas": int(replicas)}})
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"{kind} {namespace}/{name} not found", cause=e) from e
            raise KubernetesError(f"failed to scale {kind} {namespace}/{name}: {e.status} {e.reason}", cause=e) from e

    def restore_workloads(self, scaled: Iterable[ScaledResource]) -> None:
        """
        Scale every recorded workload back to its original replica count.

        All entries are attempted; failures are collected into one
        AggregateError. A workload that no longer exists is skipped.
        """
        items = list(scaled)
        self.logger.info("Restoring %d workload(s)", len(items))
        errors: List[BaseException] = []
        for res in items:
            try:
                self.set_replicas(res.kind, res.name, res.namespace, res.original_replicas)
            except NotFoundError:
                self.logger.info("%s %s/%s no longer exists, nothing to restore", res.kind, res.namespace, res.name)
            except KubernetesError as e:
                self.logger.error("Failed to restore %s %s/%s: %s", res.kind, res.namespace, res.name, e)
                errors.append(e)
        if errors:
            raise AggregateError.from_errors("workload restore", errors)

    def wait_for_pods_terminated(
        self,
        namespace: str,
        claim_name: str,
        timeout_s: float,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        self.logger.info("Waiting for pods using PVC %s/%s to terminate", namespace, claim_name)

        def _terminated() -> bool:
            try:
                pods = self.volumes.find_pods_using_claim(namespace, claim_name)
            except KubernetesError as e:
                self.logger.debug("Error listing pods, will retry: %s", e)
                return False
            active = [p for p in pods if getattr(p.status, "phase", None) not in TERMINAL_POD_PHASES]
            if active:
                self.logger.debug("%d pod(s) still using PVC %s/%s", len(active), namespace, claim_name)
            return not active

        poll_until(
            _terminated,
            interval_s=self.pod_poll_interval_s,
            timeout_s=timeout_s,
            cancel=cancel,
            description=f"pods using PVC {namespace}/{claim_name} to terminate",
            logger=self.logger,
        )
        self.logger.info("All pods using PVC %s/%s have terminated", namespace, claim_name)
