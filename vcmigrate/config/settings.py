# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/config/settings.py
"""
Typed, validated view of the merged YAML config.

Layout::

    source: {host, user, password | password_env, port, insecure, timeout_s}
    target: {...}
    source_placement: {datacenter, cluster, datastore, folder, resource_pool}
    target_placement: {...}
    infra_id: ocp-abc12
    cluster_id: ocp-abc12
    carrier: {num_cpus, memory_mb, guest_id, name_prefix}
    timeouts: {pods_terminated_s, detach_s, detach_poll_s, relocate_poll_s, ...}
    csi_driver, state_file, kubeconfig, kube_context, excluded_namespaces
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from ..core.exceptions import Fatal
from ..k8s.volumes import VSPHERE_CSI_DRIVER


def _invalid(msg: str) -> Fatal:
    return Fatal(f"Invalid configuration: {msg}", code=2)


def _section(conf: Mapping[str, Any], key: str, required: bool = True) -> Dict[str, Any]:
    v = conf.get(key)
    if v is None:
        if required:
            raise _invalid(f"missing section '{key}'")
        return {}
    if not isinstance(v, dict):
        raise _invalid(f"'{key}' must be a mapping")
    return v


def _resolve_password(sec: Mapping[str, Any], where: str) -> str:
    direct = sec.get("password")
    if direct:
        return str(direct)
    env = sec.get("password_env")
    if env:
        val = os.environ.get(str(env))
        if not val:
            raise _invalid(f"{where}.password_env names {env}, which is unset or empty")
        return val
    raise _invalid(f"{where} needs password or password_env")


@dataclass(frozen=True)
class EndpointConfig:
    host: str
    user: str
    password: str = field(repr=False)
    port: int = 443
    insecure: bool = False
    timeout_s: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.host:
            raise _invalid("endpoint host is required")
        if not self.user:
            raise _invalid(f"user is required for {self.host}")
        if not 0 < int(self.port) < 65536:
            raise _invalid(f"port {self.port} out of range for {self.host}")

    @property
    def url(self) -> str:
        return f"https://{self.host}/sdk" if int(self.port) == 443 else f"https://{self.host}:{self.port}/sdk"

    @classmethod
    def from_dict(cls, sec: Mapping[str, Any], where: str) -> "EndpointConfig":
        timeout = sec.get("timeout_s")
        return cls(
            host=str(sec.get("host") or "").strip(),
            user=str(sec.get("user") or "").strip(),
            password=_resolve_password(sec, where),
            port=int(sec.get("port", 443)),
            insecure=bool(sec.get("insecure", False)),
            timeout_s=float(timeout) if timeout is not None else None,
        )


@dataclass(frozen=True)
class PlacementConfig:
    datacenter: str
    cluster: str
    datastore: str
    folder: Optional[str] = None
    resource_pool: Optional[str] = None

    def __post_init__(self) -> None:
        for name in ("datacenter", "cluster", "datastore"):
            if not getattr(self, name):
                raise _invalid(f"placement {name} is required")

    @classmethod
    def from_dict(cls, sec: Mapping[str, Any]) -> "PlacementConfig":
        return cls(
            datacenter=str(sec.get("datacenter") or ""),
            cluster=str(sec.get("cluster") or ""),
            datastore=str(sec.get("datastore") or ""),
            folder=sec.get("folder") or None,
            resource_pool=sec.get("resource_pool") or None,
        )


@dataclass(frozen=True)
class CarrierConfig:
    num_cpus: int = 1
    memory_mb: int = 128
    guest_id: str = "otherGuest64"
    name_prefix: str = "csi-migration"

    def __post_init__(self) -> None:
        if self.num_cpus < 1 or self.memory_mb < 4:
            raise _invalid("carrier VM needs at least 1 CPU and 4 MB of memory")

    def vm_name(self, infra_id: str, pv_name: str) -> str:
        return f"{self.name_prefix}-{infra_id}-{pv_name[:8]}"


@dataclass(frozen=True)
class TimeoutConfig:
    pods_terminated_s: float = 300.0
    detach_s: float = 180.0
    detach_poll_s: float = 5.0
    relocate_poll_s: float = 30.0
    relocate_max_consecutive_errors: int = 3
    task_poll_s: float = 1.0
    pod_poll_s: float = 5.0
    volume_attachment_s: float = 180.0
    volume_attachment_poll_s: float = 3.0

    def __post_init__(self) -> None:
        for name in (
            "pods_terminated_s",
            "detach_s",
            "detach_poll_s",
            "relocate_poll_s",
            "task_poll_s",
            "pod_poll_s",
            "volume_attachment_s",
            "volume_attachment_poll_s",
        ):
            if getattr(self, name) <= 0:
                raise _invalid(f"timeouts.{name} must be positive")
        if self.relocate_max_consecutive_errors < 1:
            raise _invalid("timeouts.relocate_max_consecutive_errors must be >= 1")


def _from_known(cls: Any, sec: Mapping[str, Any]) -> Any:
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(sec) - known)
    if unknown:
        raise _invalid(f"unknown {cls.__name__} key(s): {', '.join(unknown)}")
    return cls(**dict(sec))


@dataclass(frozen=True)
class MigrationSettings:
    source: EndpointConfig
    target: EndpointConfig
    source_placement: PlacementConfig
    target_placement: PlacementConfig
    infra_id: str
    cluster_id: str
    carrier: CarrierConfig = field(default_factory=CarrierConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    csi_driver: str = VSPHERE_CSI_DRIVER
    state_file: str = "./vcmigrate-state.json"
    kubeconfig: Optional[str] = None
    kube_context: Optional[str] = None
    excluded_namespaces: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.infra_id:
            raise _invalid("infra_id is required")
        if not self.cluster_id:
            raise _invalid("cluster_id is required")

    @property
    def source_folder(self) -> str:
        """Folder holding the cluster's VMs on the source vCenter."""
        return self.source_placement.folder or self.infra_id

    @classmethod
    def from_dict(cls, conf: Mapping[str, Any]) -> "MigrationSettings":
        return cls(
            source=EndpointConfig.from_dict(_section(conf, "source"), "source"),
            target=EndpointConfig.from_dict(_section(conf, "target"), "target"),
            source_placement=PlacementConfig.from_dict(_section(conf, "source_placement")),
            target_placement=PlacementConfig.from_dict(_section(conf, "target_placement")),
            infra_id=str(conf.get("infra_id") or ""),
            cluster_id=str(conf.get("cluster_id") or conf.get("infra_id") or ""),
            carrier=_from_known(CarrierConfig, _section(conf, "carrier", required=False)),
            timeouts=_from_known(TimeoutConfig, _section(conf, "timeouts", required=False)),
            csi_driver=str(conf.get("csi_driver") or VSPHERE_CSI_DRIVER),
            state_file=str(conf.get("state_file") or "./vcmigrate-state.json"),
            kubeconfig=conf.get("kubeconfig") or None,
            kube_context=conf.get("kube_context") or None,
            excluded_namespaces=tuple(conf.get("excluded_namespaces") or ()),
        )
