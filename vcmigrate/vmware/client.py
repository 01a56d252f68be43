# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/vmware/client.py
"""
vCenter session and inventory lookups for vcmigrate.
"""
from __future__ import annotations

import logging
import socket
import ssl
from typing import Any, Dict, List, Optional

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import SoapStubAdapter, VmomiSupport, vim

from ..core.exceptions import NotFoundError, VMwareError
from .audit import CallAuditLog
from .thumbprint import server_thumbprint

CNS_PATH = "/vsanHealth"
CNS_MANAGER_MOID = "cns-volume-manager"


def _inv_path(*parts: str) -> str:
    cleaned = [p.strip("/") for p in parts if p and p.strip("/")]
    return "/" + "/".join(cleaned)


class VSphereClient:
    """
    Logged-in vCenter session plus the path lookups the migration needs.

    Paths follow the vCenter inventory layout: ``/<dc>/vm/<folder>``,
    ``/<dc>/host/<cluster>``, ``/<dc>/datastore/<name>``. Absolute paths
    (leading "/") are used as given.
    """

    def __init__(
        self,
        logger: logging.Logger,
        host: str,
        user: str,
        password: str,
        *,
        port: int = 443,
        insecure: bool = False,
        timeout: Optional[float] = None,
        cns_version: Optional[str] = None,
        audit_max_entries: int = 500,
    ) -> None:
        self.logger = logger
        self.host = (host or "").strip()
        self.user = (user or "").strip()
        self.password = password or ""
        self.port = int(port)
        self.insecure = bool(insecure)
        self.timeout = timeout
        self.cns_version = cns_version

        self.si: Any = None
        self._cns_manager: Any = None
        self.audit_log = CallAuditLog(logger, endpoint=self.host, max_entries=audit_max_entries)

    @classmethod
    def from_endpoint(cls, logger: logging.Logger, endpoint: Any) -> "VSphereClient":
        return cls(
            logger,
            endpoint.host,
            endpoint.user,
            endpoint.password,
            port=endpoint.port,
            insecure=endpoint.insecure,
            timeout=endpoint.timeout_s,
        )

    # Context managers

    def __enter__(self) -> "VSphereClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        try:
            self.disconnect()
        finally:
            if exc_type is not None:
                self.logger.error("Exception in context: %s: %s", getattr(exc_type, "__name__", exc_type), exc_val)
        return False

    # Connection

    @property
    def service_url(self) -> str:
        return f"https://{self.host}:{self.port}/sdk" if self.port != 443 else f"https://{self.host}/sdk"

    def _ssl_context(self) -> ssl.SSLContext:
        """
        SSL context for vCenter connections.

        insecure=True disables certificate verification; only for lab setups
        with self-signed certificates.
        """
        if self.insecure:
            self.logger.warning(
                "TLS certificate verification is DISABLED for %s (insecure=True). "
                "Only use this in trusted environments with self-signed certificates.",
                self.host,
            )
            ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
            return ctx
        return ssl.create_default_context()

    def connect(self) -> None:
        if not (self.host and self.user and self.password):
            raise VMwareError("vCenter host, user and password are required", context={"host": self.host})
        ctx = self._ssl_context()
        old_timeout = socket.getdefaulttimeout()
        try:
            if self.timeout is not None:
                socket.setdefaulttimeout(self.timeout)
            self.si = SmartConnect(host=self.host, user=self.user, pwd=self.password, port=self.port, sslContext=ctx)
        except Exception as e:
            self.si = None
            raise VMwareError(f"Failed to connect to vCenter {self.host}: {e}", cause=e) from e
        finally:
            socket.setdefaulttimeout(old_timeout)
        self.logger.info("Connected to vCenter: %s:%s", self.host, self.port)

    def disconnect(self) -> None:
        try:
            if self.si is not None:
                Disconnect(self.si)
                self.logger.info("Disconnected from vCenter: %s", self.host)
        except Exception as e:
            self.logger.error("Error during disconnect from %s: %s", self.host, e)
        finally:
            self.si = None
            self._cns_manager = None

    def content(self) -> Any:
        if not self.si:
            raise VMwareError(f"Not connected to {self.host}")
        try:
            return self.si.RetrieveContent()
        except Exception as e:
            raise VMwareError(f"Failed to retrieve content from {self.host}: {e}", cause=e) from e

    def audit(self, method: str):
        """Context manager recording one SOAP call in the audit log."""
        return self.audit_log.call(method)

    # Identity

    def instance_uuid(self) -> str:
        uuid = str(getattr(self.content().about, "instanceUuid", "") or "")
        if not uuid:
            raise VMwareError(f"vCenter {self.host} reported an empty instance UUID")
        return uuid

    def thumbprint(self) -> str:
        return server_thumbprint(f"{self.host}:{self.port}", timeout=self.timeout or 15.0)

    # Inventory lookups

    def find_by_path(self, path: str, what: str = "object") -> Any:
        content = self.content()
        with self.audit("FindByInventoryPath"):
            obj = content.searchIndex.FindByInventoryPath(path)
        if obj is None:
            raise NotFoundError(f"{what} {path} not found on {self.host}", context={"path": path})
        return obj

    def datacenter(self, name: str) -> Any:
        return self.find_by_path(_inv_path(name), "datacenter")

    def cluster(self, datacenter: str, name: str) -> Any:
        path = name if name.startswith("/") else _inv_path(datacenter, "host", name)
        return self.find_by_path(path, "cluster")

    def folder(self, path: str) -> Any:
        return self.find_by_path(_inv_path(path), "folder")

    def vm_folder_path(self, datacenter: str, folder: Optional[str] = None) -> str:
        if folder and folder.startswith("/"):
            return folder
        return _inv_path(datacenter, "vm", folder or "")

    def datastore(self, datacenter: str, name: str) -> Any:
        path = name if name.startswith("/") else _inv_path(datacenter, "datastore", name)
        return self.find_by_path(path, "datastore")

    def resource_pool(self, datacenter: str, cluster: str, pool: Optional[str] = None) -> Any:
        if pool:
            path = pool if pool.startswith("/") else _inv_path(datacenter, "host", cluster, "Resources", pool)
            return self.find_by_path(path, "resource pool")
        rp = getattr(self.cluster(datacenter, cluster), "resourcePool", None)
        if rp is None:
            raise NotFoundError(f"cluster {cluster} has no root resource pool")
        return rp

    def list_datastores(self) -> List[Any]:
        content = self.content()
        view = content.viewManager.CreateContainerView(content.rootFolder, [vim.Datastore], True)
        try:
            return list(view.view)
        finally:
            view.Destroy()

    def list_vms_in_folder(self, folder_path: str, *, missing_ok: bool = False) -> List[Any]:
        """
        Direct VM children of a folder. A missing folder raises NotFoundError
        unless ``missing_ok``, in which case it yields an empty list.
        """
        try:
            folder = self.folder(folder_path)
        except NotFoundError:
            if not missing_ok:
                raise
            self.logger.debug("Folder %s not found on %s; treating as empty", folder_path, self.host)
            return []
        return [child for child in (getattr(folder, "childEntity", None) or []) if isinstance(child, vim.VirtualMachine)]

    def find_vm_in_folder(self, folder_path: str, name: str) -> Optional[Any]:
        for vm in self.list_vms_in_folder(folder_path, missing_ok=True):
            if getattr(vm, "name", None) == name:
                return vm
        return None

    # CNS

    def cns_volume_manager(self) -> Any:
        """CNS volume manager bound to this session (served from /vsanHealth)."""
        if self._cns_manager is not None:
            return self._cns_manager
        if not self.si:
            raise VMwareError(f"Not connected to {self.host}")
        version = self.cns_version or VmomiSupport.newestVersions.GetName("vsan")
        stub = SoapStubAdapter(
            host=self.host,
            port=self.port,
            path=CNS_PATH,
            version=version,
            sslContext=self._ssl_context(),
        )
        stub.cookie = self.si._stub.cookie
        self._cns_manager = vim.cns.VolumeManager(CNS_MANAGER_MOID, stub)
        return self._cns_manager

    def describe(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port, "user": self.user, "connected": self.si is not None}
