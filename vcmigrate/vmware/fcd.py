# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/vmware/fcd.py
"""
First-class disk (FCD) lifecycle and attachment safety checks.

The attachment checks are the guard against two VMs writing the same disk:
``verify_not_attached`` must pass right before anything that could repurpose
a disk, and its failure is never retried or downgraded.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

from pyVmomi import vim

from ..core.exceptions import (
    AttachError,
    Cancelled,
    DeleteError,
    DetachError,
    NotFoundError,
    PollErrorLimit,
    SafetyGateError,
    VMwareError,
    WaitTimeout,
)
from ..core.polling import CancelToken, poll_until
from ..models.inventory import DiskObjectInfo
from .backing import disk_backings
from .client import VSphereClient
from .paths import build_datastore_path
from .tasks import wait_for_task


def _vm_name(vm: Any) -> str:
    return str(getattr(vm, "name", None) or "?")


class FCDManager:
    def __init__(
        self,
        logger: logging.Logger,
        client: VSphereClient,
        *,
        detach_poll_interval_s: float = 5.0,
        task_poll_interval_s: float = 1.0,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        self.logger = logger
        self.client = client
        self.detach_poll_interval_s = detach_poll_interval_s
        self.task_poll_interval_s = task_poll_interval_s
        self.cancel = cancel or CancelToken()

    def _vsom(self) -> Any:
        return self.client.content().vStorageObjectManager

    def _wait(self, task: Any, description: str) -> Any:
        return wait_for_task(
            task,
            description=description,
            cancel=self.cancel,
            interval_s=self.task_poll_interval_s,
            logger=self.logger,
        )

    @staticmethod
    def _to_info(vso: Any, datastore: Any = None) -> DiskObjectInfo:
        config = vso.config
        backing = getattr(config, "backing", None)
        return DiskObjectInfo(
            id=str(config.id.id),
            name=str(getattr(config, "name", "") or ""),
            backing_path=str(getattr(backing, "filePath", "") or ""),
            datastore=getattr(backing, "datastore", None) or datastore,
            capacity_mb=int(getattr(config, "capacityInMB", 0) or 0),
        )

    # Lookup / listing

    def _retrieve(self, disk_id: str, datastore: Any) -> DiskObjectInfo:
        with self.client.audit("RetrieveVStorageObject"):
            vso = self._vsom().RetrieveVStorageObject(id=vim.vslm.ID(id=disk_id), datastore=datastore)
        return self._to_info(vso, datastore)

    def _ids_on(self, datastore: Any) -> List[str]:
        with self.client.audit("ListVStorageObject"):
            ids = self._vsom().ListVStorageObject(datastore=datastore) or []
        return [str(i.id) for i in ids]

    def lookup(self, disk_id: str, datastore: Any = None) -> DiskObjectInfo:
        """
        Disk object by id. Without a datastore every datastore is searched.

        Raises NotFoundError when no datastore knows the id.
        """
        self.logger.debug("Getting FCD %s", disk_id)
        if datastore is not None:
            try:
                return self._retrieve(disk_id, datastore)
            except vim.fault.NotFound as e:
                raise NotFoundError(f"FCD {disk_id} not found", cause=e) from e
            except Exception as e:
                raise VMwareError(f"failed to retrieve FCD {disk_id}: {e}", cause=e) from e

        for ds in self.client.list_datastores():
            try:
                if disk_id in self._ids_on(ds):
                    return self._retrieve(disk_id, ds)
            except Exception as e:
                self.logger.debug("Skipping datastore %s while looking for FCD %s: %s", getattr(ds, "name", "?"), disk_id, e)
        raise NotFoundError(f"FCD {disk_id} not found on any datastore", context={"fcd": disk_id})

    def _list_on(self, datastore: Any) -> List[DiskObjectInfo]:
        out: List[DiskObjectInfo] = []
        for disk_id in self._ids_on(datastore):
            try:
                out.append(self._retrieve(disk_id, datastore))
            except Exception as e:
                self.logger.debug("Failed to get FCD %s details, skipping: %s", disk_id, e)
        return out

    def list_on_datastore(self, datastore: Any) -> List[DiskObjectInfo]:
        try:
            fcds = self._list_on(datastore)
        except Exception as e:
            raise VMwareError(f"failed to list FCDs on datastore {getattr(datastore, 'name', '?')}: {e}", cause=e) from e
        self.logger.debug("Listed %d FCD(s) on datastore %s", len(fcds), getattr(datastore, "name", "?"))
        return fcds

    def list_all(self) -> List[DiskObjectInfo]:
        fcds: List[DiskObjectInfo] = []
        for ds in self.client.list_datastores():
            try:
                fcds.extend(self._list_on(ds))
            except Exception as e:
                self.logger.debug("Failed to list FCDs on datastore %s, skipping: %s", getattr(ds, "name", "?"), e)
        self.logger.debug("Listed %d FCD(s)", len(fcds))
        return fcds

    # Mutations

    def register_existing(self, datastore_name: str, path: str, name: str) -> DiskObjectInfo:
        """Adopt an existing ``.vmdk`` as a first-class disk."""
        full_path = build_datastore_path(datastore_name, path)
        self.logger.info("Registering disk %s as FCD %r", full_path, name)
        try:
            with self.client.audit("RegisterDisk"):
                vso = self._vsom().RegisterDisk(path=full_path, name=name)
        except Exception as e:
            raise VMwareError(f"failed to register disk {full_path}: {e}", cause=e) from e
        info = self._to_info(vso)
        if not info.backing_path:
            info = DiskObjectInfo(info.id, info.name, full_path, info.datastore, info.capacity_mb)
        self.logger.info("Registered disk as FCD %s (%s)", info.id, info.name)
        return info

    def attach(self, vm: Any, datastore: Any, disk_id: str, controller_key: int, unit_number: int) -> None:
        self.logger.info("Attaching FCD %s to VM %s (controller=%s unit=%s)", disk_id, _vm_name(vm), controller_key, unit_number)
        try:
            with self.client.audit("AttachDisk_Task"):
                task = vm.AttachDisk_Task(
                    diskId=vim.vslm.ID(id=disk_id),
                    datastore=datastore,
                    controllerKey=controller_key,
                    unitNumber=unit_number,
                )
                self._wait(task, f"attach FCD {disk_id} to {_vm_name(vm)}")
        except Cancelled:
            raise
        except Exception as e:
            raise AttachError(f"failed to attach FCD {disk_id} to VM {_vm_name(vm)}: {e}", cause=e) from e
        self.logger.info("Attached FCD %s to VM %s", disk_id, _vm_name(vm))

    def detach(self, vm: Any, disk_id: str) -> None:
        self.logger.info("Detaching FCD %s from VM %s", disk_id, _vm_name(vm))
        try:
            with self.client.audit("DetachDisk_Task"):
                task = vm.DetachDisk_Task(diskId=vim.vslm.ID(id=disk_id))
                self._wait(task, f"detach FCD {disk_id} from {_vm_name(vm)}")
        except Cancelled:
            raise
        except Exception as e:
            raise DetachError(f"failed to detach FCD {disk_id} from VM {_vm_name(vm)}: {e}", cause=e) from e
        self.logger.info("Detached FCD %s from VM %s", disk_id, _vm_name(vm))

    def delete(self, datastore: Any, disk_id: str) -> None:
        self.logger.info("Deleting FCD %s", disk_id)
        try:
            with self.client.audit("DeleteVStorageObject_Task"):
                task = self._vsom().DeleteVStorageObject_Task(id=vim.vslm.ID(id=disk_id), datastore=datastore)
                self._wait(task, f"delete FCD {disk_id}")
        except Cancelled:
            raise
        except Exception as e:
            raise DeleteError(f"failed to delete FCD {disk_id}: {e}", cause=e) from e
        self.logger.info("Deleted FCD %s", disk_id)

    # Attachment checks

    def is_attached_to_vm(self, vm: Any, disk_id: str) -> bool:
        try:
            backings = list(disk_backings(vm))
        except Exception as e:
            raise VMwareError(f"failed to read devices of VM {_vm_name(vm)}: {e}", cause=e) from e
        return any(b.backing_object_id() == disk_id for b in backings)

    def verify_not_attached(self, vm: Any, disk_id: str) -> None:
        """
        Final safety gate. Raises SafetyGateError when the disk is attached to
        ``vm``, or when attachment cannot be determined.
        """
        self.logger.debug("Verifying FCD %s is not attached to VM %s", disk_id, _vm_name(vm))
        try:
            attached = self.is_attached_to_vm(vm, disk_id)
        except VMwareError as e:
            raise SafetyGateError(
                f"failed to verify FCD {disk_id} is detached from VM {_vm_name(vm)}: {e}", cause=e
            ) from e
        if attached:
            raise SafetyGateError(
                f"CRITICAL: FCD {disk_id} is still attached to VM {_vm_name(vm)} - refusing to proceed to protect data",
                context={"fcd": disk_id, "vm": _vm_name(vm)},
            )

    def is_attached_anywhere(self, datacenter: str, folder: str, disk_id: str) -> Tuple[bool, str]:
        """
        Scan every VM in a folder. A VM whose devices cannot be read is logged
        and skipped; the scan continues with the remaining VMs.

        A folder that does not exist raises SafetyGateError: an empty scan of
        the wrong folder would report the disk as free.
        """
        folder_path = self.client.vm_folder_path(datacenter, folder)
        try:
            vms = self.client.list_vms_in_folder(folder_path)
        except NotFoundError as e:
            raise SafetyGateError(
                f"cannot verify FCD {disk_id} is detached: VM folder {folder_path} not found on {self.client.host}",
                cause=e,
                context={"fcd": disk_id, "folder": folder_path},
            ) from e
        self.logger.debug("Checking FCD %s attachment across %d VM(s) in %s", disk_id, len(vms), folder_path)
        for vm in vms:
            try:
                if self.is_attached_to_vm(vm, disk_id):
                    return True, _vm_name(vm)
            except VMwareError as e:
                self.logger.debug("Failed to check FCD attachment on VM %s, continuing: %s", _vm_name(vm), e)
        return False, ""

    def wait_until_detached(self, datacenter: str, folder: str, disk_id: str, timeout_s: float) -> None:
        """
        Poll until no VM in the folder has the disk attached.

        A query error aborts immediately; a timeout names the VM still holding it.
        """
        holder = {"vm": ""}

        def _detached() -> bool:
            attached, vm_name = self.is_attached_anywhere(datacenter, folder, disk_id)
            if attached:
                holder["vm"] = vm_name
                self.logger.info("FCD %s still attached to VM %s, waiting", disk_id, vm_name)
            return not attached

        try:
            poll_until(
                _detached,
                interval_s=self.detach_poll_interval_s,
                timeout_s=timeout_s,
                cancel=self.cancel,
                description=f"FCD {disk_id} detach",
                logger=self.logger,
            )
        except WaitTimeout as e:
            raise WaitTimeout(
                f"timeout waiting for FCD {disk_id} to be detached from VM {holder['vm']} after {timeout_s:g}s",
                cause=e,
                context={"fcd": disk_id, "vm": holder["vm"]},
            ) from e
        except PollErrorLimit as e:
            if isinstance(e.cause, SafetyGateError):
                raise e.cause
            raise VMwareError(f"failed to check FCD {disk_id} attachment: {e.cause}", cause=e.cause) from e
        self.logger.debug("FCD %s is not attached to any VM in %s", disk_id, folder)

