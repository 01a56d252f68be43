# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/vmware/relocate.py
"""
Cross-vCenter relocation through a carrier VM.

A first-class disk cannot be moved between vCenters on its own; it is
attached to a minimal "carrier" VM which is then relocated with a service
locator pointing at the target vCenter.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

from pyVmomi import vim

from ..core.exceptions import (
    Cancelled,
    CreateError,
    DeleteError,
    NoController,
    NoFreeUnits,
    PollErrorLimit,
    RelocateError,
    TaskStatusUnavailable,
)
from ..core.polling import CancelToken, poll_until
from .backing import vm_devices
from .client import VSphereClient
from .tasks import task_fault_message, wait_for_task

CARRIER_CONTROLLER_KEY = 1000
SCSI_RESERVED_UNIT = 7
SCSI_MAX_UNITS = 16

SCSI_CONTROLLER_TYPES: Tuple[type, ...] = (
    vim.vm.device.ParaVirtualSCSIController,
    vim.vm.device.VirtualLsiLogicController,
    vim.vm.device.VirtualLsiLogicSASController,
    vim.vm.device.VirtualBusLogicController,
)


def default_carrier_name() -> str:
    return f"csi-migration-dummy-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class CarrierVMSpec:
    datacenter: str
    cluster: str
    datastore: str
    folder: Optional[str] = None
    resource_pool: Optional[str] = None
    name: Optional[str] = None
    num_cpus: int = 1
    memory_mb: int = 128
    guest_id: str = "otherGuest64"


@dataclass(frozen=True)
class RelocateSpec:
    target_url: str
    target_user: str
    target_password: str = field(repr=False)
    target_thumbprint: str
    target_instance_uuid: str
    target_datacenter: str
    target_cluster: str
    target_datastore: str
    target_folder: Optional[str] = None
    target_resource_pool: Optional[str] = None


def _vm_name(vm: Any) -> str:
    return str(getattr(vm, "name", None) or "?")


class VMRelocator:
    def __init__(
        self,
        logger: logging.Logger,
        source: VSphereClient,
        target: VSphereClient,
        *,
        relocate_poll_interval_s: float = 30.0,
        max_consecutive_errors: int = 3,
        task_poll_interval_s: float = 1.0,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        self.logger = logger
        self.source = source
        self.target = target
        self.relocate_poll_interval_s = relocate_poll_interval_s
        self.max_consecutive_errors = max_consecutive_errors
        self.task_poll_interval_s = task_poll_interval_s
        self.cancel = cancel or CancelToken()

    def _wait(self, task: Any, description: str) -> Any:
        return wait_for_task(
            task,
            description=description,
            cancel=self.cancel,
            interval_s=self.task_poll_interval_s,
            logger=self.logger,
        )

    # Carrier lifecycle

    @staticmethod
    def _carrier_config(spec: CarrierVMSpec, name: str, datastore_name: str) -> Any:
        controller = vim.vm.device.ParaVirtualSCSIController(
            key=CARRIER_CONTROLLER_KEY,
            busNumber=0,
            sharedBus=vim.vm.device.VirtualSCSIController.Sharing.noSharing,
        )
        return vim.vm.ConfigSpec(
            name=name,
            guestId=spec.guest_id,
            numCPUs=spec.num_cpus or 1,
            memoryMB=spec.memory_mb or 128,
            files=vim.vm.FileInfo(vmPathName=f"[{datastore_name}]"),
            deviceChange=[
                vim.vm.device.VirtualDeviceSpec(
                    operation=vim.vm.device.VirtualDeviceSpec.Operation.add,
                    device=controller,
                )
            ],
        )

    def create_carrier_vm(self, spec: CarrierVMSpec) -> Any:
        """Create a diskless VM with one PVSCSI controller on the source vCenter."""
        name = spec.name or default_carrier_name()
        self.logger.info("Creating carrier VM %s in %s/%s", name, spec.datacenter, spec.cluster)
        try:
            folder = self.source.folder(self.source.vm_folder_path(spec.datacenter, spec.folder))
            pool = self.source.resource_pool(spec.datacenter, spec.cluster, spec.resource_pool)
            datastore = self.source.datastore(spec.datacenter, spec.datastore)
            config = self._carrier_config(spec, name, getattr(datastore, "name", spec.datastore))
            with self.source.audit("CreateVM_Task"):
                task = folder.CreateVM_Task(config=config, pool=pool)
                vm = self._wait(task, f"create carrier VM {name}")
        except Cancelled:
            raise
        except Exception as e:
            raise CreateError(f"failed to create carrier VM {name}: {e}", cause=e, context={"vm": name}) from e
        if vm is None:
            raise CreateError(f"carrier VM {name} creation returned no VM")
        self.logger.info("Created carrier VM %s", name)
        return vm

    def delete_carrier_vm(self, vm: Any) -> None:
        """Power off (if on) and destroy. Destroying also deletes attached disks."""
        name = _vm_name(vm)
        self.logger.info("Deleting carrier VM %s", name)
        try:
            power_state = vm.runtime.powerState
        except Exception as e:
            self.logger.debug("Failed to read power state of %s: %s", name, e)
            power_state = None
        try:
            if power_state == vim.VirtualMachinePowerState.poweredOn:
                self._wait(vm.PowerOffVM_Task(), f"power off {name}")
            self._wait(vm.Destroy_Task(), f"destroy {name}")
        except Cancelled:
            raise
        except Exception as e:
            raise DeleteError(f"failed to delete carrier VM {name}: {e}", cause=e, context={"vm": name}) from e
        self.logger.info("Deleted carrier VM %s", name)

    # SCSI allocation

    def find_scsi_controller(self, vm: Any) -> int:
        for dev in vm_devices(vm):
            if isinstance(dev, SCSI_CONTROLLER_TYPES):
                return int(dev.key)
        raise NoController(f"no SCSI controller found on VM {_vm_name(vm)}")

    def find_free_scsi_unit(self, vm: Any, controller_key: int) -> int:
        used = set()
        for dev in vm_devices(vm):
            if isinstance(dev, vim.vm.device.VirtualDisk) and dev.controllerKey == controller_key:
                if dev.unitNumber is not None:
                    used.add(int(dev.unitNumber))
        for unit in range(SCSI_MAX_UNITS):
            if unit == SCSI_RESERVED_UNIT:
                continue
            if unit not in used:
                return unit
        raise NoFreeUnits(f"no free unit numbers on controller {controller_key} of VM {_vm_name(vm)}")

    # Relocation

    @staticmethod
    def _service_locator(spec: RelocateSpec) -> Any:
        return vim.ServiceLocator(
            url=spec.target_url,
            instanceUuid=spec.target_instance_uuid,
            credential=vim.ServiceLocator.NamePassword(username=spec.target_user, password=spec.target_password),
            sslThumbprint=spec.target_thumbprint,
        )

    def relocate(self, vm: Any, spec: RelocateSpec) -> None:
        """
        Move ``vm`` (and its attached disks) to the target vCenter.

        Blocks until the relocation task finishes. Cancellation stops waiting
        but does not cancel the task on the vCenter side.
        """
        name = _vm_name(vm)
        if not spec.target_thumbprint:
            raise RelocateError("target vCenter TLS thumbprint is required for cross-vCenter relocation")
        if not spec.target_instance_uuid:
            raise RelocateError("target vCenter instance UUID is required for cross-vCenter relocation")

        self.logger.info("Relocating VM %s to %s (datacenter %s)", name, spec.target_url, spec.target_datacenter)
        try:
            folder = self.target.folder(self.target.vm_folder_path(spec.target_datacenter, spec.target_folder))
            pool = self.target.resource_pool(spec.target_datacenter, spec.target_cluster, spec.target_resource_pool)
            datastore = self.target.datastore(spec.target_datacenter, spec.target_datastore)
            relocate_spec = vim.vm.RelocateSpec(
                service=self._service_locator(spec),
                folder=folder,
                pool=pool,
                datastore=datastore,
            )
            with self.source.audit("RelocateVM_Task"):
                task = vm.RelocateVM_Task(
                    spec=relocate_spec,
                    priority=vim.VirtualMachine.MovePriority.defaultPriority,
                )
        except Exception as e:
            raise RelocateError(f"failed to start relocation of VM {name}: {e}", cause=e) from e

        self.wait_for_relocate_task(task, name)
        self.logger.info("Relocated VM %s to target vCenter", name)

    def wait_for_relocate_task(self, task: Any, vm_name: str) -> None:
        outcome = {"state": None, "fault": ""}

        def _query() -> bool:
            with self.source.audit("Task.info"):
                info = task.info
                state = info.state
            if state == vim.TaskInfo.State.success:
                outcome["state"] = state
                return True
            if state == vim.TaskInfo.State.error:
                outcome["state"] = state
                outcome["fault"] = task_fault_message(task)
                return True
            if state in (vim.TaskInfo.State.running, vim.TaskInfo.State.queued):
                self.logger.info("VM %s relocation %s: %s%%", vm_name, state, getattr(info, "progress", None) or 0)
            else:
                self.logger.debug("VM %s relocation task in unexpected state %r, still polling", vm_name, state)
            return False

        try:
            poll_until(
                _query,
                interval_s=self.relocate_poll_interval_s,
                cancel=self.cancel,
                max_consecutive_errors=self.max_consecutive_errors,
                description=f"relocation of VM {vm_name}",
                logger=self.logger,
            )
        except PollErrorLimit as e:
            raise TaskStatusUnavailable(
                f"failed to get relocation task status after {self.max_consecutive_errors} consecutive attempts: {e.cause}",
                cause=e.cause,
            ) from e

        if outcome["state"] == vim.TaskInfo.State.error:
            raise RelocateError(f"VM relocation task failed: {outcome['fault']}", context={"vm": vm_name})
        self.logger.info("VM %s relocation task completed successfully", vm_name)
