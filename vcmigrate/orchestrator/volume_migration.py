# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/orchestrator/volume_migration.py
"""
Per-volume migration state machine and the batch pass around it.

    Pending -> Quiesced -> Relocating -> Relocated -> Registered -> Complete
                       (any step) -> Failed

Each step runs only when the record is in that step's source state, and
the record is persisted after every transition, so a restarted pass picks
up where the previous one stopped. A failed volume keeps its
``scaled_down_resources`` so rollback can still resume its workloads.
"""
from __future__ import annotations

import logging
import traceback
from typing import Any, Callable, Dict, List, Optional

from ..backup.restore import RestoreManager
from ..backup.snapshot import BackupManager
from ..config.settings import MigrationSettings
from ..core.exceptions import (
    AggregateError,
    Cancelled,
    NotFoundError,
    TaskStatusUnavailable,
    VcMigrateError,
    VMwareError,
)
from ..core.logger import Log
from ..core.logging_utils import log_step
from ..core.polling import CancelToken
from ..k8s.attachments import VolumeAttachmentManager
from ..k8s.volumes import PersistentVolumeManager
from ..k8s.workloads import WorkloadManager
from ..models.migration import (
    BackupManifest,
    CSIVolumeMigrationStatus,
    PersistentVolumeMigrationState,
    ScaledResource,
    VolumeStatus,
)
from ..vmware.client import VSphereClient
from ..vmware.cns import CNSManager
from ..vmware.fcd import FCDManager
from ..vmware.paths import build_datastore_path, build_volume_handle, parse_volume_handle
from ..vmware.relocate import CarrierVMSpec, RelocateSpec, VMRelocator
from .state_store import StateStore

RECLAIM_RETAIN = "Retain"


class VolumeMigrator:
    """Drives one volume record through the state machine."""

    def __init__(
        self,
        logger: logging.Logger,
        settings: MigrationSettings,
        *,
        source: VSphereClient,
        target: VSphereClient,
        source_fcd: FCDManager,
        target_fcd: FCDManager,
        relocator: VMRelocator,
        cns: CNSManager,
        volumes: PersistentVolumeManager,
        workloads: WorkloadManager,
        attachments: VolumeAttachmentManager,
        backup: BackupManager,
        persist: Callable[[], None],
        cancel: Optional[CancelToken] = None,
    ) -> None:
        self.logger = logger
        self.settings = settings
        self.source = source
        self.target = target
        self.source_fcd = source_fcd
        self.target_fcd = target_fcd
        self.relocator = relocator
        self.cns = cns
        self.volumes = volumes
        self.workloads = workloads
        self.attachments = attachments
        self.backup = backup
        self.persist = persist
        self.cancel = cancel or CancelToken()
        self._target_identity: Optional[Dict[str, str]] = None

        self._steps: Dict[VolumeStatus, Callable[..., None]] = {
            VolumeStatus.PENDING: self.quiesce,
            VolumeStatus.QUIESCED: self.relocate,
            VolumeStatus.RELOCATING: self.resume_relocating,
            VolumeStatus.RELOCATED: self.register,
            VolumeStatus.REGISTERED: self.complete,
        }

    # Placement helpers

    def _source_folder_path(self) -> str:
        sp = self.settings.source_placement
        return self.source.vm_folder_path(sp.datacenter, self.settings.source_folder)

    def _target_folder(self) -> str:
        return self.settings.target_placement.folder or self.settings.infra_id

    def _target_folder_path(self) -> str:
        return self.target.vm_folder_path(self.settings.target_placement.datacenter, self._target_folder())

    def _carrier_name(self, state: PersistentVolumeMigrationState) -> str:
        if not state.carrier_vm_name:
            state.carrier_vm_name = self.settings.carrier.vm_name(self.settings.infra_id, state.pv_name)
        return state.carrier_vm_name

    def _carrier_at_target(self, state: PersistentVolumeMigrationState) -> Any:
        return self.target.find_vm_in_folder(self._target_folder_path(), self._carrier_name(state))

    def _relocate_spec(self) -> RelocateSpec:
        if self._target_identity is None:
            self._target_identity = {
                "thumbprint": self.target.thumbprint(),
                "uuid": self.target.instance_uuid(),
            }
            self.logger.info(
                "Target vCenter %s: instanceUuid=%s thumbprint=%s",
                self.settings.target.host,
                self._target_identity["uuid"],
                self._target_identity["thumbprint"],
            )
        tp = self.settings.target_placement
        ep = self.settings.target
        return RelocateSpec(
            target_url=ep.url,
            target_user=ep.user,
            target_password=ep.password,
            target_thumbprint=self._target_identity["thumbprint"],
            target_instance_uuid=self._target_identity["uuid"],
            target_datacenter=tp.datacenter,
            target_cluster=tp.cluster,
            target_datastore=tp.datastore,
            target_folder=self._target_folder(),
            target_resource_pool=tp.resource_pool,
        )

    # Driver

    def migrate(self, state: PersistentVolumeMigrationState, backups: List[BackupManifest]) -> None:
        """
        Advance ``state`` until it is Complete or Failed.

        Errors are recorded on the record, not raised; only cancellation
        escapes, after the record has been persisted.
        """
        log = Log.bind(self.logger, pv=state.pv_name)
        while not state.status.terminal:
            step = self._steps[state.status]
            step_log = log.bind(step=step.__name__)
            before = state.status
            try:
                step(state, backups)
            except Cancelled:
                self.persist()
                raise
            except Exception as e:
                msg = f"{step.__name__} failed: {e}"
                state.fail(msg)
                step_log.error("Volume %s: %s", state.pv_name, msg)
                step_log.debug("%s", traceback.format_exc())
            else:
                step_log.info("Volume %s: %s -> %s", state.pv_name, before.value, state.status.value)
            self.persist()

    # Pending -> Quiesced

    def quiesce(self, state: PersistentVolumeMigrationState, backups: List[BackupManifest]) -> None:
        fcd_id = parse_volume_handle(state.source_volume_handle)
        if not fcd_id:
            raise VcMigrateError(f"PV {state.pv_name} has no volume handle")
        sp = self.settings.source_placement

        if not state.original_reclaim_policy:
            previous = self.volumes.set_reclaim_policy(state.pv_name, RECLAIM_RETAIN)
            state.original_reclaim_policy = previous or RECLAIM_RETAIN
            self.persist()

        if state.pvc_name:
            ns, claim = state.pvc_namespace, state.pvc_name
            recorded = {(r.kind, r.name, r.namespace) for r in state.scaled_down_resources}
            for ref in self.workloads.find_consumers(ns, claim):
                manifest = self.backup.snapshot(ref.obj, ref.kind.lower())
                BackupManager.add_backup(backups, manifest)
                self.workloads.set_replicas(ref.kind, ref.name, ref.namespace, 0)
                if (ref.kind, ref.name, ref.namespace) not in recorded:
                    state.scaled_down_resources.append(
                        ScaledResource(kind=ref.kind, name=ref.name, namespace=ref.namespace, original_replicas=ref.replicas)
                    )
                    recorded.add((ref.kind, ref.name, ref.namespace))
                self.persist()
            self.workloads.wait_for_pods_terminated(ns, claim, self.settings.timeouts.pods_terminated_s, self.cancel)

        with log_step(self.logger, f"Waiting for the cluster to release PV {state.pv_name}"):
            self.attachments.wait_for_detached(state.pv_name, self.settings.timeouts.volume_attachment_s, self.cancel)
        with log_step(self.logger, f"Waiting for FCD {fcd_id} to detach from cluster VMs"):
            self.source_fcd.wait_until_detached(sp.datacenter, self.settings.source_folder, fcd_id, self.settings.timeouts.detach_s)
        for vm in self.source.list_vms_in_folder(self._source_folder_path()):
            self.source_fcd.verify_not_attached(vm, fcd_id)

        state.status = VolumeStatus.QUIESCED
        state.message = "workloads scaled down and disk detached"

    # Quiesced -> Relocating -> Relocated

    def relocate(self, state: PersistentVolumeMigrationState, backups: List[BackupManifest]) -> None:
        fcd_id = parse_volume_handle(state.source_volume_handle)
        sp = self.settings.source_placement
        carrier_cfg = self.settings.carrier
        name = self._carrier_name(state)

        carrier = self.source.find_vm_in_folder(self._source_folder_path(), name)
        if carrier is None:
            carrier = self.relocator.create_carrier_vm(
                CarrierVMSpec(
                    datacenter=sp.datacenter,
                    cluster=sp.cluster,
                    datastore=sp.datastore,
                    folder=self.settings.source_folder,
                    resource_pool=sp.resource_pool,
                    name=name,
                    num_cpus=carrier_cfg.num_cpus,
                    memory_mb=carrier_cfg.memory_mb,
                    guest_id=carrier_cfg.guest_id,
                )
            )
        else:
            self.logger.info("Reusing existing carrier VM %s", name)
        self.persist()

        try:
            if not self.source_fcd.is_attached_to_vm(carrier, fcd_id):
                disk = self.source_fcd.lookup(fcd_id)
                controller_key = self.relocator.find_scsi_controller(carrier)
                unit = self.relocator.find_free_scsi_unit(carrier, controller_key)
                self.source_fcd.attach(carrier, disk.datastore, fcd_id, controller_key, unit)

            spec = self._relocate_spec()
            state.status = VolumeStatus.RELOCATING
            state.message = f"relocating carrier VM {name} to {self.settings.target.host}"
            self.persist()

            with log_step(self.logger, f"Relocating carrier VM {name}"):
                self.relocator.relocate(carrier, spec)
        except (Cancelled, TaskStatusUnavailable):
            # The relocation may still be running; resume or rollback decides.
            raise
        except Exception:
            try:
                self._release_carrier(carrier, fcd_id)
            except VcMigrateError as e:
                self.logger.error("Carrier VM %s left on %s: %s", name, self.settings.source.host, e)
            raise

        state.status = VolumeStatus.RELOCATED
        state.message = f"disk relocated to {self.settings.target.host}"

    def _release_carrier(self, carrier: Any, fcd_id: str) -> None:
        name = getattr(carrier, "name", None) or "?"
        if self.source_fcd.is_attached_to_vm(carrier, fcd_id):
            self.source_fcd.detach(carrier, fcd_id)
        # Destroying a VM deletes its attached disks.
        self.source_fcd.verify_not_attached(carrier, fcd_id)
        self.relocator.delete_carrier_vm(carrier)
        self.logger.info("Released FCD %s and deleted carrier VM %s on %s", fcd_id, name, self.settings.source.host)

    def release_carrier(self, state: PersistentVolumeMigrationState) -> bool:
        """
        Detach the disk from a carrier VM still on the source vCenter, then
        delete the carrier. A carrier whose detach cannot be verified is kept.

        Returns False when there is no carrier at the source.
        """
        if not state.carrier_vm_name:
            return False
        carrier = self.source.find_vm_in_folder(self._source_folder_path(), state.carrier_vm_name)
        if carrier is None:
            return False
        fcd_id = parse_volume_handle(state.source_volume_handle)
        if not fcd_id:
            raise VcMigrateError(f"PV {state.pv_name} has no volume handle; carrier VM {state.carrier_vm_name} kept")
        self._release_carrier(carrier, fcd_id)
        return True

    def resume_relocating(self, state: PersistentVolumeMigrationState, backups: List[BackupManifest]) -> None:
        """A record left in Relocating by an interrupted run."""
        if self._carrier_at_target(state) is not None:
            self.logger.info("Carrier VM %s found at target; relocation had completed", state.carrier_vm_name)
            state.status = VolumeStatus.RELOCATED
            state.message = f"disk relocated to {self.settings.target.host}"
            return
        state.fail(
            f"relocation of carrier VM {state.carrier_vm_name} was interrupted and the VM is not at the target"
        )

    # Relocated -> Registered

    def register(self, state: PersistentVolumeMigrationState, backups: List[BackupManifest]) -> None:
        fcd_id = parse_volume_handle(state.source_volume_handle)
        tp = self.settings.target_placement

        carrier = self._carrier_at_target(state)
        if carrier is not None:
            try:
                self.target_fcd.detach(carrier, fcd_id)
            except VMwareError as e:
                self.logger.error("Failed to detach FCD %s from carrier VM %s at target: %s", fcd_id, state.carrier_vm_name, e)

        backing_path = build_datastore_path(tp.datastore, f"fcd/{fcd_id}.vmdk")
        try:
            datastore = self.target.datastore(tp.datacenter, tp.datastore)
            disk = self.target_fcd.lookup(fcd_id, datastore=datastore)
            backing_path = disk.backing_path or backing_path
        except (NotFoundError, VMwareError) as e:
            self.logger.warning("FCD %s not resolvable at target (%s); using %s", fcd_id, e, backing_path)

        try:
            info = self.cns.query(fcd_id)
            self.logger.info("FCD %s is already a CNS volume at target", fcd_id)
        except NotFoundError:
            info = self.cns.register(backing_path, state.pv_name, "", self.settings.cluster_id)

        state.target_volume_id = info.id
        state.target_volume_handle = build_volume_handle(info.id)
        state.status = VolumeStatus.REGISTERED
        state.message = f"registered as CNS volume {info.id}"

    # Registered -> Complete

    def complete(self, state: PersistentVolumeMigrationState, backups: List[BackupManifest]) -> None:
        fcd_id = parse_volume_handle(state.source_volume_handle)

        self.volumes.set_volume_handle(state.pv_name, state.target_volume_handle)

        carrier = self._carrier_at_target(state)
        if carrier is not None:
            # Destroying a VM deletes its attached disks.
            self.target_fcd.verify_not_attached(carrier, fcd_id)
            self.relocator.delete_carrier_vm(carrier)
        else:
            self.logger.info("Carrier VM %s already gone", state.carrier_vm_name)

        self.workloads.restore_workloads(state.scaled_down_resources)

        if state.original_reclaim_policy and state.original_reclaim_policy != RECLAIM_RETAIN:
            self.volumes.set_reclaim_policy(state.pv_name, state.original_reclaim_policy)

        state.status = VolumeStatus.COMPLETE
        state.message = f"migrated to {state.target_volume_handle}"


class MigrationRunner:
    """Batch pass over every discovered volume, plus discovery and rollback."""

    def __init__(
        self,
        logger: logging.Logger,
        settings: MigrationSettings,
        store: StateStore,
        *,
        volumes: PersistentVolumeManager,
        workloads: WorkloadManager,
        migrator_factory: Optional[Callable[[Callable[[], None]], VolumeMigrator]] = None,
        restore: Optional[RestoreManager] = None,
    ) -> None:
        self.logger = logger
        self.settings = settings
        self.store = store
        self.volumes = volumes
        self.workloads = workloads
        self.migrator_factory = migrator_factory
        self.restore = restore
        self.status = CSIVolumeMigrationStatus()
        self.backups: List[BackupManifest] = []

    def load(self) -> None:
        self.status, self.backups = self.store.load()

    def save(self) -> None:
        self.status.recompute()
        self.store.save(self.status, self.backups)

    def discover_volumes(self) -> int:
        """
        Add a Pending record for every vSphere CSI volume not yet tracked.

        Returns the number of new records. Existing records are left alone.
        """
        added = 0
        excluded = set(self.settings.excluded_namespaces)
        for pv in self.volumes.list_vsphere_csi_volumes():
            if pv.claim_namespace and pv.claim_namespace in excluded:
                self.logger.debug("Skipping PV %s: namespace %s excluded", pv.name, pv.claim_namespace)
                continue
            if self.status.get(pv.name) is not None:
                continue
            self.status.volumes.append(
                PersistentVolumeMigrationState(
                    pv_name=pv.name,
                    pvc_name=pv.claim_name,
                    pvc_namespace=pv.claim_namespace,
                    source_volume_handle=pv.volume_handle,
                    status=VolumeStatus.PENDING,
                )
            )
            added += 1
        self.status.recompute()
        self.logger.info("Discovered %d new volume(s); tracking %d", added, self.status.total_volumes)
        return added

    def migrate_all(self) -> CSIVolumeMigrationStatus:
        """
        Run every non-terminal volume to completion or failure.

        All volumes are processed and the state is saved before an
        AggregateError naming the failed volumes is raised.
        """
        if self.migrator_factory is None:
            raise VcMigrateError("no volume migrator configured")
        migrator = self.migrator_factory(self.save)

        for state in self.status.volumes:
            if state.status.terminal:
                continue
            Log.banner(self.logger, f"Volume {state.pv_name}")
            migrator.migrate(state, self.backups)

        self.status.recompute()
        failed = [v for v in self.status.volumes if v.status == VolumeStatus.FAILED]
        self.status.message = (
            f"{self.status.migrated_volumes}/{self.status.total_volumes} volume(s) migrated, "
            f"{self.status.failed_volumes} failed"
        )
        self.save()
        self.log_summary()
        if failed:
            raise AggregateError.from_errors(
                "volume migration",
                [VcMigrateError(f"{v.pv_name}: {v.message}") for v in failed],
            )
        return self.status

    def run(self) -> CSIVolumeMigrationStatus:
        self.load()
        self.discover_volumes()
        self.save()
        return self.migrate_all()

    def log_summary(self) -> None:
        st = self.status
        st.recompute()
        Log.banner(self.logger, "CSI volume migration summary")
        self.logger.info(
            "Total: %d  Migrated: %d  Failed: %d  In progress: %d",
            st.total_volumes,
            st.migrated_volumes,
            st.failed_volumes,
            st.total_volumes - st.migrated_volumes - st.failed_volumes,
        )
        for v in st.volumes:
            if v.status == VolumeStatus.FAILED:
                Log.fail(self.logger, f"{v.pv_name}: {v.message}")

    def carriers_to_release(self) -> List[PersistentVolumeMigrationState]:
        """Records that may still have a carrier VM holding their disk at the source."""
        return [
            v
            for v in self.status.volumes
            if v.carrier_vm_name and v.status not in (VolumeStatus.COMPLETE, VolumeStatus.RELOCATING)
        ]

    def rollback(self) -> None:
        """
        Undo quiesce side effects for every volume that is not Complete:
        free its disk from a leftover source carrier VM, resume its
        workloads, restore its reclaim policy and replay its workload
        snapshots. All volumes are attempted; errors are aggregated.

        Carriers are only released when a migrator factory is configured.
        A record still in Relocating is left alone because its relocation
        task may be running.
        """
        errors: List[BaseException] = []
        restore_keys = set()
        releasable = {v.pv_name for v in self.carriers_to_release()}
        migrator = None
        if releasable and self.migrator_factory is not None:
            migrator = self.migrator_factory(self.save)
        for v in self.status.volumes:
            if v.status == VolumeStatus.COMPLETE:
                continue
            self.logger.info("Rolling back volume %s (%s)", v.pv_name, v.status.value)
            if v.status == VolumeStatus.RELOCATING and v.carrier_vm_name:
                Log.warn(self.logger, f"Carrier VM {v.carrier_vm_name} may still be relocating; not touched")
            elif migrator is not None and v.pv_name in releasable:
                try:
                    migrator.release_carrier(v)
                except VcMigrateError as e:
                    self.logger.error("Failed to release carrier VM %s: %s", v.carrier_vm_name, e)
                    errors.append(e)
            try:
                self.workloads.restore_workloads(v.scaled_down_resources)
            except AggregateError as e:
                errors.extend(e.errors)
            for r in v.scaled_down_resources:
                restore_keys.add((r.kind.lower(), r.name, r.namespace))

            if v.original_reclaim_policy and v.original_reclaim_policy != RECLAIM_RETAIN:
                try:
                    self.volumes.set_reclaim_policy(v.pv_name, v.original_reclaim_policy)
                except NotFoundError:
                    self.logger.info("PV %s no longer exists, reclaim policy not restored", v.pv_name)
                except VcMigrateError as e:
                    errors.append(e)
            v.message = f"rolled back from {v.status.value}"

        manifests = [m for m in self.backups if m.key in restore_keys]
        if manifests and self.restore is not None:
            try:
                self.restore.restore_all(manifests)
            except AggregateError as e:
                errors.extend(e.errors)

        self.save()
        if errors:
            raise AggregateError.from_errors("rollback", errors)
        Log.ok(self.logger, "Rollback finished")
