# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from pyVmomi import vim

from fakes.fake_logger import FakeLogger
from fakes.fake_vsphere import FakeVSphereClient, fake_task, fake_vm, fcd_disk, scsi_controller
from vcmigrate.core.exceptions import (
    AttachError,
    DetachError,
    NotFoundError,
    SafetyGateError,
    VMwareError,
    WaitTimeout,
)
from vcmigrate.vmware.backing import BackingKind, classify_backing, disk_backings
from vcmigrate.vmware.fcd import FCDManager

FOLDER = "/dc1/vm/ocp-abc"


def _mgr(client, **kw):
    kw.setdefault("detach_poll_interval_s", 0.01)
    kw.setdefault("task_poll_interval_s", 0.01)
    return FCDManager(FakeLogger(), client, **kw)


def _vso(disk_id, path, datastore=None):
    return SimpleNamespace(
        config=SimpleNamespace(
            id=SimpleNamespace(id=disk_id),
            name=f"disk-{disk_id}",
            capacityInMB=1024,
            backing=SimpleNamespace(filePath=path, datastore=datastore),
        )
    )


@pytest.mark.unit
class TestBackings:
    @pytest.mark.parametrize(
        "cls,kind",
        [
            (vim.vm.device.VirtualDisk.FlatVer2BackingInfo, BackingKind.FLAT_V2),
            (vim.vm.device.VirtualDisk.SparseVer2BackingInfo, BackingKind.SPARSE_V2),
            (vim.vm.device.VirtualDisk.SeSparseBackingInfo, BackingKind.SE_SPARSE),
            (vim.vm.device.VirtualDisk.RawDiskMappingVer1BackingInfo, BackingKind.RDM_V1),
        ],
    )
    def test_every_backing_kind_reports_its_object_id(self, cls, kind):
        vm = fake_vm("w1", [scsi_controller(), fcd_disk("fcd-1", backing_cls=cls)])
        backings = list(disk_backings(vm))

        assert [b.kind for b in backings] == [kind]
        assert backings[0].backing_object_id() == "fcd-1"
        assert backings[0].file_name == "[ds1] fcd/fcd-1.vmdk"
        assert (backings[0].controller_key, backings[0].unit_number) == (1000, 0)

    def test_unknown_backing_is_ignored(self):
        assert classify_backing(vim.vm.device.VirtualDisk.FlatVer1BackingInfo()) is None


@pytest.mark.security
class TestAttachmentSafety:
    def test_verify_not_attached_passes_for_other_disks(self):
        mgr = _mgr(FakeVSphereClient())
        vm = fake_vm("worker-1", [scsi_controller(), fcd_disk("fcd-other")])

        mgr.verify_not_attached(vm, "fcd-12345")

    def test_verify_not_attached_raises_when_attached(self):
        mgr = _mgr(FakeVSphereClient())
        vm = fake_vm("worker-3", [scsi_controller(), fcd_disk("fcd-other"), fcd_disk("fcd-12345", unit=1)])

        with pytest.raises(SafetyGateError) as ei:
            mgr.verify_not_attached(vm, "fcd-12345")

        assert "fcd-12345" in str(ei.value)
        assert "worker-3" in str(ei.value)

    def test_verify_not_attached_raises_when_devices_unreadable(self):
        mgr = _mgr(FakeVSphereClient())
        vm = SimpleNamespace(name="broken", config=None)

        with pytest.raises(SafetyGateError):
            mgr.verify_not_attached(vm, "fcd-12345")

    def test_attached_anywhere_skips_unreadable_vms(self):
        vms = [
            SimpleNamespace(name="broken", config=None),
            fake_vm("worker-2", [fcd_disk("fcd-12345")]),
        ]
        mgr = _mgr(FakeVSphereClient(folders={FOLDER: vms}))

        assert mgr.is_attached_anywhere("dc1", "ocp-abc", "fcd-12345") == (True, "worker-2")
        assert mgr.is_attached_anywhere("dc1", "ocp-abc", "fcd-other") == (False, "")

    def test_attached_anywhere_refuses_missing_folder(self):
        mgr = _mgr(FakeVSphereClient(folders={FOLDER: []}))

        with pytest.raises(SafetyGateError) as ei:
            mgr.is_attached_anywhere("dc1", "ocp-abx", "fcd-12345")
        assert "/dc1/vm/ocp-abx" in str(ei.value)
        assert isinstance(ei.value.cause, NotFoundError)

    def test_wait_until_detached_fails_on_missing_folder(self):
        mgr = _mgr(FakeVSphereClient(folders={FOLDER: []}))

        with pytest.raises(SafetyGateError) as ei:
            mgr.wait_until_detached("dc1", "typo", "fcd-12345", timeout_s=1)
        assert "/dc1/vm/typo" in str(ei.value)

    def test_wait_until_detached_returns_once_released(self):
        holder = fake_vm("worker-1", [fcd_disk("fcd-12345")])
        client = FakeVSphereClient(folders={FOLDER: [holder]})
        mgr = _mgr(client)
        answers = iter([(True, "worker-1"), (True, "worker-1"), (False, "")])
        mgr.is_attached_anywhere = lambda dc, folder, disk: next(answers)

        mgr.wait_until_detached("dc1", "ocp-abc", "fcd-12345", timeout_s=5)

    def test_wait_until_detached_timeout_names_holder(self):
        client = FakeVSphereClient(folders={FOLDER: [fake_vm("worker-3", [fcd_disk("fcd-12345")])]})
        mgr = _mgr(client)

        with pytest.raises(WaitTimeout) as ei:
            mgr.wait_until_detached("dc1", "ocp-abc", "fcd-12345", timeout_s=0.05)

        msg = str(ei.value)
        assert "worker-3" in msg
        assert "0.05s" in msg
        assert ei.value.context == {"fcd": "fcd-12345", "vm": "worker-3"}

    def test_wait_until_detached_aborts_on_query_error(self):
        mgr = _mgr(FakeVSphereClient())

        def _boom(dc, folder, disk):
            raise RuntimeError("session expired")

        mgr.is_attached_anywhere = _boom
        with pytest.raises(VMwareError) as ei:
            mgr.wait_until_detached("dc1", "ocp-abc", "fcd-12345", timeout_s=5)
        assert "session expired" in str(ei.value)


@pytest.mark.unit
class TestLookup:
    def test_lookup_on_given_datastore(self):
        client = FakeVSphereClient()
        ds = SimpleNamespace(name="ds1")
        client.vsom = MagicMock()
        client.vsom.RetrieveVStorageObject.return_value = _vso("fcd-1", "[ds1] fcd/fcd-1.vmdk")

        info = _mgr(client).lookup("fcd-1", datastore=ds)

        assert info.id == "fcd-1"
        assert info.backing_path == "[ds1] fcd/fcd-1.vmdk"
        assert info.datastore is ds
        assert info.capacity_mb == 1024

    def test_lookup_not_found_on_given_datastore(self):
        client = FakeVSphereClient()
        client.vsom = MagicMock()
        client.vsom.RetrieveVStorageObject.side_effect = vim.fault.NotFound()

        with pytest.raises(NotFoundError):
            _mgr(client).lookup("fcd-1", datastore=SimpleNamespace(name="ds1"))

    def test_lookup_scans_all_datastores(self):
        ds1, ds2 = SimpleNamespace(name="ds1"), SimpleNamespace(name="ds2")
        client = FakeVSphereClient(datastores={"ds1": ds1, "ds2": ds2})
        client.vsom = MagicMock()
        client.vsom.ListVStorageObject.side_effect = lambda datastore: (
            [SimpleNamespace(id="fcd-9")] if datastore is ds2 else []
        )
        client.vsom.RetrieveVStorageObject.return_value = _vso("fcd-9", "[ds2] fcd/fcd-9.vmdk")

        info = _mgr(client).lookup("fcd-9")

        assert info.datastore is ds2
        with pytest.raises(NotFoundError):
            _mgr(client).lookup("fcd-missing")

    def test_list_all_skips_failing_datastore(self):
        ds1, ds2 = SimpleNamespace(name="ds1"), SimpleNamespace(name="ds2")
        client = FakeVSphereClient(datastores={"ds1": ds1, "ds2": ds2})
        client.vsom = MagicMock()

        def _list(datastore):
            if datastore is ds1:
                raise RuntimeError("inaccessible")
            return [SimpleNamespace(id="fcd-a"), SimpleNamespace(id="fcd-b")]

        client.vsom.ListVStorageObject.side_effect = _list
        client.vsom.RetrieveVStorageObject.side_effect = lambda id, datastore: _vso(id.id, f"[ds2] fcd/{id.id}.vmdk")

        fcds = _mgr(client).list_all()
        assert [f.id for f in fcds] == ["fcd-a", "fcd-b"]
        assert [f.id for f in _mgr(client).list_on_datastore(ds2)] == ["fcd-a", "fcd-b"]
        with pytest.raises(VMwareError):
            _mgr(client).list_on_datastore(ds1)


@pytest.mark.unit
class TestMutations:
    def test_attach_and_detach(self):
        client = FakeVSphereClient()
        vm = MagicMock()
        vm.name = "carrier"
        vm.AttachDisk_Task.return_value = fake_task()
        vm.DetachDisk_Task.return_value = fake_task()
        mgr = _mgr(client)

        mgr.attach(vm, "ds", "fcd-1", 1000, 0)
        mgr.detach(vm, "fcd-1")

        kwargs = vm.AttachDisk_Task.call_args.kwargs
        assert kwargs["diskId"].id == "fcd-1"
        assert (kwargs["controllerKey"], kwargs["unitNumber"]) == (1000, 0)
        assert client.calls == ["AttachDisk_Task", "DetachDisk_Task"]

    def test_failed_tasks_are_typed(self):
        err = SimpleNamespace(localizedMessage="device busy")
        vm = MagicMock()
        vm.name = "carrier"
        vm.AttachDisk_Task.return_value = fake_task(state="error", error=err)
        vm.DetachDisk_Task.return_value = fake_task(state="error", error=err)
        mgr = _mgr(FakeVSphereClient())

        with pytest.raises(AttachError) as ei:
            mgr.attach(vm, "ds", "fcd-1", 1000, 0)
        assert "device busy" in str(ei.value)
        with pytest.raises(DetachError):
            mgr.detach(vm, "fcd-1")

    def test_register_existing_and_delete(self):
        client = FakeVSphereClient()
        client.vsom = MagicMock()
        client.vsom.RegisterDisk.return_value = _vso("fcd-new", "")
        client.vsom.DeleteVStorageObject_Task.return_value = fake_task()
        mgr = _mgr(client)

        info = mgr.register_existing("ds1", "kubevols/pv-1.vmdk", "pv-1")
        mgr.delete("ds", "fcd-new")

        client.vsom.RegisterDisk.assert_called_once_with(path="[ds1] kubevols/pv-1.vmdk", name="pv-1")
        assert info.id == "fcd-new"
        assert info.backing_path == "[ds1] kubevols/pv-1.vmdk"
        assert client.vsom.DeleteVStorageObject_Task.call_args.kwargs["id"].id == "fcd-new"
