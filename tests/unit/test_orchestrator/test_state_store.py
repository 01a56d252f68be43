# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import json

import pytest

from fakes.fake_logger import FakeLogger
from vcmigrate.core.exceptions import Fatal
from vcmigrate.models.migration import (
    BackupManifest,
    CSIVolumeMigrationStatus,
    PersistentVolumeMigrationState,
    ScaledResource,
    VolumeStatus,
)
from vcmigrate.orchestrator import state_store
from vcmigrate.orchestrator.state_store import StateStore


def _status():
    return CSIVolumeMigrationStatus(
        volumes=[
            PersistentVolumeMigrationState(
                pv_name="pv-1",
                pvc_name="data",
                pvc_namespace="default",
                source_volume_handle="file://fcd-1",
                target_volume_handle="file://vol-1",
                target_volume_id="vol-1",
                carrier_vm_name="csi-migration-ocp-abc-pv-1",
                original_reclaim_policy="Delete",
                status=VolumeStatus.COMPLETE,
                message="migrated to file://vol-1",
                scaled_down_resources=[ScaledResource("Deployment", "web", "default", 3)],
            ),
            PersistentVolumeMigrationState(pv_name="pv-2", status=VolumeStatus.FAILED, message="boom"),
        ],
        message="1/2 volume(s) migrated, 1 failed",
    )


@pytest.mark.unit
class TestStateStore:
    def test_missing_file_is_empty(self, tmp_path):
        status, backups = StateStore(FakeLogger(), str(tmp_path / "none.json")).load()
        assert status.volumes == [] and backups == []

    def test_save_and_load(self, tmp_path):
        store = StateStore(FakeLogger(), str(tmp_path / "nested" / "state.json"))
        backups = [BackupManifest("deployment", "web", "default", "ZGF0YQ==", "2024-01-01T00:00:00Z")]

        store.save(_status(), backups)
        status, loaded = store.load()

        assert status.to_dict() == _status().to_dict()
        assert (status.total_volumes, status.migrated_volumes, status.failed_volumes) == (2, 1, 1)
        assert loaded == backups
        assert not list(tmp_path.glob("nested/*.tmp.vcmigrate"))

    def test_wire_format_uses_camel_case(self, tmp_path):
        path = tmp_path / "state.json"
        StateStore(FakeLogger(), str(path)).save(_status(), [])

        doc = json.loads(path.read_text(encoding="utf-8"))
        assert doc["version"] == 1
        vol = doc["status"]["volumes"][0]
        assert vol["pvName"] == "pv-1"
        assert vol["targetVolumeID"] == "vol-1"
        assert vol["scaledDownResources"] == [
            {"kind": "Deployment", "name": "web", "namespace": "default", "originalReplicas": 3}
        ]
        assert doc["status"]["migratedVolumes"] == 1

    def test_counts_are_derived_not_trusted(self, tmp_path):
        path = tmp_path / "state.json"
        StateStore(FakeLogger(), str(path)).save(_status(), [])
        doc = json.loads(path.read_text(encoding="utf-8"))
        doc["status"]["migratedVolumes"] = 99
        path.write_text(json.dumps(doc), encoding="utf-8")

        status, _ = StateStore(FakeLogger(), str(path)).load()
        assert status.migrated_volumes == 1

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(Fatal) as ei:
            StateStore(FakeLogger(), str(path)).load()
        assert ei.value.code == 2

    def test_failed_write_keeps_previous_state(self, tmp_path, monkeypatch):
        path = tmp_path / "state.json"
        store = StateStore(FakeLogger(), str(path))
        store.save(_status(), [])
        before = path.read_text(encoding="utf-8")

        def _boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(state_store.os, "replace", _boom)
        with pytest.raises(OSError):
            store.save(CSIVolumeMigrationStatus(), [])

        assert path.read_text(encoding="utf-8") == before
        assert not list(tmp_path.glob("*.tmp.vcmigrate"))
