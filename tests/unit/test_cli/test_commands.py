# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import argparse
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from fakes.fake_logger import FakeLogger
from fakes.k8s_objects import csi_pv
from fakes.sample_config import sample_config
from vcmigrate import __main__ as entry
from vcmigrate.cli import commands
from vcmigrate.core.exceptions import AggregateError, Fatal, RelocateError, VcMigrateError
from vcmigrate.k8s.volumes import PersistentVolumeManager
from vcmigrate.k8s.workloads import WorkloadManager
from vcmigrate.models.migration import (
    BackupManifest,
    CSIVolumeMigrationStatus,
    PersistentVolumeMigrationState,
    ScaledResource,
    VolumeStatus,
)
from vcmigrate.orchestrator.state_store import StateStore
from vcmigrate.orchestrator.volume_migration import VolumeMigrator


def _args(**kw):
    base = {"state_file": None, "kubeconfig": None, "kube_context": None, "discover_only": False}
    base.update(kw)
    return argparse.Namespace(**base)


def _seed_state(path):
    store = StateStore(FakeLogger(), str(path))
    store.save(
        CSIVolumeMigrationStatus(
            volumes=[
                PersistentVolumeMigrationState(
                    pv_name="pv-1",
                    pvc_name="data",
                    pvc_namespace="default",
                    target_volume_handle="file://vol-1",
                    status=VolumeStatus.COMPLETE,
                    message="migrated",
                    scaled_down_resources=[ScaledResource("Deployment", "web", "default", 3)],
                ),
                PersistentVolumeMigrationState(pv_name="pv-2", status=VolumeStatus.FAILED, message="relocate failed"),
            ]
        ),
        [BackupManifest("deployment", "web", "default", "ZGF0YQ==", "2024-01-01T00:00:00Z")],
    )
    return store


@pytest.mark.unit
class TestStatus:
    def test_table(self, tmp_path):
        table = commands.render_status_table(_seed_state(tmp_path / "state.json"))

        assert table.title == "CSI volume migration (1/2 migrated, 1 failed, 1 backup(s))"
        assert [col.header for col in table.columns] == ["PV", "Claim", "Status", "Target handle", "Scaled", "Message"]
        assert table.row_count == 2

        console = Console(record=True, width=160)
        console.print(table)
        text = console.export_text()
        assert "default/data" in text
        assert "file://vol-1" in text
        assert "Failed" in text

    def test_cmd_status_prints(self, tmp_path, capsys):
        path = tmp_path / "state.json"
        _seed_state(path)

        assert commands.cmd_status(FakeLogger(), _args(state_file=str(path)), {}) == 0
        assert "pv-2" in capsys.readouterr().out

    def test_cmd_status_uses_config_path(self, tmp_path, capsys):
        path = tmp_path / "state.json"
        _seed_state(path)

        assert commands.cmd_status(FakeLogger(), _args(), {"state_file": str(path)}) == 0

    def test_missing_state(self, tmp_path):
        log = FakeLogger()
        assert commands.cmd_status(log, _args(state_file=str(tmp_path / "none.json")), {}) == 1
        assert any("No state file" in m for m in log.messages("warning"))


@pytest.mark.unit
class TestThumbprint:
    def test_appends_port(self, capsys):
        with patch("vcmigrate.cli.commands.server_thumbprint", return_value="AB:CD") as tp:
            rc = commands.cmd_thumbprint(FakeLogger(), argparse.Namespace(host="vc1", port=8443, timeout=5.0), {})

        assert rc == 0
        tp.assert_called_once_with("vc1:8443", timeout=5.0)
        assert capsys.readouterr().out.strip() == "AB:CD"

    def test_keeps_explicit_port(self, capsys):
        with patch("vcmigrate.cli.commands.server_thumbprint", return_value="AB") as tp:
            commands.cmd_thumbprint(FakeLogger(), argparse.Namespace(host="vc1:9443", port=443, timeout=15.0), {})
        tp.assert_called_once_with("vc1:9443", timeout=15.0)


def _managers(pvs):
    log = FakeLogger()
    core = MagicMock()
    core.list_persistent_volume.return_value = SimpleNamespace(items=list(pvs))
    volumes = PersistentVolumeManager(log, core=core)
    return MagicMock(), volumes, MagicMock(spec=WorkloadManager)


@pytest.mark.unit
class TestMigrate:
    def test_discover_only_writes_pending_records(self, tmp_path):
        path = tmp_path / "state.json"
        conf = sample_config(state_file=str(path))
        found = _managers([csi_pv("pv-csi-1", "file://fcd-12345", claim="default/test-pvc")])

        with patch.object(commands, "_cluster_managers", return_value=found), patch.object(
            commands, "VSphereClient"
        ) as vsphere:
            rc = commands.cmd_migrate(FakeLogger(), _args(discover_only=True), conf)

        assert rc == 0
        vsphere.from_endpoint.assert_not_called()
        status, _ = StateStore(FakeLogger(), str(path)).load()
        assert [(v.pv_name, v.status) for v in status.volumes] == [("pv-csi-1", VolumeStatus.PENDING)]

    def test_failed_volumes_exit_2(self, tmp_path):
        conf = sample_config(state_file=str(tmp_path / "state.json"))
        runner_cls = MagicMock()
        runner_cls.return_value.run.side_effect = AggregateError.from_errors(
            "volume migration", [RelocateError("VM relocation task failed: boom")]
        )

        with patch.object(commands, "_cluster_managers", return_value=_managers([])), patch.object(
            commands, "VSphereClient"
        ) as vsphere, patch.object(commands, "MigrationRunner", runner_cls):
            rc = commands.cmd_migrate(FakeLogger(), _args(), conf)

        assert rc == commands.EXIT_VOLUMES_FAILED
        hosts = [c.args[1].host for c in vsphere.from_endpoint.call_args_list]
        assert hosts == ["vc1.example.com", "vc2.example.com"]

        factory = runner_cls.call_args.kwargs["migrator_factory"]
        migrator = factory(lambda: None)
        assert isinstance(migrator, VolumeMigrator)

    def test_success(self, tmp_path):
        conf = sample_config(state_file=str(tmp_path / "state.json"))
        with patch.object(commands, "_cluster_managers", return_value=_managers([])), patch.object(
            commands, "VSphereClient"
        ), patch.object(commands, "MigrationRunner") as runner_cls:
            assert commands.cmd_migrate(FakeLogger(), _args(), conf) == 0
        runner_cls.return_value.run.assert_called_once_with()

    def test_kube_flags_override_config(self, tmp_path):
        conf = sample_config(state_file=str(tmp_path / "state.json"), kube_context="from-config")
        with patch.object(commands, "_cluster_managers", return_value=_managers([])) as cm, patch.object(
            commands, "VSphereClient"
        ), patch.object(commands, "MigrationRunner"):
            commands.cmd_migrate(FakeLogger(), _args(kube_context="dest-admin"), conf)

        settings = cm.call_args.args[1]
        assert settings.kube_context == "dest-admin"


@pytest.mark.unit
class TestRollback:
    def test_nothing_to_roll_back(self, tmp_path):
        conf = sample_config(state_file=str(tmp_path / "none.json"))
        with patch.object(commands, "_cluster_managers") as cm:
            assert commands.cmd_rollback(FakeLogger(), _args(), conf) == 0
        cm.assert_not_called()

    def test_rollback_errors_exit_2(self, tmp_path):
        path = tmp_path / "state.json"
        _seed_state(path)
        conf = sample_config(state_file=str(path))
        api, volumes, workloads = _managers([])
        workloads.restore_workloads.side_effect = AggregateError.from_errors(
            "workload restore", [VcMigrateError("scale failed")]
        )

        with patch.object(commands, "_cluster_managers", return_value=(api, volumes, workloads)), patch.object(
            commands, "dynamic_client"
        ), patch.object(commands, "RestoreManager"):
            rc = commands.cmd_rollback(FakeLogger(), _args(), conf)

        assert rc == commands.EXIT_VOLUMES_FAILED

    def test_leftover_carrier_connects_to_vcenters(self, tmp_path):
        path = tmp_path / "state.json"
        store = _seed_state(path)
        status, backups = store.load()
        status.volumes[1].carrier_vm_name = "csi-migration-ocp-abc-pv-2"
        store.save(status, backups)
        conf = sample_config(state_file=str(path))

        with patch.object(commands, "_cluster_managers", return_value=_managers([])), patch.object(
            commands, "dynamic_client"
        ), patch.object(commands, "RestoreManager"), patch.object(commands, "VSphereClient") as vsphere, patch.object(
            commands.MigrationRunner, "rollback"
        ) as rollback:
            assert commands.cmd_rollback(FakeLogger(), _args(), conf) == 0

        hosts = [c.args[1].host for c in vsphere.from_endpoint.call_args_list]
        assert hosts == ["vc1.example.com", "vc2.example.com"]
        rollback.assert_called_once_with()

    def test_no_carriers_skips_vcenters(self, tmp_path):
        path = tmp_path / "state.json"
        _seed_state(path)
        conf = sample_config(state_file=str(path))

        with patch.object(commands, "_cluster_managers", return_value=_managers([])), patch.object(
            commands, "dynamic_client"
        ), patch.object(commands, "RestoreManager"), patch.object(commands, "VSphereClient") as vsphere:
            rc = commands.cmd_rollback(FakeLogger(), _args(), conf)

        vsphere.from_endpoint.assert_not_called()
        assert rc == commands.EXIT_VOLUMES_FAILED


@pytest.mark.unit
class TestMain:
    def test_parse_fatal_uses_its_code(self, capsys):
        with patch.object(entry, "parse_args_with_config", side_effect=Fatal("Config file not found: x", code=2)):
            with pytest.raises(SystemExit) as ei:
                entry.main(["status"])
        assert ei.value.code == 2
        assert "Config file not found" in capsys.readouterr().err

    def test_command_error_code(self):
        log = FakeLogger()
        parsed = (argparse.Namespace(cmd="status", verbose=0), {}, log)
        with patch.object(entry, "parse_args_with_config", return_value=parsed), patch.object(
            entry, "run_command", side_effect=RelocateError("VM relocation task failed: boom")
        ):
            with pytest.raises(SystemExit) as ei:
                entry.main(["status"])

        assert ei.value.code == RelocateError("x").code
        assert any("VM relocation task failed: boom" in m for m in log.messages("error"))

    def test_unexpected_error_is_1(self):
        log = FakeLogger()
        parsed = (argparse.Namespace(cmd="status", verbose=0), {}, log)
        with patch.object(entry, "parse_args_with_config", return_value=parsed), patch.object(
            entry, "run_command", side_effect=RuntimeError("kaboom")
        ):
            with pytest.raises(SystemExit) as ei:
                entry.main(["status"])

        assert ei.value.code == 1
        assert any("RuntimeError: kaboom" in m for m in log.messages("error"))

    def test_return_code_passes_through(self):
        parsed = (argparse.Namespace(cmd="status", verbose=0), {}, FakeLogger())
        with patch.object(entry, "parse_args_with_config", return_value=parsed), patch.object(
            entry, "run_command", return_value=0
        ):
            with pytest.raises(SystemExit) as ei:
                entry.main([])
        assert ei.value.code == 0
