# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import pytest

from fakes.sample_config import make_settings, sample_config
from vcmigrate.config.settings import CarrierConfig, EndpointConfig, MigrationSettings
from vcmigrate.core.exceptions import Fatal


@pytest.mark.unit
class TestMigrationSettings:
    def test_defaults(self):
        s = make_settings()

        assert s.cluster_id == "ocp-abc"
        assert s.source_folder == "ocp-abc"
        assert s.csi_driver == "csi.vsphere.vmware.com"
        assert s.timeouts.detach_s == 180
        assert s.timeouts.relocate_max_consecutive_errors == 3
        assert s.carrier.memory_mb == 128
        assert s.target.url == "https://vc2.example.com/sdk"

    def test_explicit_cluster_id_and_folder(self):
        conf = sample_config(cluster_id="cluster-7")
        conf["source_placement"]["folder"] = "legacy-vms"

        s = MigrationSettings.from_dict(conf)

        assert s.cluster_id == "cluster-7"
        assert s.source_folder == "legacy-vms"

    def test_carrier_name(self):
        assert CarrierConfig().vm_name("ocp-abc", "pvc-0123456789") == "csi-migration-ocp-abc-pvc-0123"

    @pytest.mark.parametrize(
        "mutate,fragment",
        [
            (lambda c: c.pop("target"), "missing section 'target'"),
            (lambda c: c.pop("infra_id"), "infra_id is required"),
            (lambda c: c["source_placement"].pop("datastore"), "placement datastore is required"),
            (lambda c: c.update(timeouts={"detach_s": 0}), "timeouts.detach_s must be positive"),
            (lambda c: c.update(timeouts={"detach_seconds": 5}), "unknown TimeoutConfig key(s): detach_seconds"),
            (lambda c: c.update(carrier={"num_cpus": 0}), "at least 1 CPU"),
            (lambda c: c["source"].update(port=70000), "out of range"),
        ],
    )
    def test_validation(self, mutate, fragment):
        conf = sample_config()
        mutate(conf)

        with pytest.raises(Fatal) as ei:
            MigrationSettings.from_dict(conf)
        assert ei.value.code == 2
        assert fragment in str(ei.value)


@pytest.mark.security
class TestPasswords:
    def test_password_from_env(self, monkeypatch):
        monkeypatch.setenv("VC1_PASSWORD", "from-env")
        ep = EndpointConfig.from_dict({"host": "vc1", "user": "u", "password_env": "VC1_PASSWORD"}, "source")
        assert ep.password == "from-env"

    def test_unset_env(self, monkeypatch):
        monkeypatch.delenv("VC1_PASSWORD", raising=False)
        with pytest.raises(Fatal) as ei:
            EndpointConfig.from_dict({"host": "vc1", "user": "u", "password_env": "VC1_PASSWORD"}, "source")
        assert "VC1_PASSWORD" in str(ei.value)

    def test_password_required(self):
        with pytest.raises(Fatal):
            EndpointConfig.from_dict({"host": "vc1", "user": "u"}, "target")

    def test_password_not_in_repr(self):
        s = make_settings()
        assert "src-pw" not in repr(s)
        assert "dst-pw" not in repr(s.target)
