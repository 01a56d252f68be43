# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import argparse

import pytest
import yaml

from fakes.fake_logger import FakeLogger
from vcmigrate.cli.args import build_parser, parse_args_with_config
from vcmigrate.cli.args.helpers import _merged_conf, _merged_get, _redacted
from vcmigrate.core.exceptions import Fatal


def _write_config(tmp_path, doc):
    path = tmp_path / "migration.yaml"
    path.write_text(yaml.safe_dump(doc), encoding="utf-8")
    return str(path)


@pytest.mark.unit
class TestBuildParser:
    def test_command_is_required(self, capsys):
        with pytest.raises(SystemExit) as ei:
            build_parser().parse_args([])
        assert ei.value.code == 2

    def test_migrate_flags(self):
        args = build_parser().parse_args(
            ["migrate", "--discover-only", "--state-file", "/tmp/s.json", "--context", "dest-admin"]
        )
        assert args.cmd == "migrate"
        assert args.discover_only is True
        assert args.state_file == "/tmp/s.json"
        assert args.kube_context == "dest-admin"

    def test_thumbprint_defaults(self):
        args = build_parser().parse_args(["thumbprint", "--host", "vc1.example.com"])
        assert (args.host, args.port, args.timeout) == ("vc1.example.com", 443, 15.0)

    def test_thumbprint_needs_host(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["thumbprint"])

    def test_global_flags(self):
        args = build_parser().parse_args(["-vv", "--config", "a.yaml", "--config", "b.yaml", "status"])
        assert args.verbose == 2
        assert args.config == ["a.yaml", "b.yaml"]
        assert args.cmd == "status"


@pytest.mark.unit
class TestParseArgsWithConfig:
    def test_config_values_become_defaults(self, tmp_path):
        cfg = _write_config(tmp_path, {"state_file": "/var/lib/vcmigrate/state.json", "infra_id": "ocp-abc"})

        args, conf, logger = parse_args_with_config(["--config", cfg, "status"], logger=FakeLogger())

        assert args.state_file == "/var/lib/vcmigrate/state.json"
        assert conf["infra_id"] == "ocp-abc"
        assert isinstance(logger, FakeLogger)

    def test_cli_flag_overrides_config(self, tmp_path):
        cfg = _write_config(tmp_path, {"state_file": "/var/lib/vcmigrate/state.json"})

        args, _, _ = parse_args_with_config(
            ["--config", cfg, "migrate", "--state-file", "./local.json"], logger=FakeLogger()
        )

        assert args.state_file == "./local.json"

    def test_missing_config_is_fatal(self, tmp_path):
        with pytest.raises(Fatal) as ei:
            parse_args_with_config(["--config", str(tmp_path / "nope.yaml"), "status"], logger=FakeLogger())
        assert ei.value.code == 2

    @pytest.mark.security
    def test_dump_config_redacts_passwords(self, tmp_path, capsys):
        cfg = _write_config(
            tmp_path,
            {
                "source": {"host": "vc1", "user": "admin", "password": "hunter2"},
                "target": {"host": "vc2", "user": "admin", "password_env": "TARGET_VC_PASSWORD"},
            },
        )

        with pytest.raises(SystemExit) as ei:
            parse_args_with_config(["--config", cfg, "--dump-config", "status"], logger=FakeLogger())

        assert ei.value.code == 0
        out = yaml.safe_load(capsys.readouterr().out)
        assert out["source"]["password"] == "<redacted>"
        assert out["target"]["password_env"] == "TARGET_VC_PASSWORD"
        assert out["source"]["host"] == "vc1"


@pytest.mark.unit
class TestHelpers:
    def test_merged_get_prefers_non_empty_flag(self):
        conf = {"state_file": "/from/config.json"}
        assert _merged_get(argparse.Namespace(state_file="  "), conf, "state_file") == "/from/config.json"
        assert _merged_get(argparse.Namespace(state_file="/cli.json"), conf, "state_file") == "/cli.json"
        assert _merged_get(argparse.Namespace(), conf, "kubeconfig") is None

    def test_merged_conf_folds_overrides(self):
        conf = {"state_file": "/from/config.json", "infra_id": "ocp-abc"}
        args = argparse.Namespace(state_file=None, kubeconfig="/home/me/.kube/config", kube_context="dst")

        merged = _merged_conf(args, conf)

        assert merged == {
            "state_file": "/from/config.json",
            "infra_id": "ocp-abc",
            "kubeconfig": "/home/me/.kube/config",
            "kube_context": "dst",
        }
        assert "kubeconfig" not in conf

    @pytest.mark.security
    def test_redacted_walks_lists(self):
        doc = {"endpoints": [{"password": "x", "token_env": "TOK"}], "infra_id": "a"}
        assert _redacted(doc) == {"endpoints": [{"password": "<redacted>", "token_env": "TOK"}], "infra_id": "a"}
