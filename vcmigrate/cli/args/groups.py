# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/cli/args/groups.py
from __future__ import annotations

import argparse


def _add_global_config_logging(p: argparse.ArgumentParser) -> None:
    # Global config/logging (two-phase parse relies on these)
    from ... import __version__

    p.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML config file, glob or directory (repeatable; later overrides earlier).",
    )
    p.add_argument("--dump-config", action="store_true", help="Print merged config (secrets redacted) and exit.")
    p.add_argument("--version", action="version", version=__version__)
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -v, -vv, -vvv")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Less output: -q warnings, -qq errors only.")
    p.add_argument("--log-file", dest="log_file", default=None, help="Write logs to file.")
    p.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit logs as JSON lines.")
    p.add_argument("--no-color", dest="no_color", action="store_true", help="Disable colored output.")


def _add_state_knobs(p: argparse.ArgumentParser) -> None:
    p.add_argument("--state-file", dest="state_file", default=None, help="JSON file holding migration state.")


def _add_cluster_knobs(p: argparse.ArgumentParser) -> None:
    p.add_argument("--kubeconfig", dest="kubeconfig", default=None, help="Kubeconfig path (default: in-cluster, then ~/.kube/config).")
    p.add_argument("--context", dest="kube_context", default=None, help="Kubeconfig context.")


def _add_migrate_command(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("migrate", help="Migrate every vSphere CSI volume to the target vCenter.")
    _add_state_knobs(p)
    _add_cluster_knobs(p)
    p.add_argument(
        "--discover-only",
        dest="discover_only",
        action="store_true",
        help="Record newly found volumes as Pending and stop.",
    )


def _add_rollback_command(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("rollback", help="Resume workloads and restore reclaim policies of unfinished volumes.")
    _add_state_knobs(p)
    _add_cluster_knobs(p)


def _add_status_command(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("status", help="Show persisted per-volume migration status.")
    _add_state_knobs(p)


def _add_thumbprint_command(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("thumbprint", help="Print the SHA-256 TLS thumbprint of a vCenter.")
    p.add_argument("--host", dest="host", required=True, help="vCenter host (or host:port, or URL).")
    p.add_argument("--port", dest="port", type=int, default=443, help="TLS port.")
    p.add_argument("--timeout", dest="timeout", type=float, default=15.0, help="Connect timeout in seconds.")
