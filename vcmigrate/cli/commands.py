# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/cli/commands.py
from __future__ import annotations

import argparse
import contextlib
import logging
from typing import Any, Callable, Dict

from rich import box
from rich.console import Console
from rich.table import Table

from ..backup.restore import RestoreManager
from ..backup.snapshot import BackupManager
from ..config.settings import MigrationSettings
from ..core.exceptions import AggregateError, format_exception_for_cli
from ..core.logger import Log
from ..core.polling import CancelToken
from ..k8s.attachments import VolumeAttachmentManager
from ..k8s.client import dynamic_client, load_api_client
from ..k8s.volumes import PersistentVolumeManager
from ..k8s.workloads import WorkloadManager
from ..models.migration import VolumeStatus
from ..orchestrator.state_store import StateStore
from ..orchestrator.volume_migration import MigrationRunner, VolumeMigrator
from ..vmware.client import VSphereClient
from ..vmware.cns import CNSManager
from ..vmware.fcd import FCDManager
from ..vmware.relocate import VMRelocator
from ..vmware.thumbprint import server_thumbprint
from .args.helpers import _merged_conf, _merged_get

EXIT_VOLUMES_FAILED = 2

_STATUS_STYLE = {
    VolumeStatus.COMPLETE: "green",
    VolumeStatus.FAILED: "red",
    VolumeStatus.PENDING: "white",
}


def _settings(args: argparse.Namespace, conf: Dict[str, Any]) -> MigrationSettings:
    return MigrationSettings.from_dict(_merged_conf(args, conf))


def _cluster_managers(logger: logging.Logger, settings: MigrationSettings):
    api = load_api_client(settings.kubeconfig, settings.kube_context, logger)
    volumes = PersistentVolumeManager(logger, api, driver=settings.csi_driver)
    workloads = WorkloadManager(logger, api, volumes=volumes, pod_poll_interval_s=settings.timeouts.pod_poll_s)
    return api, volumes, workloads


def _migrator_factory(
    logger: logging.Logger,
    settings: MigrationSettings,
    api: Any,
    volumes: PersistentVolumeManager,
    workloads: WorkloadManager,
    source: VSphereClient,
    target: VSphereClient,
    cancel: CancelToken,
) -> Callable[[Callable[[], None]], VolumeMigrator]:
    t = settings.timeouts

    def _migrator(persist: Callable[[], None]) -> VolumeMigrator:
        return VolumeMigrator(
            logger,
            settings,
            source=source,
            target=target,
            source_fcd=FCDManager(
                logger, source, detach_poll_interval_s=t.detach_poll_s, task_poll_interval_s=t.task_poll_s, cancel=cancel
            ),
            target_fcd=FCDManager(
                logger, target, detach_poll_interval_s=t.detach_poll_s, task_poll_interval_s=t.task_poll_s, cancel=cancel
            ),
            relocator=VMRelocator(
                logger,
                source,
                target,
                relocate_poll_interval_s=t.relocate_poll_s,
                max_consecutive_errors=t.relocate_max_consecutive_errors,
                task_poll_interval_s=t.task_poll_s,
                cancel=cancel,
            ),
            cns=CNSManager(
                logger, target, settings.target_placement.datacenter, task_poll_interval_s=t.task_poll_s, cancel=cancel
            ),
            volumes=volumes,
            workloads=workloads,
            attachments=VolumeAttachmentManager(logger, api, poll_interval_s=t.volume_attachment_poll_s),
            backup=BackupManager(logger, api_client=api),
            persist=persist,
            cancel=cancel,
        )

    return _migrator


def cmd_migrate(logger: logging.Logger, args: argparse.Namespace, conf: Dict[str, Any]) -> int:
    settings = _settings(args, conf)
    cancel = CancelToken()
    store = StateStore(logger, settings.state_file)
    api, volumes, workloads = _cluster_managers(logger, settings)

    if getattr(args, "discover_only", False):
        runner = MigrationRunner(logger, settings, store, volumes=volumes, workloads=workloads)
        runner.load()
        runner.discover_volumes()
        runner.save()
        return 0

    Log.banner(logger, f"Migrating CSI volumes {settings.source.host} -> {settings.target.host}")
    with VSphereClient.from_endpoint(logger, settings.source) as source, VSphereClient.from_endpoint(
        logger, settings.target
    ) as target:
        runner = MigrationRunner(
            logger,
            settings,
            store,
            volumes=volumes,
            workloads=workloads,
            migrator_factory=_migrator_factory(logger, settings, api, volumes, workloads, source, target, cancel),
        )
        try:
            runner.run()
        except AggregateError as e:
            logger.error("%s", format_exception_for_cli(e, verbose=0))
            return EXIT_VOLUMES_FAILED
    return 0


def cmd_rollback(logger: logging.Logger, args: argparse.Namespace, conf: Dict[str, Any]) -> int:
    settings = _settings(args, conf)
    store = StateStore(logger, settings.state_file)
    if not store.exists():
        Log.warn(logger, f"No state file at {settings.state_file}; nothing to roll back")
        return 0
    api, volumes, workloads = _cluster_managers(logger, settings)
    runner = MigrationRunner(
        logger,
        settings,
        store,
        volumes=volumes,
        workloads=workloads,
        restore=RestoreManager(logger, dynamic_client(api)),
    )
    runner.load()
    Log.banner(logger, "Rollback")
    with contextlib.ExitStack() as stack:
        if runner.carriers_to_release():
            # Leftover carrier VMs hold their disks until detached at the source.
            source = stack.enter_context(VSphereClient.from_endpoint(logger, settings.source))
            target = stack.enter_context(VSphereClient.from_endpoint(logger, settings.target))
            runner.migrator_factory = _migrator_factory(
                logger, settings, api, volumes, workloads, source, target, CancelToken()
            )
        try:
            runner.rollback()
        except AggregateError as e:
            logger.error("%s", format_exception_for_cli(e, verbose=0))
            return EXIT_VOLUMES_FAILED
    return 0


def render_status_table(store: StateStore) -> Table:
    status, backups = store.load()
    table = Table(
        title=f"CSI volume migration ({status.migrated_volumes}/{status.total_volumes} migrated, "
        f"{status.failed_volumes} failed, {len(backups)} backup(s))",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("PV", style="cyan")
    table.add_column("Claim")
    table.add_column("Status")
    table.add_column("Target handle")
    table.add_column("Scaled", justify="right")
    table.add_column("Message")
    for v in status.volumes:
        style = _STATUS_STYLE.get(v.status, "yellow")
        claim = f"{v.pvc_namespace}/{v.pvc_name}" if v.pvc_name else "-"
        table.add_row(
            v.pv_name,
            claim,
            f"[{style}]{v.status.value}[/{style}]",
            v.target_volume_handle or "-",
            str(len(v.scaled_down_resources)),
            v.message or "",
        )
    return table


def cmd_status(logger: logging.Logger, args: argparse.Namespace, conf: Dict[str, Any]) -> int:
    state_file = _merged_get(args, conf, "state_file") or "./vcmigrate-state.json"
    store = StateStore(logger, str(state_file))
    if not store.exists():
        Log.warn(logger, f"No state file at {state_file}")
        return 1
    Console().print(render_status_table(store))
    return 0


def cmd_thumbprint(logger: logging.Logger, args: argparse.Namespace, conf: Dict[str, Any]) -> int:
    host = str(args.host)
    server = host if (":" in host) else f"{host}:{args.port}"
    print(server_thumbprint(server, timeout=args.timeout))
    return 0


COMMANDS: Dict[str, Callable[[logging.Logger, argparse.Namespace, Dict[str, Any]], int]] = {
    "migrate": cmd_migrate,
    "rollback": cmd_rollback,
    "status": cmd_status,
    "thumbprint": cmd_thumbprint,
}


def run_command(logger: logging.Logger, args: argparse.Namespace, conf: Dict[str, Any]) -> int:
    return COMMANDS[args.cmd](logger, args, conf)
