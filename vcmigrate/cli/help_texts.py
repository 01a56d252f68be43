# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/cli/help_texts.py
from __future__ import annotations

YAML_EXAMPLE = r"""
# vcmigrate --config migration.yaml migrate
source:
  host: vcenter-a.example.com
  user: administrator@vsphere.local
  password_env: SOURCE_VC_PASSWORD
target:
  host: vcenter-b.example.com
  user: administrator@vsphere.local
  password_env: TARGET_VC_PASSWORD
source_placement:
  datacenter: dc-a
  cluster: cluster-a
  datastore: vsanDatastore
target_placement:
  datacenter: dc-b
  cluster: cluster-b
  datastore: vsanDatastore-b
infra_id: ocp-abc12
cluster_id: ocp-abc12
state_file: ./vcmigrate-state.json
timeouts:
  detach_s: 180
  relocate_poll_s: 30
excluded_namespaces: [kube-system]
"""

COMMANDS_SUMMARY = r"""
  migrate     discover vSphere CSI volumes and move each to the target vCenter
  rollback    resume paused workloads and restore reclaim policies of unfinished volumes
  status      show the persisted per-volume status
  thumbprint  print the SHA-256 TLS thumbprint of a vCenter
"""
