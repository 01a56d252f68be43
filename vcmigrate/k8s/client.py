# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/k8s/client.py
from __future__ import annotations

import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.dynamic import DynamicClient

from ..core.exceptions import KubernetesError


def load_api_client(
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> client.ApiClient:
    """
    API client for the cluster whose volumes are migrated.

    Without an explicit kubeconfig the in-cluster service account is tried
    first, then the default kubeconfig.
    """
    log = logger or logging.getLogger("vcmigrate")
    try:
        if kubeconfig:
            log.debug("Loading kubeconfig %s (context=%s)", kubeconfig, context or "<current>")
            return config.new_client_from_config(config_file=kubeconfig, context=context)
        try:
            cfg = client.Configuration()
            config.load_incluster_config(client_configuration=cfg)
            log.debug("Using in-cluster Kubernetes configuration")
            return client.ApiClient(configuration=cfg)
        except config.ConfigException:
            log.debug("Not running in a cluster; falling back to default kubeconfig")
            return config.new_client_from_config(context=context)
    except config.ConfigException as e:
        raise KubernetesError(f"failed to load Kubernetes configuration: {e}", cause=e) from e


def dynamic_client(api_client: client.ApiClient) -> DynamicClient:
    try:
        return DynamicClient(api_client)
    except Exception as e:
        raise KubernetesError(f"failed to build dynamic client: {e}", cause=e) from e
