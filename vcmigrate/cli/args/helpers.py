# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/cli/args/helpers.py
from __future__ import annotations

import argparse
from typing import Any, Dict

from ...core.exceptions import _is_secret_key

# argparse dest -> top-level config key
_OVERRIDABLE = ("state_file", "kubeconfig", "kube_context")


def _require(v: Any) -> bool:
    """True if v is meaningfully present (treats empty/whitespace-only strings as missing)."""
    if v is None:
        return False
    if isinstance(v, str):
        return v.strip() != ""
    return True


def _merged_get(args: argparse.Namespace, conf: Dict[str, Any], key: str) -> Any:
    """Prefer CLI override if present (non-empty), else config."""
    v = getattr(args, key, None)
    if _require(v):
        return v
    return conf.get(key)


def _merged_conf(args: argparse.Namespace, conf: Dict[str, Any]) -> Dict[str, Any]:
    """Config with command-line overrides folded in, ready for MigrationSettings.from_dict."""
    out = dict(conf)
    for key in _OVERRIDABLE:
        v = _merged_get(args, conf, key)
        if _require(v):
            out[key] = v
    return out


def _redacted(conf: Any) -> Any:
    if isinstance(conf, dict):
        return {k: ("<redacted>" if _is_secret_key(str(k)) and not str(k).endswith("_env") else _redacted(v)) for k, v in conf.items()}
    if isinstance(conf, list):
        return [_redacted(v) for v in conf]
    return conf
