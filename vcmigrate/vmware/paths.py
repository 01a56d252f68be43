# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/vmware/paths.py
from __future__ import annotations

import re
from typing import Tuple

from ..core.exceptions import InvalidPathFormat

VOLUME_HANDLE_SCHEME = "file"
_HANDLE_PREFIX = VOLUME_HANDLE_SCHEME + "://"

_BACKING_RE = re.compile(r"^\[([^\[\]]+)\]\s*(.*)$")


def parse_datastore_path(path: str) -> Tuple[str, str]:
    """
    Split ``[datastore] relative/path.vmdk`` into its two parts.

    >>> parse_datastore_path("[vsanDatastore] fcd/abc.vmdk")
    ('vsanDatastore', 'fcd/abc.vmdk')
    """
    m = _BACKING_RE.match((path or "").strip())
    if not m:
        raise InvalidPathFormat(f"invalid datastore path format: {path!r}")
    return m.group(1), m.group(2).strip()


def build_datastore_path(datastore: str, rel_path: str) -> str:
    return f"[{datastore}] {rel_path}"


def parse_volume_handle(handle: str) -> str:
    """Disk-object id from ``file://<id>`` or a bare ``<id>``."""
    h = (handle or "").strip()
    if h.startswith(_HANDLE_PREFIX):
        return h[len(_HANDLE_PREFIX):]
    return h


def build_volume_handle(disk_id: str) -> str:
    return _HANDLE_PREFIX + disk_id
