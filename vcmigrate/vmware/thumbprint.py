# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/vmware/thumbprint.py
"""
TLS thumbprints for cross-vCenter service locators.

Format: SHA-256 of the DER leaf certificate as 32 uppercase hex byte pairs
joined with ":" (95 characters).
"""
from __future__ import annotations

import hashlib
import socket
import ssl
from typing import Optional
from urllib.parse import urlparse

from ..core.exceptions import VMwareError


def calculate_thumbprint(der_cert: bytes) -> str:
    digest = hashlib.sha256(der_cert).hexdigest().upper()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def split_server(server: str, default_port: int = 443) -> tuple:
    """Accept ``host``, ``host:port`` or a URL; return (host, port)."""
    s = (server or "").strip()
    if "://" in s:
        u = urlparse(s)
        return u.hostname or "", u.port or default_port
    if s.count(":") == 1:
        host, _, port = s.partition(":")
        return host, int(port)
    return s, default_port


def fetch_leaf_certificate(host: str, port: int = 443, *, timeout: Optional[float] = 15.0) -> bytes:
    # Unverified on purpose: the thumbprint is how the peer gets pinned.
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    try:
        with socket.create_connection((host, int(port)), timeout=timeout) as sock:
            with ctx.wrap_socket(sock, server_hostname=host) as tls:
                der = tls.getpeercert(binary_form=True)
    except (OSError, ssl.SSLError) as e:
        raise VMwareError(f"failed to connect to {host}:{port} for certificate: {e}", cause=e) from e
    if not der:
        raise VMwareError(f"no certificates returned by {host}:{port}")
    return der


def server_thumbprint(server: str, *, timeout: Optional[float] = 15.0) -> str:
    host, port = split_server(server)
    if not host:
        raise VMwareError(f"cannot parse server address {server!r}")
    return calculate_thumbprint(fetch_leaf_certificate(host, port, timeout=timeout))
