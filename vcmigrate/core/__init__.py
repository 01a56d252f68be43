# SPDX-License-Identifier: LGPL-3.0-or-later
# vcmigrate/core/__init__.py
from .exceptions import Fatal, VcMigrateError, VMwareError, KubernetesError
from .polling import CancelToken, poll_until

__all__ = ["Fatal", "VcMigrateError", "VMwareError", "KubernetesError", "CancelToken", "poll_until"]
