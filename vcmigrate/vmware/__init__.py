# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/vmware/__init__.py
"""vSphere side of a volume migration: sessions, disks, relocation and CNS."""

from .client import VSphereClient
from .cns import CNSManager
from .fcd import FCDManager
from .relocate import CarrierVMSpec, RelocateSpec, VMRelocator

__all__ = ["VSphereClient", "CNSManager", "FCDManager", "CarrierVMSpec", "RelocateSpec", "VMRelocator"]
