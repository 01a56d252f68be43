# SPDX-License-Identifier: LGPL-3.0-or-later
# vcmigrate/k8s/__init__.py
from .attachments import VolumeAttachmentManager
from .client import dynamic_client, load_api_client
from .volumes import CSIVolume, PersistentVolumeManager, VSPHERE_CSI_DRIVER
from .workloads import WorkloadManager

__all__ = [
    "CSIVolume",
    "PersistentVolumeManager",
    "VSPHERE_CSI_DRIVER",
    "VolumeAttachmentManager",
    "WorkloadManager",
    "dynamic_client",
    "load_api_client",
]
