# SPDX-License-Identifier: LGPL-3.0-or-later
# vcmigrate/config/__init__.py
from .config_loader import Config
from .settings import CarrierConfig, EndpointConfig, MigrationSettings, PlacementConfig, TimeoutConfig

__all__ = ["Config", "CarrierConfig", "EndpointConfig", "MigrationSettings", "PlacementConfig", "TimeoutConfig"]
