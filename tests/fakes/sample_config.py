# SPDX-License-Identifier: LGPL-3.0-or-later
import copy

from vcmigrate.config.settings import MigrationSettings

SAMPLE_CONFIG = {
    "source": {"host": "vc1.example.com", "user": "administrator@vsphere.local", "password": "src-pw"},
    "target": {"host": "vc2.example.com", "user": "administrator@vsphere.local", "password": "dst-pw"},
    "source_placement": {"datacenter": "dc1", "cluster": "c1", "datastore": "ds1"},
    "target_placement": {"datacenter": "dc2", "cluster": "c2", "datastore": "ds2"},
    "infra_id": "ocp-abc",
}


def sample_config(**overrides):
    conf = copy.deepcopy(SAMPLE_CONFIG)
    conf.update(overrides)
    return conf


def make_settings(timeouts=None, **overrides):
    conf = sample_config(**overrides)
    if timeouts:
        conf["timeouts"] = dict(timeouts)
    return MigrationSettings.from_dict(conf)
