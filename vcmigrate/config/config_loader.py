# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vcmigrate/config/config_loader.py
from __future__ import annotations

import argparse
import glob
import os
from typing import Any, Dict, Iterator, List

import yaml

from ..core.exceptions import Fatal

CONFIG_SUFFIXES = (".yaml", ".yml")


class Config:
    """
    YAML config files layered left to right.

    Later files win; mappings are merged key by key, everything else
    (lists included) is replaced.
    """

    @staticmethod
    def expand_configs(logger: Any, paths: List[str]) -> List[str]:
        """Expand globs and directories (``*.yaml``/``*.yml`` inside, sorted)."""
        out: List[str] = []
        for raw in paths:
            p = os.path.expanduser(str(raw))
            if os.path.isdir(p):
                found = sorted(
                    os.path.join(p, name) for name in os.listdir(p) if name.endswith(CONFIG_SUFFIXES)
                )
                logger.debug("Config dir %s: %d file(s)", p, len(found))
                out.extend(found)
                continue
            matches = sorted(glob.glob(p)) if glob.has_magic(p) else [p]
            if not matches:
                raise Fatal(f"Config pattern matched nothing: {raw}", code=2)
            out.extend(matches)
        return out

    @staticmethod
    def load_file(logger: Any, path: str) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise Fatal(f"Config file not found: {path}", code=2, cause=e) from e
        except yaml.YAMLError as e:
            raise Fatal(f"Invalid YAML in {path}: {e}", code=2, cause=e) from e
        except OSError as e:
            raise Fatal(f"Cannot read config {path}: {e}", code=2, cause=e) from e
        if data is None:
            logger.debug("Config %s is empty", path)
            return {}
        if not isinstance(data, dict):
            raise Fatal(f"Config {path} must be a mapping at top level, got {type(data).__name__}", code=2)
        logger.debug("Loaded config %s (%d key(s))", path, len(data))
        return data

    @staticmethod
    def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(base)
        for k, v in override.items():
            if isinstance(v, dict) and isinstance(out.get(k), dict):
                out[k] = Config.deep_merge(out[k], v)
            else:
                out[k] = v
        return out

    @staticmethod
    def load_many(logger: Any, paths: List[str]) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for p in paths:
            merged = Config.deep_merge(merged, Config.load_file(logger, p))
        return merged

    @staticmethod
    def _walk_parsers(parser: argparse.ArgumentParser) -> Iterator[argparse.ArgumentParser]:
        yield parser
        for action in parser._actions:
            if isinstance(action, argparse._SubParsersAction):
                for sub in action.choices.values():
                    yield from Config._walk_parsers(sub)

    @staticmethod
    def apply_as_defaults(logger: Any, parser: argparse.ArgumentParser, conf: Dict[str, Any]) -> None:
        """
        Turn top-level config keys that match an option's dest into that
        option's default, so flags given on the command line still win.
        Keys with no matching option are left to the settings layer.
        """
        applied = 0
        for p in Config._walk_parsers(parser):
            dests = {a.dest for a in p._actions if a.dest and a.dest != argparse.SUPPRESS}
            hits = {k: v for k, v in conf.items() if k in dests and not isinstance(v, dict)}
            if hits:
                p.set_defaults(**hits)
                applied += len(hits)
        logger.debug("Applied %d config value(s) as CLI defaults", applied)
