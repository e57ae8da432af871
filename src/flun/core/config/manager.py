"""
flun configuration management (YAML layers + FLUN_* environment overrides).
"""
from __future__ import annotations

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import jsonschema
import yaml

from flun.core.exceptions import ConfigurationError
from flun.core.utils.merge import deep_merge
from flun.data import get_data_path, read_yaml

logger = logging.getLogger(__name__)

PROJECT_CONFIG_FILENAME = "flun.yaml"
ENV_PREFIX = "FLUN_"


class ConfigManager:
    """Load, merge, and validate flun configuration.

    Configuration sources (highest to lowest priority):
    1. Environment variables: FLUN_<section>__<key>
    2. Project config: <project_root>/flun.yaml
    3. Bundled defaults: flun.data/config/templating.yaml
    """

    def __init__(self, project_root: Optional[Path] = None) -> None:
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self.project_config_path = self.project_root / PROJECT_CONFIG_FILENAME
        self.schema_path = get_data_path("schemas", "templating.schema.yaml")

    def load_yaml(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            # Fail closed: configuration must never silently ignore invalid YAML.
            raise ConfigurationError(
                f"Invalid YAML in {path}: {exc}", context={"path": str(path)}
            ) from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Expected a mapping at the top of {path}", context={"path": str(path)}
            )
        return data

    # ---------- environment overrides ----------

    def _as_bool(self, v: str) -> Optional[bool]:
        low = v.strip().lower()
        if low in {"true", "false"}:
            return low == "true"
        return None

    def _as_int(self, v: str) -> Optional[int]:
        if re.fullmatch(r"[-+]?\d+", v.strip() or " "):
            return int(v)
        return None

    def _as_float(self, v: str) -> Optional[float]:
        s = v.strip()
        if re.fullmatch(r"[-+]?\d*\.\d+", s) or re.fullmatch(r"[-+]?\d+\.\d*", s):
            return float(s)
        return None

    def _as_json(self, v: str) -> Optional[Any]:
        s = v.strip()
        if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
            try:
                return json.loads(s)
            except ValueError:
                return None
        return None

    def _coerce_type(self, value: str) -> Any:
        for caster in (self._as_bool, self._as_int, self._as_float, self._as_json):
            result = caster(value)
            if result is not None:
                return result
        return value.strip()

    def _parse_env_key(self, raw: str) -> List[str]:
        segs = raw.split("__")
        if any(seg == "" for seg in segs):
            return []
        return [seg.lower() for seg in segs]

    def _set_nested(self, root: Dict[str, Any], path: List[str], value: Any) -> None:
        cur: Union[Dict[str, Any], Any] = root
        for part in path[:-1]:
            if not isinstance(cur, dict):
                raise ConfigurationError(f"Environment override traverses a non-mapping at '{part}'")
            key_candidates = {k.lower(): k for k in cur.keys() if isinstance(k, str)}
            key = key_candidates.get(part, part)
            if not isinstance(cur.get(key), dict):
                cur[key] = {}
            cur = cur[key]
        if not isinstance(cur, dict):
            raise ConfigurationError("Environment override targets a non-mapping")
        leaf_candidates = {k.lower(): k for k in cur.keys() if isinstance(k, str)}
        cur[leaf_candidates.get(path[-1], path[-1])] = value

    def apply_env_overrides(self, cfg: Dict[str, Any]) -> None:
        for key in sorted(os.environ.keys()):
            if not key.startswith(ENV_PREFIX):
                continue
            path = self._parse_env_key(key[len(ENV_PREFIX):])
            if not path:
                logger.warning("Ignoring malformed environment override %s", key)
                continue
            self._set_nested(cfg, path, self._coerce_type(os.environ[key]))

    # ---------- loading ----------

    def validate(self, cfg: Dict[str, Any]) -> None:
        schema = self.load_yaml(self.schema_path)
        try:
            jsonschema.validate(instance=cfg, schema=schema)
        except jsonschema.ValidationError as exc:
            location = ".".join(str(p) for p in exc.absolute_path) or "<root>"
            raise ConfigurationError(
                f"Invalid configuration at {location}: {exc.message}",
                context={"location": location},
            ) from exc

    def load_config(self, *, validate: bool = True) -> Dict[str, Any]:
        """Return the merged configuration dictionary."""
        cfg = copy.deepcopy(read_yaml("config", "templating.yaml"))
        project_cfg = self.load_yaml(self.project_config_path)
        if project_cfg:
            logger.debug("Merging project config from %s", self.project_config_path)
            cfg = deep_merge(cfg, project_cfg)
        self.apply_env_overrides(cfg)
        if validate:
            self.validate(cfg)
        return cfg


__all__ = ["ConfigManager", "PROJECT_CONFIG_FILENAME", "ENV_PREFIX"]
