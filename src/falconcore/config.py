"""
FalconCore configuration
Runtime limits and host built-in settings, loaded from falcon.json or falcon.toml
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

import toml

LOG = logging.getLogger("falcon.config")

DEFAULT_CONFIG_FILES = ("falcon.json", "falcon.toml")


@dataclass
class FalconConfig:
    max_steps: Optional[int] = 1_000_000
    max_call_depth: int = 1000
    trace: bool = False
    allow_network: bool = False
    scan_port: int = 80
    scan_timeout: float = 0.05
    scan_workers: int = 32

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FalconConfig':
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

        config = cls()
        for key, value in data.items():
            setattr(config, key, value)
        config.validate()
        return config

    def validate(self):
        if self.max_steps is not None and (not isinstance(self.max_steps, int) or self.max_steps <= 0):
            raise ValueError("max_steps must be a positive integer or null")
        if not isinstance(self.max_call_depth, int) or self.max_call_depth <= 0:
            raise ValueError("max_call_depth must be a positive integer")
        if not isinstance(self.scan_port, int) or not 0 < self.scan_port < 65536:
            raise ValueError("scan_port must be a TCP port number")
        if not isinstance(self.scan_timeout, (int, float)) or self.scan_timeout <= 0:
            raise ValueError("scan_timeout must be a positive number of seconds")
        if not isinstance(self.scan_workers, int) or self.scan_workers <= 0:
            raise ValueError("scan_workers must be a positive integer")
        for flag in ("trace", "allow_network"):
            if not isinstance(getattr(self, flag), bool):
                raise ValueError(f"{flag} must be true or false")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(config_path: Optional[str] = None) -> FalconConfig:
    """
    Load settings from `config_path`, or from falcon.json / falcon.toml in the
    working directory when no path is given. Missing default files mean defaults.
    """
    if not config_path:
        for candidate in DEFAULT_CONFIG_FILES:
            if os.path.isfile(candidate):
                config_path = candidate
                break
    if not config_path:
        return FalconConfig()

    with open(config_path, "r", encoding="utf-8") as f:
        if config_path.endswith(".json"):
            data = json.load(f)
        elif config_path.endswith(".toml"):
            data = toml.load(f)
        else:
            raise ValueError(f"Unsupported config format: {config_path}")

    # a [falcon] table is accepted so the file can be shared with other tools
    if isinstance(data, dict) and isinstance(data.get("falcon"), dict):
        data = data["falcon"]
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a table/object")

    config = FalconConfig.from_dict(data)
    LOG.debug("loaded config from %s", config_path)
    return config
