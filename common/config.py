from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config/production.yaml"

_MISSING = object()


class ConfigError(Exception):
    """Configuration file missing, unreadable or lacking a required key."""


def _default_env_file() -> str:
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


@dataclass(frozen=True)
class AppConfig:
    """Read-only view over the YAML configuration tree.

    Keys are addressed with dotted paths, e.g.
    ``config.get("auditEvents.destination.influxdb.version")``.
    """

    data: Mapping[str, Any] = field(default_factory=dict)
    source: Optional[str] = None

    @classmethod
    def load(cls, path: Optional[str] = None) -> "AppConfig":
        # Load env file (if present) but still allow overriding via real environment variables.
        env_file = os.getenv("SENSE_ENV_FILE", _default_env_file())
        if env_file and Path(env_file).exists():
            load_dotenv(env_file, override=False)

        config_path = Path(path or os.getenv("SENSE_CONFIG_FILE", DEFAULT_CONFIG_FILE))
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config root must be a mapping: {config_path}")

        log_level = os.getenv("SENSE_LOG_LEVEL")
        if log_level:
            data.setdefault("logging", {})["level"] = log_level.upper()

        logger.info("CONFIG: Loaded %s", config_path)
        return cls(data=data, source=str(config_path))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppConfig":
        return cls(data=copy.deepcopy(dict(data)))

    def _lookup(self, dotted_path: str) -> Any:
        node: Any = self.data
        for part in dotted_path.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return _MISSING
            node = node[part]
        return node

    def has(self, dotted_path: str) -> bool:
        return self._lookup(dotted_path) is not _MISSING

    def get(self, dotted_path: str, default: Any = _MISSING) -> Any:
        """Valor en ``dotted_path``.

        Sin ``default`` una clave inexistente lanza ``ConfigError``.
        """
        value = self._lookup(dotted_path)
        if value is _MISSING:
            if default is _MISSING:
                raise ConfigError(f'Configuration property "{dotted_path}" is not defined')
            return default
        return value

    def is_true(self, dotted_path: str) -> bool:
        """True solo si la clave existe y vale exactamente ``True``."""
        return self.get(dotted_path, None) is True


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Obtiene la configuración singleton (la carga en el primer uso)."""
    global _config
    if _config is None:
        _config = AppConfig.load()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Reemplaza la configuración singleton (tests y arranque)."""
    global _config
    _config = config
