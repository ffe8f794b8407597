"""
Config system - Layered upload configuration with validation.

Merge precedence (later overrides earlier):
config files > .env file > environment variables > manual overrides
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values


DEFAULT_MAX_BODY_BYTES = 8_000_000
DEFAULT_READ_CHUNK_BYTES = 1_000_000
DEFAULT_READ_TIMEOUT_MS = 15_000
DEFAULT_MAX_PART_HEADER_BYTES = 64_000
DEFAULT_MAX_PARTS = 1000


class ConfigError(Exception):
    """Raised when configuration validation fails."""
    pass


@dataclass(frozen=True)
class ParserLimits:
    """
    Per-request parser limits.

    Immutable; violating any of them terminates the request.
    """

    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    read_chunk_bytes: int = DEFAULT_READ_CHUNK_BYTES
    read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS
    max_part_header_bytes: int = DEFAULT_MAX_PART_HEADER_BYTES
    max_parts: int = DEFAULT_MAX_PARTS

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigError(f"{f.name} must be a positive integer, got {value!r}")

    @property
    def read_timeout(self) -> float:
        """Per-chunk read timeout in seconds."""
        return self.read_timeout_ms / 1000.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParserLimits":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class UploadConfig:
    """Complete upload configuration: limits plus storage locations."""

    limits: ParserLimits = field(default_factory=ParserLimits)
    tmp_dir: Optional[Path] = None
    upload_dir: Path = field(default_factory=lambda: Path.cwd() / "uploads")
    static_prefix: str = "/uploads"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadConfig":
        """Build a validated config from a flat or nested mapping."""
        limits_data = dict(data.get("limits", {}))
        for name in (f.name for f in fields(ParserLimits)):
            if name in data:
                limits_data[name] = data[name]

        tmp_dir = data.get("tmp_dir")
        upload_dir = data.get("upload_dir")
        static_prefix = data.get("static_prefix", "/uploads")
        if not isinstance(static_prefix, str) or not static_prefix.startswith("/"):
            raise ConfigError(f"static_prefix must start with '/', got {static_prefix!r}")

        return cls(
            limits=ParserLimits.from_dict(limits_data),
            tmp_dir=Path(tmp_dir) if tmp_dir else None,
            upload_dir=Path(upload_dir) if upload_dir else Path.cwd() / "uploads",
            static_prefix=static_prefix.rstrip("/") or "/",
        )


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.
    """

    def __init__(self, env_prefix: str = "FERRY_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[list[str]] = None,
        env_prefix: str = "FERRY_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from multiple sources with proper merge strategy.

        Args:
            paths: Config files (.json, .yaml or .yml)
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)

        Returns:
            Configured ConfigLoader instance
        """
        loader = cls(env_prefix=env_prefix)

        for path in paths or []:
            loader._load_file(Path(path))

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env()

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    def _load_file(self, path: Path):
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        with open(path) as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif path.suffix == ".json":
                data = json.load(f)
            else:
                raise ConfigError(f"Unsupported config file type: {path}")

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Config file must contain a mapping: {path}")
            self._merge_dict(self.config_data, data)

    def _load_env_file(self, path: str):
        """Load prefixed keys from a .env file."""
        if not Path(path).exists():
            return

        for key, value in dotenv_values(path).items():
            if value is not None and key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _load_from_env(self):
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str):
        """Convert FERRY_LIMITS__MAX_PARTS to nested dict."""
        key = key[len(self.env_prefix):]
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value.replace("_", ""))
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, path: str, default: Any = None) -> Any:
        """Get config value by dot-separated path."""
        current = self.config_data
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def upload_config(self) -> UploadConfig:
        """Build the validated :class:`UploadConfig`."""
        return UploadConfig.from_dict(self.config_data)

    def to_dict(self) -> dict:
        return dict(self.config_data)
