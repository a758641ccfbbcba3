"""
Config system - typed dispatch configuration and a layered loader.

Precedence when loading (later overrides earlier):
config files (JSON or YAML) < .env file < environment variables < overrides
"""

from __future__ import annotations

import importlib
import json
import os
from dataclasses import dataclass, field
from glob import glob
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import dotenv_values

from ._io import DEFAULT_TIMEOUT
from .security import CorsSettings, JwtSettings

DEFAULT_CACHE_FILE = "routes.cache.json"


class ConfigError(Exception):
    """Raised when configuration validation fails."""
    pass


def import_object(ref: str) -> Any:
    """Import ``module:attr`` (or ``module.attr``)."""
    if ":" in ref:
        module_name, _, attr = ref.partition(":")
    else:
        module_name, _, attr = ref.rpartition(".")
    if not module_name or not attr:
        raise ConfigError(f"Invalid import reference: {ref!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import {module_name!r} for {ref!r}: {e}") from e
    try:
        return getattr(module, attr)
    except AttributeError as e:
        raise ConfigError(f"{module_name!r} has no attribute {attr!r}") from e


def _instantiate(value: Any, what: str) -> Any:
    if isinstance(value, str):
        obj = import_object(value)
        try:
            return obj() if isinstance(obj, type) else obj
        except Exception as e:
            raise ConfigError(f"Cannot construct {what} {value!r}: {e}") from e
    return value


@dataclass
class DispatchConfig:
    """
    Dispatch settings for one worker.

    Attributes:
        cache_file_path: Route cache artifact
        gzip_output_enabled: Compress responses for clients accepting gzip
        request_log_enabled: Register ``RequestLogMiddleware``
        execute_time_log_enabled: Register ``ExecuteTimeLogMiddleware``
        io_timeout: Timeout for bounded I/O joins, in seconds
        jwt_settings: Token settings by ``@JwtAuth`` key
        cors: Cross-origin headers added to every response; None disables them
        middlewares: Custom middleware instances
        exception_handlers: Custom exception handlers
    """

    cache_file_path: str = DEFAULT_CACHE_FILE
    gzip_output_enabled: bool = False
    request_log_enabled: bool = False
    execute_time_log_enabled: bool = False
    io_timeout: float = DEFAULT_TIMEOUT
    jwt_settings: Dict[str, JwtSettings] = field(default_factory=dict)
    cors: Optional[CorsSettings] = None
    middlewares: List[Any] = field(default_factory=list)
    exception_handlers: List[Any] = field(default_factory=list)

    # ── fluent setters ───────────────────────────────────────────────

    def with_cache_file(self, path: Union[str, Path]) -> "DispatchConfig":
        self.cache_file_path = str(path)
        return self

    def with_gzip_output(self, enabled: bool = True) -> "DispatchConfig":
        self.gzip_output_enabled = enabled
        return self

    def with_request_log(self, enabled: bool = True) -> "DispatchConfig":
        self.request_log_enabled = enabled
        return self

    def with_execute_time_log(self, enabled: bool = True) -> "DispatchConfig":
        self.execute_time_log_enabled = enabled
        return self

    def with_io_timeout(self, seconds: float) -> "DispatchConfig":
        if seconds <= 0:
            raise ConfigError(f"io_timeout must be positive, got {seconds}")
        self.io_timeout = float(seconds)
        return self

    def with_middleware(self, *middlewares: Any) -> "DispatchConfig":
        self.middlewares.extend(middlewares)
        return self

    def with_exception_handler(self, *handlers: Any) -> "DispatchConfig":
        self.exception_handlers.extend(handlers)
        return self

    def with_jwt_settings(self, key: str, settings: Union[JwtSettings, Dict[str, Any]]) -> "DispatchConfig":
        if isinstance(settings, dict):
            settings = JwtSettings.from_dict(settings)
        self.jwt_settings[key] = settings
        return self

    def with_cors(self, settings: Union[CorsSettings, Dict[str, Any], None] = None) -> "DispatchConfig":
        """Enable CORS headers; no argument means the default settings."""
        if settings is None:
            settings = CorsSettings()
        elif isinstance(settings, dict):
            settings = CorsSettings.from_dict(settings)
        self.cors = settings
        return self

    # ── construction ─────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DispatchConfig":
        """
        Build a config from plain data.

        ``middlewares`` and ``exception_handlers`` entries may be
        ``"module:Class"`` references, instantiated without arguments.

        Raises:
            ConfigError: unknown keys or invalid values
        """
        known = {
            "cache_file_path", "gzip_output_enabled", "request_log_enabled",
            "execute_time_log_enabled", "io_timeout", "jwt_settings", "cors",
            "middlewares", "exception_handlers",
        }
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown dispatch config keys: {', '.join(sorted(unknown))}")

        config = cls()
        if "cache_file_path" in data:
            config.with_cache_file(data["cache_file_path"])
        for name in ("gzip_output_enabled", "request_log_enabled", "execute_time_log_enabled"):
            if name in data:
                value = data[name]
                if isinstance(value, int) and value in (0, 1):
                    value = bool(value)
                if not isinstance(value, bool):
                    raise ConfigError(f"{name} must be a boolean, got {value!r}")
                setattr(config, name, value)
        if "io_timeout" in data:
            try:
                config.with_io_timeout(float(data["io_timeout"]))
            except (TypeError, ValueError) as e:
                raise ConfigError(f"io_timeout must be a number, got {data['io_timeout']!r}") from e

        jwt = data.get("jwt_settings") or {}
        if not isinstance(jwt, dict):
            raise ConfigError("jwt_settings must be a mapping of key to settings")
        for key, settings in jwt.items():
            if not isinstance(settings, (dict, JwtSettings)):
                raise ConfigError(f"jwt_settings.{key} must be a mapping")
            try:
                config.with_jwt_settings(key, settings)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid jwt_settings.{key}: {e}") from e

        cors = data.get("cors")
        if cors is True:
            config.with_cors()
        elif isinstance(cors, dict):
            try:
                config.with_cors(cors)
            except ValueError as e:
                raise ConfigError(f"Invalid cors: {e}") from e
        elif cors not in (None, False):
            raise ConfigError(f"cors must be a boolean or a mapping, got {cors!r}")

        for item in data.get("middlewares") or []:
            config.with_middleware(_instantiate(item, "middleware"))
        for item in data.get("exception_handlers") or []:
            config.with_exception_handler(_instantiate(item, "exception handler"))
        return config


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources with precedence:
    overrides > environment variables > .env file > config files > defaults

    Environment variables use ``env_prefix`` and double underscores for
    nesting: ``DISPATCH_JWT_SETTINGS__DEFAULT__ISSUER=acme``.
    """

    def __init__(self, env_prefix: str = "DISPATCH_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[List[str]] = None,
        env_prefix: str = "DISPATCH_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from all sources.

        Args:
            paths: Config file paths (glob patterns supported)
            env_prefix: Prefix for environment variables
            env_file: Path to a .env file
            overrides: Manual overrides (highest precedence)
        """
        loader = cls(env_prefix=env_prefix)

        for pattern in paths or []:
            loader._load_from_files(pattern)

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env()

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    def _load_from_files(self, pattern: str):
        matches = sorted(glob(pattern))
        if not matches and not any(ch in pattern for ch in "*?["):
            raise ConfigError(f"Config file not found: {pattern}")

        for path_str in matches:
            path = Path(path_str)
            if path.suffix == ".json":
                self._load_json_file(path)
            elif path.suffix in (".yaml", ".yml"):
                self._load_yaml_file(path)
            else:
                raise ConfigError(f"Unsupported config file type: {path}")

    def _load_json_file(self, path: Path):
        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
        self._merge_file_data(path, data)

    def _load_yaml_file(self, path: Path):
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        self._merge_file_data(path, data)

    def _merge_file_data(self, path: Path, data: Any):
        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        self._merge_dict(self.config_data, data)

    def _load_env_file(self, path: str):
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
        """Convert DISPATCH_JWT_SETTINGS__DEFAULT__SECRET to a nested dict."""
        key = key[len(self.env_prefix):]
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
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
        current: Any = self.config_data
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def to_config(self) -> DispatchConfig:
        return DispatchConfig.from_dict(self.config_data)


__all__ = [
    "ConfigError",
    "DispatchConfig",
    "ConfigLoader",
    "import_object",
]
