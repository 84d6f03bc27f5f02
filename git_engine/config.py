"""Configuration loader for git-engine.

Loads and validates an optional YAML configuration file, then applies
``GIT_ENGINE_*`` environment variable overrides. The resulting
``EngineConfig`` is passed explicitly to the provider, executor and store;
nothing here is cached at module level.

Example config.yaml::

    timeout_ms: 30000
    max_buffer_bytes: 5242880
    sign_commits: true
    working_dir_ttl_seconds: 3600
    store_backend: sqlite
    store_path: /var/lib/git-engine/workdirs.db
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from git_engine.errors import ConfigError

DEFAULT_TIMEOUT_MS = 60_000
DEFAULT_MAX_BUFFER_BYTES = 10 * 1024 * 1024
DEFAULT_WORKING_DIR_TTL = 86400  # 24 hours
DEFAULT_STORE_PATH = str(Path.home() / ".git-engine" / "workdirs.db")

VALID_STORE_BACKENDS = frozenset({"memory", "sqlite"})

CONFIG_PATH_ENV = "GIT_ENGINE_CONFIG"

# Field name -> environment variable
ENV_OVERRIDES: dict[str, str] = {
    "git_binary": "GIT_ENGINE_GIT_BINARY",
    "timeout_ms": "GIT_ENGINE_TIMEOUT_MS",
    "max_buffer_bytes": "GIT_ENGINE_MAX_BUFFER_BYTES",
    "sign_commits": "GIT_ENGINE_SIGN_COMMITS",
    "working_dir_ttl_seconds": "GIT_ENGINE_WORKING_DIR_TTL",
    "strict_flags": "GIT_ENGINE_STRICT_FLAGS",
    "store_backend": "GIT_ENGINE_STORE_BACKEND",
    "store_path": "GIT_ENGINE_STORE_PATH",
    "default_tenant": "GIT_ENGINE_DEFAULT_TENANT",
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass
class EngineConfig:
    """Engine-wide settings."""

    git_binary: str = "git"
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES
    sign_commits: bool = False
    working_dir_ttl_seconds: Optional[int] = DEFAULT_WORKING_DIR_TTL
    strict_flags: bool = False
    store_backend: str = "memory"
    store_path: str = DEFAULT_STORE_PATH
    default_tenant: str = "default"

    def __post_init__(self):
        """Validate engine configuration."""
        if not self.git_binary:
            raise ConfigError("git_binary cannot be empty")
        if self.timeout_ms <= 0:
            raise ConfigError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.max_buffer_bytes <= 0:
            raise ConfigError(
                f"max_buffer_bytes must be positive, got {self.max_buffer_bytes}"
            )
        if self.working_dir_ttl_seconds is not None and self.working_dir_ttl_seconds < 0:
            raise ConfigError(
                f"working_dir_ttl_seconds cannot be negative, got {self.working_dir_ttl_seconds}"
            )
        if self.working_dir_ttl_seconds == 0:
            self.working_dir_ttl_seconds = None
        if self.store_backend not in VALID_STORE_BACKENDS:
            raise ConfigError(
                f"Invalid store_backend '{self.store_backend}'. "
                f"Valid backends: {', '.join(sorted(VALID_STORE_BACKENDS))}"
            )
        if self.store_backend == "sqlite" and not self.store_path:
            raise ConfigError("store_path is required for the sqlite store backend")
        if not self.default_tenant:
            raise ConfigError("default_tenant cannot be empty")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _parse_int(name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (ValueError, TypeError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")


_BOOL_FIELDS = frozenset({"sign_commits", "strict_flags"})
_INT_FIELDS = frozenset({"timeout_ms", "max_buffer_bytes", "working_dir_ttl_seconds"})


def _coerce(name: str, value: Any) -> Any:
    if name in _BOOL_FIELDS:
        return _parse_bool(name, value)
    if name in _INT_FIELDS:
        return _parse_int(name, value)
    return str(value)


def _load_yaml_file(file_path: str) -> dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        file_path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary. An empty file yields ``{}``.

    Raises:
        ConfigError: If file not found or YAML parsing fails.
    """
    path = Path(file_path)

    if not path.exists():
        raise ConfigError(
            f"Configuration file not found: {file_path}\n"
            f"Hint: You can override the location with {CONFIG_PATH_ENV}"
        )

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML file {file_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file {file_path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Invalid configuration file {file_path}: expected YAML dictionary, "
            f"got {type(data).__name__}"
        )

    return data


def load_engine_config(
    path: Optional[str] = None,
    environ: Optional[dict[str, str]] = None,
) -> EngineConfig:
    """Load and validate engine configuration.

    Values come from, in increasing precedence: dataclass defaults, the YAML
    file, then ``GIT_ENGINE_*`` environment variables.

    Args:
        path: Optional path to a YAML config file. If not provided, uses
              the GIT_ENGINE_CONFIG environment variable; with neither set
              no file is read.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Validated EngineConfig instance.

    Raises:
        ConfigError: If the file or any value is invalid.
    """
    env = os.environ if environ is None else environ
    if path is None:
        path = env.get(CONFIG_PATH_ENV) or None

    values: dict[str, Any] = {}
    if path is not None:
        data = _load_yaml_file(path)
        known = {f.name for f in fields(EngineConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(
                f"Unknown fields in {path}: {', '.join(str(k) for k in unknown)}"
            )
        for key, value in data.items():
            values[key] = _coerce(key, value)

    for name, env_var in ENV_OVERRIDES.items():
        raw = env.get(env_var)
        if raw is not None and raw != "":
            values[name] = _coerce(name, raw)

    return EngineConfig(**values)
