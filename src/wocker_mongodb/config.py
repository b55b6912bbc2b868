"""Configuration loader for wocker-mongodb.

Configuration values are merged from the following sources, later sources
winning:

1. Built-in defaults.
2. ``~/.workspace/plugins/mongodb/settings.yml`` (or an override path).
3. Environment variables prefixed with ``WOCKER_MONGODB_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export WOCKER_MONGODB_ADMIN__IMAGE=mongo-express:1.0
    export WOCKER_MONGODB_NETWORK=workspace

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
``null`` are parsed naturally. The result is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml
from packaging.version import InvalidVersion, Version

ENV_PREFIX = "WOCKER_MONGODB_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class DockerConfig:
    """Connection settings for the Docker engine."""

    base_url: str | None = None
    timeout: int = 60

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"base_url": self.base_url, "timeout": self.timeout}


@dataclass(frozen=True)
class AdminConfig:
    """Settings for the shared mongo-express console."""

    container_name: str = "dbadmin-mongodb.workspace"
    image: str = "mongo-express:latest"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"container_name": self.container_name, "image": self.image}


@dataclass(frozen=True)
class ProxyConfig:
    """Reverse proxy container that routes virtual hosts."""

    container_name: str = "proxy.workspace"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"container_name": self.container_name}


@dataclass(frozen=True)
class BackupConfig:
    """Location of dump archives."""

    root: Path

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"root": str(self.root)}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for wocker-mongodb."""

    config_file: Path
    data_dir: Path
    registry_file: str
    logs_dir: Path
    min_engine_version: str
    network: str | None
    shell_bin: str
    docker: DockerConfig
    admin: AdminConfig
    proxy: ProxyConfig
    backups: BackupConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "data_dir": str(self.data_dir),
            "registry_file": self.registry_file,
            "logs_dir": str(self.logs_dir),
            "min_engine_version": self.min_engine_version,
            "network": self.network,
            "shell_bin": self.shell_bin,
            "docker": self.docker.to_dict(),
            "admin": self.admin.to_dict(),
            "proxy": self.proxy.to_dict(),
            "backups": self.backups.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.workspace/plugins/mongodb/settings.yml",
    "data_dir": "~/.workspace/plugins/mongodb",
    "registry_file": "config.json",
    "logs_dir": None,  # derived from data_dir when absent
    "min_engine_version": "20.10.0",
    "network": "workspace",
    "shell_bin": "mongosh",
    "docker": {
        "base_url": None,
        "timeout": 60,
    },
    "admin": {
        "container_name": "dbadmin-mongodb.workspace",
        "image": "mongo-express:latest",
    },
    "proxy": {
        "container_name": "proxy.workspace",
    },
    "backups": {
        "root": None,  # derived from data_dir when absent
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_NESTED_KEYS: dict[str, set[str]] = {
    "docker": {"base_url", "timeout"},
    "admin": {"container_name", "image"},
    "proxy": {"container_name"},
    "backups": {"root"},
}
ALLOWED_SHELLS = {"mongosh", "mongo"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_NESTED_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    min_version = raw.get("min_engine_version")
    if min_version is not None:
        try:
            Version(str(min_version))
        except InvalidVersion as exc:
            raise ConfigError(
                f"min_engine_version must be a version string. Got {min_version!r}."
            ) from exc

    shell_bin = raw.get("shell_bin")
    if shell_bin is not None and str(shell_bin) not in ALLOWED_SHELLS:
        allowed_shells = ", ".join(sorted(ALLOWED_SHELLS))
        raise ConfigError(f"Unsupported shell_bin '{shell_bin}'. Allowed: {allowed_shells}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw["config_file"])
    data_dir = _to_path(raw.get("data_dir"))

    registry_file = str(raw.get("registry_file") or "config.json").strip()
    if not registry_file or "/" in registry_file:
        raise ConfigError("registry_file must be a plain file name.")

    logs_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_value) if logs_value else data_dir / "logs"

    network_value = raw.get("network")
    network = str(network_value).strip() if network_value else None

    docker_mapping = _as_dict(raw.get("docker"), "docker")
    base_url_value = docker_mapping.get("base_url")
    docker = DockerConfig(
        base_url=str(base_url_value) if base_url_value else None,
        timeout=_expect_int(docker_mapping.get("timeout"), "docker.timeout", default=60),
    )

    admin_mapping = _as_dict(raw.get("admin"), "admin")
    admin = AdminConfig(
        container_name=str(admin_mapping.get("container_name", "dbadmin-mongodb.workspace")),
        image=str(admin_mapping.get("image", "mongo-express:latest")),
    )

    proxy_mapping = _as_dict(raw.get("proxy"), "proxy")
    proxy = ProxyConfig(
        container_name=str(proxy_mapping.get("container_name", "proxy.workspace")),
    )

    backups_mapping = _as_dict(raw.get("backups"), "backups")
    backups_root_value = backups_mapping.get("root")
    backups = BackupConfig(
        root=_to_path(backups_root_value) if backups_root_value else data_dir / "dump",
    )

    return AppConfig(
        config_file=config_file,
        data_dir=data_dir,
        registry_file=registry_file,
        logs_dir=logs_dir,
        min_engine_version=str(raw.get("min_engine_version", "20.10.0")),
        network=network,
        shell_bin=str(raw.get("shell_bin", "mongosh")),
        docker=docker,
        admin=admin,
        proxy=proxy,
        backups=backups,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AdminConfig",
    "AppConfig",
    "BackupConfig",
    "ConfigError",
    "DockerConfig",
    "ProxyConfig",
    "load_config",
]
