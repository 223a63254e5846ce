"""Configuration loader for quadletctl.

Values are read from multiple sources, lowest precedence first:

1. Built-in defaults.
2. ``/etc/quadletctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``QUADLETCTL_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export QUADLETCTL_UNIT_DIR=/etc/containers/systemd
    export QUADLETCTL_SYSTEMD__SYSTEMCTL_BIN=/usr/bin/systemctl
    export QUADLETCTL_TEMPLATE_DEFAULTS__GATEWAY_HOST_PORT=9090

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
import re
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import cast

import yaml

ENV_PREFIX = "QUADLETCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

TOKEN_NAME_RE = re.compile(r"^[A-Z0-9_]+$")

BUILTIN_TEMPLATE_DEFAULTS: Mapping[str, str] = MappingProxyType(
    {
        "PWP__OVERRIDE_BASE_URL": "https://pwpush.example.com",
        "GATEWAY_HOST_PORT": "8080",
        "APP_HOST_PORT": "5100",
        "HOST_PORT": "8080",
    }
)


class ConfigurationError(RuntimeError):
    """Raised when configuration or CLI input is invalid."""


@dataclass(frozen=True)
class SystemdConfig:
    """Service-manager integration values."""

    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for quadletctl."""

    config_file: Path
    install_dir: Path
    unit_dir: Path
    manifest: str | None
    logs_dir: Path
    unit_mode: int
    fetch_timeout: float
    template_defaults: Mapping[str, str] = field(default_factory=dict)
    systemd: SystemdConfig = SystemdConfig()

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "install_dir": str(self.install_dir),
            "unit_dir": str(self.unit_dir),
            "manifest": self.manifest,
            "logs_dir": str(self.logs_dir),
            "unit_mode": f"{self.unit_mode:04o}",
            "fetch_timeout": self.fetch_timeout,
            "template_defaults": dict(self.template_defaults),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/quadletctl/config.yml",
    "install_dir": "/opt/containers",
    "unit_dir": "/etc/containers/systemd",
    "manifest": None,
    "logs_dir": "/var/log/quadletctl",
    "unit_mode": "0644",
    "fetch_timeout": 30.0,
    "template_defaults": {},
    "systemd": {
        "systemctl_bin": "systemctl",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())


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
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigurationError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigurationError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigurationError(f"Unknown configuration keys: {joined}.")

    _parse_mode(raw.get("unit_mode"), "unit_mode")
    _expect_positive_float(raw.get("fetch_timeout"), "fetch_timeout", default=30.0)

    defaults_map = _as_dict(raw.get("template_defaults"), "template_defaults")
    for name in defaults_map:
        if not TOKEN_NAME_RE.match(name):
            raise ConfigurationError(
                f"template_defaults key {name!r} is not a valid token name (A-Z, 0-9, _)."
            )

    systemd = raw.get("systemd")
    if systemd is not None:
        systemd_map = _as_dict(systemd, "systemd")
        unknown = set(systemd_map.keys()) - {"systemctl_bin"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigurationError(f"Unknown systemd configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    manifest_value = raw.get("manifest")
    manifest: str | None
    if manifest_value is None or str(manifest_value).strip() == "":
        manifest = None
    else:
        manifest = str(manifest_value).strip()

    template_defaults = dict(BUILTIN_TEMPLATE_DEFAULTS)
    for name, value in _as_dict(raw.get("template_defaults"), "template_defaults").items():
        template_defaults[name] = "" if value is None else str(value)

    systemd_map = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_map.get("systemctl_bin", "systemctl")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        install_dir=_to_path(raw.get("install_dir")),
        unit_dir=_to_path(raw.get("unit_dir")),
        manifest=manifest,
        logs_dir=_to_path(raw.get("logs_dir")),
        unit_mode=_parse_mode(raw.get("unit_mode"), "unit_mode"),
        fetch_timeout=_expect_positive_float(
            raw.get("fetch_timeout"), "fetch_timeout", default=30.0
        ),
        template_defaults=MappingProxyType(template_defaults),
        systemd=systemd,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        segments = [segment for segment in suffix.split("__") if segment]
        if not segments:
            continue
        path_segments = [segments[0].lower()]
        if path_segments[0] == "template_defaults":
            # Token names are case-sensitive upper-case identifiers.
            path_segments.extend(segments[1:])
            coerced: object = value.strip()
        else:
            path_segments.extend(segment.lower() for segment in segments[1:])
            coerced = _coerce_value(value)
        _assign_nested(overrides, path_segments, coerced)
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
        raise ConfigurationError(
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


def _parse_mode(value: object, label: str) -> int:
    if value is None:
        raise ConfigurationError(f"{label} must be specified.")
    if isinstance(value, bool):
        raise ConfigurationError(f"{label} must be an octal integer string. Got boolean {value!r}.")
    if isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        text = value.strip().lower()
        if not text:
            raise ConfigurationError(f"{label} must be an octal integer string.")
        if text.startswith("0o"):
            text = text[2:]
        try:
            mode = int(text, 8)
        except ValueError as exc:
            raise ConfigurationError(f"{label} must be an octal integer string.") from exc
    else:
        raise ConfigurationError(f"{label} must be an octal integer or string.")
    if mode < 0 or mode > 0o777:
        raise ConfigurationError(f"{label} must be between 0000 and 0777 inclusive.")
    return mode


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigurationError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigurationError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigurationError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigurationError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigurationError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigurationError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigurationError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BUILTIN_TEMPLATE_DEFAULTS",
    "ConfigurationError",
    "SystemdConfig",
    "TOKEN_NAME_RE",
    "load_config",
]
