"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from quadletctl.config import (
    BUILTIN_TEMPLATE_DEFAULTS,
    AppConfig,
    ConfigurationError,
    load_config,
)


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.install_dir == Path("/opt/containers")
    assert config.unit_dir == Path("/etc/containers/systemd")
    assert config.manifest is None
    assert config.unit_mode == 0o644
    assert config.fetch_timeout == 30.0
    assert config.systemd.systemctl_bin == "systemctl"
    assert dict(config.template_defaults) == dict(BUILTIN_TEMPLATE_DEFAULTS)


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "quadletctl.yml"
    cfg.write_text(
        "install_dir: /srv/app\n"
        "unit_dir: {units}\n"
        "unit_mode: '0640'\n"
        "template_defaults:\n"
        "  GATEWAY_HOST_PORT: 9090\n"
        "  DOMAIN: example.org\n".format(units=tmp_path / "units")
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.install_dir == Path("/srv/app")
    assert config.unit_dir == tmp_path / "units"
    assert config.unit_mode == 0o640
    assert config.template_defaults["GATEWAY_HOST_PORT"] == "9090"
    assert config.template_defaults["DOMAIN"] == "example.org"
    assert config.template_defaults["APP_HOST_PORT"] == "5100"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("install_dir: /from/file\n")
    env = {
        "QUADLETCTL_CONFIG_FILE": str(cfg),
        "QUADLETCTL_INSTALL_DIR": str(tmp_path / "data"),
        "QUADLETCTL_LOGS_DIR": str(tmp_path / "logs"),
        "QUADLETCTL_FETCH_TIMEOUT": "12.5",
        "QUADLETCTL_SYSTEMD__SYSTEMCTL_BIN": "/usr/bin/systemctl",
        "QUADLETCTL_TEMPLATE_DEFAULTS__HOST_PORT": "8181",
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.install_dir == tmp_path / "data"
    assert config.logs_dir == tmp_path / "logs"
    assert config.fetch_timeout == 12.5
    assert config.systemd.systemctl_bin == "/usr/bin/systemctl"
    assert config.template_defaults["HOST_PORT"] == "8181"


def test_manifest_is_opt_in(tmp_path: Path) -> None:
    """A configured manifest is used verbatim; an empty one means directory scan."""
    url = "https://example.com/container-manifest.txt"
    config_file = tmp_path / "config.yml"
    config_file.write_text(f"manifest: {url}\n", encoding="utf-8")

    assert load_config(config_file=config_file, env={}).manifest == url

    cleared = load_config(config_file=config_file, env={"QUADLETCTL_MANIFEST": ""})
    assert cleared.manifest is None


def test_overrides_win_over_environment(tmp_path: Path) -> None:
    """Programmatic overrides have the highest precedence."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"QUADLETCTL_UNIT_DIR": "/env/units"},
        overrides={"unit_dir": str(tmp_path / "cli")},
    )

    assert config.unit_dir == tmp_path / "cli"


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A non-mapping document raises ConfigurationError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigurationError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigurationError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigurationError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_invalid_unit_mode_raises(tmp_path: Path) -> None:
    """Modes must be octal and within 0000-0777."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unit_mode: '0999'\n")

    with pytest.raises(ConfigurationError, match="unit_mode"):
        load_config(config_file=cfg, env={})


def test_invalid_template_default_name_raises(tmp_path: Path) -> None:
    """Template default keys must follow the token grammar."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("template_defaults:\n  lower_case: nope\n")

    with pytest.raises(ConfigurationError, match="not a valid token name"):
        load_config(config_file=cfg, env={})


def test_unknown_systemd_key_raises(tmp_path: Path) -> None:
    """Extra systemd keys produce ConfigurationError for clarity."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("systemd:\n  journalctl_bin: journalctl\n")

    with pytest.raises(ConfigurationError, match="Unknown systemd configuration keys"):
        load_config(config_file=cfg, env={})


def test_non_positive_fetch_timeout_raises(tmp_path: Path) -> None:
    """Fetch timeouts must be positive numbers."""
    with pytest.raises(ConfigurationError, match="fetch_timeout"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={"QUADLETCTL_FETCH_TIMEOUT": "0"},
        )
