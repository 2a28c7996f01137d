"""Tests for deploy configuration loading and process settings."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from mittorch.config import DeployConfig, Settings, load_config
from mittorch.errors import ConfigError


def write_config(tmp_path: Path, payload) -> Path:
    path = tmp_path / "mittorch.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


BASE = {"account": "octocat", "repository": "hello-world", "branch": "main"}


def test_load_full_config(tmp_path: Path) -> None:
    path = write_config(tmp_path, {
        **BASE,
        "token": "s3cret",
        "interval": 15,
        "start-command": "python -m app",
        "stop-command": "./stop.sh",
    })

    deploy = load_config(path)

    assert deploy.account == "octocat"
    assert deploy.repository == "hello-world"
    assert deploy.branch == "main"
    assert deploy.token == "s3cret"
    assert deploy.interval == 15
    assert deploy.start_command == "python -m app"
    assert deploy.stop_command == "./stop.sh"


def test_defaults(tmp_path: Path) -> None:
    deploy = load_config(write_config(tmp_path, BASE))

    assert deploy.interval == 60
    assert deploy.token is None
    assert deploy.start_command is None
    assert deploy.stop_command is None


def test_blank_values_are_absent(tmp_path: Path) -> None:
    deploy = load_config(write_config(tmp_path, {
        **BASE,
        "token": "   ",
        "start-command": "",
        "stop-command": " ",
    }))

    assert deploy.token is None
    assert deploy.start_command is None
    assert deploy.stop_command is None


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "missing.json")


def test_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "mittorch.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigError, match="not valid JSON"):
        load_config(path)


def test_not_an_object(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="JSON object"):
        load_config(write_config(tmp_path, ["octocat"]))


@pytest.mark.parametrize("missing", ["account", "repository", "branch"])
def test_missing_required_field(tmp_path: Path, missing: str) -> None:
    payload = {k: v for k, v in BASE.items() if k != missing}

    with pytest.raises(ConfigError, match=missing):
        load_config(write_config(tmp_path, payload))


@pytest.mark.parametrize(
    "override",
    [
        {"interval": 0},
        {"interval": "soon"},
        {"repository": ".."},
        {"repository": "a/b"},
        {"account": ""},
    ],
)
def test_invalid_values(tmp_path: Path, override) -> None:
    with pytest.raises(ConfigError):
        load_config(write_config(tmp_path, {**BASE, **override}))


def test_deploy_config_is_immutable() -> None:
    deploy = DeployConfig(**BASE)

    with pytest.raises(ValidationError):
        deploy.branch = "dev"


def test_settings_derived_paths(tmp_path: Path) -> None:
    settings = Settings(data_dir=tmp_path / "data", log_file=None)

    assert settings.log_file == tmp_path / "data" / "mittorch.log"


def test_settings_accepts_strings(tmp_path: Path) -> None:
    settings = Settings(data_dir=str(tmp_path), config_path="deploy.json", log_file=None)

    assert settings.data_dir == tmp_path
    assert settings.config_path == Path("deploy.json")
