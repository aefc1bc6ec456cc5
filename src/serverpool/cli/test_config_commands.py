"""Tests for the serverpool command line entry points."""

import json

import pytest
import yaml

from serverpool.cli.__main__ import main
from serverpool.cli.config import ENV_VARS, run_config_command


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_version(capsys) -> None:
    assert main(["version"]) == 0
    assert capsys.readouterr().out.startswith("serverpool ")


def test_unknown_command(capsys) -> None:
    assert main(["launch"]) == 1
    assert "Unknown command: launch" in capsys.readouterr().out


def test_config_show_json(capsys, monkeypatch) -> None:
    monkeypatch.setenv("SERVERPOOL_MIN_INSTANCES", "4")

    assert run_config_command(["show", "--format=json"]) == 0

    shown = json.loads(capsys.readouterr().out)
    assert shown["pool"]["min_instances"] == 4
    assert shown["server"]["port"] == 3001


def test_config_show_rejects_unknown_format(capsys) -> None:
    assert run_config_command(["show", "--format", "toml"]) == 1
    assert "Invalid format" in capsys.readouterr().out


def test_config_validate_file(tmp_path, capsys) -> None:
    config_path = tmp_path / "serverpool.yaml"
    config_path.write_text(yaml.safe_dump({"pool": {"min_instances": 1}}))

    assert run_config_command(["validate", str(config_path)]) == 0
    assert "valid" in capsys.readouterr().out


def test_config_validate_rejects_production_memory(tmp_path) -> None:
    config_path = tmp_path / "production.yaml"
    config_path.write_text(
        yaml.safe_dump(
            {"environment": "production", "provisioner": {"backend": "memory"}}
        )
    )

    assert run_config_command(["validate", str(config_path)]) == 1


def test_config_validate_missing_file() -> None:
    assert run_config_command(["validate", "/nonexistent/serverpool.yaml"]) == 1


def test_config_env_lists_set_variables(capsys, monkeypatch) -> None:
    monkeypatch.setenv("MAX_SERVERS", "6")

    assert run_config_command(["env"]) == 0

    assert "MAX_SERVERS=6" in capsys.readouterr().out
