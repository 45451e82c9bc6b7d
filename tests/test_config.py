"""Tests for configuration loading and saving."""

import json

import pytest
import yaml
from pydantic import ValidationError

from abacus.config import AppConfig, SystemConfig, TournamentDefaults


def write_config(path, data: dict):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_from_file(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("ABACUS_DATABASE_URL", raising=False)
    config_path = write_config(
        tmp_path / "abacus_config.json",
        {
            "system": {"database_url": "sqlite:///data/rounds.db", "broadcast_capacity": 50},
            "tournament_defaults": {"teams_per_side": 1, "judges_per_panel": 1},
        },
    )

    config = AppConfig.load_from_file(config_path)

    assert config.system.database_path == "data/rounds.db"
    assert config.system.broadcast_capacity == 50
    assert config.system.draw_ticket_timeout_seconds == 600
    assert config.tournament_defaults.teams_per_side == 1


def test_environment_overrides_file_values(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("ABACUS_DATABASE_URL", "sqlite:///override.db")
    monkeypatch.setenv("ABACUS_LOG_LEVEL", "DEBUG")
    config_path = write_config(tmp_path / "abacus_config.json", {"system": {"log_level": "INFO"}})

    config = AppConfig.load_from_file(config_path)

    assert config.system.database_url == "sqlite:///override.db"
    assert config.system.log_level == "DEBUG"


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        AppConfig.load_from_file(tmp_path / "nope.json")


def test_system_section_is_required(tmp_path) -> None:
    config_path = write_config(tmp_path / "abacus_config.json", {"tournament_defaults": {}})

    with pytest.raises(ValueError, match="system"):
        AppConfig.load_from_file(config_path)


def test_database_url_must_be_sqlite() -> None:
    with pytest.raises(ValidationError):
        SystemConfig(database_url="postgres://localhost/abacus")


def test_timeouts_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        SystemConfig(draw_ticket_timeout_seconds=0)


def test_teams_per_side_is_one_or_two() -> None:
    with pytest.raises(ValidationError):
        TournamentDefaults(teams_per_side=3)


def test_save_to_file_writes_yaml(tmp_path) -> None:
    config = AppConfig(system=SystemConfig(database_url="sqlite:///saved.db"))
    target = tmp_path / "out" / "abacus.yaml"

    config.save_to_file(target)

    saved = yaml.safe_load(target.read_text(encoding="utf-8"))
    assert saved["system"]["database_url"] == "sqlite:///saved.db"
