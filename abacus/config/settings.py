"""Configuration settings and data models."""

import json
import os
import shutil
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "ABACUS_"


class SystemConfig(BaseModel):
    """Process-wide settings. None of these alter round-engine semantics."""

    database_url: str = Field(
        default="sqlite:///abacus.db", description="Database URL (sqlite:///path)"
    )
    secret_key: str = Field(
        default="change-me", description="Secret key used to sign sessions"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    broadcast_capacity: int = Field(
        default=1000, description="Queued events per change-notification subscriber"
    )
    draw_ticket_timeout_seconds: int = Field(
        default=600, description="Seconds before an unreleased draw ticket expires"
    )

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v.startswith("sqlite:///"):
            raise ValueError("database_url must have the form sqlite:///<path>")
        return v

    @field_validator("broadcast_capacity", "draw_ticket_timeout_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @property
    def database_path(self) -> str:
        """Filesystem path encoded in ``database_url``."""
        return self.database_url[len("sqlite:///") :]


class TournamentDefaults(BaseModel):
    """Defaults applied to newly created tournaments."""

    teams_per_side: int = Field(default=2, description="1 for Australs/WSDC, 2 for BP")
    substantive_speakers: int = Field(default=2, description="Speakers per team")
    reply_speakers: bool = False
    pool_ballot_setup: Literal["consensus", "individual"] = "consensus"
    elim_ballot_setup: Literal["consensus", "individual"] = "consensus"
    team_standings_metrics: list[str] = Field(
        default=["points", "tss"], description="Ordered team metrics"
    )
    speaker_standings_metrics: list[str] = Field(
        default=["total", "average"], description="Ordered speaker metrics"
    )
    min_speaker_score: float = 50.0
    max_speaker_score: float = 100.0
    judges_per_panel: int = 3

    @field_validator("teams_per_side")
    @classmethod
    def validate_teams_per_side(cls, v: int) -> int:
        if v not in (1, 2):
            raise ValueError("teams_per_side must be 1 or 2")
        return v


class AppConfig(BaseModel):
    """Complete application configuration."""

    system: SystemConfig = Field(default_factory=SystemConfig)
    tournament_defaults: TournamentDefaults = Field(default_factory=TournamentDefaults)

    @classmethod
    def load_from_file(cls, config_path: Path) -> "AppConfig":
        """Load configuration from a JSON file, then apply env overrides."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if "system" not in data:
            raise ValueError("Missing required config section: system")

        data["system"].update(_environment_overrides())
        return cls(**data)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_unset=True),
                f,
                default_flow_style=False,
                indent=2,
            )


def _environment_overrides() -> dict[str, str]:
    overrides = {}
    for name in ("database_url", "secret_key", "log_level"):
        value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value:
            overrides[name] = value
    return overrides


def get_default_config() -> AppConfig:
    """Load configuration from abacus_config.json, creating it if needed."""
    config_path = Path("abacus_config.json")
    if not config_path.exists():
        example_path = Path("abacus_config.example.json")
        if example_path.exists():
            shutil.copy2(example_path, config_path)
        else:
            with open(config_path, "w", encoding="utf-8") as f:
                json.dump(get_template_config().model_dump(), f, indent=2)
    return AppConfig.load_from_file(config_path)


def get_template_config() -> AppConfig:
    """Get template configuration for config file generation."""
    return AppConfig(
        system=SystemConfig(
            database_url="sqlite:///abacus.db",
            secret_key="change-me",
            log_level="INFO",
            broadcast_capacity=1000,
            draw_ticket_timeout_seconds=600,
        ),
        tournament_defaults=TournamentDefaults(),
    )
