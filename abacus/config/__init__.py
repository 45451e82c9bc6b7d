"""Configuration for the Abacus round engine."""

from .settings import AppConfig, SystemConfig, TournamentDefaults, get_default_config

__all__ = ["AppConfig", "SystemConfig", "TournamentDefaults", "get_default_config"]
