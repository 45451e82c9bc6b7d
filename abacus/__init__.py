"""Abacus: tournament round engine for parliamentary debating."""

__version__ = "0.1.0"
