"""Persistent store for tournaments, draws and results."""

from .database import StoreGateway, Transaction

__all__ = ["StoreGateway", "Transaction"]
