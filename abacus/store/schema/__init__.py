"""Database schema definitions."""

from .schema_manager import SchemaManager

__all__ = ["SchemaManager"]
