"""Creates the tournament tables from the SQL files shipped beside this module."""

import logging
import sqlite3
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

# Each tier only references tables of earlier tiers.
TABLE_TIERS: tuple[tuple[str, ...], ...] = (
    ("tournaments",),
    ("tournament_members", "institutions", "rooms", "room_categories", "rounds"),
    ("teams", "judges"),
    ("speakers", "conflicts", "availability", "round_tickets"),
    ("draws",),
    ("ballots", "aggregates", "standings"),
    ("indexes",),
)


class SchemaManager:
    """Runs the per-table SQL files in dependency order."""

    def __init__(self, tables_dir: Path | None = None):
        self.tables_dir = tables_dir or Path(__file__).parent / "tables"

    def ordered_files(self) -> Iterator[Path]:
        for tier in TABLE_TIERS:
            for table in tier:
                yield self.tables_dir / f"{table}.sql"

    def statements(self, path: Path) -> list[str]:
        """Split one file into statements, dropping ``--`` comment lines."""
        lines = [
            line for line in path.read_text(encoding="utf-8").splitlines() if not line.lstrip().startswith("--")
        ]
        return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]

    def initialize_database_schema(self, cursor: sqlite3.Cursor) -> None:
        created = 0
        for path in self.ordered_files():
            for statement in self.statements(path):
                cursor.execute(statement)
                created += 1
            logger.debug(f"Applied {path.name}")
        logger.info(f"Schema ready ({created} statements)")

    def validate_schema_files(self) -> bool:
        missing = [path.name for path in self.ordered_files() if not path.is_file()]
        if missing:
            logger.error(f"Missing schema files: {missing}")
        return not missing
