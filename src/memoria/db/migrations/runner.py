"""Simple SQL migration runner."""

import logging
from pathlib import Path

from memoria.db.connection import get_conn, transaction

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent


def run_migrations() -> list[str]:
    """Apply pending ``*.sql`` files in name order and return the ones applied."""
    applied_now: list[str] = []
    with get_conn() as conn, transaction(conn):
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations("
            "name TEXT PRIMARY KEY, "
            "applied_at TEXT NOT NULL)"
        )
        applied = {
            row[0] for row in conn.execute("SELECT name FROM schema_migrations").fetchall()
        }
        for file in sorted(MIGRATIONS_DIR.glob("*.sql")):
            if file.name in applied:
                continue
            # executescript would COMMIT the open transaction, so run statements one by one.
            for statement in _split_statements(file.read_text()):
                conn.execute(statement)
            conn.execute(
                "INSERT INTO schema_migrations(name, applied_at) VALUES(?, datetime('now'))",
                (file.name,),
            )
            applied_now.append(file.name)
    if applied_now:
        logger.info("Applied migrations: %s", ", ".join(applied_now))
    return applied_now


def _split_statements(script: str) -> list[str]:
    lines = [line for line in script.splitlines() if not line.strip().startswith("--")]
    return [part.strip() for part in "\n".join(lines).split(";") if part.strip()]


if __name__ == "__main__":
    run_migrations()
