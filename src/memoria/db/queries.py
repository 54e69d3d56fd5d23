"""Turn persistence helpers."""

import sqlite3

from memoria.errors import StoreError
from memoria.memory.types import Turn, TurnRole


def _row_to_turn(row: sqlite3.Row) -> Turn:
    return Turn(
        id=str(row["id"]),
        role=TurnRole(str(row["role"])),
        content=str(row["content"]),
        created_at=str(row["created_at"]),
        importance=float(row["importance"]),
        summary_id=row["summary_id"],
    )


def insert_turn(conn: sqlite3.Connection, agent_id: str, turn: Turn) -> None:
    conn.execute(
        (
            "INSERT INTO turns("
            "id, agent_id, role, content, importance, created_at, seq, summary_id"
            ") VALUES(?,?,?,?,?,?,"
            "(SELECT COALESCE(MAX(seq), 0) + 1 FROM turns WHERE agent_id=?),?)"
        ),
        (
            turn.id,
            agent_id,
            turn.role.value,
            turn.content,
            turn.importance,
            turn.created_at,
            agent_id,
            turn.summary_id,
        ),
    )


def get_turn(conn: sqlite3.Connection, agent_id: str, turn_id: str) -> Turn | None:
    row = conn.execute(
        "SELECT * FROM turns WHERE agent_id=? AND id=?", (agent_id, turn_id)
    ).fetchone()
    return _row_to_turn(row) if row is not None else None


def get_unfolded_turns(conn: sqlite3.Connection, agent_id: str) -> list[Turn]:
    rows = conn.execute(
        "SELECT * FROM turns WHERE agent_id=? AND summary_id IS NULL ORDER BY seq ASC",
        (agent_id,),
    ).fetchall()
    return [_row_to_turn(row) for row in rows]


def get_turns_for_summary(conn: sqlite3.Connection, agent_id: str, summary_id: str) -> list[Turn]:
    rows = conn.execute(
        "SELECT * FROM turns WHERE agent_id=? AND summary_id=? ORDER BY seq ASC",
        (agent_id, summary_id),
    ).fetchall()
    return [_row_to_turn(row) for row in rows]


def link_turns(
    conn: sqlite3.Connection, agent_id: str, turn_ids: list[str], summary_id: str
) -> None:
    """Point each turn at its summary. A turn can be folded only once."""
    for turn_id in turn_ids:
        cursor = conn.execute(
            "UPDATE turns SET summary_id=? WHERE agent_id=? AND id=? AND summary_id IS NULL",
            (summary_id, agent_id, turn_id),
        )
        if cursor.rowcount != 1:
            row = conn.execute(
                "SELECT summary_id FROM turns WHERE agent_id=? AND id=?", (agent_id, turn_id)
            ).fetchone()
            if row is None:
                raise StoreError(f"turn {turn_id} does not exist")
            raise StoreError(f"turn {turn_id} is already folded into {row['summary_id']}")


def count_turns(conn: sqlite3.Connection, agent_id: str, *, unfolded_only: bool = False) -> int:
    sql = "SELECT COUNT(*) AS n FROM turns WHERE agent_id=?"
    if unfolded_only:
        sql += " AND summary_id IS NULL"
    row = conn.execute(sql, (agent_id,)).fetchone()
    return int(row["n"]) if row is not None else 0
