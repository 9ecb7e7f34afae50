"""SQLite helpers for the local vector store.

SQLite stores:
- Chunk rows keyed by the unique content-addressable chunk_id
- Raw float32 embeddings, used to rebuild the FAISS index
- The mapping between FAISS vector positions and chunk rows
"""
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

logger = structlog.get_logger()


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: Path) -> None:
    """Create the chunks table and its indexes if they don't exist."""
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                vector_id INTEGER,
                source_url TEXT,
                chunk_id TEXT NOT NULL UNIQUE,
                content TEXT NOT NULL,
                embedding BLOB NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_vector_id
            ON chunks(vector_id)
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(db_path))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_vector_ids(db_path: Path, chunk_ids: Sequence[str]) -> Dict[str, Optional[int]]:
    """Map the given chunk IDs that already exist to their vector IDs."""
    if not chunk_ids:
        return {}

    conn = get_connection(db_path)
    try:
        placeholders = ",".join("?" * len(chunk_ids))
        rows = conn.execute(
            f"SELECT chunk_id, vector_id FROM chunks WHERE chunk_id IN ({placeholders})",
            list(chunk_ids),
        ).fetchall()
        return {row["chunk_id"]: row["vector_id"] for row in rows}
    finally:
        conn.close()


def upsert_chunks(
    db_path: Path,
    rows: List[Tuple[Optional[str], str, str, bytes, Optional[int]]],
) -> None:
    """Insert (source_url, chunk_id, content, embedding, vector_id) rows.

    On chunk_id conflict the content, embedding and source_url are
    overwritten; the vector_id is left for the caller to reassign.
    """
    if not rows:
        return

    now = datetime.now(timezone.utc).isoformat()
    conn = get_connection(db_path)

    try:
        conn.executemany(
            """
            INSERT INTO chunks (source_url, chunk_id, content, embedding, vector_id, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(chunk_id) DO UPDATE SET
                content = excluded.content,
                embedding = excluded.embedding,
                source_url = excluded.source_url,
                updated_at = excluded.updated_at
            """,
            [(*row, now) for row in rows],
        )
        conn.commit()
    except Exception as e:
        conn.rollback()
        logger.error("chunk_upsert_failed", error=str(e), rows=len(rows))
        raise
    finally:
        conn.close()


def get_all_embeddings(db_path: Path) -> List[Tuple[int, bytes]]:
    """Return (row id, embedding blob) for every chunk, in insertion order."""
    conn = get_connection(db_path)
    try:
        rows = conn.execute("SELECT id, embedding FROM chunks ORDER BY id").fetchall()
        return [(row["id"], row["embedding"]) for row in rows]
    finally:
        conn.close()


def assign_vector_ids(db_path: Path, assignments: List[Tuple[int, int]]) -> None:
    """Set vector_id for each (vector_id, row id) pair."""
    conn = get_connection(db_path)
    try:
        conn.executemany("UPDATE chunks SET vector_id = ? WHERE id = ?", assignments)
        conn.commit()
    except Exception as e:
        conn.rollback()
        logger.error("vector_id_assignment_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_chunks_by_vector_ids(db_path: Path, vector_ids: List[int]) -> List[Dict[str, Any]]:
    """Retrieve chunks by their FAISS vector IDs."""
    if not vector_ids:
        return []

    conn = get_connection(db_path)
    try:
        placeholders = ",".join("?" * len(vector_ids))
        rows = conn.execute(
            f"""
            SELECT vector_id, source_url, chunk_id, content
            FROM chunks
            WHERE vector_id IN ({placeholders})
            """,
            vector_ids,
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def get_chunks_matching(
    db_path: Path,
    host_pattern: Optional[str] = None,
    source_prefix: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Rows whose source_url contains ``host_pattern`` and starts with ``source_prefix``.

    instr/substr are used instead of LIKE, which is case-insensitive in SQLite.
    """
    clauses = []
    params: List[Any] = []
    if host_pattern:
        clauses.append("instr(source_url, ?) > 0")
        params.append(host_pattern)
    if source_prefix:
        clauses.append("substr(source_url, 1, length(?)) = ?")
        params.extend([source_prefix, source_prefix])

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = get_connection(db_path)
    try:
        rows = conn.execute(
            f"SELECT source_url, chunk_id, content, embedding FROM chunks {where} ORDER BY id",
            params,
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def get_chunk_count(db_path: Path) -> int:
    """Get the total number of chunks in the database."""
    conn = get_connection(db_path)
    try:
        return conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
    finally:
        conn.close()
