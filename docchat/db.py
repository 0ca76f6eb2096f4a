"""SQLite persistence for docchat.

Stores:
- One row per chunk: content, embedding (JSON float array) and metadata
- One row per ingestion run with its configuration and counts
"""
import sqlite3
import json
from pathlib import Path
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
import structlog

logger = structlog.get_logger()

# Stays under SQLite's bound-parameter limit
_ID_BATCH = 500


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: Path) -> None:
    """Create tables if they don't exist.

    - documents: chunk text, embedding and metadata
    - ingest_runs: tracks ingestion runs and configuration
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                content TEXT NOT NULL,
                embedding TEXT NOT NULL,
                metadata_json TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ingest_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ingested_at TEXT NOT NULL,
                embedding_model TEXT NOT NULL,
                embedding_dimension INTEGER,
                chunk_size INTEGER NOT NULL,
                chunk_overlap INTEGER NOT NULL,
                total_chunks INTEGER NOT NULL,
                total_documents INTEGER NOT NULL,
                docs_directory TEXT NOT NULL,
                stats_json TEXT
            )
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(db_path))

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def insert_document(
    db_path: Path,
    content: str,
    embedding: List[float],
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    """Insert one chunk row and commit it.

    Returns:
        ID of the inserted row

    Raises:
        sqlite3.Error: If the insert fails (the row is rolled back)
        TypeError: If metadata isn't JSON serialisable
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT INTO documents (content, embedding, metadata_json, created_at)
            VALUES (?, ?, ?, ?)
        """, (
            content,
            json.dumps(embedding),
            json.dumps(metadata) if metadata else None,
            _now(),
        ))

        conn.commit()
        return cursor.lastrowid

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("document_insert_failed", error=str(e))
        raise
    finally:
        conn.close()


def delete_document(db_path: Path, row_id: int) -> None:
    """Delete a single row (used to undo an insert the index rejected)."""
    conn = get_connection(db_path)
    try:
        conn.execute("DELETE FROM documents WHERE id = ?", (row_id,))
        conn.commit()
    finally:
        conn.close()


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    document = dict(row)
    document["embedding"] = json.loads(document["embedding"])
    document["metadata"] = (
        json.loads(document["metadata_json"]) if document["metadata_json"] else {}
    )
    return document


def iter_documents(db_path: Path) -> List[Dict[str, Any]]:
    """Load every stored row, ordered by id."""
    conn = get_connection(db_path)

    try:
        rows = conn.execute("""
            SELECT id, content, embedding, metadata_json, created_at
            FROM documents
            ORDER BY id
        """).fetchall()
        return [_row_to_dict(row) for row in rows]

    except sqlite3.Error as e:
        logger.error("documents_load_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_documents_by_ids(db_path: Path, ids: List[int]) -> Dict[int, Dict[str, Any]]:
    """Retrieve rows by id.

    Returns:
        Mapping of id to row dict (missing ids are absent)
    """
    if not ids:
        return {}

    conn = get_connection(db_path)

    try:
        found = {}
        for start in range(0, len(ids), _ID_BATCH):
            batch = ids[start : start + _ID_BATCH]
            placeholders = ",".join("?" * len(batch))
            rows = conn.execute(f"""
                SELECT id, content, embedding, metadata_json, created_at
                FROM documents
                WHERE id IN ({placeholders})
            """, batch).fetchall()
            found.update((row["id"], _row_to_dict(row)) for row in rows)
        return found

    except sqlite3.Error as e:
        logger.error("documents_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def clear_all_documents(db_path: Path) -> int:
    """Delete all chunk rows.

    Returns:
        Number of rows deleted
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        count = cursor.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        cursor.execute("DELETE FROM documents")
        conn.commit()

        logger.info("documents_cleared", count=count)
        return count

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("documents_clear_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_document_count(db_path: Path) -> int:
    conn = get_connection(db_path)
    try:
        return conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
    finally:
        conn.close()


def insert_ingest_run(
    db_path: Path,
    embedding_model: str,
    embedding_dimension: Optional[int],
    chunk_size: int,
    chunk_overlap: int,
    total_chunks: int,
    total_documents: int,
    docs_directory: str,
    stats: Optional[Dict[str, Any]] = None,
) -> int:
    """Record an ingestion run.

    Args:
        embedding_model: Name of the embedding model used
        embedding_dimension: Dimension of the stored embeddings (None if nothing stored)
        chunk_size: Size of text chunks in characters
        chunk_overlap: Overlap between chunks in characters
        total_chunks: Number of chunks stored
        total_documents: Number of documents loaded
        docs_directory: Corpus directory
        stats: Full run statistics

    Returns:
        ID of the inserted row
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT INTO ingest_runs (
                ingested_at, embedding_model, embedding_dimension,
                chunk_size, chunk_overlap, total_chunks, total_documents,
                docs_directory, stats_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            _now(),
            embedding_model,
            embedding_dimension,
            chunk_size,
            chunk_overlap,
            total_chunks,
            total_documents,
            docs_directory,
            json.dumps(stats) if stats else None,
        ))

        conn.commit()
        row_id = cursor.lastrowid
        logger.info("ingest_run_recorded", id=row_id, total_chunks=total_chunks)
        return row_id

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("ingest_run_insert_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_latest_ingest_run(db_path: Path) -> Optional[Dict[str, Any]]:
    """Get the most recent ingestion run, or None."""
    conn = get_connection(db_path)

    try:
        row = conn.execute("""
            SELECT * FROM ingest_runs
            ORDER BY id DESC
            LIMIT 1
        """).fetchone()

        if row is None:
            return None

        run = dict(row)
        run["stats"] = json.loads(run["stats_json"]) if run["stats_json"] else {}
        return run

    finally:
        conn.close()
