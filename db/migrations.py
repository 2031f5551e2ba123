"""SQLite migrations for preview metadata records."""

from __future__ import annotations

import sqlite3


def ensure_preview_records_table(conn: sqlite3.Connection) -> None:
    """Ensure the preview_records table and its lookup index exist."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS preview_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            external_id TEXT NOT NULL,
            audio_url TEXT NOT NULL,
            video_url TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_preview_records_external_id "
        "ON preview_records (external_id, id DESC)"
    )
    conn.commit()
