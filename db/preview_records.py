"""SQLite persistence for preview metadata records."""

from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Optional

from db.migrations import ensure_preview_records_table
from engine.models import PreviewRecord

logger = logging.getLogger(__name__)


def _connect(db_path: str) -> sqlite3.Connection:
    parent = os.path.dirname(db_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    ensure_preview_records_table(conn)
    return conn


def insert_preview_record(db_path: str, record: PreviewRecord) -> int:
    """Insert one record and return its row id."""
    external_id = (record.external_id or "").strip()
    if not external_id:
        raise ValueError("external_id is required")
    if not record.audio_url or not record.video_url:
        raise ValueError("audio_url and video_url are required")

    conn = _connect(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO preview_records (external_id, audio_url, video_url, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (external_id, record.audio_url, record.video_url, datetime.now(timezone.utc).isoformat()),
        )
        conn.commit()
        return int(cur.lastrowid)
    finally:
        conn.close()


def get_preview_record(db_path: str, external_id: str) -> Optional[dict[str, Any]]:
    """Return the latest record for ``external_id``, or ``None``."""
    key = (external_id or "").strip()
    if not key:
        return None

    conn = _connect(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT external_id, audio_url, video_url, created_at
            FROM preview_records
            WHERE external_id=?
            ORDER BY id DESC
            LIMIT 1
            """,
            (key,),
        )
        row = cur.fetchone()
        return dict(row) if row is not None else None
    finally:
        conn.close()


class SqliteMetadataRecorder:
    def __init__(self, db_path: str) -> None:
        self.db_path = str(db_path)

    def record(self, record: PreviewRecord) -> bool:
        try:
            row_id = insert_preview_record(self.db_path, record)
        except (sqlite3.Error, OSError, ValueError):
            logger.exception("preview record insert failed external_id=%s", record.external_id)
            return False
        logger.info("preview record saved external_id=%s row_id=%s", record.external_id, row_id)
        return True
