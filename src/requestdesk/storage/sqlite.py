"""SQLite-backed implementation of :class:`RequestRepository`.

Provides flush-to-disk durability that survives process restarts.  Uses
Python's built-in :mod:`sqlite3` module so no external database server
is required.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from requestdesk.core.models import RequestStatus, SongRequest
from requestdesk.storage.base import RequestRepository

_DEFAULT_DB_PATH = "requestdesk.db"

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS song_requests (
    id              TEXT PRIMARY KEY,
    track_guid      TEXT NOT NULL,
    requested_by    TEXT NOT NULL,
    message         TEXT,
    ip_address      TEXT,
    requested_at    TEXT NOT NULL,
    processed_at    TEXT,
    status          TEXT NOT NULL DEFAULT 'pending',
    auto_process_at TEXT NOT NULL,
    hold_expires_at TEXT
);

CREATE INDEX IF NOT EXISTS ix_song_requests_ip ON song_requests (ip_address);
CREATE INDEX IF NOT EXISTS ix_song_requests_track ON song_requests (track_guid);
"""

_COLUMNS = (
    "id, track_guid, requested_by, message, ip_address, requested_at, "
    "processed_at, status, auto_process_at, hold_expires_at"
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteRequestRepository(RequestRepository):
    """SQLite-backed request repository."""

    def __init__(self, db_path: str = _DEFAULT_DB_PATH) -> None:
        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    # ------------------------------------------------------------------
    # RequestRepository interface
    # ------------------------------------------------------------------

    async def load_all(self) -> list[SongRequest]:
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM song_requests ORDER BY requested_at ASC"
        ).fetchall()
        return [self._row_to_request(r) for r in rows]

    async def save_all(self, requests: list[SongRequest]) -> None:
        # Records are never removed from the store, so an upsert of the
        # snapshot is equivalent to a full rewrite.
        with self._conn:
            self._conn.executemany(
                f"INSERT OR REPLACE INTO song_requests ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        r.id,
                        r.track_guid,
                        r.requested_by,
                        r.message,
                        r.ip_address,
                        r.requested_at.isoformat(),
                        _iso(r.processed_at),
                        r.status.value,
                        r.auto_process_at.isoformat(),
                        _iso(r.hold_expires_at),
                    )
                    for r in requests
                ],
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_request(row: Any) -> SongRequest:
        (
            req_id,
            track_guid,
            requested_by,
            message,
            ip_address,
            requested_at,
            processed_at,
            status,
            auto_process_at,
            hold_expires_at,
        ) = row
        return SongRequest(
            id=req_id,
            track_guid=track_guid,
            requested_by=requested_by,
            message=message,
            ip_address=ip_address,
            requested_at=datetime.fromisoformat(requested_at),
            processed_at=_parse(processed_at),
            status=RequestStatus(status),
            auto_process_at=datetime.fromisoformat(auto_process_at),
            hold_expires_at=_parse(hold_expires_at),
        )
