"""Blocklist of client addresses barred from submitting requests.

Entries optionally persist to a JSON file.  A failed read or write is
logged and the in-memory list stays authoritative.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

from requestdesk.core.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockedClient:
    ip: str
    added_at: datetime
    reason: str | None = None
    added_by: str | None = None


class ClientBlocklist:
    """Thread-safe set of blocked client addresses."""

    def __init__(self, path: str | Path | None = None, clock: Clock | None = None) -> None:
        self._path = Path(path) if path else None
        self._clock = clock or SystemClock()
        self._entries: dict[str, BlockedClient] = {}
        self._lock = threading.Lock()
        if self._path is not None:
            self._load()

    def is_blocked(self, ip: str | None) -> bool:
        if not ip:
            return False
        with self._lock:
            return ip in self._entries

    def list(self) -> list[BlockedClient]:
        """All entries, most recently added first."""
        with self._lock:
            entries = list(self._entries.values())
        return sorted(entries, key=lambda e: e.added_at, reverse=True)

    def add(self, ip: str, reason: str | None = None, added_by: str | None = None) -> BlockedClient:
        ip = ip.strip()
        if not ip:
            raise ValueError("ip is required")
        entry = BlockedClient(ip=ip, added_at=self._clock.now(), reason=reason, added_by=added_by)
        with self._lock:
            self._entries[ip] = entry
            self._save()
        logger.info("Blocked client %s", ip)
        return entry

    def remove(self, ip: str) -> bool:
        with self._lock:
            if self._entries.pop(ip, None) is None:
                return False
            self._save()
        logger.info("Unblocked client %s", ip)
        return True

    # ------------------------------------------------------------------

    def _load(self) -> None:
        assert self._path is not None
        if not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            entries = [
                BlockedClient(
                    ip=item["ip"],
                    added_at=datetime.fromisoformat(item["added_at"]),
                    reason=item.get("reason"),
                    added_by=item.get("added_by"),
                )
                for item in raw
            ]
        except (OSError, ValueError, KeyError, TypeError):
            logger.exception("Failed to load blocklist from %s", self._path)
            return
        self._entries = {e.ip: e for e in entries}

    def _save(self) -> None:
        if self._path is None:
            return
        data = [
            {**asdict(e), "added_at": e.added_at.isoformat()} for e in self._entries.values()
        ]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError:
            logger.exception("Failed to save blocklist to %s", self._path)
