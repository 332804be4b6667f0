"""Per-identity persistence of the active producer thread id."""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .models import ThreadHistory
from .workflow_client import WorkflowClient

logger = logging.getLogger(__name__)


class ThreadStore:
    """
    Remembers which thread an identity was negotiating in, across restarts.

    One row per identity, so distinct identities never see each other's
    thread. Persistence is best-effort: sqlite failures are logged and
    reported through return values, never raised.
    """

    def __init__(self, db_path: str, identity: str, client: Optional[WorkflowClient] = None):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.identity = identity
        self.client = client

        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def _init_db(self):
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS producer_threads (
                    identity TEXT PRIMARY KEY,
                    thread_id TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def persist(self, thread_id: str) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            try:
                conn = self._get_conn()
                conn.execute(
                    """
                    INSERT INTO producer_threads (identity, thread_id, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(identity) DO UPDATE SET
                        thread_id = excluded.thread_id,
                        updated_at = excluded.updated_at
                    """,
                    (self.identity, thread_id, now),
                )
                conn.commit()
                return True
            except sqlite3.Error as e:
                logger.warning("Failed to persist thread for %s: %s", self.identity, e)
                return False

    def load(self) -> Optional[str]:
        with self._lock:
            try:
                cursor = self._get_conn().execute(
                    "SELECT thread_id FROM producer_threads WHERE identity = ?",
                    (self.identity,),
                )
                row = cursor.fetchone()
            except sqlite3.Error as e:
                logger.warning("Failed to load thread for %s: %s", self.identity, e)
                return None
        return row[0] if row else None

    def clear(self) -> bool:
        with self._lock:
            try:
                conn = self._get_conn()
                conn.execute("DELETE FROM producer_threads WHERE identity = ?", (self.identity,))
                conn.commit()
                return True
            except sqlite3.Error as e:
                logger.warning("Failed to clear thread for %s: %s", self.identity, e)
                return False

    async def fetch_history(self, thread_id: str) -> ThreadHistory:
        """Network call; raises WorkflowClientError on failure."""
        if self.client is None:
            raise RuntimeError("ThreadStore has no workflow client")
        return await self.client.fetch_thread(thread_id)

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
