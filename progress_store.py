"""Progress persistence keyed by (user, term) with keep-maximum merges.

Both stores own their connection explicitly: open it at startup, close it at
shutdown. Saves never lower a stored count, so out-of-order saves from other
windows or devices cannot lose progress.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urljoin, urlparse

import requests

from errors import ProgressStoreError
from models import ProgressRecord

logger = logging.getLogger(__name__)

SESSION_COOKIE = "rn_session"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS progress (
    user_id TEXT NOT NULL,
    term TEXT NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    UNIQUE (user_id, term)
)
"""

_UPSERT = """
INSERT INTO progress (user_id, term, count, created_at, updated_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT (user_id, term) DO UPDATE SET
    count = MAX(count, excluded.count),
    updated_at = excluded.updated_at
"""


def _validate(term: str, count: int) -> str:
    term = term.strip()
    if not term:
        raise ValueError("term must not be blank")
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise ValueError(f"count must be a non-negative integer, got {count!r}")
    return term


class SqliteProgressStore:
    def __init__(self, path: Path, clock: Callable[[], float] = time.time) -> None:
        self._path = Path(path)
        self._clock = clock
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def open(self) -> "SqliteProgressStore":
        with self._lock:
            if self._conn is None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
                self._conn.execute(_SCHEMA)
                self._conn.commit()
                logger.debug("Opened progress database %s", self._path)
        return self

    def close(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    def __enter__(self) -> "SqliteProgressStore":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def load_progress(self, user_id: str, term: Optional[str] = None) -> Optional[ProgressRecord]:
        if term is None:
            query = (
                "SELECT term, count FROM progress WHERE user_id = ? "
                "ORDER BY updated_at DESC LIMIT 1"
            )
            params: tuple = (user_id,)
        else:
            query = "SELECT term, count FROM progress WHERE user_id = ? AND term = ?"
            params = (user_id, term.strip())
        with self._lock:
            conn = self._require_open()
            try:
                row = conn.execute(query, params).fetchone()
            except sqlite3.Error as exc:
                raise ProgressStoreError(f"load failed: {exc}") from exc
        return ProgressRecord(term=row[0], count=row[1]) if row else None

    def save_progress(self, user_id: str, term: str, count: int) -> ProgressRecord:
        term = _validate(term, count)
        now = self._clock()
        with self._lock:
            conn = self._require_open()
            try:
                with conn:
                    conn.execute(_UPSERT, (user_id, term, count, now, now))
                row = conn.execute(
                    "SELECT term, count FROM progress WHERE user_id = ? AND term = ?",
                    (user_id, term),
                ).fetchone()
            except sqlite3.Error as exc:
                raise ProgressStoreError(f"save failed: {exc}") from exc
        return ProgressRecord(term=row[0], count=row[1])

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise ProgressStoreError("progress store is not open")
        return self._conn


def open_http_session(server_url: str, session_token: str) -> requests.Session:
    """A ``requests`` session carrying the opaque login cookie for ``server_url``."""
    session = requests.Session()
    if session_token:
        session.cookies.set(SESSION_COOKIE, session_token, domain=urlparse(server_url).hostname or "")
    session.headers["Accept"] = "application/json"
    return session


class HttpProgressStore:
    """Client for the web app's ``/api/progress`` endpoint.

    The server identifies the user from the session cookie, so ``user_id`` is
    only used for logging. It returns one record per user (the latest), so a
    load for a different term reports no record.
    """

    def __init__(self, server_url: str, session: requests.Session, timeout_s: float = 5.0) -> None:
        self._url = urljoin(server_url.rstrip("/") + "/", "api/progress")
        self._session = session
        self._timeout_s = timeout_s

    def close(self) -> None:
        self._session.close()

    def load_progress(self, user_id: str, term: Optional[str] = None) -> Optional[ProgressRecord]:
        data = self._request("GET", user_id)
        if not data:
            return None
        record = self._to_record(data)
        if term is not None and record.term != term.strip():
            return None
        return record

    def save_progress(self, user_id: str, term: str, count: int) -> ProgressRecord:
        term = _validate(term, count)
        data = self._request("POST", user_id, json={"mantra": term, "count": count})
        if not data:
            raise ProgressStoreError("empty response to save")
        return self._to_record(data)

    def _request(self, method: str, user_id: str, **kwargs: object) -> Optional[dict]:
        try:
            response = self._session.request(method, self._url, timeout=self._timeout_s, **kwargs)
        except requests.RequestException as exc:
            raise ProgressStoreError(f"{method} {self._url} failed: {exc}") from exc
        if response.status_code == 401:
            raise ProgressStoreError(f"not authenticated as {user_id}")
        if not response.ok:
            raise ProgressStoreError(f"{method} {self._url} returned {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise ProgressStoreError(f"invalid JSON from {self._url}") from exc

    def _to_record(self, data: dict) -> ProgressRecord:
        try:
            return ProgressRecord(term=str(data["mantra"]), count=int(data["count"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ProgressStoreError(f"malformed progress payload: {data!r}") from exc
