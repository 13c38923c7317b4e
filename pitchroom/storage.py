import json
import os
import threading
from typing import Dict, Optional, Protocol

from .models import SessionState

try:
    import psycopg
    from psycopg.types.json import Jsonb
except Exception:  # pragma: no cover - only relevant when Postgres is enabled.
    psycopg = None
    Jsonb = None


def normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return "postgresql://" + database_url[len("postgres://") :]
    return database_url


class SessionStore(Protocol):
    storage_name: str

    def save_session(self, state: SessionState) -> None:
        pass

    def get_session(self, session_id: str) -> Optional[SessionState]:
        pass

    def delete_session(self, session_id: str) -> None:
        pass


class InMemorySessionStore:
    storage_name = "memory"

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def save_session(self, state: SessionState) -> None:
        with self._lock:
            self._sessions[state.id] = state

    def get_session(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            return self._sessions.get(session_id)

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


class PostgresSessionStore:
    storage_name = "postgres"

    def __init__(self, database_url: str) -> None:
        if psycopg is None or Jsonb is None:
            raise RuntimeError("psycopg is required when DATABASE_URL is set.")
        self._database_url = normalize_database_url(database_url)
        self._ensure_schema()

    def _connect(self):
        return psycopg.connect(self._database_url, autocommit=True)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS pitch_sessions (
                        session_id TEXT PRIMARY KEY,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        status TEXT NOT NULL,
                        score INTEGER NOT NULL CHECK (score BETWEEN 0 AND 100),
                        provider TEXT NULL,
                        termination_reason TEXT NULL,
                        state JSONB NOT NULL
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_pitch_sessions_updated_at
                    ON pitch_sessions (updated_at DESC)
                    """
                )

    def save_session(self, state: SessionState) -> None:
        payload = state.to_dict()
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO pitch_sessions (
                        session_id, created_at, updated_at, status, score, provider, termination_reason, state
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (session_id) DO UPDATE SET
                        updated_at = EXCLUDED.updated_at,
                        status = EXCLUDED.status,
                        score = EXCLUDED.score,
                        provider = EXCLUDED.provider,
                        termination_reason = EXCLUDED.termination_reason,
                        state = EXCLUDED.state
                    """,
                    (
                        state.id,
                        state.created_at,
                        state.updated_at,
                        payload["status"],
                        state.score,
                        state.provider,
                        payload["termination_reason"],
                        Jsonb(payload),
                    ),
                )

    def get_session(self, session_id: str) -> Optional[SessionState]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT state FROM pitch_sessions WHERE session_id = %s", (session_id,))
                row = cur.fetchone()
                if row is None:
                    return None
                (state,) = row
                if isinstance(state, str):
                    state = json.loads(state)
                return SessionState.from_dict(state)

    def delete_session(self, session_id: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM pitch_sessions WHERE session_id = %s", (session_id,))


def build_session_store() -> SessionStore:
    database_url = os.getenv("DATABASE_URL", "").strip()
    if database_url:
        return PostgresSessionStore(database_url=database_url)
    return InMemorySessionStore()
