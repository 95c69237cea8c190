"""Artifact and token-analytics persistence."""

from __future__ import annotations

import sqlite3
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from uiforge.types import CumulativeTokenAnalytics, TokenAnalytics

_TOKEN_COLUMNS = (
    "model_name", "provider", "prompt_tokens", "response_tokens",
    "total_tokens", "max_tokens", "utilization_percentage",
)


@dataclass
class ArtifactRecord:
    """A persisted generated component."""

    id: str
    prompt: str
    model: str
    code: str
    created_at: float
    updated_at: float


def new_artifact_id() -> str:
    return uuid.uuid4().hex[:12]


class ArtifactStore:
    """SQLite-backed store keyed by artifact id."""

    def __init__(self, db_path: str = "~/.uiforge/artifacts.db"):
        if db_path == ":memory:":
            self.db_path = None
            self._conn = sqlite3.connect(":memory:")
        else:
            self.db_path = Path(db_path).expanduser()
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
        self._init_schema()

    def _init_schema(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS artifacts (
                id TEXT PRIMARY KEY,
                prompt TEXT NOT NULL,
                model TEXT NOT NULL,
                code TEXT NOT NULL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            );
            CREATE TABLE IF NOT EXISTS analytics (
                artifact_id TEXT NOT NULL,
                scope TEXT NOT NULL,
                model_name TEXT NOT NULL,
                provider TEXT NOT NULL,
                prompt_tokens INTEGER NOT NULL,
                response_tokens INTEGER NOT NULL,
                total_tokens INTEGER NOT NULL,
                max_tokens INTEGER NOT NULL,
                utilization_percentage REAL NOT NULL,
                generations INTEGER NOT NULL DEFAULT 1,
                updated_at REAL NOT NULL,
                PRIMARY KEY (artifact_id, scope)
            );
            CREATE INDEX IF NOT EXISTS idx_artifacts_updated ON artifacts(updated_at);
        """)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def save_artifact(
        self,
        prompt: str,
        model: str,
        code: str,
        artifact_id: str | None = None,
    ) -> str:
        """Insert a new artifact, or update the code of an existing lineage.

        Returns the artifact id.
        """
        artifact_id = artifact_id or new_artifact_id()
        now = time.time()
        self._conn.execute(
            "INSERT INTO artifacts (id, prompt, model, code, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET model=?, code=?, updated_at=?",
            (artifact_id, prompt, model, code, now, now, model, code, now),
        )
        self._conn.commit()
        return artifact_id

    def get_artifact(self, artifact_id: str) -> ArtifactRecord | None:
        row = self._conn.execute(
            "SELECT id, prompt, model, code, created_at, updated_at "
            "FROM artifacts WHERE id = ?",
            (artifact_id,),
        ).fetchone()
        return ArtifactRecord(*row) if row else None

    def list_artifacts(self, limit: int = 20) -> list[ArtifactRecord]:
        rows = self._conn.execute(
            "SELECT id, prompt, model, code, created_at, updated_at "
            "FROM artifacts ORDER BY updated_at DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [ArtifactRecord(*row) for row in rows]

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def upsert_analytics(
        self,
        artifact_id: str,
        analytics: TokenAnalytics,
    ) -> None:
        """Store per-call or cumulative analytics for *artifact_id*."""
        scope = "cumulative" if isinstance(analytics, CumulativeTokenAnalytics) else "call"
        generations = getattr(analytics, "generations", 1)
        values = tuple(getattr(analytics, c) for c in _TOKEN_COLUMNS)
        now = time.time()
        updates = ", ".join(f"{c}=excluded.{c}" for c in _TOKEN_COLUMNS)
        self._conn.execute(
            f"INSERT INTO analytics (artifact_id, scope, {', '.join(_TOKEN_COLUMNS)}, "
            f"generations, updated_at) VALUES (?, ?, {', '.join('?' * len(_TOKEN_COLUMNS))}, ?, ?) "
            f"ON CONFLICT(artifact_id, scope) DO UPDATE SET {updates}, "
            "generations=excluded.generations, updated_at=excluded.updated_at",
            (artifact_id, scope, *values, generations, now),
        )
        self._conn.commit()

    def get_analytics(self, artifact_id: str) -> TokenAnalytics | None:
        row = self._fetch_analytics(artifact_id, "call")
        return TokenAnalytics(*row[:-1]) if row else None

    def get_cumulative(self, artifact_id: str) -> CumulativeTokenAnalytics | None:
        row = self._fetch_analytics(artifact_id, "cumulative")
        return CumulativeTokenAnalytics(*row) if row else None

    def _fetch_analytics(self, artifact_id: str, scope: str) -> tuple | None:
        return self._conn.execute(
            f"SELECT {', '.join(_TOKEN_COLUMNS)}, generations FROM analytics "
            "WHERE artifact_id = ? AND scope = ?",
            (artifact_id, scope),
        ).fetchone()

    def close(self):
        self._conn.close()
