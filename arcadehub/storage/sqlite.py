"""Embedded SQLite store for users/game scores, serialized as a single blob.

The database lives in memory. Its only durable form is the serialized image,
base64-encoded under one key of the local record store (and optionally on a
remote host). Every query returns a Result; nothing here raises on SQL errors.
"""

from __future__ import annotations

import base64
import binascii
import enum
import json
import logging
import sqlite3
from typing import Any

from arcadehub.config import ArcadeConfig
from arcadehub.errors import StorageQuotaError, ValidationError
from arcadehub.models import GUEST_USERNAME, int_or, now_iso
from arcadehub.results import Result
from arcadehub.storage.records import LocalRecordStore

log = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  username TEXT UNIQUE NOT NULL,
  password_hash TEXT NOT NULL,
  display_name TEXT,
  email TEXT,
  role TEXT DEFAULT 'user',
  site TEXT DEFAULT 'ArcadeHub',
  created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS game_scores (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  game_id TEXT NOT NULL,
  username TEXT NOT NULL,
  display_name TEXT,
  score INTEGER NOT NULL,
  level INTEGER DEFAULT 1,
  duration_seconds INTEGER,
  extra_data TEXT,
  site TEXT DEFAULT 'ArcadeHub',
  created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_users_username ON users(username);
CREATE INDEX IF NOT EXISTS idx_users_site ON users(site);
CREATE INDEX IF NOT EXISTS idx_scores_game ON game_scores(game_id, score DESC);
CREATE INDEX IF NOT EXISTS idx_scores_user ON game_scores(username, game_id);
CREATE INDEX IF NOT EXISTS idx_scores_site ON game_scores(site, game_id);
"""


class BackendState(enum.Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


def _open_image(data: bytes) -> sqlite3.Connection:
    if not data:
        raise ValueError("empty database image")
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    try:
        conn.deserialize(data)
        # deserialize() does not validate; the first read does.
        conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
    except sqlite3.Error:
        conn.close()
        raise
    conn.row_factory = sqlite3.Row
    return conn


class RelationalStore:
    def __init__(self, records: LocalRecordStore, config: ArcadeConfig):
        self.records = records
        self.config = config
        self.conn: sqlite3.Connection | None = None
        self.state = BackendState.UNLOADED
        self.source: str | None = None
        self._remote_sha: str | None = None
        self._dirty = False

    @property
    def is_ready(self) -> bool:
        return self.state is BackendState.READY and self.conn is not None

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def remote_sha(self) -> str | None:
        """Revision marker of the remote blob this database was last synced with."""
        return self._remote_sha

    @remote_sha.setter
    def remote_sha(self, sha: str | None) -> None:
        self._remote_sha = sha
        kv = self.records.kv
        try:
            if sha:
                kv.set_item(self.config.db_sha_key, sha)
            else:
                kv.remove_item(self.config.db_sha_key)
        except StorageQuotaError as e:
            log.warning("sync marker not saved: %s", e)

    # ---- lifecycle ----

    async def initialize(self, remote=None) -> BackendState:
        """Load the database: local blob, then remote (non-local mode only), then a fresh one."""
        self.state = BackendState.LOADING
        pull_failed = False
        try:
            blob = self.records.kv.get_item(self.config.db_blob_key)
            if blob:
                self._replace(_open_image(base64.b64decode(blob)), "local")
                self._remote_sha = self.records.kv.get_item(self.config.db_sha_key)
            elif not self.config.local_mode and remote is not None:
                pulled = await remote.pull()
                if pulled.ok:
                    self._replace(_open_image(pulled.value.content), "remote")
                    self.remote_sha = pulled.value.sha
                    self.save()
                else:
                    log.warning("remote database unavailable: %s", pulled.reason)
                    pull_failed = True

            if self.conn is None and self.config.db_create_if_missing:
                self.create_new()
        except (sqlite3.Error, binascii.Error, ValueError) as e:
            log.error("relational store failed to load: %s", e)
            self.close()
            self.state = BackendState.FAILED
            return self.state

        if self.conn is not None:
            self.state = BackendState.READY
        else:
            self.state = BackendState.FAILED if pull_failed else BackendState.UNLOADED
        return self.state

    def _replace(self, conn: sqlite3.Connection, source: str) -> None:
        self.close()
        self.conn = conn
        self.source = source
        self.state = BackendState.READY
        self.ensure_schema()

    def create_new(self) -> None:
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        self._replace(conn, "new")
        self.remote_sha = None
        self.save()
        log.info("created new relational database")

    def load_bytes(self, data: bytes, source: str = "file", remote_sha: str | None = None) -> None:
        """Replace the database with a serialized image. The old one survives a bad image."""
        try:
            conn = _open_image(data)
        except (sqlite3.Error, ValueError) as e:
            raise ValidationError(f"not a valid SQLite database: {e}") from e
        self._replace(conn, source)
        self.remote_sha = remote_sha
        self.save()

    def export_bytes(self) -> bytes:
        if not self.conn:
            return b""
        self.conn.commit()
        return self.conn.serialize()

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
        if self.state is BackendState.READY:
            self.state = BackendState.UNLOADED

    def ensure_schema(self) -> Result[None]:
        if not self.conn:
            return Result.failure("database not loaded")
        try:
            self.conn.executescript(SCHEMA)
            self.conn.commit()
        except sqlite3.Error as e:
            log.error("ensure_schema failed: %s", e)
            return Result.failure(str(e))
        self._dirty = True
        return Result.success(None)

    # ---- serialization ----

    def save(self) -> bool:
        """Write the serialized image to the local record store."""
        if not self.conn:
            return False
        blob = base64.b64encode(self.export_bytes()).decode("ascii")
        try:
            self.records.kv.set_item(self.config.db_blob_key, blob)
        except StorageQuotaError as e:
            log.error("database blob not saved: %s", e)
            return False
        self._dirty = False
        return True

    def flush(self) -> bool:
        if not self._dirty:
            return False
        return self.save()

    def _mutated(self) -> None:
        self._dirty = True
        if self.config.db_autosave_interval_sec <= 0:
            self.save()

    # ---- helpers ----

    def _query(self, sql: str, params: tuple = ()) -> Result[list[sqlite3.Row]]:
        if not self.is_ready:
            return Result.failure("database not loaded")
        try:
            return Result.success(self.conn.execute(sql, params).fetchall())
        except sqlite3.Error as e:
            log.error("query failed: %s", e)
            return Result.failure(str(e))

    def _execute(self, sql: str, params: tuple = ()) -> Result[int]:
        if not self.is_ready:
            return Result.failure("database not loaded")
        try:
            cur = self.conn.execute(sql, params)
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            log.error("statement failed: %s", e)
            return Result.failure(str(e))
        self._mutated()
        return Result.success(cur.rowcount)

    # ---- users ----

    def username_exists(self, username: str) -> Result[bool]:
        res = self._query("SELECT id FROM users WHERE LOWER(username) = LOWER(?) LIMIT 1", (username,))
        if not res.ok:
            return Result.failure(res.reason)
        return Result.success(bool(res.value))

    def get_user(self, username: str) -> Result[dict[str, Any] | None]:
        res = self._query(
            "SELECT username, password_hash, display_name, email, role, site, created_at "
            "FROM users WHERE LOWER(username) = LOWER(?) LIMIT 1",
            (username,),
        )
        if not res.ok:
            return Result.failure(res.reason)
        if not res.value:
            return Result.success(None)
        row = res.value[0]
        return Result.success(
            {
                "username": row["username"],
                "password": row["password_hash"] or "",
                "displayName": row["display_name"] or row["username"],
                "email": row["email"] or "",
                "isAdmin": row["role"] == "admin",
                "site": row["site"],
                "createdAt": row["created_at"],
            }
        )

    def insert_user(self, user: dict[str, Any]) -> Result[int]:
        return self._execute(
            "INSERT INTO users (username, password_hash, display_name, email, role, created_at, site) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                user["username"],
                user.get("password", ""),
                user.get("displayName") or user["username"],
                user.get("email") or "",
                "admin" if user.get("isAdmin") else "user",
                user.get("createdAt") or now_iso(),
                self.config.site_id,
            ),
        )

    def update_user(self, username: str, display_name: str | None = None, email: str | None = None) -> Result[int]:
        fields = []
        values: list[Any] = []
        if display_name:
            fields.append("display_name = ?")
            values.append(display_name)
        if email is not None:
            fields.append("email = ?")
            values.append(email)
        if not fields:
            return Result.success(0)
        values.append(username)
        return self._execute(f"UPDATE users SET {', '.join(fields)} WHERE LOWER(username) = LOWER(?)", tuple(values))

    # ---- scores ----

    def submit_score(
        self,
        game_id: str,
        username: str | None,
        display_name: str | None,
        score: int,
        extra: dict[str, Any] | None = None,
    ) -> Result[dict[str, Any]]:
        extra = extra or {}
        username = username or GUEST_USERNAME
        display_name = display_name or username or "Guest"
        created_at = now_iso()
        res = self._execute(
            "INSERT INTO game_scores "
            "(game_id, username, display_name, score, level, duration_seconds, extra_data, site, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                game_id,
                username,
                display_name,
                int(score),
                int_or(extra.get("level"), 1),
                int_or(extra.get("duration")),
                json.dumps(extra),
                self.config.site_id,
                created_at,
            ),
        )
        if not res.ok:
            return Result.failure(res.reason)
        return Result.success(
            {"gameId": game_id, "username": username, "displayName": display_name, "score": int(score), "createdAt": created_at}
        )

    def get_top_scores(self, game_id: str, limit: int = 10, site_only: bool = False) -> Result[list[dict[str, Any]]]:
        # SQLite takes the bare columns from the row holding MAX(score).
        sql = (
            "SELECT username, display_name, MAX(score) AS score, level, duration_seconds, site, created_at "
            "FROM game_scores WHERE game_id = ?"
        )
        params: list[Any] = [game_id]
        if site_only:
            sql += " AND site = ?"
            params.append(self.config.site_id)
        sql += " GROUP BY username ORDER BY score DESC LIMIT ?"
        params.append(int(limit))

        res = self._query(sql, tuple(params))
        if not res.ok:
            return Result.failure(res.reason)
        return Result.success(
            [
                {
                    "username": row["username"],
                    "displayName": row["display_name"] or row["username"],
                    "score": row["score"],
                    "level": row["level"],
                    "duration": row["duration_seconds"],
                    "site": row["site"],
                    "date": row["created_at"],
                }
                for row in res.value
            ]
        )

    def get_personal_best(self, game_id: str, username: str) -> Result[int]:
        if not username:
            return Result.success(0)
        res = self._query(
            "SELECT MAX(score) AS best FROM game_scores WHERE game_id = ? AND username = ?",
            (game_id, username),
        )
        if not res.ok:
            return Result.failure(res.reason)
        return Result.success(int(res.value[0]["best"] or 0) if res.value else 0)

    def get_user_scores(self, game_id: str, username: str, limit: int = 20) -> Result[list[dict[str, Any]]]:
        res = self._query(
            "SELECT score, level, duration_seconds, created_at FROM game_scores "
            "WHERE game_id = ? AND username = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (game_id, username, int(limit)),
        )
        if not res.ok:
            return Result.failure(res.reason)
        return Result.success(
            [
                {"score": r["score"], "level": r["level"], "duration": r["duration_seconds"], "date": r["created_at"]}
                for r in res.value
            ]
        )

    def get_user_stats(self, username: str) -> Result[dict[str, Any]]:
        totals = self._query(
            "SELECT COUNT(*) AS plays, COALESCE(SUM(score), 0) AS total_score FROM game_scores WHERE username = ?",
            (username,),
        )
        if not totals.ok:
            return Result.failure(totals.reason)
        games = self._query(
            "SELECT game_id, COUNT(*) AS plays, MAX(score) AS best_score, SUM(score) AS total_score "
            "FROM game_scores WHERE username = ? GROUP BY game_id",
            (username,),
        )
        if not games.ok:
            return Result.failure(games.reason)

        row = totals.value[0]
        return Result.success(
            {
                "totalPlays": row["plays"] or 0,
                "totalScore": row["total_score"] or 0,
                "gamesPlayed": {
                    g["game_id"]: {"plays": g["plays"], "bestScore": g["best_score"], "totalScore": g["total_score"]}
                    for g in games.value
                },
            }
        )

    def get_global_stats(self) -> Result[dict[str, Any]]:
        site = (self.config.site_id,)
        totals = self._query(
            "SELECT COUNT(*) AS total, COUNT(DISTINCT username) AS players FROM game_scores WHERE site = ?", site
        )
        games = self._query(
            "SELECT game_id, COUNT(*) AS plays FROM game_scores WHERE site = ? "
            "GROUP BY game_id ORDER BY plays DESC LIMIT 5",
            site,
        )
        if not totals.ok or not games.ok:
            return Result.failure(totals.reason or games.reason)
        row = totals.value[0]
        return Result.success(
            {
                "totalScores": row["total"] or 0,
                "uniquePlayers": row["players"] or 0,
                "topGames": [{"gameId": g["game_id"], "plays": g["plays"]} for g in games.value],
            }
        )

    def get_all_leaderboards(self, limit: int = 5) -> Result[dict[str, list[dict[str, Any]]]]:
        res = self._query(
            "SELECT DISTINCT game_id FROM game_scores WHERE site = ? ORDER BY game_id", (self.config.site_id,)
        )
        if not res.ok:
            return Result.failure(res.reason)
        out = {}
        for row in res.value:
            top = self.get_top_scores(row["game_id"], limit, site_only=True)
            if not top.ok:
                return Result.failure(top.reason)
            out[row["game_id"]] = top.value
        return Result.success(out)

    def describe(self) -> dict[str, Any]:
        tables: dict[str, int] = {}
        names = self._query("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
        for row in names.unwrap_or([]):
            if row["name"].startswith("sqlite_"):
                continue
            count = self._query(f'SELECT COUNT(*) AS n FROM "{row["name"]}"')
            tables[row["name"]] = count.value[0]["n"] if count.ok else 0
        return {
            "state": self.state.value,
            "source": self.source,
            "remoteSha": self.remote_sha,
            "dirty": self._dirty,
            "tables": tables,
        }
