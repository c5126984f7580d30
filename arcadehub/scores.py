"""Score/stats facade: the one call surface games and UI use.

Writes always land in the local record store. The relational store is
written too when it is ready and the player is signed in. Reads prefer the
relational store and fall back to the local one per call; the two are never
reconciled.
"""

from __future__ import annotations

import logging
from typing import Any

from arcadehub.models import ScoreEntry, public_user
from arcadehub.storage.records import LocalRecordStore
from arcadehub.storage.sqlite import RelationalStore
from arcadehub.sync.telemetry import TelemetryClient

log = logging.getLogger(__name__)


class ScoreService:
    def __init__(self, records: LocalRecordStore, sql: RelationalStore, telemetry: TelemetryClient | None = None):
        self.records = records
        self.sql = sql
        self.telemetry = telemetry

    def save_score(self, game_id: str, score: int, extra: dict[str, Any] | None = None) -> ScoreEntry:
        extra = dict(extra or {})
        user = self.records.get_current_user()
        if user:
            entry = self.records.submit_score(game_id, score, extra)
            if self.sql.is_ready:
                res = self.sql.submit_score(game_id, entry.username, entry.display_name, entry.score, extra)
                if not res.ok:
                    log.warning("score for %s kept local only: %s", game_id, res.reason)
        else:
            entry = self.records.record_guest_score(game_id, score, extra)

        if self.telemetry is not None:
            self.telemetry.submit(
                "SCORE",
                {
                    "username": entry.username,
                    "displayName": entry.display_name,
                    "score": entry.score,
                    "correct": extra.get("correct", 0),
                    "wrong": extra.get("wrong", 0),
                    "streak": extra.get("streak", 0),
                    "mode": game_id,
                    "timestamp": entry.date,
                },
            )
        return entry

    def get_leaderboard(self, game_id: str, limit: int = 10) -> list[dict[str, Any]]:
        if self.sql.is_ready:
            res = self.sql.get_top_scores(game_id, limit)
            if res.ok and res.value:
                return res.value
        return self.records.get_top_scores(game_id, limit)

    def get_personal_best(self, game_id: str, username: str | None = None) -> int:
        if username is None:
            user = self.records.get_current_user()
            if not user:
                return self.records.get_guest_best_score(game_id)
            username = user["username"]
        username = username.lower()
        if self.sql.is_ready:
            res = self.sql.get_personal_best(game_id, username)
            if res.ok and res.value:
                return res.value
        return self.records.get_user_best_score(game_id, username)

    def get_score_history(self, game_id: str, username: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent plays first."""
        username = username.lower()
        if self.sql.is_ready:
            res = self.sql.get_user_scores(game_id, username, limit)
            if res.ok and res.value:
                return res.value
        mine = [
            {"score": e["score"], "level": e.get("level"), "duration": e.get("duration"), "date": e["date"]}
            for e in self.records.get_game_scores(game_id)
            if e.get("username") == username
        ]
        mine.sort(key=lambda e: e["date"], reverse=True)
        return mine[:limit]

    def get_user_stats(self, username: str | None = None) -> dict[str, Any]:
        if username is None:
            user = self.records.get_current_user()
            username = user["username"] if user else ""
        username = username.lower()
        if self.sql.is_ready and username:
            res = self.sql.get_user_stats(username)
            if res.ok and res.value["totalPlays"]:
                return res.value
        return self.records.get_user_stats(username)

    def get_global_stats(self) -> dict[str, Any]:
        if self.sql.is_ready:
            res = self.sql.get_global_stats()
            if res.ok and res.value["totalScores"]:
                return {**res.value, "totalUsers": len(self.records.get_users())}
        return {**self.records.get_global_stats(), "totalUsers": len(self.records.get_users())}

    def get_all_leaderboards(self, limit: int = 5) -> dict[str, list[dict[str, Any]]]:
        if self.sql.is_ready:
            res = self.sql.get_all_leaderboards(limit)
            if res.ok and res.value:
                return res.value
        return self.records.get_all_leaderboards(limit)

    def list_users(self) -> list[dict[str, Any]]:
        """Every local user without the password, with stats from the preferred backend."""
        out = []
        for username, user in sorted(self.records.get_users().items()):
            entry = public_user(user)
            entry["stats"] = self.get_user_stats(username)
            out.append(entry)
        return out
