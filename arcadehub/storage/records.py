"""Users, scores, settings and the session pointer on top of a key-value backend.

Every collection is one JSON document under one key. Writes replace the whole
document; there is no merge and no locking, so the last writer wins.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from arcadehub.config import ArcadeConfig, SeedUser
from arcadehub.errors import NotAuthenticatedError, NotFoundError, StorageQuotaError, UsernameExistsError
from arcadehub.models import GUEST_USERNAME, ScoreEntry, apply_score, new_stats, new_user, now_iso
from arcadehub.storage.kv import MemoryKeyValue

log = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "emailVerification": False,
    "publicSignup": True,
    "maintenanceMode": False,
}


class LocalRecordStore:
    def __init__(self, kv: MemoryKeyValue, config: ArcadeConfig):
        self.kv = kv
        self.config = config

    def init(self) -> None:
        """Seed the default admin/demo users and system settings when absent."""
        if self.kv.get_item(self.config.users_key) is None:
            users = {}
            for seed in (self.config.default_admin, self.config.default_demo):
                users[seed.username] = self._seed_user(seed, f"{seed.username}_001")
            self.put(self.config.users_key, users)
        if self.kv.get_item(self.config.scores_key) is None:
            self.put(self.config.scores_key, {})
        if self.kv.get_item(self.config.settings_key) is None:
            self.put(self.config.settings_key, dict(DEFAULT_SETTINGS))

    @staticmethod
    def _seed_user(seed: SeedUser, user_id: str) -> dict[str, Any]:
        return new_user(
            username=seed.username,
            display_name=seed.displayName,
            password=seed.password,
            email=seed.email,
            is_admin=seed.isAdmin,
            user_id=user_id,
        )

    # ---- collections ----

    def get(self, key: str) -> dict[str, Any]:
        raw = self.kv.get_item(key)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            log.warning("collection %s is corrupt; treating as empty", key)
            return {}
        return data if isinstance(data, dict) else {}

    def put(self, key: str, data: dict[str, Any]) -> None:
        self.kv.set_item(key, json.dumps(data, separators=(",", ":")))

    # ---- users ----

    def get_users(self) -> dict[str, Any]:
        return self.get(self.config.users_key)

    def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        if not username:
            return None
        return self.get_users().get(username.lower())

    def create_user(
        self,
        username: str,
        display_name: str,
        password: str,
        email: str = "",
        is_admin: bool = False,
    ) -> dict[str, Any]:
        users = self.get_users()
        key = username.lower()
        if key in users:
            raise UsernameExistsError("Username already exists")
        user = new_user(key, display_name, password, email=email, is_admin=is_admin)
        users[key] = user
        # Quota errors propagate.
        self.put(self.config.users_key, users)
        return user

    def update_user(self, username: str, updates: dict[str, Any]) -> dict[str, Any]:
        users = self.get_users()
        key = username.lower()
        if key not in users:
            raise NotFoundError("User not found")
        updates = {k: v for k, v in updates.items() if k not in ("username", "id")}
        users[key] = {**users[key], **updates}
        self.put(self.config.users_key, users)
        return users[key]

    # ---- session ----

    def get_current_user(self) -> dict[str, Any] | None:
        username = self.kv.get_item(self.config.current_user_key)
        if not username:
            return None
        return self.get_user_by_username(username)

    def set_current_user(self, username: str) -> None:
        self.kv.set_item(self.config.current_user_key, username.lower())

    def clear_current_user(self) -> None:
        self.kv.remove_item(self.config.current_user_key)

    # ---- scores ----

    def get_all_scores(self) -> dict[str, list[dict[str, Any]]]:
        return self.get(self.config.scores_key)

    def get_game_scores(self, game_id: str) -> list[dict[str, Any]]:
        return list(self.get_all_scores().get(game_id) or [])

    def get_top_scores(self, game_id: str, limit: int = 10) -> list[dict[str, Any]]:
        best: dict[str, dict[str, Any]] = {}
        for e in self.get_game_scores(game_id):
            cur = best.get(e.get("username"))
            if cur is None or e.get("score", 0) > cur.get("score", 0):
                best[e.get("username")] = e
        vals = list(best.values())
        vals.sort(key=lambda r: r.get("score", 0), reverse=True)
        return vals[: int(limit)]

    def submit_score(self, game_id: str, score: int, extra: dict[str, Any] | None = None) -> ScoreEntry:
        user = self.get_current_user()
        if not user:
            raise NotAuthenticatedError("Not logged in")

        entry = ScoreEntry.create(
            game_id=game_id,
            username=user["username"],
            display_name=user.get("displayName") or user["username"],
            score=score,
            site=self.config.site_id,
            extra=extra,
        )
        all_scores = self.get_all_scores()
        rows = list(all_scores.get(game_id) or [])
        rows.append(entry.to_dict())
        rows.sort(key=lambda r: r.get("score", 0), reverse=True)
        all_scores[game_id] = rows[: self.config.max_scores_per_game]
        self.put(self.config.scores_key, all_scores)

        self.update_user_stats(user["username"], game_id, entry.score)
        return entry

    def record_guest_score(self, game_id: str, score: int, extra: dict[str, Any] | None = None) -> ScoreEntry:
        entry = ScoreEntry.create(
            game_id=game_id,
            username=GUEST_USERNAME,
            display_name="Guest",
            score=score,
            site=self.config.site_id,
            extra=extra,
        )
        guests = self.get(self.config.guest_scores_key)
        rows = list(guests.get(game_id) or [])
        rows.append(entry.to_dict())
        rows.sort(key=lambda r: r.get("score", 0), reverse=True)
        guests[game_id] = rows[: self.config.max_scores_per_game]
        try:
            self.put(self.config.guest_scores_key, guests)
        except StorageQuotaError as e:
            log.warning("guest score not stored: %s", e)
        return entry

    def get_guest_best_score(self, game_id: str) -> int:
        rows = self.get(self.config.guest_scores_key).get(game_id) or []
        return max((int(r.get("score", 0)) for r in rows), default=0)

    def get_user_best_score(self, game_id: str, username: str) -> int:
        username = username.lower()
        mine = [int(s.get("score", 0)) for s in self.get_game_scores(game_id) if s.get("username") == username]
        return max(mine, default=0)

    # ---- stats ----

    def update_user_stats(self, username: str, game_id: str, score: int) -> None:
        users = self.get_users()
        user = users.get(username.lower())
        if not user:
            return
        user["stats"] = apply_score(user.get("stats"), game_id, score)
        self.put(self.config.users_key, users)

    def get_user_stats(self, username: str) -> dict[str, Any]:
        user = self.get_user_by_username(username)
        if not user or not user.get("stats"):
            return new_stats()
        return user["stats"]

    def get_global_stats(self) -> dict[str, Any]:
        all_scores = self.get_all_scores()
        plays = {g: len(rows) for g, rows in all_scores.items()}
        players = {r.get("username") for rows in all_scores.values() for r in rows}
        top = sorted(plays.items(), key=lambda kv: kv[1], reverse=True)[:5]
        return {
            "totalScores": sum(plays.values()),
            "uniquePlayers": len(players),
            "topGames": [{"gameId": g, "plays": n} for g, n in top],
        }

    def get_all_leaderboards(self, limit: int = 5) -> dict[str, list[dict[str, Any]]]:
        return {g: self.get_top_scores(g, limit) for g in sorted(self.get_all_scores())}

    # ---- settings ----

    def get_system_settings(self) -> dict[str, Any]:
        return self.get(self.config.settings_key)

    def save_system_settings(self, settings: dict[str, Any]) -> None:
        self.put(self.config.settings_key, settings)

    def get_preference(self, name: str, default: Any = None) -> Any:
        return self.get(self.config.prefs_key).get(name, default)

    def set_preference(self, name: str, value: Any) -> bool:
        prefs = self.get(self.config.prefs_key)
        prefs[name] = value
        try:
            self.put(self.config.prefs_key, prefs)
        except StorageQuotaError as e:
            log.warning("preference %s not saved: %s", name, e)
            return False
        return True

    # ---- export / import ----

    def export_data(self) -> dict[str, Any]:
        return {
            "version": self.config.app_version,
            "app": self.config.app_name,
            "users": self.get(self.config.users_key),
            "scores": self.get(self.config.scores_key),
            "settings": self.get(self.config.settings_key),
            "exportedAt": now_iso(),
        }

    def import_data(self, data: dict[str, Any]) -> None:
        if data.get("users"):
            self.put(self.config.users_key, data["users"])
        if data.get("scores"):
            self.put(self.config.scores_key, data["scores"])
        if data.get("settings"):
            self.put(self.config.settings_key, data["settings"])

    def clear_all(self) -> None:
        for key in (
            self.config.users_key,
            self.config.scores_key,
            self.config.guest_scores_key,
            self.config.settings_key,
            self.config.current_user_key,
        ):
            self.kv.remove_item(key)
        self.init()
