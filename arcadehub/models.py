"""Record shapes persisted in the local store.

Users are kept as plain JSON mappings keyed by lowercase username:

  {"id", "username", "displayName", "email", "password", "isAdmin",
   "createdAt", "settings", "stats"}

Score entries are immutable once written.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

GUEST_USERNAME = "guest"

_ENTRY_FIELDS = ("id", "gameId", "username", "displayName", "score", "date", "site", "level", "duration")


def generate_id() -> str:
    return format(int(time.time() * 1000), "x") + secrets.token_hex(4)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def int_or(value: Any, default: Any = None) -> Any:
    """`int(value)`, or `default` when the value is not a number."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def new_stats() -> dict[str, Any]:
    return {"totalPlays": 0, "totalScore": 0, "gamesPlayed": {}}


def apply_score(stats: dict[str, Any] | None, game_id: str, score: int) -> dict[str, Any]:
    stats = stats or new_stats()
    stats["totalPlays"] = int(stats.get("totalPlays", 0)) + 1
    stats["totalScore"] = int(stats.get("totalScore", 0)) + score
    games = stats.setdefault("gamesPlayed", {})
    g = games.get(game_id) or {"plays": 0, "bestScore": 0, "totalScore": 0}
    g["plays"] += 1
    g["totalScore"] += score
    if score > g["bestScore"]:
        g["bestScore"] = score
    games[game_id] = g
    return stats


def new_user(
    username: str,
    display_name: str,
    password: str,
    email: str = "",
    is_admin: bool = False,
    user_id: str | None = None,
) -> dict[str, Any]:
    return {
        "id": user_id or generate_id(),
        "username": username.lower(),
        "displayName": display_name,
        "email": email or "",
        "password": password,
        "isAdmin": bool(is_admin),
        "createdAt": now_iso(),
        "settings": {},
        "stats": new_stats(),
    }


def public_user(user: dict[str, Any] | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {k: v for k, v in user.items() if k != "password"}


@dataclass(frozen=True)
class ScoreEntry:
    game_id: str
    username: str
    display_name: str
    score: int
    site: str
    id: str = field(default_factory=generate_id)
    date: str = field(default_factory=now_iso)
    level: Any = None
    duration: Any = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        game_id: str,
        username: str,
        display_name: str,
        score: int,
        site: str,
        extra: dict[str, Any] | None = None,
    ) -> "ScoreEntry":
        extra = dict(extra or {})
        level = extra.pop("level", None)
        duration = extra.pop("duration", None)
        for k in _ENTRY_FIELDS:
            extra.pop(k, None)
        return cls(
            game_id=game_id,
            username=username,
            display_name=display_name,
            score=int(score),
            site=site,
            level=int_or(level, level),
            duration=int_or(duration, duration),
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            **self.extra,
            "id": self.id,
            "gameId": self.game_id,
            "username": self.username,
            "displayName": self.display_name,
            "score": self.score,
            "date": self.date,
            "site": self.site,
        }
        if self.level is not None:
            out["level"] = self.level
        if self.duration is not None:
            out["duration"] = self.duration
        return out

