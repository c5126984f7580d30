"""Storage keys, default users, sync + server settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class SeedUser:
    username: str
    password: str
    displayName: str
    email: str
    isAdmin: bool = False


@dataclass
class GitHubSyncConfig:
    owner: str = "arcadehub"
    repo: str = "arcadehub-database-sync"
    path: str = "data/app.db"
    branch: str = "main"
    token: str = ""
    api_base: str = "https://api.github.com"

    @property
    def contents_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/repos/{self.owner}/{self.repo}/contents/{self.path}"


@dataclass
class ArcadeConfig:
    # App
    app_name: str = "ArcadeHub"
    app_version: str = "2.6.0"
    site_id: str = "ArcadeHub"

    # Network
    host: str = "127.0.0.1"
    port: int = 8780
    cors_allow_all: bool = True
    cors_allowed_origins: list[str] = field(default_factory=list)

    # Local record store. Empty data_dir keeps everything in memory.
    data_dir: str = ""
    storage_prefix: str = "arcadehub"
    storage_quota_bytes: int = 0
    max_scores_per_game: int = 100

    # Relational store
    local_mode: bool = True
    db_create_if_missing: bool = True
    # 0 serializes after every write; > 0 flushes dirty state on an interval.
    db_autosave_interval_sec: float = 0.0

    # Remote
    github: GitHubSyncConfig = field(default_factory=GitHubSyncConfig)
    telemetry_url: str = ""
    http_timeout_sec: float = 15.0

    default_admin: SeedUser = SeedUser(
        username="admin",
        password="admin123",
        displayName="Admin",
        email="admin@arcadehub.local",
        isAdmin=True,
    )
    default_demo: SeedUser = SeedUser(
        username="demo",
        password="demo123",
        displayName="Demo Player",
        email="demo@arcadehub.local",
    )

    @property
    def users_key(self) -> str:
        return f"{self.storage_prefix}_users"

    @property
    def current_user_key(self) -> str:
        return f"{self.storage_prefix}_current_user"

    @property
    def scores_key(self) -> str:
        return f"{self.storage_prefix}_scores"

    @property
    def guest_scores_key(self) -> str:
        return f"{self.storage_prefix}_guest_scores"

    @property
    def settings_key(self) -> str:
        return f"{self.storage_prefix}_settings"

    @property
    def prefs_key(self) -> str:
        return f"{self.storage_prefix}_prefs"

    @property
    def db_blob_key(self) -> str:
        return f"{self.storage_prefix}_sqldb"

    @property
    def db_sha_key(self) -> str:
        return f"{self.storage_prefix}_sqldb_sha"

    @property
    def github_token_key(self) -> str:
        return f"{self.storage_prefix}_github_token"

    @staticmethod
    def _parse_bool(v: str | None, default: bool) -> bool:
        if v is None:
            return default
        return v.strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_float(v: str | None, default: float) -> float:
        if not v:
            return default
        try:
            return float(v)
        except ValueError:
            return default

    @classmethod
    def from_env(cls) -> "ArcadeConfig":
        cfg = cls()
        cfg.host = os.environ.get("ARCADE_HOST", cfg.host)
        cfg.port = int(os.environ.get("ARCADE_PORT", str(cfg.port)))
        cfg.cors_allow_all = cls._parse_bool(os.environ.get("ARCADE_CORS_ALLOW_ALL"), cfg.cors_allow_all)
        origins = os.environ.get("ARCADE_CORS_ORIGINS")
        if origins:
            cfg.cors_allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]

        cfg.site_id = os.environ.get("ARCADE_SITE_ID", cfg.site_id)
        cfg.data_dir = os.environ.get("ARCADE_DATA_DIR", cfg.data_dir)
        cfg.storage_prefix = os.environ.get("ARCADE_STORAGE_PREFIX", cfg.storage_prefix)
        if os.environ.get("ARCADE_STORAGE_QUOTA"):
            try:
                cfg.storage_quota_bytes = int(os.environ["ARCADE_STORAGE_QUOTA"])
            except ValueError:
                pass

        cfg.local_mode = cls._parse_bool(os.environ.get("ARCADE_LOCAL_MODE"), cfg.local_mode)
        cfg.db_create_if_missing = cls._parse_bool(os.environ.get("ARCADE_DB_CREATE"), cfg.db_create_if_missing)
        cfg.db_autosave_interval_sec = cls._parse_float(
            os.environ.get("ARCADE_DB_AUTOSAVE_SEC"), cfg.db_autosave_interval_sec
        )

        gh = cfg.github
        gh.owner = os.environ.get("ARCADE_GITHUB_OWNER", gh.owner)
        gh.repo = os.environ.get("ARCADE_GITHUB_REPO", gh.repo)
        gh.path = os.environ.get("ARCADE_GITHUB_PATH", gh.path)
        gh.branch = os.environ.get("ARCADE_GITHUB_BRANCH", gh.branch)
        gh.token = os.environ.get("ARCADE_GITHUB_TOKEN", gh.token)
        gh.api_base = os.environ.get("ARCADE_GITHUB_API", gh.api_base)

        cfg.telemetry_url = os.environ.get("ARCADE_TELEMETRY_URL", cfg.telemetry_url)
        cfg.http_timeout_sec = cls._parse_float(os.environ.get("ARCADE_HTTP_TIMEOUT"), cfg.http_timeout_sec)
        return cfg
