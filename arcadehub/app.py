"""HTTP entrypoint the arcade pages call into.

All state lives in the local record store and the embedded database; this
module only wires them together and maps errors to JSON responses.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import date
from typing import Any, Callable

from aiohttp import web

from arcadehub.auth import Auth
from arcadehub.config import ArcadeConfig
from arcadehub.errors import ArcadeError, NotAuthenticatedError, PermissionDenied, SyncError, ValidationError
from arcadehub.models import public_user
from arcadehub.scores import ScoreService
from arcadehub.storage.kv import MemoryKeyValue, open_key_value
from arcadehub.storage.records import LocalRecordStore
from arcadehub.storage.sqlite import BackendState, RelationalStore
from arcadehub.sync.github import GitHubSync
from arcadehub.sync.telemetry import TelemetryClient

log = logging.getLogger(__name__)


class ArcadeService:
    def __init__(
        self,
        config: ArcadeConfig,
        kv: MemoryKeyValue | None = None,
        notify: Callable[[str, str], None] | None = None,
    ):
        self.config = config
        self.start_time = time.time()
        self.notifications: list[dict[str, str]] = []
        self._notify_hook = notify

        self.kv = kv if kv is not None else open_key_value(config.data_dir, config.storage_quota_bytes)
        self.records = LocalRecordStore(self.kv, config)
        self.records.init()
        self.sql = RelationalStore(self.records, config)
        self.remote = GitHubSync(
            config.github,
            self.kv,
            token_key=config.github_token_key,
            site_id=config.site_id,
            timeout_sec=config.http_timeout_sec,
        )
        self.telemetry = TelemetryClient(config.telemetry_url, config.site_id, timeout_sec=config.http_timeout_sec)
        self.auth = Auth(self.records, self.sql, notify=self.notify)
        self.scores = ScoreService(self.records, self.sql, telemetry=self.telemetry)

        self._running = False
        self._flush_task: asyncio.Task | None = None

    def notify(self, message: str, level: str = "info") -> None:
        log.info("[%s] %s", level, message)
        self.notifications.append({"message": message, "level": level})
        del self.notifications[:-20]
        if self._notify_hook:
            self._notify_hook(message, level)

    async def start(self) -> None:
        state = await self.sql.initialize(remote=self.remote)
        if state is BackendState.READY:
            log.info("relational store ready (%s)", self.sql.source)
        else:
            log.warning("relational store %s; using local records only", state.value)
        self._running = True
        if self.config.db_autosave_interval_sec > 0:
            self._flush_task = asyncio.create_task(self._flush_loop())

    async def stop(self) -> None:
        self._running = False
        if self._flush_task:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
        self.sql.flush()
        self.sql.close()
        await self.telemetry.drain()
        await self.remote.close()

    async def _flush_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.db_autosave_interval_sec)
            self.sql.flush()

    # ---- explicit database actions ----

    def new_database(self) -> None:
        self.sql.create_new()
        self.notify("New database created", "success")

    async def pull_database(self) -> dict[str, Any]:
        res = await self.remote.pull()
        if not res.ok:
            msg = "Database not found on GitHub" if res.reason == "not found" else f"GitHub load failed: {res.reason}"
            raise SyncError(msg)
        self.sql.load_bytes(res.value.content, source="remote", remote_sha=res.value.sha)
        self.notify("Database loaded from GitHub", "success")
        return self.sql.describe()

    async def push_database(self, token: str | None = None, remember_token: bool = False) -> dict[str, Any]:
        if not self.sql.is_ready:
            raise SyncError("No database to save")
        new_sha = await self.remote.push(
            self.sql.export_bytes(),
            base_sha=self.sql.remote_sha,
            token=token,
            remember_token=remember_token,
        )
        self.sql.remote_sha = new_sha
        self.notify("Saved to GitHub", "success")
        return {"ok": True, "sha": new_sha}

    def reset_all(self) -> None:
        self.records.clear_all()
        self.auth.logout()

    def health_payload(self) -> dict[str, Any]:
        return {
            "ok": True,
            "app": self.config.app_name,
            "version": self.config.app_version,
            "uptimeSec": time.time() - self.start_time,
            "database": self.sql.state.value,
        }


def _cors_headers(config: ArcadeConfig, origin: str | None) -> dict[str, str]:
    if not origin:
        return {}
    if config.cors_allow_all:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    if origin in config.cors_allowed_origins:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    return {}


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        origin = request.headers.get("Origin")
        headers = {
            **_cors_headers(request.app["config"], origin),
            "Access-Control-Allow-Methods": "GET,POST,PUT,OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
            "Access-Control-Max-Age": "86400",
        }
        return web.Response(status=204, headers=headers)

    resp = await handler(request)
    origin = request.headers.get("Origin")
    for k, v in _cors_headers(request.app["config"], origin).items():
        resp.headers[k] = v
    return resp


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except ArcadeError as e:
        return web.json_response({"error": str(e)}, status=e.status)


async def _json_body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("request body must be JSON")
    if not isinstance(body, dict):
        raise ValidationError("request body must be an object")
    return body


def _limit(request: web.Request, default: int) -> int:
    try:
        return max(1, min(100, int(request.query.get("limit", default))))
    except ValueError:
        raise ValidationError("limit must be an integer")


def create_app(config: ArcadeConfig, svc: ArcadeService | None = None) -> web.Application:
    app = web.Application(middlewares=[cors_middleware, error_middleware])
    svc = svc or ArcadeService(config)

    app["config"] = config
    app["svc"] = svc

    async def on_startup(_: web.Application):
        await svc.start()

    async def on_cleanup(_: web.Application):
        await svc.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    def require_admin() -> None:
        if not svc.auth.is_admin():
            raise PermissionDenied("Admin access required")

    async def root(_: web.Request):
        return web.json_response(
            {
                **svc.health_payload(),
                "endpoints": {
                    "health": "/health",
                    "signup": "/auth/signup",
                    "login": "/auth/login",
                    "leaderboard": "/leaderboard/{game}",
                    "scores": "/scores/{game}",
                    "stats": "/stats",
                    "database": "/db/status",
                },
            }
        )

    async def health(_: web.Request):
        return web.json_response(svc.health_payload())

    # ---- auth ----

    async def signup(request: web.Request):
        b = await _json_body(request)
        user = svc.auth.signup(
            str(b.get("displayName", "")),
            str(b.get("username", "")),
            str(b.get("email", "")),
            str(b.get("password", "")),
            confirm_password=b.get("confirmPassword"),
        )
        return web.json_response({"user": public_user(user)}, status=201)

    async def login(request: web.Request):
        b = await _json_body(request)
        user = svc.auth.login(str(b.get("username", "")), str(b.get("password", "")))
        return web.json_response({"user": public_user(user)})

    async def login_demo(_: web.Request):
        return web.json_response({"user": public_user(svc.auth.login_demo())})

    async def logout(_: web.Request):
        svc.auth.logout()
        return web.json_response({"ok": True})

    async def me(_: web.Request):
        return web.json_response({"user": public_user(svc.auth.current_user())})

    async def profile(request: web.Request):
        b = await _json_body(request)
        return web.json_response({"user": public_user(svc.auth.update_profile(b))})

    # ---- scores ----

    async def submit_score(request: web.Request):
        b = await _json_body(request)
        try:
            score = int(b.get("score"))
        except (TypeError, ValueError):
            raise ValidationError("score must be an integer")
        extra = b.get("extra") or {}
        if not isinstance(extra, dict):
            raise ValidationError("extra must be an object")
        game_id = request.match_info["game"]
        best_before = svc.scores.get_personal_best(game_id)
        entry = svc.scores.save_score(game_id, score, extra)
        return web.json_response(
            {"entry": entry.to_dict(), "newRecord": score > best_before, "personalBest": max(score, best_before)},
            status=201,
        )

    async def leaderboard(request: web.Request):
        game_id = request.match_info["game"]
        top = svc.scores.get_leaderboard(game_id, _limit(request, 10))
        return web.json_response({"gameId": game_id, "leaderboard": top})

    async def personal_best(request: web.Request):
        game_id = request.match_info["game"]
        return web.json_response({"gameId": game_id, "best": svc.scores.get_personal_best(game_id)})

    async def history(request: web.Request):
        game_id = request.match_info["game"]
        user = svc.auth.current_user()
        if not user:
            raise NotAuthenticatedError("Sign in to see your history")
        plays = svc.scores.get_score_history(game_id, user["username"], _limit(request, 20))
        return web.json_response({"gameId": game_id, "history": plays})

    async def stats(request: web.Request):
        username = request.query.get("username")
        return web.json_response({"stats": svc.scores.get_user_stats(username)})

    async def sound_pref(request: web.Request):
        if request.method == "GET":
            return web.json_response({"soundEnabled": svc.records.get_preference("soundEnabled", True)})
        b = await _json_body(request)
        saved = svc.records.set_preference("soundEnabled", bool(b.get("soundEnabled", True)))
        return web.json_response({"ok": saved})

    # ---- admin ----

    async def admin_stats(_: web.Request):
        require_admin()
        return web.json_response(svc.scores.get_global_stats())

    async def admin_users(_: web.Request):
        require_admin()
        return web.json_response({"users": svc.scores.list_users()})

    async def admin_leaderboards(request: web.Request):
        require_admin()
        return web.json_response({"leaderboards": svc.scores.get_all_leaderboards(_limit(request, 3))})

    async def admin_export(_: web.Request):
        require_admin()
        data = svc.records.export_data()
        name = f"{config.storage_prefix}-full-export-{date.today().isoformat()}.json"
        return web.json_response(data, headers={"Content-Disposition": f'attachment; filename="{name}"'})

    async def admin_import(request: web.Request):
        require_admin()
        svc.records.import_data(await _json_body(request))
        return web.json_response({"ok": True})

    async def admin_reset(_: web.Request):
        require_admin()
        svc.reset_all()
        return web.json_response({"ok": True})

    # ---- database ----

    async def db_status(_: web.Request):
        return web.json_response(svc.sql.describe())

    async def db_new(_: web.Request):
        require_admin()
        svc.new_database()
        return web.json_response(svc.sql.describe())

    async def db_pull(_: web.Request):
        require_admin()
        return web.json_response(await svc.pull_database())

    async def db_push(request: web.Request):
        require_admin()
        b = await _json_body(request)
        return web.json_response(
            await svc.push_database(token=b.get("token") or None, remember_token=bool(b.get("rememberToken")))
        )

    async def db_download(_: web.Request):
        if not svc.sql.is_ready:
            raise SyncError("No database to save")
        name = f"{config.storage_prefix}_db_{int(time.time() * 1000)}.db"
        return web.Response(
            body=svc.sql.export_bytes(),
            content_type="application/x-sqlite3",
            headers={"Content-Disposition": f'attachment; filename="{name}"'},
        )

    async def db_upload(request: web.Request):
        require_admin()
        svc.sql.load_bytes(await request.read(), source="file")
        return web.json_response(svc.sql.describe())

    app.router.add_get("/", root)
    app.router.add_get("/health", health)
    app.router.add_post("/auth/signup", signup)
    app.router.add_post("/auth/login", login)
    app.router.add_post("/auth/demo", login_demo)
    app.router.add_post("/auth/logout", logout)
    app.router.add_get("/auth/me", me)
    app.router.add_put("/profile", profile)
    app.router.add_post("/scores/{game}", submit_score)
    app.router.add_get("/leaderboard/{game}", leaderboard)
    app.router.add_get("/personal-best/{game}", personal_best)
    app.router.add_get("/history/{game}", history)
    app.router.add_get("/stats", stats)
    app.router.add_get("/prefs/sound", sound_pref)
    app.router.add_put("/prefs/sound", sound_pref)
    app.router.add_get("/admin/stats", admin_stats)
    app.router.add_get("/admin/users", admin_users)
    app.router.add_get("/admin/leaderboards", admin_leaderboards)
    app.router.add_get("/admin/export", admin_export)
    app.router.add_post("/admin/import", admin_import)
    app.router.add_post("/admin/reset", admin_reset)
    app.router.add_get("/db/status", db_status)
    app.router.add_post("/db/new", db_new)
    app.router.add_post("/db/pull", db_pull)
    app.router.add_post("/db/push", db_push)
    app.router.add_get("/db/download", db_download)
    app.router.add_post("/db/upload", db_upload)
    app.router.add_route("OPTIONS", "/{tail:.*}", lambda r: web.Response(status=204))

    return app


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("ARCADE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    config = ArcadeConfig.from_env()
    app = create_app(config)
    web.run_app(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
