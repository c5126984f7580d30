"""Pull/push the database blob through the GitHub contents API.

Read:  GET  {api}/repos/{owner}/{repo}/contents/{path}  -> {"content": b64, "sha": ...}
Write: PUT  same url, {"message", "content", "branch", "sha"?}

Pushes are an optimistic check-and-set on `sha`: if another client pushed
after our marker was observed, GitHub answers 409/422 and nothing is merged.
The caller pulls again and retries by hand.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from arcadehub.config import GitHubSyncConfig
from arcadehub.errors import SyncError
from arcadehub.models import now_iso
from arcadehub.results import Result
from arcadehub.storage.kv import MemoryKeyValue

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteBlob:
    content: bytes
    sha: str | None


class GitHubSync:
    def __init__(
        self,
        config: GitHubSyncConfig,
        kv: MemoryKeyValue,
        token_key: str,
        site_id: str,
        timeout_sec: float = 15.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.config = config
        self.kv = kv
        self.token_key = token_key
        self.site_id = site_id
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    # ---- token ----

    def get_token(self) -> str:
        return self.kv.get_item(self.token_key) or self.config.token or ""

    def set_token(self, token: str | None) -> None:
        if token:
            self.kv.set_item(self.token_key, token)
        else:
            self.kv.remove_item(self.token_key)

    def _headers(self, token: str) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if token:
            headers["Authorization"] = f"token {token}"
        return headers

    # ---- read ----

    async def _fetch(self, token: str) -> tuple[int, dict[str, Any] | None]:
        session = await self._get_session()
        async with session.get(self.config.contents_url, headers=self._headers(token)) as resp:
            if resp.status != 200:
                return resp.status, None
            return resp.status, await resp.json(content_type=None)

    async def pull(self) -> Result[RemoteBlob]:
        try:
            status, data = await self._fetch(self.get_token())
        except (aiohttp.ClientError, TimeoutError) as e:
            log.warning("pull failed: %s", e)
            return Result.failure(f"network error: {e}")
        if status == 404:
            return Result.failure("not found")
        if data is None:
            return Result.failure(f"remote error {status}")
        try:
            content = base64.b64decode(str(data.get("content", "")).replace("\n", ""), validate=True)
        except (binascii.Error, ValueError) as e:
            return Result.failure(f"bad content encoding: {e}")
        log.info("pulled %d bytes from %s", len(content), self.config.contents_url)
        return Result.success(RemoteBlob(content=content, sha=data.get("sha")))

    async def current_sha(self, token: str) -> str | None:
        status, data = await self._fetch(token)
        if status == 404 or data is None:
            return None
        return data.get("sha")

    # ---- write ----

    async def push(
        self,
        data: bytes,
        base_sha: str | None = None,
        token: str | None = None,
        remember_token: bool = False,
    ) -> str | None:
        """Upload `data`; return the new revision marker. Raises SyncError on any rejection."""
        token = token or self.get_token()
        if not token:
            raise SyncError("A GitHub token with write access is required", http_status=401)
        try:
            sha = base_sha if base_sha is not None else await self.current_sha(token)
            body: dict[str, Any] = {
                "message": f"Update from {self.site_id} - {now_iso()}",
                "content": base64.b64encode(data).decode("ascii"),
                "branch": self.config.branch,
            }
            if sha:
                body["sha"] = sha

            session = await self._get_session()
            async with session.put(self.config.contents_url, headers=self._headers(token), json=body) as resp:
                if resp.status not in (200, 201):
                    detail = await resp.text()
                    raise SyncError(_push_message(resp.status, detail), http_status=resp.status)
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise SyncError(f"GitHub unreachable: {e}") from e

        new_sha = (payload.get("content") or {}).get("sha")
        if remember_token:
            self.set_token(token)
        log.info("pushed %d bytes to %s (sha %s)", len(data), self.config.contents_url, new_sha)
        return new_sha


def _push_message(status: int, detail: str) -> str:
    if status in (401, 403):
        return "GitHub rejected the token"
    if status in (409, 422):
        return "Remote database changed since it was loaded; pull and push again"
    if status == 404:
        return "GitHub repository or path not found"
    return f"GitHub API error {status}: {detail[:200]}"
