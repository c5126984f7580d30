"""Shared fixtures: in-memory stores and a fake GitHub contents API."""

from __future__ import annotations

import base64
import hashlib

import pytest
from aiohttp import web

from arcadehub.config import ArcadeConfig
from arcadehub.storage.kv import MemoryKeyValue
from arcadehub.storage.records import LocalRecordStore
from arcadehub.storage.sqlite import RelationalStore

TOKEN = "secret-token"


@pytest.fixture
def config() -> ArcadeConfig:
    cfg = ArcadeConfig()
    cfg.github.token = ""
    return cfg


@pytest.fixture
def kv() -> MemoryKeyValue:
    return MemoryKeyValue()


@pytest.fixture
def records(kv, config) -> LocalRecordStore:
    store = LocalRecordStore(kv, config)
    store.init()
    return store


@pytest.fixture
async def sql(records, config) -> RelationalStore:
    store = RelationalStore(records, config)
    await store.initialize()
    yield store
    store.close()


class FakeContents:
    """One file on a fake GitHub repo, with sha-checked writes."""

    def __init__(self):
        self.content: bytes | None = None
        self.sha: str | None = None
        self.version = 0
        self.puts: list[dict] = []

    def store(self, content: bytes) -> str:
        self.version += 1
        self.content = content
        self.sha = hashlib.sha1(str(self.version).encode() + content).hexdigest()
        return self.sha


def make_github_app(state: FakeContents) -> web.Application:
    async def get_file(request: web.Request):
        if state.content is None:
            return web.json_response({"message": "Not Found"}, status=404)
        b64 = base64.b64encode(state.content).decode("ascii")
        wrapped = "\n".join(b64[i : i + 60] for i in range(0, len(b64), 60))
        return web.json_response({"content": wrapped, "encoding": "base64", "sha": state.sha})

    async def put_file(request: web.Request):
        if request.headers.get("Authorization") != f"token {TOKEN}":
            return web.json_response({"message": "Bad credentials"}, status=401)
        body = await request.json()
        state.puts.append(body)
        if state.content is not None and body.get("sha") != state.sha:
            return web.json_response({"message": "sha does not match"}, status=409)
        created = state.content is None
        sha = state.store(base64.b64decode(body["content"]))
        return web.json_response({"content": {"sha": sha}}, status=201 if created else 200)

    app = web.Application()
    app.router.add_get("/repos/{owner}/{repo}/contents/{path:.*}", get_file)
    app.router.add_put("/repos/{owner}/{repo}/contents/{path:.*}", put_file)
    return app


@pytest.fixture
def github_state() -> FakeContents:
    return FakeContents()


@pytest.fixture
async def github_url(aiohttp_server, github_state) -> str:
    server = await aiohttp_server(make_github_app(github_state))
    return str(server.make_url("/"))
