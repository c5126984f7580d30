"""Tests for blob pull/push against a fake GitHub contents API."""

import pytest

from arcadehub.app import ArcadeService
from arcadehub.config import ArcadeConfig
from arcadehub.errors import SyncError
from arcadehub.storage.kv import MemoryKeyValue
from arcadehub.sync.github import GitHubSync

from conftest import TOKEN


def _sync(github_url: str, kv=None, token: str = "") -> GitHubSync:
    cfg = ArcadeConfig()
    cfg.github.api_base = github_url
    cfg.github.token = token
    return GitHubSync(cfg.github, kv or MemoryKeyValue(), token_key=cfg.github_token_key, site_id=cfg.site_id)


def _service(github_url: str, local_mode: bool = False) -> ArcadeService:
    cfg = ArcadeConfig()
    cfg.github.api_base = github_url
    cfg.github.token = TOKEN
    cfg.local_mode = local_mode
    return ArcadeService(cfg, kv=MemoryKeyValue())


async def test_pull_missing_file(github_url):
    sync = _sync(github_url)
    res = await sync.pull()
    assert not res.ok
    assert res.reason == "not found"
    await sync.close()


async def test_push_then_pull_round_trip(github_url, github_state):
    sync = _sync(github_url, token=TOKEN)
    payload = bytes(range(256)) * 8

    sha = await sync.push(payload)
    assert sha == github_state.sha
    assert github_state.puts[0]["branch"] == "main"
    assert "sha" not in github_state.puts[0]

    res = await sync.pull()
    assert res.ok
    assert res.value.content == payload
    assert res.value.sha == sha
    await sync.close()


async def test_push_without_token_is_refused(github_url, github_state):
    sync = _sync(github_url)
    with pytest.raises(SyncError, match="token"):
        await sync.push(b"data")
    assert github_state.puts == []
    await sync.close()


async def test_rejected_token_is_not_remembered(github_url):
    kv = MemoryKeyValue()
    sync = _sync(github_url, kv=kv)
    with pytest.raises(SyncError) as err:
        await sync.push(b"data", token="wrong", remember_token=True)
    assert err.value.http_status == 401
    assert sync.get_token() == ""

    await sync.push(b"data", token=TOKEN, remember_token=True)
    assert sync.get_token() == TOKEN
    await sync.close()


async def test_push_with_stale_marker_is_rejected(github_url, github_state):
    sync = _sync(github_url, token=TOKEN)
    first = await sync.push(b"v1")
    await sync.push(b"v2", base_sha=first)

    with pytest.raises(SyncError, match="changed since it was loaded") as err:
        await sync.push(b"v3", base_sha=first)
    assert err.value.http_status == 409
    assert github_state.content == b"v2"
    await sync.close()


async def test_unreachable_host_is_a_failure_not_a_crash():
    sync = _sync("http://127.0.0.1:9")
    res = await sync.pull()
    assert not res.ok
    with pytest.raises(SyncError, match="unreachable"):
        await sync.push(b"x", token=TOKEN)
    await sync.close()


async def test_two_clients_race_and_loser_keeps_local_state(github_url, github_state):
    """Both clients load the same revision; the second push loses and changes nothing locally."""
    seed = _service(github_url, local_mode=True)
    await seed.start()
    await seed.push_database()
    await seed.stop()

    a = _service(github_url)
    b = _service(github_url)
    await a.start()
    await b.start()
    assert a.sql.source == b.sql.source == "remote"
    assert a.sql.remote_sha == b.sql.remote_sha == github_state.sha

    b.auth.signup("Bob", "bob", "", "secret1")
    b.scores.save_score("snake", 10)
    await b.push_database()

    a.auth.signup("Alice", "alice", "", "secret1")
    a.scores.save_score("snake", 20)
    sha_before = a.sql.remote_sha
    blob_before = a.kv.get_item(a.config.db_blob_key)
    with pytest.raises(SyncError):
        await a.push_database()
    assert a.sql.remote_sha == sha_before
    assert a.kv.get_item(a.config.db_blob_key) == blob_before
    assert a.scores.get_leaderboard("snake")[0]["username"] == "alice"

    # Manual retry: pull (dropping local rows), then push again.
    await a.pull_database()
    assert a.scores.get_leaderboard("snake")[0]["username"] == "bob"
    await a.push_database()
    assert a.sql.remote_sha == github_state.sha

    await a.stop()
    await b.stop()


async def test_pull_database_reports_missing_remote(github_url):
    svc = _service(github_url, local_mode=True)
    await svc.start()
    with pytest.raises(SyncError, match="not found"):
        await svc.pull_database()
    assert svc.sql.is_ready
    await svc.stop()


async def test_sync_marker_survives_restart(github_url, github_state):
    kv = MemoryKeyValue()
    cfg = ArcadeConfig()
    cfg.github.api_base = github_url
    cfg.github.token = TOKEN
    cfg.local_mode = False

    seed = _service(github_url, local_mode=True)
    await seed.start()
    await seed.push_database()
    await seed.stop()

    first = ArcadeService(cfg, kv=kv)
    await first.start()
    synced = first.sql.remote_sha
    await first.stop()

    other = _service(github_url)
    await other.start()
    other.auth.signup("Bob", "bob", "", "secret1")
    await other.push_database()
    await other.stop()

    # Loaded from the local blob this time; the stale marker still guards the push.
    restarted = ArcadeService(cfg, kv=kv)
    await restarted.start()
    assert restarted.sql.source == "local"
    assert restarted.sql.remote_sha == synced
    with pytest.raises(SyncError, match="changed since it was loaded"):
        await restarted.push_database()
    assert github_state.sha != synced
    await restarted.stop()
