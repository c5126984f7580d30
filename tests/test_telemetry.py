"""Tests for fire-and-forget telemetry."""

from aiohttp import web

from arcadehub.sync.telemetry import TelemetryClient


async def test_submit_posts_in_background(aiohttp_server):
    received = []

    async def collect(request: web.Request):
        received.append(await request.json())
        return web.json_response({"ok": True})

    app = web.Application()
    app.router.add_post("/submit", collect)
    server = await aiohttp_server(app)

    client = TelemetryClient(str(server.make_url("/submit")), site_id="ArcadeHub")
    task = client.submit("SCORE", {"score": 5})
    assert task is not None
    await client.drain()

    assert task.result() is True
    assert received == [{"type": "SCORE", "site": "ArcadeHub", "data": {"score": 5}}]


async def test_failures_are_swallowed():
    client = TelemetryClient("http://127.0.0.1:9/submit", site_id="ArcadeHub")
    assert await client.send("SCORE", {"score": 1}) is False


def test_disabled_or_no_loop_is_a_no_op():
    assert TelemetryClient("", site_id="x").submit("SCORE", {}) is None
    assert TelemetryClient("http://example.invalid", site_id="x").submit("SCORE", {}) is None
