"""Fire-and-forget score telemetry."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

log = logging.getLogger(__name__)


class TelemetryClient:
    def __init__(self, url: str, site_id: str, timeout_sec: float = 5.0):
        self.url = url
        self.site_id = site_id
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def send(self, kind: str, data: dict[str, Any]) -> bool:
        body = {"type": kind, "site": self.site_id, "data": data}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.url, json=body) as resp:
                    if resp.status >= 400:
                        log.info("telemetry rejected: HTTP %s", resp.status)
                        return False
        except (aiohttp.ClientError, TimeoutError) as e:
            log.info("telemetry failed: %s", e)
            return False
        return True

    def submit(self, kind: str, data: dict[str, Any]) -> asyncio.Task | None:
        """Schedule `send` on the running loop. No loop, no telemetry."""
        if not self.enabled:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("no running loop; telemetry skipped")
            return None
        task = loop.create_task(self.send(kind, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
