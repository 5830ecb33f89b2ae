"""
Keep-alive pinger
Periodically requests our own /ping so the hosting platform does not idle the service
"""

import asyncio
from typing import Optional

import httpx
from loguru import logger


class KeepAlivePinger:
    """Background self-ping on an independent schedule"""

    def __init__(
        self,
        url: str,
        interval: float = 240,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.interval = interval
        self.timeout = timeout
        self.transport = transport
        self._task: Optional[asyncio.Task] = None

    async def ping_once(self) -> bool:
        """Ping once; failures are logged and swallowed"""
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.get(self.url)
            logger.info("[ping] awake")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"[ping] failed: {e}")
            return False

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval)
            await self.ping_once()

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            logger.info(f"Keep-alive pinging {self.url} every {self.interval}s")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
