"""Owned httpx.AsyncClient bound to the event loop that uses it."""

import asyncio
from typing import Any, Optional

import httpx


class LoopBoundClient:
    """
    Lazily built httpx.AsyncClient, rebuilt whenever the running loop changes.

    Pooled connections belong to the loop that opened them, so a caller that
    wraps each operation in its own asyncio.run() gets a fresh pool per loop.
    """

    def __init__(self, **client_options: Any):
        self._options = client_options
        self._client: Optional[httpx.AsyncClient] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def get(self) -> httpx.AsyncClient:
        """Client for the running loop; must be called from a coroutine"""
        loop = asyncio.get_running_loop()
        if self._client is None or self._loop is not loop:
            self._client = httpx.AsyncClient(**self._options)
            self._loop = loop
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._loop is asyncio.get_running_loop():
            await self._client.aclose()
        self._client = None
        self._loop = None
