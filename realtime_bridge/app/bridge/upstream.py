"""Websocket connection to the realtime speech model."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

_LOGGER = logging.getLogger(__name__)


class UpstreamConnection:
    """Owns one upstream websocket for a bridged client."""

    def __init__(self, url: str, api_key: str) -> None:
        self.url = url
        self._api_key = api_key
        self._ws: ClientConnection | None = None
        self._closed = False

    def _headers(self) -> list[tuple[str, str]]:
        return [
            ("Authorization", f"Bearer {self._api_key}"),
            ("OpenAI-Beta", "realtime=v1"),
        ]

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    async def connect(self) -> None:
        """Opens the websocket.

        Raises:
            OSError: If the endpoint cannot be reached.
            websockets.exceptions.InvalidStatus: If the handshake is rejected.
        """
        _LOGGER.debug("Connecting to realtime upstream.", extra={"url": self.url})
        self._ws = await websockets.connect(self.url, additional_headers=self._headers(), max_size=None)
        _LOGGER.info("Realtime upstream connected.", extra={"url": self.url})

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Sends one JSON event upstream.

        Raises:
            RuntimeError: If the connection is not open.
            websockets.exceptions.ConnectionClosed: If the socket closed mid-send.
        """
        if self._ws is None or self._closed:
            raise RuntimeError("Upstream connection is not open")
        await self._ws.send(json.dumps(payload))

    async def messages(self) -> AsyncIterator[str | bytes]:
        """Yields upstream frames until the connection closes."""
        if self._ws is None:
            raise RuntimeError("Upstream connection is not open")
        try:
            async for message in self._ws:
                yield message
        except ConnectionClosed as exc:
            _LOGGER.info("Realtime upstream closed.", extra={"code": exc.rcvd.code if exc.rcvd else None})
        finally:
            self._closed = True

    async def close(self) -> None:
        if self._ws is None or self._closed:
            self._closed = True
            return
        self._closed = True
        await self._ws.close()
