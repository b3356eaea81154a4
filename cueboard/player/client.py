from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import websockets


log = logging.getLogger("cueboard.player")


class HubClient:
    """Duplex channel to the hub that reconnects forever with a fixed delay.

    ``send_command`` never queues: while disconnected it returns False.
    """

    def __init__(
        self,
        url: str,
        *,
        on_message: Callable[[dict], Awaitable[None]],
        on_connect: Optional[Callable[[], Awaitable[None]]] = None,
        reconnect_delay: float = 2.0,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self.url = url
        self._on_message = on_message
        self._on_connect = on_connect
        self._reconnect_delay = float(reconnect_delay)
        self._connect = connect
        self._ws: Any = None
        self._sends: set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def send_command(self, command: dict) -> bool:
        ws = self._ws
        if ws is None:
            log.warning("Not connected to server; %s not sent", command.get("action"))
            return False
        task = asyncio.ensure_future(self._send(ws, json.dumps(command)))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)
        return True

    async def _send(self, ws: Any, data: str) -> None:
        try:
            await ws.send(data)
        except Exception as exc:
            log.warning("Send to server failed: %s", exc)

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            command = json.loads(raw)
        except ValueError:
            log.error("Failed to parse command: %r", raw)
            return
        if not isinstance(command, dict):
            log.error("Ignoring non-object command: %r", command)
            return
        try:
            await self._on_message(command)
        except Exception:
            log.exception("Command handler failed for %s", command.get("action"))

    async def run_once(self) -> None:
        async with self._connect(self.url) as ws:
            self._ws = ws
            log.info("WebSocket connected to %s", self.url)
            try:
                if self._on_connect is not None:
                    await self._on_connect()
                async for raw in ws:
                    await self._dispatch(raw)
            finally:
                self._ws = None

    async def run_forever(self) -> None:
        while True:
            try:
                await self.run_once()
                log.warning("WebSocket disconnected. Retrying in %.0fs...", self._reconnect_delay)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.warning("WebSocket error (%s). Retrying in %.0fs...", exc, self._reconnect_delay)
            await asyncio.sleep(self._reconnect_delay)
