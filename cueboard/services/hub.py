from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from fastapi import WebSocket
from pydantic import BaseModel, Field, ValidationError

from cueboard.services.settings_store import SettingsStore


log = logging.getLogger("cueboard.hub")

Role = Literal["player", "remote"]
PLAYER_USER_AGENT_MARKER = "OBS"


class WireMessage(BaseModel):
    action: str
    soundId: Optional[str] = None


class UpdateSettingMessage(BaseModel):
    action: Literal["update_setting"]
    soundId: Optional[str] = None
    setting: str = Field(min_length=1)
    value: Any = None


def resolve_role(role_hint: Optional[str], user_agent: Optional[str] = None) -> Role:
    hint = (role_hint or "").strip().lower()
    if hint in {"player", "remote"}:
        return hint  # type: ignore[return-value]
    if PLAYER_USER_AGENT_MARKER in (user_agent or ""):
        return "player"
    return "remote"


@dataclass(eq=False)
class ClientConnection:
    ws: WebSocket
    role: Role
    alive: bool = True

    async def send_text(self, data: str) -> None:
        await self.ws.send_text(data)


@dataclass
class MessageHub:
    settings_store: SettingsStore
    send_timeout: float = 5.0
    _connections: dict[int, ClientConnection] = field(default_factory=dict)

    def connections(self) -> list[ClientConnection]:
        return list(self._connections.values())

    def count(self, role: Optional[Role] = None) -> int:
        if role is None:
            return len(self._connections)
        return sum(1 for conn in self._connections.values() if conn.role == role)

    async def connect(self, ws: WebSocket, role: Role) -> ClientConnection:
        conn = ClientConnection(ws=ws, role=role)
        self._connections[id(conn)] = conn
        log.info("Client connected: %s (%d open)", role, len(self._connections))
        await self._send(conn, json.dumps({"action": "settings_initialized", "settings": self.settings_store.get()}))
        return conn

    def disconnect(self, conn: ClientConnection) -> None:
        conn.alive = False
        if self._connections.pop(id(conn), None) is not None:
            log.info("Client disconnected: %s (%d open)", conn.role, len(self._connections))

    async def broadcast(self, payload: dict | str, *, exclude: Optional[ClientConnection] = None) -> None:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        targets = [conn for conn in self._connections.values() if conn is not exclude and conn.alive]
        if not targets:
            return
        await asyncio.gather(*(self._send(conn, data) for conn in targets))

    async def _send(self, conn: ClientConnection, data: str) -> None:
        try:
            await asyncio.wait_for(conn.send_text(data), timeout=self.send_timeout)
        except Exception as exc:
            log.warning("Send to %s client failed: %s", conn.role, exc or type(exc).__name__)
            await self._drop(conn)

    async def _drop(self, conn: ClientConnection) -> None:
        self.disconnect(conn)
        try:
            await conn.ws.close(code=1011)
        except Exception as exc:
            log.debug("Closing failed %s client: %s", conn.role, exc)

    async def handle_message(self, conn: ClientConnection, raw: str) -> None:
        try:
            command = json.loads(raw)
            message = WireMessage.model_validate(command)
        except (ValueError, ValidationError) as exc:
            log.error("Failed to process message from %s client: %s", conn.role, exc)
            await self.broadcast(raw, exclude=conn)
            return

        if message.action == "update_setting":
            await self._handle_update_setting(conn, command, raw)
            return
        # play, stopAll, sound_started, sound_ended and unknown actions.
        await self.broadcast(raw, exclude=conn)

    async def _handle_update_setting(self, conn: ClientConnection, command: dict, raw: str) -> None:
        try:
            update = UpdateSettingMessage.model_validate(command)
        except ValidationError as exc:
            log.error("Invalid update_setting from %s client: %s", conn.role, exc)
            await self.broadcast(raw, exclude=conn)
            return
        self.settings_store.update_setting(update.setting, update.value, sound_id=update.soundId)
        await self.broadcast(
            {
                "action": "setting_changed",
                "soundId": update.soundId,
                "setting": update.setting,
                "value": update.value,
            }
        )

    async def settings_replaced(self) -> None:
        await self.broadcast({"action": "settings_updated", "settings": self.settings_store.get()})

    async def sounds_updated(self) -> None:
        await self.broadcast({"action": "sounds_updated"})
