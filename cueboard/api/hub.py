from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from cueboard.services.hub import MessageHub, resolve_role


log = logging.getLogger("cueboard.hub")


async def _receive_frame(ws: WebSocket) -> str:
    """Next frame as text; binary frames are decoded leniently."""
    message = await ws.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(code=message.get("code", 1000))
    text = message.get("text")
    if text is not None:
        return text
    return (message.get("bytes") or b"").decode("utf-8", errors="replace")


def create_hub_router(*, hub: MessageHub) -> APIRouter:
    router = APIRouter()

    @router.websocket("/ws")
    async def hub_ws(ws: WebSocket):
        await ws.accept()
        role = resolve_role(ws.query_params.get("role"), ws.headers.get("user-agent"))
        conn = await hub.connect(ws, role)
        try:
            while conn.alive:
                raw = await _receive_frame(ws)
                try:
                    await hub.handle_message(conn, raw)
                except Exception:
                    log.exception("Failed to handle message from %s client", role)
        except WebSocketDisconnect:
            pass
        except Exception:
            log.exception("WebSocket error on %s client", role)
        finally:
            hub.disconnect(conn)

    return router
