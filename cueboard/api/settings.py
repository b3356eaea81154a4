from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Body, HTTPException

from cueboard.services.settings_store import SettingsStore


log = logging.getLogger("cueboard")


def create_settings_router(
    *,
    settings_store: SettingsStore,
    broadcast_settings: Callable[[], Awaitable[None]],
) -> APIRouter:
    router = APIRouter()

    @router.get("/api/settings")
    async def get_settings() -> dict:
        return settings_store.get()

    @router.post("/api/settings")
    async def update_settings(payload: Any = Body(default=None)) -> dict:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid settings format")
        # Per-sound entries merge field by field; every other key is replaced.
        try:
            settings_store.apply_patch(payload, merge_sounds=True)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid settings format: {exc}") from exc
        log.info("Settings replaced over HTTP: %s", ", ".join(sorted(payload.keys())) or "(none)")
        await broadcast_settings()
        return {"message": "Settings updated successfully"}

    return router
