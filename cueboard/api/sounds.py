from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from fastapi import APIRouter, HTTPException

from cueboard.services.ordering import resolve_for_settings
from cueboard.services.settings_store import SettingsStore
from cueboard.services.sound_library import SoundLibrary, build_catalog


log = logging.getLogger("cueboard")


def create_sounds_router(
    *,
    get_library: Callable[[], SoundLibrary],
    settings_store: SettingsStore,
) -> APIRouter:
    router = APIRouter()

    async def _listing() -> dict:
        try:
            return await asyncio.to_thread(get_library().list_sounds)
        except OSError as exc:
            log.error("Could not list the sound directory: %s", exc)
            raise HTTPException(status_code=500, detail="Server error") from exc

    @router.get("/sounds")
    async def list_sounds() -> dict:
        return await _listing()

    @router.get("/api/sounds/ordered")
    async def ordered_sounds() -> dict:
        catalog = build_catalog(await _listing())
        settings = settings_store.get()
        result = resolve_for_settings(catalog, settings)
        payload = result.to_json()
        payload["sortBy"] = settings.get("sortBy") or "name"
        payload["sortOrder"] = settings.get("sortOrder") or "asc"
        payload["sounds"] = {sound.id: sound.to_json() for sound in catalog}
        return payload

    return router
