from __future__ import annotations

from collections.abc import Callable

from fastapi import APIRouter


def create_health_router(*, connection_counts: Callable[[], dict]) -> APIRouter:
    router = APIRouter()

    @router.get("/api/health")
    async def health() -> dict:
        return {"status": "ok", "connections": connection_counts()}

    return router
