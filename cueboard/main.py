import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from cueboard.api.health import create_health_router
from cueboard.api.hub import create_hub_router
from cueboard.api.settings import create_settings_router
from cueboard.api.sounds import create_sounds_router
from cueboard.services.directory_watcher import DirectoryWatcher
from cueboard.services.hub import MessageHub
from cueboard.services.settings_store import SettingsStore
from cueboard.services.sound_library import SoundLibrary


logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
log = logging.getLogger("cueboard")

SOUNDS_DIR = Path(os.getenv("CUEBOARD_SOUNDS_DIR", "sounds")).resolve()
SETTINGS_PATH = Path(os.getenv("CUEBOARD_SETTINGS_PATH", "settings.json")).resolve()
SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
WATCH_DEBOUNCE_MS = int(os.getenv("CUEBOARD_WATCH_DEBOUNCE_MS", "300"))
WATCH_POLL_INTERVAL = float(os.getenv("CUEBOARD_WATCH_POLL_INTERVAL", "5"))
WATCH_ENABLED = os.getenv("CUEBOARD_WATCH_ENABLED", "1").lower() not in {"0", "false", "no"}
SEND_TIMEOUT = float(os.getenv("CUEBOARD_SEND_TIMEOUT", "5"))
HOST = os.getenv("CUEBOARD_HOST", "0.0.0.0")
PORT = int(os.getenv("CUEBOARD_PORT", "3000"))

settings_store = SettingsStore(settings_path=SETTINGS_PATH)
settings_store.load()
sound_library = SoundLibrary(SOUNDS_DIR)
hub = MessageHub(settings_store=settings_store, send_timeout=SEND_TIMEOUT)
directory_watcher: Optional[DirectoryWatcher] = None

app = FastAPI(title="cueboard", version="0.1.0")


def _connection_counts() -> dict:
    return {"player": hub.count("player"), "remote": hub.count("remote")}


app.include_router(create_health_router(connection_counts=_connection_counts))
app.include_router(
    create_settings_router(
        settings_store=settings_store,
        broadcast_settings=hub.settings_replaced,
    )
)
app.include_router(
    create_sounds_router(
        get_library=lambda: sound_library,
        settings_store=settings_store,
    )
)
app.include_router(create_hub_router(hub=hub))
# Audio files for the player; the exact "/sounds" path stays the listing route.
app.mount("/sounds", StaticFiles(directory=SOUNDS_DIR, check_dir=False), name="sounds")


@app.on_event("startup")
async def _startup_events() -> None:
    global directory_watcher
    if directory_watcher is None:
        directory_watcher = DirectoryWatcher(
            root=SOUNDS_DIR,
            snapshot=sound_library.snapshot,
            on_change=hub.sounds_updated,
            debounce=WATCH_DEBOUNCE_MS / 1000.0,
            poll_interval=WATCH_POLL_INTERVAL,
            watch_events=WATCH_ENABLED,
        )
        await directory_watcher.start()
    log.info("Sound board ready: sounds=%s settings=%s", sound_library.root, settings_store.path)


@app.on_event("shutdown")
async def _shutdown_events() -> None:
    global directory_watcher
    if directory_watcher:
        await directory_watcher.stop()
        directory_watcher = None


def run() -> None:
    import uvicorn

    uvicorn.run("cueboard.main:app", host=HOST, port=PORT, log_level=os.getenv("LOG_LEVEL", "INFO").lower())
