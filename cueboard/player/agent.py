import asyncio
import logging
import os
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

import httpx

from cueboard.player.audio import AudioBackend
from cueboard.player.client import HubClient
from cueboard.player.engine import PlaybackEngine
from cueboard.services.sound_library import build_catalog


SERVER_URL = os.getenv("CUEBOARD_SERVER_URL", "http://127.0.0.1:3000").strip().rstrip("/") or "http://127.0.0.1:3000"
RECONNECT_DELAY = float(os.getenv("CUEBOARD_RECONNECT_DELAY", "2"))
HTTP_TIMEOUT = float(os.getenv("CUEBOARD_HTTP_TIMEOUT", "10"))
OUTPUT_DEVICE = os.getenv("CUEBOARD_OUTPUT_DEVICE", "").strip() or None

log = logging.getLogger("cueboard.player")


def hub_ws_url(server_url: str, role: str = "player") -> str:
    parts = urlsplit(server_url)
    scheme = "wss" if parts.scheme == "https" else "ws"
    path = parts.path.rstrip("/") + "/ws"
    return urlunsplit((scheme, parts.netloc, path, f"role={role}", ""))


class PlayerAgent:
    """Player endpoint: executes playback commands relayed by the hub."""

    def __init__(
        self,
        *,
        server_url: str,
        http: httpx.AsyncClient,
        backend: AudioBackend,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        self._server_url = server_url.rstrip("/")
        self._http = http
        self.client = HubClient(
            hub_ws_url(self._server_url),
            on_message=self.handle_command,
            on_connect=self.refresh_catalog,
            reconnect_delay=reconnect_delay,
        )
        self.engine = PlaybackEngine(backend=backend, fetch=self.fetch_asset, notify=self.client.send_command)
        self._plays: set[asyncio.Task] = set()

    async def fetch_asset(self, src: str) -> bytes:
        resp = await self._http.get(f"{self._server_url}/{quote(src.lstrip('/'), safe='/')}")
        resp.raise_for_status()
        return resp.content

    async def refresh_catalog(self) -> None:
        try:
            resp = await self._http.get(f"{self._server_url}/sounds")
            resp.raise_for_status()
            listing = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.error("Could not fetch sound catalog: %s", exc)
            return
        self.engine.set_catalog(build_catalog(listing))

    async def handle_command(self, command: dict) -> None:
        action = command.get("action")
        sound_id = command.get("soundId")
        if action in {"settings_initialized", "settings_updated"}:
            settings = command.get("settings")
            if isinstance(settings, dict):
                self.engine.apply_settings(settings)
        elif action == "setting_changed":
            setting = command.get("setting")
            if sound_id and setting == "volume":
                self.engine.set_sound_volume(sound_id, command.get("value"))
            elif not sound_id and setting == "masterVolume":
                self.engine.set_master_volume(command.get("value"))
        elif action == "sounds_updated":
            log.info("Sound files were updated; reloading catalog")
            await self.refresh_catalog()
        elif action == "play":
            if not isinstance(sound_id, str):
                log.warning("play without soundId ignored")
                return
            # Loading must not hold up the channel; later plays join the same load.
            task = asyncio.ensure_future(self.engine.play(sound_id))
            self._plays.add(task)
            task.add_done_callback(self._plays.discard)
        elif action == "stopAll":
            self.engine.stop_all()

    async def run(self) -> None:
        await self.client.run_forever()


async def _main(device: Optional[str]) -> None:
    from cueboard.player.output import SoundDeviceBackend

    backend = SoundDeviceBackend(loop=asyncio.get_running_loop(), device=device)
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as http:
        agent = PlayerAgent(server_url=SERVER_URL, http=http, backend=backend)
        log.info("Player agent connecting to %s", agent.client.url)
        await agent.run()


def main() -> None:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    try:
        asyncio.run(_main(OUTPUT_DEVICE))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
