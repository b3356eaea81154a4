import asyncio
import json

import httpx
import pytest

from cueboard.player.agent import PlayerAgent, hub_ws_url
from cueboard.player.client import HubClient
from cueboard.services.sound_library import sound_id

from test_playback_engine import FakeBackend


LISTING = {
    "categories": {"sfx": [{"name": "horn 1.mp3", "path": "sounds/sfx/horn 1.mp3"}]},
    "files": [{"name": "bell.wav", "path": "sounds/bell.wav"}],
}


def _transport(requests: list[str]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request.url.path)
        if request.url.path == "/sounds":
            return httpx.Response(200, json=LISTING)
        if request.url.path.startswith("/sounds/"):
            return httpx.Response(200, content=b"audio-bytes")
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class FakeConnection:
    def __init__(self, incoming: list[str]) -> None:
        self.incoming = list(incoming)
        self.sent: list[str] = []

    async def send(self, data: str) -> None:
        self.sent.append(data)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        await asyncio.sleep(0)
        if not self.incoming:
            raise StopAsyncIteration
        return self.incoming.pop(0)


class FakeConnector:
    """Stands in for websockets.connect: fails first, then serves scripted sessions."""

    def __init__(self, sessions: list[list[str]], failures: int = 0) -> None:
        self.sessions = sessions
        self.failures = failures
        self.attempts = 0
        self.connections: list[FakeConnection] = []

    def __call__(self, url: str):
        connector = self

        class _Context:
            async def __aenter__(self):
                connector.attempts += 1
                if connector.failures:
                    connector.failures -= 1
                    raise OSError("connection refused")
                conn = FakeConnection(connector.sessions.pop(0) if connector.sessions else [])
                connector.connections.append(conn)
                return conn

            async def __aexit__(self, *exc_info):
                return False

        return _Context()


def test_hub_ws_url_maps_scheme_and_role() -> None:
    assert hub_ws_url("http://127.0.0.1:3000") == "ws://127.0.0.1:3000/ws?role=player"
    assert hub_ws_url("https://board.local/cue/", role="remote") == "wss://board.local/cue/ws?role=remote"


def test_agent_executes_relayed_commands() -> None:
    requests: list[str] = []
    backend = FakeBackend()

    async def scenario():
        async with httpx.AsyncClient(transport=_transport(requests)) as http:
            agent = PlayerAgent(server_url="http://hub:3000", http=http, backend=backend)
            sent: list[dict] = []
            agent.engine._notify = sent.append
            await agent.refresh_catalog()
            horn = sound_id("sfx", "horn 1.mp3")
            await agent.handle_command(
                {"action": "settings_initialized", "settings": {"masterVolume": 0.5, "sounds": {horn: {"volume": 0.5}}}}
            )
            await agent.handle_command({"action": "play", "soundId": horn})
            await agent.handle_command({"action": "play", "soundId": "sound-nope"})
            await asyncio.gather(*list(agent._plays))
            await agent.handle_command({"action": "setting_changed", "setting": "masterVolume", "value": 1})
            gain = agent.engine.gain(horn)
            await agent.handle_command({"action": "stopAll"})
            return horn, sent, gain

    horn, sent, gain = asyncio.run(scenario())

    assert "/sounds/sfx/horn%201.mp3" in requests or "/sounds/sfx/horn 1.mp3" in requests
    assert sent == [
        {"action": "sound_started", "soundId": horn},
        {"action": "sound_ended", "soundId": horn},
    ]
    assert gain == pytest.approx(0.5)
    assert backend.decoded == [b"audio-bytes"]


def test_agent_keeps_catalog_when_listing_fails() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if len(calls) == 1:
            return httpx.Response(200, json=LISTING)
        return httpx.Response(500, text="Server error")

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            agent = PlayerAgent(server_url="http://hub:3000", http=http, backend=FakeBackend())
            await agent.refresh_catalog()
            await agent.handle_command({"action": "sounds_updated"})
            return agent.engine.sound_ids()

    assert len(asyncio.run(scenario())) == 2


def test_client_fails_fast_while_disconnected() -> None:
    async def on_message(command: dict) -> None:
        return None

    client = HubClient("ws://hub/ws?role=player", on_message=on_message)

    assert client.send_command({"action": "sound_started", "soundId": "x"}) is False
    assert not client.connected


def test_client_reconnects_with_fixed_delay_and_dispatches() -> None:
    received: list[dict] = []
    connector = FakeConnector(
        sessions=[
            ["not json", json.dumps({"action": "play", "soundId": "a"})],
            [json.dumps({"action": "stopAll"})],
        ],
        failures=1,
    )

    async def on_message(command: dict) -> None:
        received.append(command)

    async def scenario():
        client = HubClient("ws://hub/ws", on_message=on_message, reconnect_delay=0.01, connect=connector)
        task = asyncio.ensure_future(client.run_forever())
        for _ in range(100):
            if len(received) >= 2 and connector.attempts >= 3:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert received[:2] == [{"action": "play", "soundId": "a"}, {"action": "stopAll"}]
    assert connector.attempts >= 3


def test_client_sends_while_connected() -> None:
    connector = FakeConnector(sessions=[])

    async def scenario():
        sent_ok = []

        async def on_connect() -> None:
            sent_ok.append(client.send_command({"action": "sound_ended", "soundId": "a"}))
            await asyncio.sleep(0)

        async def on_message(command: dict) -> None:
            return None

        client = HubClient("ws://hub/ws", on_message=on_message, on_connect=on_connect, connect=connector)
        await client.run_once()
        return sent_ok

    assert asyncio.run(scenario()) == [True]
    assert json.loads(connector.connections[0].sent[0]) == {"action": "sound_ended", "soundId": "a"}
