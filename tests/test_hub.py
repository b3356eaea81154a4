import asyncio
import json
from pathlib import Path

import pytest

from cueboard.services.hub import MessageHub, resolve_role
from cueboard.services.settings_store import SettingsStore


class FakeWebSocket:
    def __init__(self, *, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.sent: list[str] = []
        self.closed_with = None

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def messages(self) -> list:
        result = []
        for raw in self.sent:
            try:
                result.append(json.loads(raw))
            except ValueError:
                result.append(raw)
        return result


def _hub(tmp_path: Path, **kwargs) -> MessageHub:
    store = SettingsStore(settings_path=tmp_path / "settings.json")
    store.load()
    return MessageHub(settings_store=store, **kwargs)


def test_resolve_role_prefers_hint_then_user_agent() -> None:
    assert resolve_role("player") == "player"
    assert resolve_role(" Remote ", "OBS/30.0") == "remote"
    assert resolve_role(None, "Mozilla/5.0 OBS/30.1") == "player"
    assert resolve_role("", "Mozilla/5.0 Safari") == "remote"


def test_connect_pushes_settings_to_new_client_only(tmp_path: Path) -> None:
    hub = _hub(tmp_path)
    first, second = FakeWebSocket(), FakeWebSocket()

    async def scenario():
        await hub.connect(first, "player")
        await hub.connect(second, "remote")

    asyncio.run(scenario())

    assert [m["action"] for m in first.messages()] == ["settings_initialized"]
    assert [m["action"] for m in second.messages()] == ["settings_initialized"]
    assert second.messages()[0]["settings"]["columns"] == 3


def test_update_setting_is_persisted_and_echoed_to_everyone(tmp_path: Path) -> None:
    hub = _hub(tmp_path)
    player, remote1, remote2 = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()

    async def scenario():
        await hub.connect(player, "player")
        sender = await hub.connect(remote1, "remote")
        await hub.connect(remote2, "remote")
        await hub.handle_message(
            sender, json.dumps({"action": "update_setting", "setting": "masterVolume", "value": 0.5})
        )

    asyncio.run(scenario())

    expected = {"action": "setting_changed", "soundId": None, "setting": "masterVolume", "value": 0.5}
    for ws in (player, remote1, remote2):
        assert ws.messages()[-1] == expected
    persisted = json.loads((tmp_path / "settings.json").read_text())
    assert persisted["masterVolume"] == 0.5


def test_sound_setting_merges_into_sound_entry(tmp_path: Path) -> None:
    hub = _hub(tmp_path)
    remote = FakeWebSocket()

    async def scenario():
        conn = await hub.connect(remote, "remote")
        for setting, value in (("volume", 0.3), ("color", "#00ff00")):
            await hub.handle_message(
                conn,
                json.dumps({"action": "update_setting", "soundId": "sound-a", "setting": setting, "value": value}),
            )

    asyncio.run(scenario())

    assert hub.settings_store.get()["sounds"]["sound-a"] == {"volume": 0.3, "color": "#00ff00"}
    assert remote.messages()[-1]["soundId"] == "sound-a"


def test_playback_commands_skip_the_sender(tmp_path: Path) -> None:
    hub = _hub(tmp_path)
    player, remote1, remote2 = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()

    async def scenario():
        player_conn = await hub.connect(player, "player")
        remote_conn = await hub.connect(remote1, "remote")
        await hub.connect(remote2, "remote")
        await hub.handle_message(remote_conn, json.dumps({"action": "play", "soundId": "sound-a"}))
        await hub.handle_message(player_conn, json.dumps({"action": "sound_started", "soundId": "sound-a"}))

    asyncio.run(scenario())

    assert [m["action"] for m in player.messages()] == ["settings_initialized", "play"]
    assert [m["action"] for m in remote1.messages()] == ["settings_initialized", "sound_started"]
    assert [m["action"] for m in remote2.messages()] == ["settings_initialized", "play", "sound_started"]


def test_malformed_message_is_forwarded_verbatim(tmp_path: Path) -> None:
    hub = _hub(tmp_path)
    sender_ws, other = FakeWebSocket(), FakeWebSocket()

    async def scenario():
        sender = await hub.connect(sender_ws, "remote")
        await hub.connect(other, "player")
        await hub.handle_message(sender, "not json at all")
        await hub.handle_message(sender, json.dumps({"action": "update_setting"}))
        return sender

    sender = asyncio.run(scenario())

    assert other.sent[1:] == ["not json at all", json.dumps({"action": "update_setting"})]
    assert len(sender_ws.sent) == 1
    assert sender.alive
    assert hub.count() == 2


def test_failed_send_is_isolated_and_connection_dropped(tmp_path: Path) -> None:
    hub = _hub(tmp_path, send_timeout=0.05)
    healthy, broken, slow = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()

    async def scenario():
        await hub.connect(healthy, "remote")
        broken_conn = await hub.connect(broken, "remote")
        slow_conn = await hub.connect(slow, "remote")
        broken.fail = True
        slow.delay = 1.0
        await hub.sounds_updated()
        return broken_conn, slow_conn

    broken_conn, slow_conn = asyncio.run(scenario())

    assert healthy.messages()[-1] == {"action": "sounds_updated"}
    assert hub.count() == 1
    assert not broken_conn.alive and not slow_conn.alive
    assert broken.closed_with == 1011


def test_settings_replaced_broadcasts_full_snapshot(tmp_path: Path) -> None:
    hub = _hub(tmp_path)
    ws = FakeWebSocket()

    async def scenario():
        await hub.connect(ws, "remote")
        hub.settings_store.apply_patch({"columns": 7})
        await hub.settings_replaced()

    asyncio.run(scenario())

    last = ws.messages()[-1]
    assert last["action"] == "settings_updated"
    assert last["settings"]["columns"] == 7


@pytest.mark.parametrize("role", ["player", "remote"])
def test_count_by_role(tmp_path: Path, role: str) -> None:
    hub = _hub(tmp_path)

    async def scenario():
        conn = await hub.connect(FakeWebSocket(), role)
        counts = (hub.count("player"), hub.count("remote"))
        hub.disconnect(conn)
        return counts

    counts = asyncio.run(scenario())

    assert counts == ((1, 0) if role == "player" else (0, 1))
    assert hub.count() == 0
