from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Optional

from cueboard.player.audio import AudioBackend, GainControl, Voice
from cueboard.services.sound_library import Sound


log = logging.getLogger("cueboard.player")

UNLOADED = "unloaded"
LOADING = "loading"
IDLE = "idle"
SOUNDING = "sounding"


def _as_volume(value: object, fallback: float = 1.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    return max(0.0, float(value))


@dataclass(eq=False)
class SoundSlot:
    sound: Sound
    gain: GainControl
    volume: float = 1.0
    audio: Any = None
    loading: Optional[asyncio.Future] = None
    instance: Optional[Voice] = None

    @property
    def state(self) -> str:
        if self.instance is not None:
            return SOUNDING
        if self.audio is not None:
            return IDLE
        if self.loading is not None:
            return LOADING
        return UNLOADED


class PlaybackEngine:
    """Per-sound playback state for the player endpoint.

    All mutation of ``SoundSlot.instance`` happens on the event loop without an
    ``await`` in between, so two plays of one sound cannot interleave.
    """

    def __init__(
        self,
        *,
        backend: AudioBackend,
        fetch: Callable[[str], Awaitable[bytes]],
        notify: Callable[[dict], Any],
    ) -> None:
        self._backend = backend
        self._fetch = fetch
        self._notify = notify
        self._slots: dict[str, SoundSlot] = {}
        self._master_volume = 1.0
        self._volumes: dict[str, float] = {}

    @property
    def master_volume(self) -> float:
        return self._master_volume

    def sound_ids(self) -> list[str]:
        return list(self._slots.keys())

    def state(self, sound_id: str) -> Optional[str]:
        slot = self._slots.get(sound_id)
        return slot.state if slot else None

    def gain(self, sound_id: str) -> Optional[float]:
        slot = self._slots.get(sound_id)
        return slot.gain.value if slot else None

    def set_catalog(self, sounds: Iterable[Sound]) -> None:
        """Replace the known sounds.

        Sounds whose id and source are unchanged keep their slot, decoded audio
        and live instance. Live instances of dropped sounds are stopped without
        notification.
        """
        previous = self._slots
        slots: dict[str, SoundSlot] = {}
        for sound in sounds:
            slot = previous.get(sound.id)
            if slot is not None and slot.sound.src == sound.src:
                slot.sound = sound
            else:
                volume = self._volumes.get(sound.id, 1.0)
                slot = SoundSlot(sound=sound, gain=GainControl(volume * self._master_volume), volume=volume)
            slots[sound.id] = slot
        for sound_id, slot in previous.items():
            if slots.get(sound_id) is slot:
                continue
            self._silence(slot)
        self._slots = slots
        log.info("Player catalog loaded: %d sounds", len(slots))

    async def play(self, sound_id: str) -> None:
        slot = self._slots.get(sound_id)
        if slot is None:
            log.warning("Play ignored for unknown sound %s", sound_id)
            return
        if slot.audio is None:
            if not await self._ensure_loaded(slot):
                return
            if self._slots.get(sound_id) is not slot:
                log.info("Sound %s left the catalog while loading", sound_id)
                return
        self._start(slot)

    async def _ensure_loaded(self, slot: SoundSlot) -> bool:
        if slot.loading is None:
            slot.loading = asyncio.ensure_future(self._load(slot))
        await asyncio.shield(slot.loading)
        return slot.audio is not None

    async def _load(self, slot: SoundSlot) -> None:
        sound = slot.sound
        try:
            data = await self._fetch(sound.src)
            slot.audio = await asyncio.to_thread(self._backend.decode, data)
            log.info("Loaded sound %s", sound.name)
        except Exception as exc:
            slot.audio = None
            log.error("Error loading sound %s: %s", sound.name, exc)
        finally:
            slot.loading = None

    def _start(self, slot: SoundSlot) -> None:
        superseded = self._silence(slot)
        voice: Optional[Voice] = None
        try:
            voice = self._backend.create_voice(slot.audio, slot.gain)
            voice.on_ended = lambda: self._voice_ended(slot, voice)
            slot.instance = voice
            voice.start()
        except Exception as exc:
            if voice is not None:
                voice.on_ended = None
            slot.instance = None
            log.error("Error starting sound %s: %s", slot.sound.name, exc)
            if superseded:
                self._notify({"action": "sound_ended", "soundId": slot.sound.id})
            return
        self._notify({"action": "sound_started", "soundId": slot.sound.id})

    def _voice_ended(self, slot: SoundSlot, voice: Voice) -> None:
        if slot.instance is not voice:
            return
        slot.instance = None
        self._notify({"action": "sound_ended", "soundId": slot.sound.id})

    def _silence(self, slot: SoundSlot) -> bool:
        voice = slot.instance
        if voice is None:
            return False
        voice.on_ended = None
        slot.instance = None
        try:
            voice.stop()
        except Exception as exc:
            log.warning("Error stopping sound %s: %s", slot.sound.name, exc)
        return True

    def stop_all(self) -> list[str]:
        stopped: list[str] = []
        for sound_id, slot in list(self._slots.items()):
            if self._silence(slot):
                stopped.append(sound_id)
                self._notify({"action": "sound_ended", "soundId": sound_id})
        return stopped

    def set_master_volume(self, value: object) -> None:
        self._master_volume = _as_volume(value)
        for slot in self._slots.values():
            slot.gain.value = slot.volume * self._master_volume

    def set_sound_volume(self, sound_id: str, value: object) -> None:
        volume = _as_volume(value)
        self._volumes[sound_id] = volume
        slot = self._slots.get(sound_id)
        if slot is None:
            return
        slot.volume = volume
        slot.gain.value = volume * self._master_volume

    def apply_settings(self, settings: dict) -> None:
        self._volumes = {}
        for sound_id, entry in (settings.get("sounds") or {}).items():
            if isinstance(entry, dict) and "volume" in entry:
                self._volumes[sound_id] = _as_volume(entry.get("volume"))
        for sound_id, slot in self._slots.items():
            slot.volume = self._volumes.get(sound_id, 1.0)
        self.set_master_volume(settings.get("masterVolume", 1))
