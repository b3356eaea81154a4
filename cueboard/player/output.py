from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

from cueboard.player.audio import GainControl


log = logging.getLogger("cueboard.player")


@dataclass
class DecodedAudio:
    samples: np.ndarray
    samplerate: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return len(self.samples) / float(self.samplerate or 1)


def decode_audio(data: bytes) -> DecodedAudio:
    samples, samplerate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    if len(samples) == 0:
        raise ValueError("decoded audio is empty")
    return DecodedAudio(samples=np.ascontiguousarray(samples), samplerate=int(samplerate))


class SoundDeviceVoice:
    """One playback of a decoded buffer on its own output stream.

    PortAudio calls ``finished_callback`` on its own thread; the end is handed
    to the event loop, where ``on_ended`` runs if it is still attached.
    """

    def __init__(
        self,
        audio: DecodedAudio,
        gain: GainControl,
        *,
        loop: asyncio.AbstractEventLoop,
        device: Optional[str | int] = None,
    ) -> None:
        self.on_ended: Optional[Callable[[], None]] = None
        self._audio = audio
        self._gain = gain
        self._loop = loop
        self._device = device
        self._frame = 0
        self._stream: Optional[sd.OutputStream] = None
        self._closed = False

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status:
            log.debug("Output stream status: %s", status)
        chunk = self._audio.samples[self._frame : self._frame + frames]
        count = len(chunk)
        outdata[:count] = chunk * self._gain.value
        outdata[count:] = 0
        self._frame += count
        if count < frames:
            raise sd.CallbackStop

    def _finished(self) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._ended)

    def _ended(self) -> None:
        self._close()
        callback = self.on_ended
        if callback is not None:
            callback()

    def _close(self) -> None:
        if self._closed or self._stream is None:
            return
        self._closed = True
        self._stream.close(ignore_errors=True)

    def start(self) -> None:
        self._stream = sd.OutputStream(
            samplerate=self._audio.samplerate,
            channels=self._audio.channels,
            dtype="float32",
            device=self._device,
            callback=self._callback,
            finished_callback=self._finished,
        )
        self._stream.start()

    def stop(self) -> None:
        if self._stream is None or self._closed:
            return
        try:
            self._stream.abort(ignore_errors=True)
        finally:
            self._close()


class SoundDeviceBackend:
    def __init__(self, *, loop: asyncio.AbstractEventLoop, device: Optional[str | int] = None) -> None:
        self._loop = loop
        self._device = device

    def decode(self, data: bytes) -> DecodedAudio:
        return decode_audio(data)

    def create_voice(self, audio: DecodedAudio, gain: GainControl) -> SoundDeviceVoice:
        return SoundDeviceVoice(audio, gain, loop=self._loop, device=self._device)
