from __future__ import annotations

from typing import Callable, Optional, Protocol


class GainControl:
    """Live gain shared by every voice of one sound."""

    def __init__(self, value: float = 1.0) -> None:
        self.value = float(value)


class Voice(Protocol):
    on_ended: Optional[Callable[[], None]]

    def start(self) -> None: ...

    def stop(self) -> None: ...


class AudioBackend(Protocol):
    def decode(self, data: bytes) -> object: ...

    def create_voice(self, audio: object, gain: GainControl) -> Voice: ...
