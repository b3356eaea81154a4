from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote


log = logging.getLogger("cueboard")

AUDIO_EXTENSIONS = {".mp3", ".wav", ".ogg", ".flac", ".m4a"}
UNCATEGORIZED = "uncategorized"
SOUND_URL_PREFIX = "sounds"


def _encode_component(value: str) -> str:
    # quote() leaves "-" alone; escaping it keeps the separator unambiguous.
    return quote(value, safe="").replace("-", "%2D")


def sound_id(category: Optional[str], filename: str) -> str:
    if category:
        return f"sound-{_encode_component(category)}-{_encode_component(filename)}"
    return f"sound-{_encode_component(filename)}"


@dataclass(frozen=True)
class Sound:
    id: str
    name: str
    category: Optional[str]
    src: str

    @property
    def group(self) -> str:
        return self.category or UNCATEGORIZED

    def to_json(self) -> dict:
        return {"id": self.id, "name": self.name, "category": self.category, "src": self.src}


def build_catalog(listing: dict) -> list[Sound]:
    """Flatten a lister payload into sounds, categories first in listing order."""
    sounds: list[Sound] = []
    categories = listing.get("categories") or {}
    for category, files in categories.items():
        for info in files or []:
            name = info.get("name")
            if not name:
                continue
            sounds.append(Sound(id=sound_id(category, name), name=name, category=category, src=info.get("path") or ""))
    for info in listing.get("files") or []:
        name = info.get("name")
        if not name:
            continue
        sounds.append(Sound(id=sound_id(None, name), name=name, category=None, src=info.get("path") or ""))
    return sounds


def _is_audio_file(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() in AUDIO_EXTENSIONS


class SoundLibrary:
    """Directory-backed sound source lister.

    Files directly under ``root`` are uncategorized; each sub-directory is a
    category. Deeper nesting is not listed.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def list_sounds(self) -> dict:
        if not self._root.exists():
            self._root.mkdir(parents=True, exist_ok=True)
            return {"categories": {}, "files": []}

        categories: dict[str, list[dict]] = {}
        files: list[dict] = []
        for entry in sorted(self._root.iterdir(), key=lambda p: p.name):
            if entry.is_dir():
                audio = [p for p in sorted(entry.iterdir(), key=lambda p: p.name) if _is_audio_file(p)]
                if audio:
                    categories[entry.name] = [
                        {"name": p.name, "path": f"{SOUND_URL_PREFIX}/{entry.name}/{p.name}"} for p in audio
                    ]
            elif _is_audio_file(entry):
                files.append({"name": entry.name, "path": f"{SOUND_URL_PREFIX}/{entry.name}"})
        return {"categories": categories, "files": files}

    def catalog(self) -> list[Sound]:
        return build_catalog(self.list_sounds())

    def snapshot(self) -> list[str]:
        """Sorted identifiers of every file in the tree, audio or not."""
        result: list[str] = []
        if not self._root.exists():
            return result
        for entry in self._root.iterdir():
            if entry.is_dir():
                for child in entry.iterdir():
                    result.append(f"{entry.name}/{child.name}")
            elif entry.is_file():
                result.append(entry.name)
        return sorted(result)
