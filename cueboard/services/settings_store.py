from __future__ import annotations

import copy
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional


log = logging.getLogger("cueboard")


def default_settings() -> dict:
    return {
        "masterVolume": 1,
        "columns": 3,
        "playOnRemote": False,
        "sortBy": "name",
        "sortOrder": "asc",
        "customOrder": [],
        "customCategoryOrder": [],
        "sounds": {},
    }


def _check_sounds(value: Any) -> None:
    if not isinstance(value, dict):
        raise ValueError("sounds must be an object keyed by sound id")
    for sound_id, fields in value.items():
        if not isinstance(fields, dict):
            raise ValueError(f"settings for {sound_id} must be an object")


def _sound_map(settings: dict) -> dict:
    sounds = settings.get("sounds")
    return copy.deepcopy(sounds) if isinstance(sounds, dict) else {}


def _sound_entry(sounds: dict, sound_id: str) -> dict:
    # Entries written by hand or by older clients may not be objects.
    entry = sounds.get(sound_id)
    return dict(entry) if isinstance(entry, dict) else {}


class SettingsStore:
    """Single owner of the persisted settings file.

    Every mutation goes through ``_commit`` which rewrites the whole file before
    returning, so anything broadcast afterwards is already on disk.
    """

    def __init__(self, *, settings_path: Path) -> None:
        self._settings_path = settings_path
        self._lock = threading.RLock()
        self._settings: dict = default_settings()

    @property
    def path(self) -> Path:
        return self._settings_path

    def load(self) -> dict:
        with self._lock:
            if not self._settings_path.exists():
                self._settings = default_settings()
                self._persist()
                log.info("Default settings created at %s", self._settings_path)
                return self.get()
            try:
                raw = json.loads(self._settings_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                log.error("Error loading %s: %s; falling back to defaults", self._settings_path, exc)
                raw = None
            if not isinstance(raw, dict):
                self._settings = default_settings()
                self._persist()
                return self.get()
            settings = default_settings()
            settings.update(raw)
            if not isinstance(settings.get("sounds"), dict):
                settings["sounds"] = {}
            self._settings = settings
            log.info("Settings loaded from %s", self._settings_path)
            return self.get()

    def get(self) -> dict:
        with self._lock:
            return copy.deepcopy(self._settings)

    def apply_patch(self, patch: dict, *, merge_sounds: bool = False) -> dict:
        """Shallow-merge ``patch`` into the settings and persist.

        Top-level keys replace whole values. With ``merge_sounds`` the ``sounds``
        map is merged per sound id and per field instead of being replaced, and
        anything but an object of objects there raises ``ValueError``.
        """
        if not isinstance(patch, dict):
            raise TypeError("settings patch must be a mapping")
        if merge_sounds and "sounds" in patch:
            _check_sounds(patch["sounds"])
        with self._lock:
            updated = dict(self._settings)
            for key, value in patch.items():
                if key == "sounds" and merge_sounds:
                    sounds = _sound_map(updated)
                    for sound_id, fields in value.items():
                        entry = _sound_entry(sounds, sound_id)
                        entry.update(copy.deepcopy(fields))
                        sounds[sound_id] = entry
                    updated["sounds"] = sounds
                    continue
                updated[key] = copy.deepcopy(value)
            return self._commit(updated)

    def update_setting(self, setting: str, value: Any, sound_id: Optional[str] = None) -> dict:
        """Field-level update used by the realtime channel.

        With ``sound_id`` only ``sounds[sound_id][setting]`` changes; sibling
        fields of that sound and other sounds are kept.
        """
        if not setting:
            raise ValueError("setting name is required")
        with self._lock:
            updated = dict(self._settings)
            if sound_id:
                sounds = _sound_map(updated)
                entry = _sound_entry(sounds, sound_id)
                entry[setting] = copy.deepcopy(value)
                sounds[sound_id] = entry
                updated["sounds"] = sounds
            else:
                updated[setting] = copy.deepcopy(value)
            return self._commit(updated)

    def _commit(self, updated: dict) -> dict:
        self._settings = updated
        self._persist()
        return copy.deepcopy(updated)

    def _persist(self) -> None:
        path = self._settings_path
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(self._settings, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            # Keep serving the in-memory state; the next mutation retries the write.
            log.error("Error saving %s: %s", path, exc)
