import os
import tempfile
from pathlib import Path

import pytest

# cueboard.main reads its paths at import time.
_STATE_DIR = Path(tempfile.mkdtemp(prefix="cueboard-tests-"))
os.environ.setdefault("CUEBOARD_SETTINGS_PATH", str(_STATE_DIR / "settings.json"))
os.environ.setdefault("CUEBOARD_SOUNDS_DIR", str(_STATE_DIR / "sounds"))
os.environ.setdefault("CUEBOARD_WATCH_ENABLED", "0")

from cueboard.services.sound_library import Sound, sound_id  # noqa: E402


def make_sound(name: str, category: str | None = None) -> Sound:
    src = f"sounds/{category}/{name}" if category else f"sounds/{name}"
    return Sound(id=sound_id(category, name), name=name, category=category, src=src)


@pytest.fixture
def sounds_dir(tmp_path: Path) -> Path:
    root = tmp_path / "sounds"
    (root / "cat1").mkdir(parents=True)
    (root / "cat1" / "a.mp3").write_bytes(b"a")
    (root / "cat1" / "b.mp3").write_bytes(b"b")
    (root / "c.mp3").write_bytes(b"c")
    return root
