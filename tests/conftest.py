import os
import threading
import pytest
import yaml
from pathlib import Path
from typing import Dict, List, Optional
from mbc.config.models import AppConfig
from mbc.domain.errors import EncodeError
from mbc.domain.events import (
    ConversionComplete, ConversionError, ConversionStarted, LiveProgress, QueueBuilt
)
from mbc.domain.models import FileEntry, FolderEntry, MediaCategory
from mbc.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "max_concurrent": 2,
            "ffmpeg_path": "ffmpeg",
            "ffprobe_path": "ffprobe",
            "output_subdir": "converted",
            "probe_durations": False,
            "debug": False,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "mbc.yaml"

    content = {
        'general': {
            'max_concurrent': 3,
            'output_subdir': 'converted',
            'probe_durations': False,
            'debug': False,
        },
        'video': {
            'crf': 30,
            'max_width': 1280,
        },
        'extensions': {
            'audio': ['MP3', '.wav'],
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


class EventRecorder:
    """Subscriber that keeps every pipeline event in publish order."""

    TYPES = (QueueBuilt, ConversionStarted, LiveProgress, ConversionError, ConversionComplete)

    def __init__(self, bus: EventBus):
        self.events = []
        self._lock = threading.Lock()
        for event_type in self.TYPES:
            bus.subscribe(event_type, self._record)

    def _record(self, event):
        with self._lock:
            self.events.append(event)

    def of(self, event_type):
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def recorder(event_bus):
    return EventRecorder(event_bus)

# ============================================================================
# Fake encoder
# ============================================================================

class FakeFFmpeg:
    """Stands in for FFmpegAdapter.

    `behaviour` maps an input file name to "ok", "fail" or a callable taking
    (args, on_progress) that may raise EncodeError. The real output file (last
    argument) is created on success so drivers can rename it.
    """

    def __init__(self, behaviour: Optional[Dict[str, object]] = None, progress: Optional[List[float]] = None):
        self.behaviour = behaviour or {}
        self.progress = progress or []
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def run(self, input_path, args, on_start=None, on_progress=None):
        with self._lock:
            self.calls.append((Path(input_path).name, list(args)))
        if on_start:
            on_start()
        action = self.behaviour.get(Path(input_path).name, "ok")
        if callable(action):
            action(args, on_progress)
        elif action == "fail":
            raise EncodeError("ffmpeg exited with code 1: Invalid data found when processing input", returncode=1)
        if on_progress:
            for percent in self.progress:
                on_progress(percent)
        target = args[-1]
        if target != os.devnull:
            Path(target).write_bytes(b"encoded")

    def passes_for(self, name: str) -> List[List[str]]:
        with self._lock:
            return [args for call_name, args in self.calls if call_name == name]


@pytest.fixture
def fake_ffmpeg():
    return FakeFFmpeg()

@pytest.fixture
def fake_ffmpeg_factory():
    return FakeFFmpeg

# ============================================================================
# Selection Fixtures
# ============================================================================

def file_entry(path: Path, category: MediaCategory, size: int = 1024, duration: Optional[float] = None) -> FileEntry:
    return FileEntry(path=path, name=path.name, category=category, size=size, duration=duration)


def folder_entry(path: Path, children) -> FolderEntry:
    return FolderEntry(path=path, name=path.name, size=sum(c.size for c in children), children=children)


@pytest.fixture
def make_file():
    return file_entry


@pytest.fixture
def make_folder():
    return folder_entry


@pytest.fixture
def clips_tree(tmp_path):
    """One folder 'clips' holding a video and an audio file."""
    clips = tmp_path / "input" / "clips"
    clips.mkdir(parents=True)
    video = clips / "holiday.mov"
    audio = clips / "voice.wav"
    video.write_bytes(b"video" * 100)
    audio.write_bytes(b"audio" * 100)
    return [folder_entry(clips, [
        file_entry(video, MediaCategory.VIDEO, duration=12.0),
        file_entry(audio, MediaCategory.AUDIO, duration=3.5),
    ])]


@pytest.fixture
def nested_tree(tmp_path):
    """Two levels of folders with files of every category."""
    root = tmp_path / "input" / "media"
    sub = root / "2024"
    sub.mkdir(parents=True)
    paths = {
        "a": root / "a.mp3",
        "b": sub / "b.mp4",
        "c": sub / "c.png",
        "d": root / "d.jpg",
    }
    for p in paths.values():
        p.write_bytes(b"x" * 10)
    return [folder_entry(root, [
        file_entry(paths["a"], MediaCategory.AUDIO),
        folder_entry(sub, [
            file_entry(paths["b"], MediaCategory.VIDEO),
            file_entry(paths["c"], MediaCategory.IMAGE),
        ]),
        file_entry(paths["d"], MediaCategory.IMAGE),
    ])]

# ============================================================================
# Marker registration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (integration tests with real files)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
