"""
Shared fixtures: synthetic images, fake clips and a fake encoder.
"""
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import pytest
from PIL import Image

from reelrender.config import settings
from reelrender.errors import EncoderError
from reelrender.models import DecodedAudio, ImageVisual, MissingVisual, VideoVisual
from reelrender.phase1_asset_loading.resolver import ResolvedAssets

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
WHITE = (255, 255, 255)
BLACK = (0, 0, 0)


def assert_color(pixel, expected, tolerance: int = 3):
    """Resampling may shift a solid colour by a unit or two."""
    assert all(abs(int(a) - int(b)) <= tolerance for a, b in zip(pixel[:3], expected)), \
        f"pixel {pixel} != {expected}"


class FakeClip:
    """Stands in for a moviepy clip; tracks how often it was closed."""

    def __init__(self, duration: float = 6.0, color: Tuple[int, int, int] = BLUE,
                 size: Tuple[int, int] = (64, 36), fail_at: Optional[float] = None):
        self.duration = duration
        self.size = size
        self.color = color
        self.fail_at = fail_at
        self.close_calls = 0
        self.requested_times: List[float] = []

    def get_frame(self, t: float) -> np.ndarray:
        if self.fail_at is not None and t >= self.fail_at:
            raise IOError("decoder gave up")
        self.requested_times.append(t)
        width, height = self.size
        frame = np.zeros((height, width, 3), dtype=np.uint8)
        frame[:, :] = self.color
        return frame

    def close(self) -> None:
        self.close_calls += 1


class FakeEncoder:
    """Records what the scheduler feeds it instead of spawning ffmpeg."""

    instances: List["FakeEncoder"] = []

    def __init__(self, width, height, fps, audio_path, duration_seconds,
                 fail_on_finish: bool = False, fail_on_frame: Optional[int] = None, on_frame=None):
        self.width = width
        self.height = height
        self.fps = fps
        self.audio_path = audio_path
        self.duration_seconds = duration_seconds
        self.fail_on_finish = fail_on_finish
        self.fail_on_frame = fail_on_frame
        self.on_frame = on_frame
        self.started = False
        self.finished = False
        self.abort_calls = 0
        self.center_colors: List[Tuple[int, int, int]] = []
        FakeEncoder.instances.append(self)

    @property
    def frames_written(self) -> int:
        return len(self.center_colors)

    def start(self) -> None:
        self.started = True

    def write_frame(self, surface: Image.Image) -> None:
        if self.fail_on_frame is not None and self.frames_written == self.fail_on_frame:
            raise EncoderError(f"Encoder stopped accepting frames after {self.frames_written} frames: Broken pipe")
        assert surface.size == (self.width, self.height)
        self.center_colors.append(surface.getpixel((self.width // 2, self.height // 2)))
        if self.on_frame is not None:
            self.on_frame(self)

    def finish(self) -> bytes:
        if self.fail_on_finish:
            raise EncoderError("unsupported codec negotiation")
        self.finished = True
        return b"\x1a\x45\xdf\xa3fake-webm" + bytes(self.frames_written)

    def abort(self) -> None:
        self.abort_calls += 1


@pytest.fixture(autouse=True)
def reset_fake_encoders():
    FakeEncoder.instances.clear()
    yield
    FakeEncoder.instances.clear()


@pytest.fixture
def restore_root_logging():
    """Undo handlers and level changes made to the root logger during a test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def work_path(tmp_path, monkeypatch):
    path = tmp_path / "work"
    monkeypatch.setattr(settings, "WORK_PATH", path)
    return path


@pytest.fixture
def make_image_file(tmp_path):
    """Write a solid-colour PNG and return its path."""

    def _make(name: str, color=RED, size=(160, 90)) -> Path:
        path = tmp_path / f"{name}.png"
        Image.new("RGB", size, color).save(path)
        return path

    return _make


@pytest.fixture
def image_visual():
    def _make(color=RED, size=(160, 90)) -> ImageVisual:
        return ImageVisual(image=Image.new("RGB", size, color), width=size[0], height=size[1])

    return _make


@pytest.fixture
def make_resolved(tmp_path):
    """Build ResolvedAssets from fake audio and the given visuals."""

    def _make(audio_duration: float = 30.0, intro=None, thumbnail=None, slides=None) -> ResolvedAssets:
        audio = DecodedAudio(clip=FakeClip(duration=audio_duration), path=tmp_path / "audio.mp3",
                             duration_seconds=audio_duration)
        return ResolvedAssets(
            audio=audio,
            intro=intro if intro is not None else MissingVisual(),
            thumbnail=thumbnail if thumbnail is not None else MissingVisual(),
            slides=list(slides or []),
        )

    return _make


@pytest.fixture
def video_visual():
    def _make(duration: float = 6.0, color=BLUE, fail_at=None) -> VideoVisual:
        clip = FakeClip(duration=duration, color=color, fail_at=fail_at)
        return VideoVisual(clip=clip, duration_seconds=duration, has_decoded_frame=True)

    return _make
