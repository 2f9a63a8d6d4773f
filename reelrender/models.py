"""
Data models shared across the rendering phases.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Union

from PIL import Image
from pydantic import BaseModel, ConfigDict, Field

from reelrender.phase2_timeline.planner import Timeline

logger = logging.getLogger(__name__)


class AssetBundle(BaseModel):
    """
    Caller-supplied references for one composition.

    A reference is an http(s) URL, a file:// URL, or a local path.
    """
    model_config = ConfigDict(frozen=True)

    audio_url: Optional[str] = None
    intro_video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    slide_urls: List[str] = Field(default_factory=list)
    is_vertical_format: bool = False


@dataclass
class DecodedAudio:
    """Decoded narration/music track. Owned by a single run."""
    clip: Any  # moviepy AudioFileClip
    path: Path
    duration_seconds: float

    def close(self) -> None:
        try:
            self.clip.close()
        except Exception as e:
            logger.warning(f"Failed to close audio clip {self.path.name}: {e}")


# --- Loaded visuals: exactly one variant per optional asset ---

@dataclass
class VideoVisual:
    clip: Any  # moviepy VideoFileClip, opened without audio
    duration_seconds: float
    has_decoded_frame: bool = True

    def is_playing_at(self, t: float) -> bool:
        return self.has_decoded_frame and t < self.duration_seconds

    def close(self) -> None:
        try:
            self.clip.close()
        except Exception as e:
            logger.warning(f"Failed to close intro video: {e}")


@dataclass
class ImageVisual:
    image: Image.Image  # RGB
    width: int
    height: int

    def close(self) -> None:
        self.image.close()


@dataclass
class MissingVisual:
    reason: str = "not provided"

    def close(self) -> None:
        pass


LoadedVisual = Union[VideoVisual, ImageVisual, MissingVisual]


class EncodedOutput(BaseModel):
    """Final single-file video produced by one run."""
    data: bytes
    mime_type: str
    timeline: Timeline
    frame_count: int
    duration_seconds: float
    width: int
    height: int

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def save(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        logger.info(f"Saved {self.size_bytes / 1024 / 1024:.2f} MB video to {path}")
        return path
