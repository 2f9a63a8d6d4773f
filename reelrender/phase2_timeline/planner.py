"""
Timeline planning for the intro + slideshow layout.

Pure functions of the audio duration and slide count; no I/O.
"""
import math
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

INTRO_DURATION_SECONDS = 6.0
TAIL_SECONDS = 0.5  # rendered past the end of the audio
MIN_SLIDE_SECONDS = 4.0
EMPTY_SLIDESHOW_SLIDE_SECONDS = 8.0


class Timeline(BaseModel):
    model_config = ConfigDict(frozen=True)

    audio_duration_seconds: float
    intro_duration_seconds: float
    total_duration_seconds: float
    slide_duration_seconds: float
    slide_count: int

    def is_intro(self, elapsed_seconds: float) -> bool:
        return elapsed_seconds < self.intro_duration_seconds

    def slide_index_at(self, elapsed_seconds: float) -> Optional[int]:
        """
        Index of the slide visible at `elapsed_seconds`.

        Returns None during the intro phase or when there are no slides.
        Past the last window the last slide stays on screen.
        """
        if self.is_intro(elapsed_seconds) or self.slide_count == 0:
            return None
        relative_time = elapsed_seconds - self.intro_duration_seconds
        index = math.floor(relative_time / self.slide_duration_seconds)
        return max(0, min(index, self.slide_count - 1))

    def slide_window(self, index: int) -> Tuple[float, float]:
        """[start, end) in seconds of slide `index`."""
        start = self.intro_duration_seconds + index * self.slide_duration_seconds
        return start, start + self.slide_duration_seconds

    def frame_count(self, fps: int) -> int:
        """Number of ticks rendered before the stop condition (elapsed >= total) fires."""
        # round() guards against float noise such as 30.5 * 30 = 915.0000000001
        return math.ceil(round(self.total_duration_seconds * fps, 6))


def plan_timeline(audio_duration_seconds: float, slide_count: int) -> Timeline:
    """
    Compute phase boundaries and per-slide duration.

    Args:
        audio_duration_seconds: Decoded audio length, must be > 0.
        slide_count: Number of slide references (loaded or not).

    Returns:
        Immutable Timeline.

    Raises:
        ValueError: On a non-positive duration or a negative slide count.
    """
    if audio_duration_seconds <= 0:
        raise ValueError(f"Audio duration must be positive, got {audio_duration_seconds}")
    if slide_count < 0:
        raise ValueError(f"Slide count cannot be negative, got {slide_count}")

    # Negative when the audio is shorter than the intro; the floor below absorbs it
    slideshow_duration = audio_duration_seconds - INTRO_DURATION_SECONDS
    if slide_count > 0:
        slide_duration = max(MIN_SLIDE_SECONDS, slideshow_duration / slide_count)
    else:
        slide_duration = EMPTY_SLIDESHOW_SLIDE_SECONDS

    return Timeline(
        audio_duration_seconds=audio_duration_seconds,
        intro_duration_seconds=INTRO_DURATION_SECONDS,
        total_duration_seconds=audio_duration_seconds + TAIL_SECONDS,
        slide_duration_seconds=slide_duration,
        slide_count=slide_count,
    )
