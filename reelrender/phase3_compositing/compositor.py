"""
Frame compositing: draws the visual for one timestamp onto the render surface.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np
from PIL import Image

from reelrender.models import ImageVisual, LoadedVisual, MissingVisual, VideoVisual
from reelrender.phase2_timeline.planner import Timeline

logger = logging.getLogger(__name__)

BACKGROUND_COLOR = (0, 0, 0)


@dataclass(frozen=True)
class CoverFit:
    """Placement of an asset scaled to cover the whole surface."""
    scale: float
    x: float
    y: float
    width: float
    height: float

    def pixel_box(self) -> Tuple[int, int, int, int]:
        """(left, top, width, height) rounded to whole pixels."""
        return round(self.x), round(self.y), max(1, round(self.width)), max(1, round(self.height))


def cover_fit(asset_width: int, asset_height: int, surface_width: int, surface_height: int) -> CoverFit:
    """
    Uniform scale that fills the surface, centered, cropping the overflow axis.

    scale = max(W/w, H/h); x = W/2 - w*scale/2; y = H/2 - h*scale/2
    """
    if asset_width <= 0 or asset_height <= 0:
        raise ValueError(f"Cannot cover-fit an empty asset ({asset_width}x{asset_height})")
    scale = max(surface_width / asset_width, surface_height / asset_height)
    width = asset_width * scale
    height = asset_height * scale
    x = surface_width / 2 - width / 2
    y = surface_height / 2 - height / 2
    return CoverFit(scale=scale, x=x, y=y, width=width, height=height)


def new_surface(width: int, height: int) -> Image.Image:
    return Image.new("RGB", (width, height), BACKGROUND_COLOR)


class FrameCompositor:
    """
    Renders intro / slideshow frames for a fixed surface size.

    Scaled images are cached per visual, so each still is resized once per run.
    """

    def __init__(self, surface_width: int, surface_height: int):
        self.surface_width = surface_width
        self.surface_height = surface_height
        self._scaled: Dict[int, Tuple[Image.Image, Tuple[int, int]]] = {}
        self._failed_videos = set()

    def render(
        self,
        surface: Image.Image,
        elapsed_seconds: float,
        timeline: Timeline,
        intro: LoadedVisual,
        thumbnail: LoadedVisual,
        slides: Sequence[LoadedVisual],
    ) -> Image.Image:
        """
        Draw the frame for `elapsed_seconds` onto `surface` (mutated in place).

        Intro phase: intro video stretched to the surface while it is playing,
        else the thumbnail with cover-fit, else black.
        Slideshow phase: the current slide with cover-fit, else black.
        """
        surface.paste(BACKGROUND_COLOR, (0, 0, surface.width, surface.height))

        if timeline.is_intro(elapsed_seconds):
            if self._draw_video(surface, intro, elapsed_seconds):
                return surface
            self._draw_still(surface, thumbnail)
            return surface

        index = timeline.slide_index_at(elapsed_seconds)
        if index is not None and index < len(slides):
            self._draw_still(surface, slides[index])
        return surface

    def _draw_video(self, surface: Image.Image, visual: LoadedVisual, t: float) -> bool:
        if isinstance(visual, VideoVisual):
            if id(visual) in self._failed_videos or not visual.is_playing_at(t):
                return False
            try:
                frame = visual.clip.get_frame(t)
            except Exception as e:
                # Treat an unreadable frame as the end of the clip
                logger.warning(f"Intro video frame at {t:.2f}s unreadable, stopping video: {e}")
                self._failed_videos.add(id(visual))
                return False
            frame_image = Image.fromarray(np.asarray(frame, dtype=np.uint8)).convert("RGB")
            if frame_image.size != surface.size:
                frame_image = frame_image.resize(surface.size, Image.Resampling.BILINEAR)
            surface.paste(frame_image, (0, 0))
            return True
        if isinstance(visual, (ImageVisual, MissingVisual)):
            return False
        raise TypeError(f"Unknown visual type: {type(visual).__name__}")

    def _draw_still(self, surface: Image.Image, visual: LoadedVisual) -> bool:
        if isinstance(visual, ImageVisual):
            scaled, origin = self._scaled_for(visual)
            surface.paste(scaled, origin)
            return True
        if isinstance(visual, (VideoVisual, MissingVisual)):
            return False
        raise TypeError(f"Unknown visual type: {type(visual).__name__}")

    def _scaled_for(self, visual: ImageVisual) -> Tuple[Image.Image, Tuple[int, int]]:
        cached = self._scaled.get(id(visual))
        if cached is not None:
            return cached
        fit = cover_fit(visual.width, visual.height, self.surface_width, self.surface_height)
        left, top, width, height = fit.pixel_box()
        scaled = visual.image.resize((width, height), Image.Resampling.LANCZOS)
        self._scaled[id(visual)] = (scaled, (left, top))
        return scaled, (left, top)

    @property
    def cached_image_count(self) -> int:
        return len(self._scaled)

    def clear_cache(self) -> None:
        self._scaled.clear()
        self._failed_videos.clear()


def render_frame(
    elapsed_seconds: float,
    timeline: Timeline,
    intro: LoadedVisual,
    thumbnail: LoadedVisual,
    slides: List[LoadedVisual],
    size: Tuple[int, int],
) -> Image.Image:
    """One-off frame at `elapsed_seconds` on a fresh surface (previews and tests)."""
    width, height = size
    surface = new_surface(width, height)
    return FrameCompositor(width, height).render(surface, elapsed_seconds, timeline, intro, thumbnail, slides)
