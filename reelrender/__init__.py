"""
reelrender: intro + slideshow short-form video compositor.

Decodes a narration track, composes a 6 second intro (clip or thumbnail)
followed by a timed slideshow, and encodes the result to WebM.
"""
from reelrender.errors import AudioUnavailableError, EncoderError, RenderCancelledError, RenderError
from reelrender.logging_config import setup_logging
from reelrender.models import AssetBundle, EncodedOutput
from reelrender.orchestration.composition import render_composition
from reelrender.phase2_timeline.planner import Timeline, plan_timeline
from reelrender.phase3_compositing.compositor import FrameCompositor, cover_fit

__all__ = [
    "AssetBundle",
    "AudioUnavailableError",
    "EncodedOutput",
    "EncoderError",
    "FrameCompositor",
    "RenderCancelledError",
    "RenderError",
    "Timeline",
    "cover_fit",
    "plan_timeline",
    "render_composition",
    "setup_logging",
]
