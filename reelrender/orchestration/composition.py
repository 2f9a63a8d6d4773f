"""
Entry point: turn an AssetBundle into an encoded intro + slideshow video.
"""
import logging
import shutil
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from reelrender.config import settings
from reelrender.errors import AudioUnavailableError, RenderError
from reelrender.logging_config import setup_logging
from reelrender.models import AssetBundle, EncodedOutput
from reelrender.orchestration.scheduler import CompositionRun
from reelrender.phase1_asset_loading.resolver import resolve_assets
from reelrender.phase2_timeline.planner import plan_timeline

logger = logging.getLogger(__name__)

MSG_INITIALIZING = "Initializing rendering engine..."
MSG_CAPTURE_STARTED = "Starting real-time rendering capture..."

ProgressCallback = Callable[[str], None]


def _new_run_id() -> str:
    return f"render_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


def _cleanup_work_dir(work_dir: Path) -> None:
    if not work_dir.exists():
        return
    try:
        shutil.rmtree(work_dir)
        logger.debug(f"Cleaned up work dir: {work_dir}")
    except OSError as e:
        logger.warning(f"Failed to clean up work dir {work_dir}: {e}")


def render_composition(
    assets: AssetBundle,
    on_progress: ProgressCallback,
    is_vertical_format: Optional[bool] = None,
    *,
    cancel_event: Optional[threading.Event] = None,
    run_id: Optional[str] = None,
) -> EncodedOutput:
    """
    Render the intro + slideshow composition synced to the audio track.

    Args:
        assets: Asset references. Only the audio is mandatory.
        on_progress: Receives the progress messages of this core, in order.
        is_vertical_format: 720x1280 when True, 1280x720 when False. None uses
            the bundle's own flag.
        cancel_event: Optional event; setting it stops the run at the next frame.
        run_id: Optional run identifier. When given, logging is configured for
            the run and also written to LOGS_PATH/<run_id>.log.

    Returns:
        EncodedOutput holding the complete WebM file.

    Raises:
        AudioUnavailableError: Audio missing, unfetchable or undecodable.
        EncoderError: ffmpeg failed at any point of the run.
        RenderCancelledError: cancel_event was set before the run finished.
    """
    if is_vertical_format is None:
        is_vertical_format = assets.is_vertical_format
    if run_id:
        setup_logging(run_id=run_id)
    else:
        run_id = _new_run_id()
    work_dir = settings.WORK_PATH / run_id

    logger.info(f"=== RENDER STARTED: {run_id} ===")
    try:
        if not assets.audio_url:
            raise AudioUnavailableError("Missing audio asset for rendering")

        on_progress(MSG_INITIALIZING)
        resolved = resolve_assets(assets, work_dir)

        # Releases the decoded audio and visuals exactly once, whatever happens below
        with resolved:
            timeline = plan_timeline(resolved.audio.duration_seconds, len(resolved.slides))
            width, height = settings.surface_size(is_vertical_format)
            logger.info(
                f"Timeline: intro {timeline.intro_duration_seconds:.1f}s, "
                f"{timeline.slide_count} slides x {timeline.slide_duration_seconds:.2f}s, "
                f"stop at {timeline.total_duration_seconds:.2f}s, surface {width}x{height}"
            )

            on_progress(MSG_CAPTURE_STARTED)
            run = CompositionRun(resolved, timeline, width, height, cancel_event=cancel_event)
            output = run.run()

        logger.info(f"=== RENDER COMPLETE: {run_id} ({output.size_bytes / 1024 / 1024:.2f} MB, "
                    f"{output.duration_seconds:.2f}s) ===")
        return output

    except RenderError as e:
        logger.error(f"Render {run_id} failed: {e}", exc_info=True)
        raise
    finally:
        _cleanup_work_dir(work_dir)
