"""
Frame scheduling for a composition run.

A run walks IDLE -> PRIMING -> RUNNING -> STOPPING -> SETTLED. Each tick
renders the frame for `frame_index / fps` and hands it to the encoder; ticks
never overlap. With REALTIME_PACING the loop also waits for the wall clock,
otherwise it renders as fast as the encoder accepts frames.
"""
import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from tqdm import tqdm

from reelrender.config import settings
from reelrender.errors import RenderCancelledError
from reelrender.models import EncodedOutput
from reelrender.phase1_asset_loading.resolver import ResolvedAssets
from reelrender.phase2_timeline.planner import Timeline
from reelrender.phase3_compositing.compositor import FrameCompositor, new_surface
from reelrender.phase4_encoding.encoder import StreamingEncoder

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    PRIMING = "priming"
    RUNNING = "running"
    STOPPING = "stopping"
    SETTLED = "settled"


class CompositionRun:
    """
    Drives the compositor and the encoder for one run.

    The run does not own `assets`; the caller releases them once the run has
    settled.
    """

    def __init__(
        self,
        assets: ResolvedAssets,
        timeline: Timeline,
        width: int,
        height: int,
        fps: Optional[int] = None,
        realtime_pacing: Optional[bool] = None,
        cancel_event: Optional[threading.Event] = None,
        encoder_factory: Optional[Callable[..., StreamingEncoder]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.assets = assets
        self.timeline = timeline
        self.width = width
        self.height = height
        self.fps = fps or settings.VIDEO_FPS
        self.realtime_pacing = settings.REALTIME_PACING if realtime_pacing is None else realtime_pacing
        self.cancel_event = cancel_event
        self.encoder_factory = encoder_factory or StreamingEncoder
        self.clock = clock
        self.sleep = sleep

        self.state = RunState.IDLE
        self.succeeded: Optional[bool] = None
        self.error: Optional[BaseException] = None
        self.frames_rendered = 0

        self.surface = new_surface(width, height)
        self.compositor = FrameCompositor(width, height)
        self.encoder: Optional[StreamingEncoder] = None

    def _transition(self, state: RunState) -> None:
        logger.debug(f"Run state {self.state.value} -> {state.value}")
        self.state = state

    def run(self) -> EncodedOutput:
        if self.state is not RunState.IDLE:
            raise RuntimeError(f"Run already {self.state.value}")

        try:
            self._prime()
            self._run_loop()
            data = self._stop()
        except BaseException as e:
            if self.encoder is not None:
                self.encoder.abort()
            self.succeeded = False
            self.error = e
            self._transition(RunState.SETTLED)
            raise
        finally:
            self.compositor.clear_cache()

        self.succeeded = True
        self._transition(RunState.SETTLED)
        return EncodedOutput(
            data=data,
            mime_type=settings.OUTPUT_MIME_TYPE,
            timeline=self.timeline,
            frame_count=self.frames_rendered,
            duration_seconds=self.frames_rendered / self.fps,
            width=self.width,
            height=self.height,
        )

    def _prime(self) -> None:
        self._transition(RunState.PRIMING)
        self.encoder = self.encoder_factory(
            width=self.width,
            height=self.height,
            fps=self.fps,
            audio_path=self.assets.audio.path,
            duration_seconds=self.timeline.total_duration_seconds,
        )
        # The encoder reads the audio track itself, so starting it starts audio playback
        self.encoder.start()

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RenderCancelledError(f"Render cancelled after {self.frames_rendered} frames")

    def _run_loop(self) -> None:
        self._transition(RunState.RUNNING)
        stop_at = self.timeline.total_duration_seconds
        expected_frames = self.timeline.frame_count(self.fps)
        logger.info(f"Rendering {expected_frames} frames ({stop_at:.2f}s at {self.fps}fps, "
                    f"{'real-time' if self.realtime_pacing else 'unpaced'})")

        start = self.clock()
        frame_index = 0
        with tqdm(total=expected_frames, desc="Rendering frames", unit="frame",
                  disable=not logger.isEnabledFor(logging.INFO)) as progress:
            while True:
                self._check_cancelled()

                elapsed = frame_index / self.fps
                if elapsed >= stop_at:
                    break

                if self.realtime_pacing:
                    delay = start + elapsed - self.clock()
                    if delay > 0:
                        self.sleep(delay)

                self.compositor.render(
                    self.surface,
                    elapsed,
                    self.timeline,
                    self.assets.intro,
                    self.assets.thumbnail,
                    self.assets.slides,
                )
                self.encoder.write_frame(self.surface)

                frame_index += 1
                self.frames_rendered = frame_index
                progress.update(1)

    def _stop(self) -> bytes:
        self._transition(RunState.STOPPING)
        return self.encoder.finish()
