"""
Incremental audio/video encoding through an ffmpeg subprocess.

Frames are piped to ffmpeg's stdin as raw RGB; the audio track is read from
the run's decoded audio file and padded with silence to the full duration.
ffmpeg writes a streamable WebM to stdout, which is collected chunk by chunk
while the run is still producing frames.
"""
import logging
import subprocess
import threading
from pathlib import Path
from typing import List, Optional

import imageio_ffmpeg
from PIL import Image

from reelrender.config import settings
from reelrender.errors import EncoderError

logger = logging.getLogger(__name__)


def get_ffmpeg_path() -> str:
    """Get the path to the ffmpeg executable."""
    if settings.FFMPEG_BINARY:
        return settings.FFMPEG_BINARY
    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError as e:
        raise EncoderError(f"FFmpeg not found: {e}") from e


def build_ffmpeg_command(
    ffmpeg_path: str,
    width: int,
    height: int,
    fps: int,
    audio_path: Path,
    duration_seconds: float,
) -> List[str]:
    """Command reading rgb24 frames from stdin and writing the container to stdout."""
    return [
        ffmpeg_path,
        "-hide_banner",
        "-loglevel", "error",
        "-y",
        # Input 0: raw frames from the compositor
        "-f", "rawvideo",
        "-pix_fmt", "rgb24",
        "-s", f"{width}x{height}",
        "-r", str(fps),
        "-i", "-",
        # Input 1: decoded narration / music
        "-i", str(audio_path),
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-af", "apad",  # silence for the tail past the end of the audio
        "-t", f"{duration_seconds:.3f}",
        "-c:v", settings.VIDEO_CODEC,
        "-b:v", settings.VIDEO_BITRATE,
        *settings.VIDEO_ENCODER_PARAMS,
        "-pix_fmt", "yuv420p",
        "-c:a", settings.AUDIO_CODEC,
        "-b:a", settings.AUDIO_BITRATE,
        "-ar", "48000",
        "-f", settings.OUTPUT_FORMAT,
        "pipe:1",
    ]


class StreamingEncoder:
    """
    Feeds frames to ffmpeg and buffers the encoded output as it arrives.

    Usage:
        encoder = StreamingEncoder(1280, 720, 30, audio_path, 30.5)
        encoder.start()
        for each frame: encoder.write_frame(surface)
        data = encoder.finish()
    """

    def __init__(
        self,
        width: int,
        height: int,
        fps: int,
        audio_path: Path,
        duration_seconds: float,
        ffmpeg_path: Optional[str] = None,
    ):
        self.width = width
        self.height = height
        self.fps = fps
        self.audio_path = Path(audio_path)
        self.duration_seconds = duration_seconds
        self.ffmpeg_path = ffmpeg_path

        self.frames_written = 0
        self._chunks: List[bytes] = []
        self._stderr_chunks: List[bytes] = []
        self._process: Optional[subprocess.Popen] = None
        self._readers: List[threading.Thread] = []
        self._frame_size = width * height * 3

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        if self._process is not None:
            raise EncoderError("Encoder already started")

        cmd = build_ffmpeg_command(
            self.ffmpeg_path or get_ffmpeg_path(),
            self.width,
            self.height,
            self.fps,
            self.audio_path,
            self.duration_seconds,
        )
        logger.debug(f"Running command: {' '.join(cmd)}")
        logger.info(f"Starting {settings.VIDEO_CODEC}/{settings.AUDIO_CODEC} encoder "
                    f"({self.width}x{self.height} @ {self.fps}fps, {self.duration_seconds:.2f}s)")

        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
            )
        except OSError as e:
            raise EncoderError(f"Failed to start ffmpeg: {e}") from e

        self._readers = [
            threading.Thread(target=self._drain, args=(self._process.stdout, self._chunks),
                             name="encoder-stdout", daemon=True),
            threading.Thread(target=self._drain, args=(self._process.stderr, self._stderr_chunks),
                             name="encoder-stderr", daemon=True),
        ]
        for reader in self._readers:
            reader.start()

    @staticmethod
    def _drain(stream, sink: List[bytes]) -> None:
        chunk_size = settings.ENCODER_READ_CHUNK_SIZE
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            sink.append(chunk)

    def _stderr_text(self) -> str:
        return b"".join(self._stderr_chunks).decode("utf-8", errors="ignore").strip()

    def write_frame(self, surface: Image.Image) -> None:
        if self._process is None:
            raise EncoderError("Encoder not started")
        if surface.size != (self.width, self.height):
            raise EncoderError(f"Frame size {surface.size} does not match encoder size {(self.width, self.height)}")

        data = surface.tobytes()
        if len(data) != self._frame_size:
            raise EncoderError(f"Frame has {len(data)} bytes, expected {self._frame_size} (mode {surface.mode})")

        try:
            self._process.stdin.write(data)
        except (BrokenPipeError, OSError) as e:
            self._process.wait()
            self._join_readers()
            stderr = self._stderr_text()
            logger.error(f"FFmpeg STDERR: {stderr}")
            raise EncoderError(f"Encoder stopped accepting frames after {self.frames_written} frames: {e}",
                               stderr=stderr) from e
        self.frames_written += 1

    def finish(self) -> bytes:
        """Flush ffmpeg and return the concatenated output."""
        if self._process is None:
            raise EncoderError("Encoder not started")

        try:
            self._process.stdin.close()
        except (BrokenPipeError, OSError) as e:
            # ffmpeg already exited; its return code below tells why
            logger.debug(f"Encoder stdin already closed: {e}")
        returncode = self._process.wait()
        stuck_readers = self._join_readers()

        stderr = self._stderr_text()
        if returncode != 0:
            logger.error(f"FFmpeg encoding failed with return code {returncode}")
            logger.error(f"FFmpeg STDERR: {stderr}")
            raise EncoderError(f"FFmpeg exited with code {returncode}: {stderr[-500:]}", stderr=stderr)
        if stuck_readers:
            # Output is incomplete while a reader is still running
            raise EncoderError(f"Encoder output not fully read: {', '.join(stuck_readers)} still running", stderr=stderr)

        data = b"".join(self._chunks)
        if not data:
            raise EncoderError("Encoder produced no output", stderr=stderr)

        logger.info(f"Encoder finalized: {self.frames_written} frames, {len(self._chunks)} chunks, "
                    f"{len(data) / 1024 / 1024:.2f} MB")
        return data

    def abort(self) -> None:
        """Kill ffmpeg and discard its output. Safe to call more than once."""
        if self._process is None:
            return
        if self._process.poll() is None:
            logger.warning("Aborting encoder")
            self._process.kill()
        try:
            self._process.stdin.close()
        except (BrokenPipeError, OSError) as e:
            logger.debug(f"Encoder stdin already closed: {e}")
        self._process.wait()
        self._join_readers()
        self._chunks.clear()

    def _join_readers(self) -> List[str]:
        """Wait for the output readers; returns the names of any still running."""
        for reader in self._readers:
            reader.join(timeout=settings.ENCODER_READER_JOIN_TIMEOUT_SECONDS)
        return [reader.name for reader in self._readers if reader.is_alive()]
