import io
import threading
from pathlib import Path

import pytest
from PIL import Image

from reelrender.config import settings
from reelrender.errors import EncoderError
from reelrender.phase4_encoding import encoder as encoder_module
from reelrender.phase4_encoding.encoder import StreamingEncoder, build_ffmpeg_command, get_ffmpeg_path


class FakeStdin:
    def __init__(self, break_after=None):
        self.writes = []
        self.closed = False
        self.break_after = break_after

    def write(self, data):
        if self.break_after is not None and len(self.writes) >= self.break_after:
            raise BrokenPipeError(32, "Broken pipe")
        self.writes.append(bytes(data))
        return len(data)

    def close(self):
        self.closed = True


class FakeProcess:
    def __init__(self, stdout=b"", stderr=b"", returncode=0, break_after=None):
        self.stdin = FakeStdin(break_after=break_after)
        self.stdout = io.BytesIO(stdout)
        self.stderr = io.BytesIO(stderr)
        self._returncode = returncode
        self.returncode = None
        self.killed = False

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        self.returncode = -9 if self.killed else self._returncode
        return self.returncode

    def kill(self):
        self.killed = True


@pytest.fixture
def fake_popen(monkeypatch):
    state = {"process": FakeProcess(stdout=b"\x1a\x45\xdf\xa3" + b"x" * 200_000), "cmd": None}

    def _popen(cmd, **kwargs):
        state["cmd"] = cmd
        return state["process"]

    monkeypatch.setattr(encoder_module.subprocess, "Popen", _popen)
    return state


def _encoder(width=64, height=36, fps=30):
    return StreamingEncoder(width, height, fps, Path("/tmp/audio.mp3"), 1.5, ffmpeg_path="ffmpeg")


def test_command_reads_raw_frames_and_pads_audio():
    cmd = build_ffmpeg_command("ffmpeg", 720, 1280, 30, Path("/tmp/a.mp3"), 30.5)

    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-f") + 1] == "rawvideo"
    assert cmd[cmd.index("-s") + 1] == "720x1280"
    assert cmd[cmd.index("-r") + 1] == "30"
    assert "/tmp/a.mp3" in cmd
    assert cmd[cmd.index("-af") + 1] == "apad"
    assert cmd[cmd.index("-t") + 1] == "30.500"
    assert cmd[cmd.index("-c:v") + 1] == settings.VIDEO_CODEC
    assert cmd[cmd.index("-b:v") + 1] == "5M"
    assert cmd[cmd.index("-c:a") + 1] == settings.AUDIO_CODEC
    assert cmd[-3:] == ["-f", "webm", "pipe:1"]


def test_ffmpeg_binary_setting_wins(monkeypatch):
    monkeypatch.setattr(settings, "FFMPEG_BINARY", "/opt/ffmpeg/bin/ffmpeg")
    assert get_ffmpeg_path() == "/opt/ffmpeg/bin/ffmpeg"


def test_frames_are_piped_and_output_collected(fake_popen):
    encoder = _encoder()
    encoder.start()
    surface = Image.new("RGB", (64, 36), (10, 20, 30))
    for _ in range(3):
        encoder.write_frame(surface)

    data = encoder.finish()

    process = fake_popen["process"]
    assert fake_popen["cmd"][0] == "ffmpeg"
    assert len(process.stdin.writes) == 3
    assert all(len(frame) == 64 * 36 * 3 for frame in process.stdin.writes)
    assert process.stdin.closed
    assert encoder.frames_written == 3
    assert data.startswith(b"\x1a\x45\xdf\xa3")
    assert len(data) == 4 + 200_000
    # Output arrived in several chunks and was reassembled in order
    assert encoder.chunk_count > 1


def test_nonzero_exit_raises_with_stderr(fake_popen):
    fake_popen["process"] = FakeProcess(stderr=b"Unknown encoder 'libvpx-vp9'", returncode=1)
    encoder = _encoder()
    encoder.start()

    with pytest.raises(EncoderError) as excinfo:
        encoder.finish()
    assert "libvpx-vp9" in excinfo.value.stderr


def test_broken_pipe_raises(fake_popen):
    fake_popen["process"] = FakeProcess(stderr=b"Conversion failed!", returncode=1, break_after=1)
    encoder = _encoder()
    encoder.start()
    surface = Image.new("RGB", (64, 36))
    encoder.write_frame(surface)

    with pytest.raises(EncoderError, match="after 1 frames"):
        encoder.write_frame(surface)


def test_empty_output_is_an_error(fake_popen):
    fake_popen["process"] = FakeProcess(stdout=b"")
    encoder = _encoder()
    encoder.start()
    with pytest.raises(EncoderError, match="no output"):
        encoder.finish()


def test_wrong_frame_size_rejected(fake_popen):
    encoder = _encoder()
    encoder.start()
    with pytest.raises(EncoderError):
        encoder.write_frame(Image.new("RGB", (36, 64)))
    with pytest.raises(EncoderError):
        encoder.write_frame(Image.new("RGBA", (64, 36)))


def test_must_start_before_use():
    encoder = _encoder()
    with pytest.raises(EncoderError):
        encoder.write_frame(Image.new("RGB", (64, 36)))
    with pytest.raises(EncoderError):
        encoder.finish()
    encoder.abort()  # no-op


def test_start_twice_rejected(fake_popen):
    encoder = _encoder()
    encoder.start()
    with pytest.raises(EncoderError):
        encoder.start()


def test_missing_binary(monkeypatch):
    def _popen(cmd, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", cmd[0])

    monkeypatch.setattr(encoder_module.subprocess, "Popen", _popen)
    with pytest.raises(EncoderError, match="Failed to start ffmpeg"):
        _encoder().start()


def test_abort_kills_running_process(fake_popen):
    encoder = _encoder()
    encoder.start()
    encoder.abort()
    encoder.abort()

    process = fake_popen["process"]
    assert process.killed
    assert process.stdin.closed
    assert encoder.chunk_count == 0


class StalledStream:
    """An output pipe that yields one chunk and then never reaches EOF."""

    def __init__(self, first_chunk):
        self.first_chunk = first_chunk
        self.release = threading.Event()

    def read(self, size):
        if self.first_chunk:
            chunk, self.first_chunk = self.first_chunk, b""
            return chunk
        self.release.wait(5)
        return b""


def test_unfinished_output_is_not_returned(fake_popen, monkeypatch):
    monkeypatch.setattr(settings, "ENCODER_READER_JOIN_TIMEOUT_SECONDS", 0.05)
    stalled = StalledStream(b"\x1a\x45\xdf\xa3partial")
    fake_popen["process"].stdout = stalled
    encoder = _encoder()
    encoder.start()

    try:
        with pytest.raises(EncoderError, match="encoder-stdout still running"):
            encoder.finish()
    finally:
        stalled.release.set()
