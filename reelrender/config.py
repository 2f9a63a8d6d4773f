from pathlib import Path
from typing import List, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

# This is the root directory of *entire* project
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):
    """
    Main rendering settings. Loads from environment / .env file.
    """

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Project Paths ---
    WORK_PATH: Path = PROJECT_ROOT / "work"  # one scratch dir per run
    LOGS_PATH: Path = PROJECT_ROOT / "logs"

    # --- Video Settings ---
    VIDEO_FPS: int = 30
    HORIZONTAL_SIZE: Tuple[int, int] = (1280, 720)
    VERTICAL_SIZE: Tuple[int, int] = (720, 1280)  # shorts / reels
    VIDEO_CODEC: str = "libvpx-vp9"
    VIDEO_BITRATE: str = "5M"
    # VP9 is slow by default; these keep encoding near real time
    VIDEO_ENCODER_PARAMS: List[str] = ["-deadline", "realtime", "-cpu-used", "8", "-row-mt", "1"]
    OUTPUT_FORMAT: str = "webm"
    OUTPUT_MIME_TYPE: str = "video/webm"

    # --- Audio Settings ---
    AUDIO_CODEC: str = "libopus"
    AUDIO_BITRATE: str = "128k"

    # --- IO ---
    FETCH_TIMEOUT_SECONDS: float = 30.0
    MAX_LOAD_WORKERS: int = 8
    ENCODER_READ_CHUNK_SIZE: int = 64 * 1024
    ENCODER_READER_JOIN_TIMEOUT_SECONDS: float = 10.0
    FFMPEG_BINARY: Optional[str] = None  # falls back to the imageio-ffmpeg binary

    # --- Run ---
    REALTIME_PACING: bool = False
    LOG_LEVEL: str = "INFO"

    def surface_size(self, is_vertical_format: bool) -> Tuple[int, int]:
        """(width, height) of the render surface for the requested orientation."""
        return self.VERTICAL_SIZE if is_vertical_format else self.HORIZONTAL_SIZE


settings = Settings()
