"""
Asset resolution for a composition run.

Fetches and decodes the audio track (fatal on failure) and loads the optional
intro video, thumbnail and slides (degraded to MissingVisual on failure).
Everything is loaded concurrently; the caller gets control back only once
every load has settled.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import requests
from moviepy import AudioFileClip, VideoFileClip
from PIL import Image, ImageOps

from reelrender.config import settings
from reelrender.errors import AudioUnavailableError
from reelrender.models import (
    AssetBundle,
    DecodedAudio,
    ImageVisual,
    LoadedVisual,
    MissingVisual,
    VideoVisual,
)

logger = logging.getLogger(__name__)


@dataclass
class ResolvedAssets:
    """
    Everything a run decoded. Acts as the run's audio context: close() releases
    the decoded audio and every visual exactly once.
    """
    audio: DecodedAudio
    intro: LoadedVisual
    thumbnail: LoadedVisual
    slides: List[LoadedVisual] = field(default_factory=list)
    _closed: bool = field(default=False, init=False, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.audio.close()
        _close_visuals([self.intro, self.thumbnail, *self.slides])
        logger.debug("Released audio context and loaded visuals")

    def __enter__(self) -> "ResolvedAssets":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _close_visuals(visuals: List[LoadedVisual]) -> None:
    for visual in visuals:
        visual.close()


def _suffix_for(ref: str, default: str) -> str:
    suffix = Path(unquote(urlparse(ref).path)).suffix
    return suffix if suffix else default


def fetch_resource(ref: str, work_dir: Path, name: str, default_suffix: str = "") -> Path:
    """
    Make a resource available as a local file.

    http(s) references are downloaded into `work_dir`; file:// URLs and plain
    paths are used in place.

    Raises:
        requests.RequestException: Download failed.
        FileNotFoundError: Local file does not exist.
    """
    parsed = urlparse(ref)

    if parsed.scheme in ("http", "https"):
        work_dir.mkdir(parents=True, exist_ok=True)
        target = work_dir / f"{name}{_suffix_for(ref, default_suffix)}"
        logger.debug(f"Downloading {ref} -> {target.name}")
        with requests.get(ref, stream=True, timeout=settings.FETCH_TIMEOUT_SECONDS) as response:
            response.raise_for_status()
            with open(target, "wb") as f:
                for chunk in response.iter_content(chunk_size=256 * 1024):
                    f.write(chunk)
        return target

    if parsed.scheme == "file":
        local_path = Path(url2pathname(parsed.path))
    else:
        local_path = Path(ref)

    if not local_path.is_file():
        raise FileNotFoundError(f"Resource not found: {ref}")
    return local_path


def load_audio(ref: Optional[str], work_dir: Path) -> DecodedAudio:
    """
    Fetch and decode the audio track.

    Raises:
        AudioUnavailableError: No reference, fetch failure or decode failure.
    """
    if not ref:
        raise AudioUnavailableError("Missing audio asset for rendering")

    try:
        audio_path = fetch_resource(ref, work_dir, "audio", default_suffix=".mp3")
    except Exception as e:
        raise AudioUnavailableError(f"Failed to fetch audio from {ref}: {e}") from e

    clip = None
    try:
        clip = AudioFileClip(str(audio_path))
        duration = float(clip.duration or 0.0)
        if duration <= 0:
            raise ValueError(f"decoded duration is {duration}s")
    except Exception as e:
        if clip is not None:
            clip.close()
        raise AudioUnavailableError(f"Failed to decode audio {audio_path.name}: {e}") from e

    logger.info(f"Decoded audio {audio_path.name} ({duration:.2f}s)")
    return DecodedAudio(clip=clip, path=audio_path, duration_seconds=duration)


def load_intro_video(ref: Optional[str], work_dir: Path) -> LoadedVisual:
    """Open the intro clip muted and decode its first frame. Never raises."""
    if not ref:
        return MissingVisual()

    clip = None
    try:
        video_path = fetch_resource(ref, work_dir, "intro", default_suffix=".mp4")
        clip = VideoFileClip(str(video_path), audio=False)
        first_frame = clip.get_frame(0)
        duration = float(clip.duration or 0.0)
        if first_frame is None or duration <= 0:
            raise ValueError("no decodable frames")
        logger.info(f"Loaded intro video {video_path.name} ({duration:.2f}s, {clip.size[0]}x{clip.size[1]})")
        return VideoVisual(clip=clip, duration_seconds=duration, has_decoded_frame=True)
    except Exception as e:
        if clip is not None:
            clip.close()
        logger.warning(f"Intro video unavailable, falling back to thumbnail: {e}")
        return MissingVisual(reason=str(e))


def load_image(ref: Optional[str], work_dir: Path, name: str) -> LoadedVisual:
    """Decode a still image into RGB. Never raises."""
    if not ref:
        return MissingVisual()

    try:
        image_path = fetch_resource(ref, work_dir, name, default_suffix=".img")
        with Image.open(image_path) as raw:
            image = ImageOps.exif_transpose(raw).convert("RGB")
        width, height = image.size
        if width <= 0 or height <= 0:
            raise ValueError(f"image has no pixels ({width}x{height})")
        return ImageVisual(image=image, width=width, height=height)
    except Exception as e:
        logger.warning(f"Image {name} unavailable ({ref}): {e}")
        return MissingVisual(reason=str(e))


def resolve_assets(bundle: AssetBundle, work_dir: Path) -> ResolvedAssets:
    """
    Load every asset of the bundle concurrently.

    Args:
        bundle: Asset references for the run.
        work_dir: Scratch directory for downloaded files.

    Returns:
        ResolvedAssets with slides in input order.

    Raises:
        AudioUnavailableError: Audio missing or undecodable. Any visuals that
            did load are released before the error propagates.
    """
    if not bundle.audio_url:
        raise AudioUnavailableError("Missing audio asset for rendering")

    logger.info(f"Resolving assets: intro={'yes' if bundle.intro_video_url else 'no'}, "
                f"thumbnail={'yes' if bundle.thumbnail_url else 'no'}, slides={len(bundle.slide_urls)}")

    with ThreadPoolExecutor(max_workers=settings.MAX_LOAD_WORKERS) as pool:
        audio_future = pool.submit(load_audio, bundle.audio_url, work_dir)
        intro_future = pool.submit(load_intro_video, bundle.intro_video_url, work_dir)
        thumbnail_future = pool.submit(load_image, bundle.thumbnail_url, work_dir, "thumbnail")
        slide_futures = [
            pool.submit(load_image, url, work_dir, f"slide_{index:03d}")
            for index, url in enumerate(bundle.slide_urls)
        ]

        # Visual loaders never raise; collect them before looking at the audio
        intro = intro_future.result()
        thumbnail = thumbnail_future.result()
        slides = [future.result() for future in slide_futures]

        try:
            audio = audio_future.result()
        except AudioUnavailableError:
            _close_visuals([intro, thumbnail, *slides])
            raise

    loaded = sum(1 for slide in slides if isinstance(slide, ImageVisual))
    logger.info(f"Assets resolved: {loaded}/{len(slides)} slides usable")
    return ResolvedAssets(audio=audio, intro=intro, thumbnail=thumbnail, slides=slides)
