"""
Exceptions raised by the rendering core.

Only fatal conditions are exceptions. Missing or broken visuals are absorbed
by the asset resolver and never surface here.
"""


class RenderError(Exception):
    """Base class for every fatal rendering failure."""
    pass


class AudioUnavailableError(RenderError):
    """Raised when the audio track is missing, cannot be fetched, or cannot be decoded."""
    pass


class EncoderError(RenderError):
    """Raised when the ffmpeg capture/encode pipeline fails."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class RenderCancelledError(RenderError):
    """Raised when the caller cancels a run before it completes."""
    pass
