"""Error kinds raised by the editing core and the export pipeline.

Each error carries a human-readable ``message`` meant for the notification
surface (CLI stderr, HTTP JSON body).
"""


class OverlayForgeError(Exception):
    """Base class for all OverlayForge errors."""

    message = "Something went wrong."

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(OverlayForgeError):
    """A draft caption was rejected; nothing was committed."""

    message = "Caption is invalid."


class NoSource(OverlayForgeError):
    """Export attempted without a primary video."""

    message = "Please upload a video first."


class SourceUnavailable(OverlayForgeError):
    """A media source could not supply a frame (seek failed or timed out)."""

    message = "Could not read a frame from the source video."


class EncoderFailure(OverlayForgeError):
    """Capturing or muxing the output failed."""

    message = "Encoding the output video failed."
