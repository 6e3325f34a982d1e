"""Keeps the split-screen preview players in lock-step.

Only the interactive preview uses this; exports seek both sources
explicitly, frame by frame.
"""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)

SEEK_TOLERANCE = 0.1


class MediaPlayer(Protocol):
    paused: bool
    current_time: float
    muted: bool

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, t: float) -> None: ...


class PlaybackSynchronizer:
    """Event handlers that tie a secondary player to the primary one.

    The UI layer wires player events to ``on_secondary_play``,
    ``on_primary_pause`` and ``on_primary_seeked``. Set ``enabled`` to False
    when the template has no secondary video.
    """

    def __init__(self, primary: MediaPlayer, secondary: MediaPlayer, muted: bool = True,
                 enabled: bool = True):
        self.primary = primary
        self.secondary = secondary
        self.enabled = enabled
        self.set_muted(muted)

    def set_muted(self, muted: bool) -> None:
        self.secondary.muted = muted

    def on_secondary_play(self) -> None:
        if self.enabled and self.primary.paused:
            self.primary.play()

    def on_primary_pause(self) -> None:
        if self.enabled and not self.secondary.paused:
            self.secondary.pause()

    def on_primary_seeked(self) -> None:
        if not self.enabled:
            return
        drift = abs(self.primary.current_time - self.secondary.current_time)
        if drift > SEEK_TOLERANCE:
            logger.debug("Secondary drifted %.3fs, snapping to %.3fs", drift, self.primary.current_time)
            self.secondary.seek(self.primary.current_time)
