"""Pointer <-> normalized coordinate mapping and caption drag sessions."""

from dataclasses import dataclass
from enum import Enum

from overlayforge.models import Draft, clamp_percent


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Bounds:
    """An axis-aligned rectangle in pointer (client) coordinates."""

    left: float
    top: float
    width: float
    height: float


def to_normalized(pointer: Point, container: Bounds) -> Point:
    """Map a pointer position to percent of the container, clamped to [0, 100]."""
    return Point(
        x=clamp_percent(100 * (pointer.x - container.left) / container.width),
        y=clamp_percent(100 * (pointer.y - container.top) / container.height),
    )


def to_pixels(point: Point, container: Bounds) -> Point:
    """Inverse of :func:`to_normalized` (without clamping)."""
    return Point(
        x=container.left + point.x / 100 * container.width,
        y=container.top + point.y / 100 * container.height,
    )


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


class DragSession:
    """Moves the draft caption while the pointer is held down on it.

    The offset between the pointer and the caption's top-left corner is
    captured once on press. Every move re-derives the caption center from the
    current pointer and container bounds only, so the caption never drifts
    away from the pointer.
    """

    def __init__(self, draft: Draft):
        self.draft = draft
        self.state = DragState.IDLE
        self._offset = Point(0.0, 0.0)
        self._element_size = Point(0.0, 0.0)

    def press(self, pointer: Point, element: Bounds) -> None:
        self._offset = Point(pointer.x - element.left, pointer.y - element.top)
        self._element_size = Point(element.width, element.height)
        self.state = DragState.DRAGGING

    def move(self, pointer: Point, container: Bounds) -> Point | None:
        """Update the draft position; returns the new position or None when idle."""
        if self.state is not DragState.DRAGGING:
            return None
        center = Point(
            x=pointer.x - self._offset.x + self._element_size.x / 2,
            y=pointer.y - self._offset.y + self._element_size.y / 2,
        )
        pos = to_normalized(center, container)
        self.draft.x = pos.x
        self.draft.y = pos.y
        return pos

    def release(self) -> None:
        self.state = DragState.IDLE
