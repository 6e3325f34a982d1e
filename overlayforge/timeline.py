"""Timeline store: committed captions plus the single in-progress draft."""

import bisect
import logging
import uuid
from dataclasses import fields

from overlayforge.errors import ValidationError
from overlayforge.models import Caption, Draft

logger = logging.getLogger(__name__)

DEFAULT_CAPTION_LENGTH = 3.0


class TimelineStore:
    """Owns the caption timeline and the draft being authored.

    The timeline is kept sorted by ``start``; captions with equal starts keep
    their insertion order. ``duration`` is the primary video's length and
    caps the draft's end time after each commit (``None`` means unknown).
    """

    def __init__(self, duration: float | None = None, draft: Draft | None = None):
        self.duration = duration
        self.draft = draft or Draft()
        self._captions: list[Caption] = []

    @property
    def captions(self) -> tuple[Caption, ...]:
        return tuple(self._captions)

    def commit(self, draft: Draft | None = None) -> Caption:
        """Validate the draft, add it to the timeline and reset the draft.

        Raises:
            ValidationError: empty text or ``end <= start``. The timeline and
                the draft are left untouched.
        """
        draft = draft if draft is not None else self.draft
        if not draft.text.strip():
            raise ValidationError("Caption text cannot be empty.")
        if draft.end <= draft.start:
            raise ValidationError("End time must be after start time.")
        if draft.start < 0:
            raise ValidationError("Start time cannot be negative.")

        caption = draft.to_caption(uuid.uuid4().hex[:12])
        bisect.insort_right(self._captions, caption, key=lambda c: c.start)
        logger.debug("Committed caption %s [%.2f, %.2f]", caption.id, caption.start, caption.end)

        self._reset_draft(draft, caption)
        return caption

    def _reset_draft(self, draft: Draft, committed: Caption) -> None:
        next_start = committed.end
        next_end = next_start + DEFAULT_CAPTION_LENGTH
        if self.duration is not None:
            next_end = min(next_end, self.duration)
        # The store keeps one draft object for its whole life; a draft committed
        # from outside hands its styling over to it.
        if draft is not self.draft:
            for f in fields(Draft):
                setattr(self.draft, f.name, getattr(draft, f.name))
        self.draft.text = ""
        self.draft.start = next_start
        self.draft.end = next_end

    def remove(self, caption_id: str) -> None:
        self._captions = [c for c in self._captions if c.id != caption_id]

    def active_at(self, t: float) -> list[Caption]:
        """Captions whose [start, end] interval contains ``t``, in timeline order."""
        return [c for c in self._captions if c.contains(t)]

    def __len__(self) -> int:
        return len(self._captions)
