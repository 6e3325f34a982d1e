"""Caption text wrapping."""

from typing import Callable


def wrap(text: str, max_width: float, measure: Callable[[str], float]) -> list[str]:
    """Greedily word-wrap ``text`` into lines no wider than ``max_width``.

    Explicit line breaks always end a line. A single word wider than
    ``max_width`` is kept whole on a line of its own.
    """
    lines: list[str] = []
    for segment in text.split("\n"):
        words = segment.split()
        if not words:
            lines.append("")
            continue
        current = words[0]
        for word in words[1:]:
            candidate = f"{current} {word}"
            if measure(candidate) <= max_width:
                current = candidate
            else:
                lines.append(current)
                current = word
        lines.append(current)
    return lines
