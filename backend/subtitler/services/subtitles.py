"""Subtitle model and sequence helpers shared by the pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, Optional


@dataclass
class Subtitle:
    index: int
    start: float
    end: float
    text: str
    placeholder: bool = False

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "placeholder": self.placeholder,
        }


def reindex(subtitles: Iterable[Subtitle]) -> list[Subtitle]:
    return [replace(sub, index=i) for i, sub in enumerate(subtitles, start=1)]


def shift(subtitles: Iterable[Subtitle], offset: float, window_end: Optional[float] = None) -> list[Subtitle]:
    """Move subtitles by ``offset`` seconds, clipping them to ``[offset, window_end]``."""
    shifted: list[Subtitle] = []
    for sub in subtitles:
        start = max(offset, sub.start + offset)
        end = max(start, sub.end + offset)
        if window_end is not None:
            start = min(start, window_end)
            end = min(end, window_end)
        shifted.append(replace(sub, start=start, end=end))
    return shifted


def placeholder(index: int, start: float, end: float, text: str) -> Subtitle:
    return Subtitle(index=index, start=start, end=max(start, end), text=text, placeholder=True)


def from_segments(segments: Iterable[dict[str, Any]]) -> list[Subtitle]:
    """Build subtitles from provider-style ``{start, end, text}`` rows."""
    subtitles: list[Subtitle] = []
    for row in segments:
        if not isinstance(row, dict):
            continue
        try:
            start = max(0.0, float(row.get("start") or 0.0))
            end = float(row.get("end") or start)
        except (TypeError, ValueError):
            continue
        text = str(row.get("text") or "").strip()
        subtitles.append(Subtitle(index=len(subtitles) + 1, start=start, end=max(start, end), text=text))
    return subtitles


def is_ordered(subtitles: list[Subtitle]) -> bool:
    return all(a.start <= b.start for a, b in zip(subtitles, subtitles[1:]))
