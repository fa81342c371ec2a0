"""Caption-file rendering (SubRip and WebVTT)."""

from __future__ import annotations

import math
import re
from typing import Iterable

from subtitler.services.subtitles import Subtitle

_TIMESTAMP_RE = re.compile(r"^(\d{2,}):(\d{2}):(\d{2})[,.](\d{3})$")


def format_timestamp(seconds: float, fmt: str = "srt") -> str:
    # Small epsilon so binary float noise (e.g. 1.001) does not floor a whole millisecond away.
    total_ms = max(0, math.floor(float(seconds) * 1000 + 1e-6))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)
    separator = "." if fmt == "vtt" else ","
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{millis:03d}"


def parse_timestamp(value: str) -> float:
    match = _TIMESTAMP_RE.match(value.strip())
    if not match:
        raise ValueError(f"invalid timestamp: {value!r}")
    hours, minutes, secs, millis = (int(part) for part in match.groups())
    return hours * 3600 + minutes * 60 + secs + millis / 1000


def format_srt(subtitles: Iterable[Subtitle]) -> str:
    blocks = [
        f"{sub.index}\n{format_timestamp(sub.start)} --> {format_timestamp(sub.end)}\n{sub.text}\n"
        for sub in subtitles
    ]
    return "\n".join(blocks)


def format_vtt(subtitles: Iterable[Subtitle]) -> str:
    cues = [
        f"{format_timestamp(sub.start, 'vtt')} --> {format_timestamp(sub.end, 'vtt')}\n{sub.text}\n"
        for sub in subtitles
    ]
    return "WEBVTT\n\n" + "\n".join(cues)


def render(subtitles: list[Subtitle]) -> dict[str, str]:
    return {"srt": format_srt(subtitles), "vtt": format_vtt(subtitles)}
