"""Split an audio extract into provider-sized chunks."""

from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Protocol

from subtitler.services.media import MediaError

logger = logging.getLogger(__name__)


class MediaToolkit(Protocol):
    async def probe_duration(self, path: Path) -> Optional[float]: ...

    async def extract_segment(self, source: Path, output: Path, start: float, duration: float) -> Path: ...


@dataclass
class MediaSegment:
    path: Path
    start: float
    duration: float
    index: int
    # False when the segment is the source file itself.
    owned: bool = True

    @property
    def end(self) -> float:
        return self.start + self.duration


def remove_segment_files(segments: list[MediaSegment]) -> None:
    for segment in segments:
        if segment.owned:
            _unlink(segment.path)


def _unlink(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.error("Could not remove segment file %s: %s", path, exc)


class MediaSegmenter:
    def __init__(
        self,
        toolkit: MediaToolkit,
        temp_dir: Path,
        max_segment_bytes: int = 25 * 1024 * 1024,
        min_segment_duration: float = 5.0,
    ) -> None:
        self.toolkit = toolkit
        self.temp_dir = temp_dir
        self.max_segment_bytes = max_segment_bytes
        self.min_segment_duration = min_segment_duration

    async def split(self, audio_path: Path, segment_duration: float = 180.0) -> list[MediaSegment]:
        """Return ordered segments covering ``audio_path``, each under the byte ceiling.

        On failure every segment file produced so far is deleted before the
        error propagates.
        """
        total = await self.toolkit.probe_duration(audio_path)
        if not total or total <= 0:
            raise MediaError(f"Could not determine audio duration (no duration): {audio_path.name}")

        if total <= segment_duration and audio_path.stat().st_size <= self.max_segment_bytes:
            logger.info("Audio %s fits in one segment (%.1fs)", audio_path.name, total)
            return [MediaSegment(path=audio_path, start=0.0, duration=total, index=1, owned=False)]

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        produced: list[Path] = []
        counter = itertools.count(1)
        try:
            segments = await self._segment(audio_path, total, segment_duration, 0.0, produced, counter)
        except Exception:
            for path in produced:
                _unlink(path)
            raise

        for index, segment in enumerate(segments, start=1):
            segment.index = index
        logger.info("Split %s (%.1fs) into %d segments", audio_path.name, total, len(segments))
        return segments

    async def _segment(
        self,
        source: Path,
        total: float,
        target: float,
        offset: float,
        produced: list[Path],
        counter: Iterator[int],
    ) -> list[MediaSegment]:
        count = max(1, math.ceil(total / target - 1e-9))
        segments: list[MediaSegment] = []
        for i in range(count):
            rel_start = i * target
            duration = min(target, total - rel_start)
            if duration <= 1e-6:
                break
            output = self.temp_dir / f"{source.stem}_seg{next(counter):04d}.wav"
            await self.toolkit.extract_segment(source, output, rel_start, duration)
            produced.append(output)

            size = output.stat().st_size
            if size > self.max_segment_bytes:
                half = duration / 2
                if half >= self.min_segment_duration:
                    logger.info(
                        "Segment at %.1fs is %.1f MB, re-splitting at %.1fs",
                        offset + rel_start,
                        size / (1024 * 1024),
                        half,
                    )
                    children = await self._segment(output, duration, half, offset + rel_start, produced, counter)
                    produced.remove(output)
                    _unlink(output)
                    segments.extend(children)
                    continue
                logger.warning("Segment at %.1fs stays oversized, minimum duration reached", offset + rel_start)

            segments.append(MediaSegment(path=output, start=offset + rel_start, duration=duration, index=0))
        return segments
