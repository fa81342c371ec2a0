"""Transcription orchestration: chunking, retries, breaker and the fallback chain."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import httpx

from subtitler.core.constants import ContentType, TranscriptionSource
from subtitler.schemas.config import AppConfig
from subtitler.services.alternative import AlternativeTranscriber
from subtitler.services.circuit_breaker import CircuitBreaker, CircuitOpenError
from subtitler.services.content_filter import ContentAnalysis, ContentQualityFilter
from subtitler.services.media import MediaError
from subtitler.services.openai_clients import ProviderError, TranscriptionClient, normalize_language, parse_transcription
from subtitler.services.retry import ChunkController, ChunkTask, RetryPolicy, is_connection_error
from subtitler.services.segmenter import MediaSegment, MediaSegmenter, remove_segment_files
from subtitler.services.subtitles import Subtitle, from_segments, placeholder, reindex, shift

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

# Errors that mean "the provider did not give us a transcript".
PROVIDER_FAILURES = (ProviderError, CircuitOpenError, httpx.HTTPError, OSError, ValueError)


class ProviderUnavailableError(RuntimeError):
    pass


@dataclass
class TranscriptionResult:
    subtitles: list[Subtitle]
    source: TranscriptionSource
    detected_language: Optional[str] = None
    segment_count: int = 1
    failed_segments: int = 0
    analysis: Optional[ContentAnalysis] = None
    removed: dict[str, int] = field(default_factory=dict)

    @property
    def content_type(self) -> ContentType:
        return self.analysis.type if self.analysis else ContentType.GENERAL


@dataclass
class ChunkOutcome:
    subtitles: list[Subtitle]
    source: TranscriptionSource
    detected_language: Optional[str]


class TranscriptionOrchestrator:
    def __init__(
        self,
        cfg: AppConfig,
        client: TranscriptionClient,
        breaker: CircuitBreaker,
        segmenter: MediaSegmenter,
        content_filter: Optional[ContentQualityFilter] = None,
        alternative: Optional[AlternativeTranscriber] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.cfg = cfg
        self.client = client
        self.breaker = breaker
        self.segmenter = segmenter
        self.content_filter = content_filter or ContentQualityFilter(cfg.filter)
        self.alternative = alternative
        self.policy = policy or RetryPolicy.from_config(cfg.retry)
        self._sleep = sleep

    async def transcribe(
        self,
        audio_path: Path,
        language: str = "auto",
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranscriptionResult:
        """Primary provider first; the alternative path when it is unavailable for the whole job."""
        if not audio_path.exists():
            raise MediaError(f"Audio file not found: {audio_path.name}")
        try:
            return await self.transcribe_primary(audio_path, language, on_progress)
        except ProviderUnavailableError as exc:
            if self.alternative is None:
                raise
            logger.warning("Primary provider unavailable (%s), switching to alternative transcription", exc)

        fallback = await self.alternative.transcribe(audio_path, language)
        if fallback.source == TranscriptionSource.LOCAL:
            cleaned = self.content_filter.clean(fallback.subtitles, language)
            return TranscriptionResult(
                subtitles=cleaned.subtitles,
                source=fallback.source,
                analysis=cleaned.analysis,
                removed=cleaned.removed,
            )
        return TranscriptionResult(subtitles=fallback.subtitles, source=fallback.source)

    async def transcribe_primary(
        self,
        audio_path: Path,
        language: str = "auto",
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranscriptionResult:
        if not self.cfg.provider.resolved_api_key():
            raise ProviderUnavailableError("provider API key is not configured")
        if self.breaker.is_open():
            raise ProviderUnavailableError("circuit breaker is open")

        size = audio_path.stat().st_size
        logger.info("Transcribing %s (%.2f MB)", audio_path.name, size / (1024 * 1024))
        if size > self.cfg.segmentation.chunking_threshold_bytes:
            return await self._transcribe_chunked(audio_path, language, on_progress)
        return await self._transcribe_single(audio_path, language, on_progress)

    async def _transcribe_single(
        self,
        audio_path: Path,
        language: str,
        on_progress: Optional[ProgressCallback],
    ) -> TranscriptionResult:
        task = ChunkTask(index=1, path=audio_path)
        try:
            outcome = await self._transcribe_chunk(task, language)
        except PROVIDER_FAILURES as exc:
            raise ProviderUnavailableError(str(exc)) from exc
        if on_progress is not None:
            on_progress(1, 1)
        cleaned = self.content_filter.clean(outcome.subtitles, language)
        return TranscriptionResult(
            subtitles=cleaned.subtitles,
            source=outcome.source,
            detected_language=outcome.detected_language,
            analysis=cleaned.analysis,
            removed=cleaned.removed,
        )

    async def _transcribe_chunked(
        self,
        audio_path: Path,
        language: str,
        on_progress: Optional[ProgressCallback],
    ) -> TranscriptionResult:
        seg_cfg = self.cfg.segmentation
        segments = await self.segmenter.split(audio_path, seg_cfg.segment_duration_s)
        collected: list[Subtitle] = []
        sources: set[TranscriptionSource] = set()
        detected: Optional[str] = None
        consecutive_failures = 0
        failed = 0
        try:
            for position, segment in enumerate(segments):
                try:
                    outcome = await self._transcribe_segment(segment, language)
                except PROVIDER_FAILURES as exc:
                    failed += 1
                    consecutive_failures += 1
                    logger.error("Segment %d/%d failed: %s", segment.index, len(segments), exc)
                    collected.append(
                        placeholder(0, segment.start, segment.end, f"[Segment {segment.index} - transcription failed: {exc}]")
                    )
                    if consecutive_failures >= seg_cfg.max_consecutive_failures:
                        remaining = segments[position + 1 :]
                        if remaining:
                            logger.error(
                                "%d consecutive segment failures, aborting %d remaining segments",
                                consecutive_failures,
                                len(remaining),
                            )
                            failed += len(remaining)
                            collected.append(
                                placeholder(
                                    0,
                                    remaining[0].start,
                                    remaining[-1].end,
                                    f"[Segments {remaining[0].index}-{remaining[-1].index} - transcription aborted]",
                                )
                            )
                        break
                else:
                    consecutive_failures = 0
                    sources.add(outcome.source)
                    detected = detected or outcome.detected_language
                    if outcome.subtitles:
                        collected.extend(outcome.subtitles)
                    else:
                        collected.append(
                            placeholder(0, segment.start, segment.end, f"[Segment {segment.index} - no detectable speech]")
                        )
                finally:
                    remove_segment_files([segment])
                if on_progress is not None:
                    on_progress(position + 1, len(segments))
        finally:
            remove_segment_files(segments)

        cleaned = self.content_filter.clean(reindex(collected), language)
        source = TranscriptionSource.SECONDARY if TranscriptionSource.SECONDARY in sources else TranscriptionSource.PRIMARY
        logger.info(
            "Chunked transcription finished: %d subtitles from %d segments (%d failed)",
            len(cleaned.subtitles),
            len(segments),
            failed,
        )
        return TranscriptionResult(
            subtitles=cleaned.subtitles,
            source=source,
            detected_language=detected,
            segment_count=len(segments),
            failed_segments=failed,
            analysis=cleaned.analysis,
            removed=cleaned.removed,
        )

    async def _transcribe_segment(self, segment: MediaSegment, language: str) -> ChunkOutcome:
        task = ChunkTask(index=segment.index, start=segment.start, duration=segment.duration, path=segment.path)
        outcome = await self._transcribe_chunk(task, language)
        cleaned = self.content_filter.clean(outcome.subtitles, language)
        outcome.subtitles = shift(cleaned.subtitles, segment.start, segment.end)
        return outcome

    async def _transcribe_chunk(self, task: ChunkTask, language: str) -> ChunkOutcome:
        """Primary transport with retries, then one secondary attempt on connectivity failure."""
        if task.path is None:
            raise ValueError(f"chunk {task.index} has no audio file")
        path = task.path
        controller = ChunkController(self.policy, self.breaker, self._sleep)

        async def call() -> dict[str, Any]:
            return await self.client.transcribe(path, language)

        def accept(payload: dict[str, Any]) -> bool:
            return self.content_filter.is_acceptable(from_segments(parse_transcription(payload)))

        source = TranscriptionSource.PRIMARY
        try:
            payload = await controller.run(task, call, accept)
        except CircuitOpenError:
            raise
        except Exception as exc:
            if not is_connection_error(exc):
                raise
            logger.warning("Chunk %d: primary transport failed (%s), trying secondary", task.index, exc)
            try:
                payload = await self.client.transcribe_secondary(path, language)
            except Exception:
                self.breaker.record_failure()
                raise
            self.breaker.record_success()
            source = TranscriptionSource.SECONDARY

        raw = from_segments(parse_transcription(payload))
        return ChunkOutcome(
            subtitles=raw,
            source=source,
            detected_language=normalize_language(payload.get("language")),
        )
