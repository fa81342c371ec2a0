"""End-to-end subtitle job execution."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from subtitler.core.constants import SUBTITLE_FORMATS, JobStatus
from subtitler.core.settings import PATHS, AppPaths
from subtitler.schemas.config import AppConfig, JobsConfig
from subtitler.services.alternative import AlternativeTranscriber
from subtitler.services.circuit_breaker import CircuitBreaker
from subtitler.services.config_store import load_config
from subtitler.services.content_filter import ContentQualityFilter
from subtitler.services.formatter import render
from subtitler.services.job_store import JobStore
from subtitler.services.media import FfmpegToolkit
from subtitler.services.openai_clients import TranscriptionClient, TranslationClient
from subtitler.services.retry import RetryPolicy
from subtitler.services.segmenter import MediaSegmenter
from subtitler.services.subtitles import Subtitle
from subtitler.services.transcription import TranscriptionOrchestrator, TranscriptionResult
from subtitler.services.translation import TranslationOutcome, TranslationStage

logger = logging.getLogger(__name__)


class PipelineError(RuntimeError):
    pass


@dataclass
class PipelineRequest:
    job_id: str
    video_path: Path
    original_name: str
    file_size: int
    source_language: str = "auto"
    target_language: str = "en"


@dataclass
class PipelineResult:
    job_id: str
    subtitles: list[Subtitle]
    downloads: dict[str, str]
    duration: Optional[float]
    transcription: TranscriptionResult
    translation: Optional[TranslationOutcome] = None
    extra: dict[str, Any] = field(default_factory=dict)


def download_url(job_id: str, fmt: str) -> str:
    return f"/api/subtitles/download/{job_id}/{fmt}"


def subtitle_file(downloads_root: Path, job_id: str, fmt: str) -> Path:
    return downloads_root / f"{job_id}_subtitles.{fmt}"


def translation_source(requested: str, detected: Optional[str]) -> Optional[str]:
    """Language the transcript is in, or ``None`` when it cannot be told."""
    if requested and requested != "auto":
        return requested
    return detected


def _remove_files(paths: list[Path]) -> None:
    for path in paths:
        try:
            if path.exists():
                path.unlink()
                logger.debug("Removed temp file %s", path.name)
        except OSError as exc:
            logger.error("Could not remove temp file %s: %s", path, exc)


class SubtitlePipeline:
    """Extract, transcribe, translate and format one job.

    Configuration is reloaded for every run. The circuit breaker and the job
    store are shared by all runs in the process.
    """

    def __init__(
        self,
        store: JobStore,
        breaker: CircuitBreaker,
        *,
        paths: AppPaths = PATHS,
        config_loader: Callable[[], AppConfig] = load_config,
        toolkit: Optional[FfmpegToolkit] = None,
        transcription_client: Optional[TranscriptionClient] = None,
        translation_client: Optional[TranslationClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.breaker = breaker
        self.paths = paths
        self._config_loader = config_loader
        self.toolkit = toolkit or FfmpegToolkit()
        self._transcription_client = transcription_client
        self._translation_client = translation_client
        self._sleep = sleep

    def build_orchestrator(self, cfg: AppConfig) -> TranscriptionOrchestrator:
        segmenter = MediaSegmenter(
            self.toolkit,
            self.paths.temp_root,
            max_segment_bytes=cfg.segmentation.max_segment_bytes,
            min_segment_duration=cfg.segmentation.min_segment_duration_s,
        )
        alternative = AlternativeTranscriber(
            cfg.alternative,
            temp_dir=self.paths.temp_root,
            probe_duration=self.toolkit.probe_duration,
        )
        return TranscriptionOrchestrator(
            cfg,
            self._transcription_client or TranscriptionClient(cfg.provider),
            self.breaker,
            segmenter,
            content_filter=ContentQualityFilter(cfg.filter),
            alternative=alternative,
            policy=RetryPolicy.from_config(cfg.retry),
            sleep=self._sleep,
        )

    def build_translation_stage(self, cfg: AppConfig) -> TranslationStage:
        return TranslationStage(
            self._translation_client or TranslationClient(cfg.provider),
            cfg.translation,
            cfg.retry,
            sleep=self._sleep,
        )

    async def _heartbeat(self, job_id: str, cfg: JobsConfig) -> None:
        while True:
            await asyncio.sleep(cfg.heartbeat_interval_s)
            if self.store.nudge(job_id, cfg.heartbeat_step) is None:
                return

    async def _write_outputs(self, job_id: str, subtitles: list[Subtitle]) -> dict[str, str]:
        self.paths.downloads_root.mkdir(parents=True, exist_ok=True)
        bodies = render(subtitles)
        downloads: dict[str, str] = {}
        for fmt in SUBTITLE_FORMATS:
            target = subtitle_file(self.paths.downloads_root, job_id, fmt)
            await asyncio.to_thread(target.write_text, bodies[fmt], encoding="utf-8")
            downloads[fmt] = download_url(job_id, fmt)
            logger.info("Saved %s (%d chars)", target.name, len(bodies[fmt]))
        return downloads

    async def run(self, request: PipelineRequest) -> PipelineResult:
        cfg = self._config_loader()
        job_id = request.job_id
        audio_path = self.paths.temp_root / f"{job_id}_audio.wav"
        heartbeat = asyncio.create_task(self._heartbeat(job_id, cfg.jobs))

        def on_chunk(done: int, total: int) -> None:
            self.store.update(
                job_id,
                JobStatus.TRANSCRIBING,
                25 + 25 * done / max(total, 1),
                f"Transcribed segment {done}/{total}",
            )

        try:
            self.store.update(job_id, JobStatus.EXTRACTING, 0, "Extracting audio...")
            duration = await self.toolkit.probe_duration(request.video_path)
            await self.toolkit.extract_audio(request.video_path, audio_path)

            self.store.update(job_id, JobStatus.TRANSCRIBING, 25, "Transcribing...")
            transcription = await self.build_orchestrator(cfg).transcribe(
                audio_path, request.source_language, on_progress=on_chunk
            )
            subtitles = transcription.subtitles
            self.store.update(
                job_id,
                JobStatus.TRANSCRIBING,
                50,
                f"Transcribed {len(subtitles)} subtitles",
                segmentCount=transcription.segment_count,
                transcriptionSource=transcription.source.value,
                contentType=transcription.content_type.value,
            )

            self.store.update(job_id, JobStatus.TRANSLATING, 50, "Translating...")
            translation: Optional[TranslationOutcome] = None
            source = translation_source(request.source_language, transcription.detected_language)
            if source is None:
                logger.info("Job %s: source language unknown, translation skipped", job_id)
            elif source == request.target_language:
                logger.info("Job %s: source and target are both %s, translation skipped", job_id, source)
            else:
                translation = await self.build_translation_stage(cfg).translate(
                    subtitles, request.target_language, transcription.content_type
                )
                subtitles = translation.subtitles

            self.store.update(job_id, JobStatus.FORMATTING, 75, "Formatting subtitles...")
            downloads = await self._write_outputs(job_id, subtitles)

            self.store.complete(job_id, "Done", subtitleCount=len(subtitles))
            return PipelineResult(
                job_id=job_id,
                subtitles=subtitles,
                downloads=downloads,
                duration=duration,
                transcription=transcription,
                translation=translation,
            )
        except Exception as exc:  # noqa: BLE001
            self.store.fail(job_id, str(exc))
            if isinstance(exc, PipelineError):
                raise
            raise PipelineError(str(exc)) from exc
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            _remove_files([request.video_path, audio_path])
