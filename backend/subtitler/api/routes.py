"""FastAPI route definitions."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import FileResponse
from sse_starlette.sse import EventSourceResponse

from subtitler.api.deps import Services, get_services
from subtitler.api.errors import ApiError
from subtitler.core.constants import MB, SUBTITLE_FORMATS, SUBTITLE_MEDIA_TYPES, TERMINAL_STATES, ErrorCode
from subtitler.core.settings import APP_VERSION
from subtitler.schemas.config import AppConfig, UploadConfig
from subtitler.schemas.job import (
    DownloadLinks,
    GenerateMetadata,
    GenerateResponse,
    JobStatusResponse,
    SubtitleOut,
    UploadValidationRequest,
    UploadValidationResponse,
)
from subtitler.services.admission import RateLimited, UploadInProgress, client_key
from subtitler.services.config_store import save_config
from subtitler.services.job_store import not_found_status
from subtitler.services.media import ffmpeg_available, ffprobe_available
from subtitler.services.pipeline import PipelineError, PipelineRequest, subtitle_file

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])

TERMINAL_VALUES = {state.value for state in TERMINAL_STATES}


def validate_upload(filename: str, content_type: Optional[str], cfg: UploadConfig) -> Optional[str]:
    """Error message for an unacceptable upload, ``None`` when it is fine."""
    extension = Path(filename).suffix.lower().lstrip(".")
    if extension not in cfg.allowed_extensions:
        return f"Unsupported file format. Accepted formats: {', '.join(cfg.allowed_extensions)}"
    if content_type and content_type not in cfg.allowed_mime_types:
        return f"Unsupported MIME type: {content_type}"
    return None


def _safe_name(filename: str) -> str:
    raw = Path(filename).name
    stem = re.sub(r"[^A-Za-z0-9\-_]", "_", Path(raw).stem)[:50] or "upload"
    return f"{stem}{Path(raw).suffix.lower()}"


async def _save_upload(upload: UploadFile, target: Path, max_bytes: int, job_id: str) -> int:
    written = 0
    try:
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        with await asyncio.to_thread(target.open, "wb") as f:
            while True:
                chunk = await upload.read(1024 * 1024)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise ApiError(
                        413,
                        ErrorCode.FILE_TOO_LARGE,
                        f"File too large (maximum {max_bytes // MB} MB)",
                        job_id=job_id,
                    )
                await asyncio.to_thread(f.write, chunk)
    except ApiError:
        target.unlink(missing_ok=True)
        raise
    except OSError as exc:
        logger.error("Job %s: could not save upload to %s: %s", job_id, target, exc)
        target.unlink(missing_ok=True)
        raise ApiError(500, ErrorCode.PROCESSING_ERROR, "Failed to save uploaded file", job_id=job_id) from exc
    return written


@router.get("/health")
def health(services: Services = Depends(get_services)) -> dict[str, object]:
    cfg = services.load_config()
    return {
        "status": "OK",
        "version": APP_VERSION,
        "ffmpeg_available": ffmpeg_available(),
        "ffprobe_available": ffprobe_available(),
        "provider_configured": bool(cfg.provider.resolved_api_key()),
        "circuit_breaker": services.breaker.snapshot(),
        "jobs": len(services.store),
    }


@router.get("/config", response_model=AppConfig)
def get_config(services: Services = Depends(get_services)) -> AppConfig:
    return services.load_config()


@router.put("/config", response_model=AppConfig)
def put_config(config: AppConfig, services: Services = Depends(get_services)) -> AppConfig:
    saved = save_config(config, services.paths.config_path)
    services.apply_config(saved)
    return saved


@router.get("/upload/limits")
def upload_limits(services: Services = Depends(get_services)) -> dict[str, object]:
    upload = services.load_config().upload
    return {
        "success": True,
        "limits": {
            "maxFileSize": upload.max_upload_mb * MB,
            "maxFileSizeMB": upload.max_upload_mb,
            "allowedExtensions": upload.allowed_extensions,
            "allowedMimeTypes": upload.allowed_mime_types,
        },
    }


@router.post("/upload/validate", response_model=UploadValidationResponse)
def validate_upload_info(
    payload: UploadValidationRequest,
    services: Services = Depends(get_services),
) -> UploadValidationResponse:
    upload = services.load_config().upload
    error = validate_upload(payload.filename, payload.mimetype, upload)
    if error is None and payload.size is not None and payload.size > upload.max_upload_mb * MB:
        error = f"File too large (maximum {upload.max_upload_mb} MB)"
    return UploadValidationResponse(success=error is None, valid=error is None, error=error)


@router.post("/subtitles/generate", response_model=GenerateResponse)
async def generate_subtitles(
    request: Request,
    video: Optional[UploadFile] = File(None),
    source_language: str = Form("auto", alias="sourceLanguage"),
    target_language: str = Form("en", alias="targetLanguage"),
    services: Services = Depends(get_services),
) -> GenerateResponse:
    key = client_key(request.client.host if request.client else None, request.headers.get("user-agent"))
    try:
        ticket = services.admission.admit(key)
    except UploadInProgress as exc:
        raise ApiError(429, exc.code, str(exc), activeUploadId=exc.job_id) from exc
    except RateLimited as exc:
        raise ApiError(429, exc.code, str(exc), waitSeconds=exc.wait_seconds) from exc

    job_id = ticket.job_id
    try:
        cfg = services.load_config()
        if video is None or not video.filename:
            raise ApiError(400, ErrorCode.NO_FILE, "No video file provided", job_id=job_id)

        error = validate_upload(video.filename, video.content_type, cfg.upload)
        if error:
            raise ApiError(400, ErrorCode.UNSUPPORTED_FILE, error, job_id=job_id)

        original_name = Path(video.filename).name
        upload_path = services.paths.uploads_root / f"{job_id}_{_safe_name(original_name)}"
        size = await _save_upload(video, upload_path, cfg.upload.max_upload_mb * MB, job_id)
        if size == 0:
            upload_path.unlink(missing_ok=True)
            raise ApiError(400, ErrorCode.EMPTY_FILE, "Uploaded file is empty (0 bytes)", job_id=job_id)

        logger.info("Job %s: %s (%.2f MB) %s -> %s", job_id, original_name, size / MB, source_language, target_language)
        services.store.create(job_id, key)
        try:
            result = await services.pipeline.run(
                PipelineRequest(
                    job_id=job_id,
                    video_path=upload_path,
                    original_name=original_name,
                    file_size=size,
                    source_language=source_language.strip() or "auto",
                    target_language=target_language.strip() or "en",
                )
            )
        except PipelineError as exc:
            logger.error("Job %s failed: %s", job_id, exc)
            raise ApiError(
                500,
                ErrorCode.PROCESSING_ERROR,
                "Subtitle generation failed",
                job_id=job_id,
                message=str(exc),
            ) from exc
    finally:
        services.admission.release(key)

    return GenerateResponse(
        job_id=job_id,
        subtitles=[SubtitleOut(index=s.index, start=s.start, end=s.end, text=s.text) for s in result.subtitles],
        downloads=DownloadLinks(**result.downloads),
        metadata=GenerateMetadata(
            source_language=source_language,
            target_language=target_language,
            duration=result.duration,
            segment_count=len(result.subtitles),
            file_size=size,
            original_name=original_name,
            transcription_source=result.transcription.source.value,
            content_type=result.transcription.content_type.value,
            translated=result.translation is not None,
        ),
    )


@router.get("/subtitles/status/{job_id}", response_model=JobStatusResponse)
def get_status(job_id: str, services: Services = Depends(get_services)) -> JobStatusResponse:
    job = services.store.snapshot(job_id)
    if job is None:
        raise ApiError(404, ErrorCode.JOB_NOT_FOUND, "Job not found", job_id=job_id)
    return JobStatusResponse(
        job_id=job.id,
        status=job.status.value,
        progress=round(job.progress, 1),
        message=job.message,
        start_time=int(job.start_time * 1000),
        metadata=job.metadata,
    )


@router.get("/subtitles/progress/{job_id}")
async def stream_progress(job_id: str, services: Services = Depends(get_services)) -> EventSourceResponse:
    interval = services.load_config().jobs.stream_interval_s

    async def event_generator():
        while True:
            job = services.store.snapshot(job_id)
            payload = job.to_status() if job else not_found_status(job_id)
            yield {"data": json.dumps(payload, ensure_ascii=False)}
            if payload["status"] in TERMINAL_VALUES:
                logger.debug("Progress stream for %s closed: %s", job_id, payload["status"])
                break
            await asyncio.sleep(interval)

    return EventSourceResponse(event_generator())


@router.get("/subtitles/download/{job_id}/{fmt}")
def download_subtitles(job_id: str, fmt: str, services: Services = Depends(get_services)) -> FileResponse:
    if fmt not in SUBTITLE_FORMATS:
        raise ApiError(400, ErrorCode.INVALID_FORMAT, "Unsupported format. Use srt or vtt.", job_id=job_id)

    # Job ids are uuid hex; anything else cannot name a file we wrote.
    if not re.fullmatch(r"[A-Za-z0-9_-]+", job_id):
        raise ApiError(404, ErrorCode.FILE_NOT_FOUND, "Subtitle file not found", job_id=job_id, format=fmt)
    path = subtitle_file(services.paths.downloads_root, job_id, fmt)
    if not path.exists():
        raise ApiError(404, ErrorCode.FILE_NOT_FOUND, "Subtitle file not found", job_id=job_id, format=fmt)
    return FileResponse(path=str(path), media_type=SUBTITLE_MEDIA_TYPES[fmt], filename=f"subtitles.{fmt}")


@router.get("/subtitles/active")
def list_active(services: Services = Depends(get_services)) -> dict[str, object]:
    active = services.admission.active()
    history = services.admission.history()
    return {
        "success": True,
        "activeUploads": active,
        "uploadHistory": history,
        "totalActive": len(active),
        "totalHistory": len(history),
    }


@router.delete("/subtitles/active/{key:path}")
def release_active(key: str, services: Services = Depends(get_services)) -> dict[str, object]:
    ticket = services.admission.force_release(key)
    if ticket is None:
        raise ApiError(404, ErrorCode.CLIENT_NOT_FOUND, "Active upload not found", clientKey=key)
    return {
        "success": True,
        "message": "Active upload removed",
        "removedUpload": {"clientKey": ticket.client_key, "jobId": ticket.job_id},
    }
