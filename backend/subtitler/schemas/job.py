"""Pydantic schemas for subtitle API responses."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubtitleOut(CamelModel):
    index: int
    start: float
    end: float
    text: str


class DownloadLinks(CamelModel):
    srt: str
    vtt: str


class GenerateMetadata(CamelModel):
    source_language: str
    target_language: str
    duration: Optional[float]
    segment_count: int
    file_size: int
    original_name: str
    transcription_source: str
    content_type: str
    translated: bool = False


class GenerateResponse(CamelModel):
    success: bool = True
    job_id: str
    subtitles: list[SubtitleOut]
    downloads: DownloadLinks
    metadata: GenerateMetadata


class JobStatusResponse(CamelModel):
    success: bool = True
    job_id: str
    status: str
    progress: float
    message: str
    start_time: int
    metadata: dict[str, Any] = {}


class UploadValidationRequest(CamelModel):
    filename: str
    size: Optional[int] = None
    mimetype: Optional[str] = None


class UploadValidationResponse(CamelModel):
    success: bool
    valid: bool
    error: Optional[str] = None
