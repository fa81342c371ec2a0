"""Pydantic schemas for persisted app configuration."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    base_url: str = "https://api.openai.com"
    api_key: str = ""
    transcription_model: str = "whisper-1"
    translation_model: str = "gpt-3.5-turbo"
    timeout_s: int = 900
    connect_timeout_s: int = 120
    secondary_timeout_s: int = 900
    # Decoding bias: capture content rather than suppress it.
    temperature: float = 0.3
    no_speech_threshold: float = 0.5
    logprob_threshold: float = -1.2
    compression_ratio_threshold: float = 3.0
    # Threshold fields are only understood by self-hosted Whisper servers.
    send_decoding_hints: bool = False
    translation_max_tokens: int = 4000

    def resolved_api_key(self) -> str:
        return (self.api_key or os.environ.get("OPENAI_API_KEY", "")).strip()


class BreakerConfig(BaseModel):
    failure_threshold: int = 5
    cooldown_s: float = 300.0


class RetryConfig(BaseModel):
    max_attempts: int = 5
    base_delay_ms: int = 1000
    jitter_ms: int = 1000
    max_delay_ms: int = 60_000
    translation_max_attempts: int = 3


class SegmentationConfig(BaseModel):
    segment_duration_s: float = 180.0
    max_segment_bytes: int = 25 * 1024 * 1024
    chunking_threshold_bytes: int = 20 * 1024 * 1024
    min_segment_duration_s: float = 5.0
    max_consecutive_failures: int = 3


class FilterConfig(BaseModel):
    repetition_threshold: int = 9
    max_pattern_length: int = 5
    max_duration_s: float = 60.0
    merge_gap_s: float = 1.0
    adult_ratio_threshold: float = 0.05
    conversation_ratio_threshold: float = 0.10
    suspicious_rejection_ratio: float = 0.8


class TranslationConfig(BaseModel):
    max_batch_chars: int = 2000
    batch_pause_s: float = 1.0
    temperature: float = 0.3
    adult_temperature: float = 0.2


class AdmissionConfig(BaseModel):
    cooldown_s: float = 5.0
    history_ttl_s: float = 3600.0
    eviction_interval_s: float = 600.0


class JobsConfig(BaseModel):
    retention_s: float = 7200.0
    sweep_interval_s: float = 1800.0
    stream_interval_s: float = 2.0
    heartbeat_interval_s: float = 5.0
    heartbeat_step: float = 1.0


class UploadConfig(BaseModel):
    max_upload_mb: int = 10 * 1024
    allowed_extensions: list[str] = Field(
        default_factory=lambda: ["mp4", "avi", "mov", "mkv", "webm", "mp3", "wav", "m4a"]
    )
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: [
            "video/mp4",
            "video/avi",
            "video/quicktime",
            "video/x-msvideo",
            "video/x-matroska",
            "video/webm",
            "audio/mpeg",
            "audio/wav",
            "audio/mp4",
            "audio/x-m4a",
            "application/octet-stream",
        ]
    )


class AlternativeConfig(BaseModel):
    local_binary: str = "whisper"
    local_timeout_s: int = 3600
    synthetic_min_window_s: float = 3.0
    synthetic_max_window_s: float = 5.0
    synthetic_max_segments: int = 50


class AppConfig(BaseModel):
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    breaker: BreakerConfig = Field(default_factory=BreakerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    segmentation: SegmentationConfig = Field(default_factory=SegmentationConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)
    translation: TranslationConfig = Field(default_factory=TranslationConfig)
    admission: AdmissionConfig = Field(default_factory=AdmissionConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    alternative: AlternativeConfig = Field(default_factory=AlternativeConfig)
