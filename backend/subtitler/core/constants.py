"""Project-wide constants and state definitions."""

from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    EXTRACTING = "extracting"
    TRANSCRIBING = "transcribing"
    TRANSLATING = "translating"
    FORMATTING = "formatting"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"


RUNNING_STATES = {
    JobStatus.EXTRACTING,
    JobStatus.TRANSCRIBING,
    JobStatus.TRANSLATING,
    JobStatus.FORMATTING,
}

TERMINAL_STATES = {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.NOT_FOUND}

# (floor, ceiling) of the progress band owned by each running stage.
STAGE_PROGRESS = {
    JobStatus.EXTRACTING: (0, 25),
    JobStatus.TRANSCRIBING: (25, 50),
    JobStatus.TRANSLATING: (50, 75),
    JobStatus.FORMATTING: (75, 90),
    JobStatus.COMPLETED: (100, 100),
}


class ContentType(str, Enum):
    ADULT = "adult"
    CONVERSATION = "conversation"
    GENERAL = "general"


class TranscriptionSource(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    LOCAL = "local"
    SYNTHETIC = "synthetic"


class ErrorCode(str, Enum):
    UPLOAD_IN_PROGRESS = "UPLOAD_IN_PROGRESS"
    RATE_LIMITED = "RATE_LIMITED"
    NO_FILE = "NO_FILE"
    EMPTY_FILE = "EMPTY_FILE"
    UNSUPPORTED_FILE = "UNSUPPORTED_FILE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_FORMAT = "INVALID_FORMAT"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    CLIENT_NOT_FOUND = "CLIENT_NOT_FOUND"


SUBTITLE_FORMATS = ("srt", "vtt")

SUBTITLE_MEDIA_TYPES = {
    "srt": "application/x-subrip",
    "vtt": "text/vtt",
}

MB = 1024 * 1024
