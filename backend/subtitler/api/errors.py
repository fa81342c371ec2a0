"""Structured API errors: ``{success: false, error, code, jobId, ...}``."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from subtitler.core.constants import ErrorCode


class ApiError(RuntimeError):
    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        error: str,
        *,
        job_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.code = code
        self.error = error
        self.job_id = job_id
        self.extra = extra

    def to_body(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.error,
            "code": self.code.value,
            "jobId": self.job_id,
            **self.extra,
        }


async def api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())
