"""HTTP clients for the speech-to-text and chat-completion provider endpoints."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import httpx

from subtitler.schemas.config import ProviderConfig

logger = logging.getLogger(__name__)

LANGUAGE_CODES = {
    "english": "en",
    "french": "fr",
    "spanish": "es",
    "german": "de",
    "italian": "it",
    "portuguese": "pt",
    "russian": "ru",
    "chinese": "zh",
    "japanese": "ja",
    "korean": "ko",
    "arabic": "ar",
    "dutch": "nl",
    "polish": "pl",
    "turkish": "tr",
    "ukrainian": "uk",
}


class ProviderError(RuntimeError):
    def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    def is_quota_error(self) -> bool:
        return self.code == "insufficient_quota" or "quota" in str(self).lower()

    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


def _deep_find(data: Any, keys: set[str]) -> list[Any]:
    found: list[Any] = []
    if isinstance(data, dict):
        for k, v in data.items():
            if k in keys:
                found.append(v)
            found.extend(_deep_find(v, keys))
    elif isinstance(data, list):
        for item in data:
            found.extend(_deep_find(item, keys))
    return found


def _first_string(values: list[Any]) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def normalize_language(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    text = value.strip().lower()
    if text in LANGUAGE_CODES.values():
        return text
    return LANGUAGE_CODES.get(text)


def parse_transcription(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Return ``{start, end, text}`` rows from a verbose transcription payload."""
    segments = payload.get("segments")
    if isinstance(segments, list) and segments:
        rows: list[dict[str, Any]] = []
        for segment in segments:
            if not isinstance(segment, dict):
                continue
            rows.append(
                {
                    "start": segment.get("start", 0.0),
                    "end": segment.get("end", segment.get("start", 0.0)),
                    "text": str(segment.get("text") or "").strip(),
                }
            )
        return rows

    text = payload.get("text")
    if not isinstance(text, str):
        text = _first_string(_deep_find(payload, {"text"})) or ""
    try:
        duration = float(payload.get("duration") or 30.0)
    except (TypeError, ValueError):
        duration = 30.0
    return [{"start": 0.0, "end": duration, "text": text.strip() or "Transcription unavailable"}]


def parse_chat_text(payload: dict[str, Any]) -> str:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0]
        if isinstance(first, dict):
            message = first.get("message")
            if isinstance(message, dict):
                content = message.get("content")
                if isinstance(content, str):
                    return content.strip()
            content = first.get("text")
            if isinstance(content, str):
                return content.strip()

    output_text = payload.get("output_text")
    if isinstance(output_text, str):
        return output_text.strip()

    candidates = _deep_find(payload, {"text", "content"})
    content = _first_string(candidates)
    return content or ""


def error_from_response(response: httpx.Response, what: str) -> ProviderError:
    code: Optional[str] = None
    message = response.text[:500]
    try:
        payload = response.json()
    except Exception:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            code = str(error.get("code") or error.get("type") or "") or None
            message = str(error.get("message") or message)
    return ProviderError(f"{what} failed: {response.status_code} {message}", status_code=response.status_code, code=code)


class TranscriptionClient:
    """Speech-to-text calls. The secondary path reaches the same endpoint over a fresh blocking connection."""

    def __init__(
        self,
        cfg: ProviderConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        secondary_transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.cfg = cfg
        self._transport = transport
        self._secondary_transport = secondary_transport

    def _url(self) -> str:
        return f"{self.cfg.base_url.rstrip('/')}/v1/audio/transcriptions"

    def _headers(self) -> dict[str, str]:
        api_key = self.cfg.resolved_api_key()
        if not api_key:
            raise ProviderError("Provider API key is not configured", status_code=401, code="missing_api_key")
        return {"Authorization": f"Bearer {api_key}"}

    def _form_fields(self, language: str) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "model": self.cfg.transcription_model,
            "response_format": "verbose_json",
            "timestamp_granularities[]": ["segment"],
            "temperature": str(self.cfg.temperature),
        }
        if self.cfg.send_decoding_hints:
            fields["no_speech_threshold"] = str(self.cfg.no_speech_threshold)
            fields["logprob_threshold"] = str(self.cfg.logprob_threshold)
            fields["compression_ratio_threshold"] = str(self.cfg.compression_ratio_threshold)
            fields["condition_on_previous_text"] = "true"
        # No prompt: echoed prompts leak into transcripts.
        if language and language != "auto":
            fields["language"] = language
        return fields

    @staticmethod
    def _files(audio_file: Path, content: bytes) -> dict[str, Any]:
        return {"file": (audio_file.name, content, "audio/wav")}

    def _parse(self, response: httpx.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            raise error_from_response(response, "Transcription request")
        payload = response.json()
        if not isinstance(payload, dict):
            raise ProviderError("Transcription response is not a JSON object")
        return payload

    async def transcribe(self, audio_file: Path, language: str = "auto") -> dict[str, Any]:
        headers = self._headers()
        content = await asyncio.to_thread(audio_file.read_bytes)
        timeout = httpx.Timeout(self.cfg.timeout_s, connect=self.cfg.connect_timeout_s)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            resp = await client.post(
                self._url(),
                headers=headers,
                data=self._form_fields(language),
                files=self._files(audio_file, content),
            )
        return self._parse(resp)

    async def transcribe_secondary(self, audio_file: Path, language: str = "auto") -> dict[str, Any]:
        headers = {**self._headers(), "Connection": "close"}
        fields = self._form_fields(language)

        def _post() -> httpx.Response:
            content = audio_file.read_bytes()
            with httpx.Client(timeout=self.cfg.secondary_timeout_s, transport=self._secondary_transport) as client:
                return client.post(
                    self._url(),
                    headers=headers,
                    data=fields,
                    files=self._files(audio_file, content),
                )

        logger.info("Using secondary transport for %s", audio_file.name)
        resp = await asyncio.to_thread(_post)
        return self._parse(resp)


class TranslationClient:
    def __init__(self, cfg: ProviderConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.cfg = cfg
        self._transport = transport

    async def complete(self, *, system_prompt: str, user_prompt: str, temperature: float) -> str:
        api_key = self.cfg.resolved_api_key()
        if not api_key:
            raise ProviderError("Provider API key is not configured", status_code=401, code="missing_api_key")
        url = f"{self.cfg.base_url.rstrip('/')}/v1/chat/completions"
        payload = {
            "model": self.cfg.translation_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": self.cfg.translation_max_tokens,
        }
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

        async with httpx.AsyncClient(timeout=self.cfg.timeout_s, transport=self._transport) as client:
            resp = await client.post(url, headers=headers, json=payload)
        if resp.status_code >= 400:
            raise error_from_response(resp, "Translation request")
        return parse_chat_text(resp.json())
