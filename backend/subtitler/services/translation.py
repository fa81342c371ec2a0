"""Batch translation of subtitle text through the chat-completions provider."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, Sequence

from subtitler.core.constants import ContentType
from subtitler.schemas.config import RetryConfig, TranslationConfig
from subtitler.services.openai_clients import TranslationClient
from subtitler.services.retry import ChunkController, ChunkTask, RetryPolicy
from subtitler.services.subtitles import Subtitle

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    "en": "English",
    "fr": "French",
    "es": "Spanish",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "zh": "Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "ar": "Arabic",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def chunk_subtitles_for_translation(subtitles: Sequence[Subtitle], max_chars: int = 2000) -> list[list[Subtitle]]:
    """Group subtitles in order so each batch's text stays within ``max_chars``.

    A single subtitle longer than ``max_chars`` gets a batch of its own.
    """
    batches: list[list[Subtitle]] = []
    current: list[Subtitle] = []
    current_len = 0
    for sub in subtitles:
        length = len(sub.text)
        if current and current_len + length > max_chars:
            batches.append(current)
            current, current_len = [], 0
        current.append(sub)
        current_len += length
    if current:
        batches.append(current)
    return batches


def translation_prompt(target_language: str, content_type: ContentType = ContentType.GENERAL) -> str:
    base = (
        f"You are a professional subtitle translator. Translate the following text into "
        f"{language_name(target_language)}. Keep the line-by-line structure: every input line "
        f"must produce exactly one translated line, in the same order. Output only the translation."
    )
    if content_type == ContentType.ADULT:
        return (
            f"{base}\n\nThis content includes intimate and emotional expressions. "
            "Preserve the emotional tone and intimacy, translate expressions of affection naturally, "
            "keep whispers and short exclamations, and do not censor."
        )
    if content_type == ContentType.CONVERSATION:
        return (
            f"{base}\n\nThis content is conversational. Translate naturally and keep the casual tone, "
            "colloquial expressions, interjections and hesitations."
        )
    return f"{base}\n\nTranslate precisely while keeping the original meaning."


def _flatten(text: str) -> str:
    return " ".join(text.split())


@dataclass
class TranslationOutcome:
    subtitles: list[Subtitle]
    batches: int = 0
    fallback_batches: int = 0
    skipped: bool = False


class TranslationStage:
    def __init__(
        self,
        client: TranslationClient,
        cfg: Optional[TranslationConfig] = None,
        retry_cfg: Optional[RetryConfig] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.cfg = cfg or TranslationConfig()
        retry_cfg = retry_cfg or RetryConfig()
        self.policy = policy or RetryPolicy.from_config(retry_cfg, max_attempts=retry_cfg.translation_max_attempts)
        self._sleep = sleep

    async def translate(
        self,
        subtitles: Sequence[Subtitle],
        target_language: str,
        content_type: Optional[ContentType] = None,
    ) -> TranslationOutcome:
        """Same length and order as the input; untranslatable text stays as it was."""
        content_type = content_type or ContentType.GENERAL
        translatable = [sub for sub in subtitles if not sub.placeholder and sub.text.strip()]
        if not translatable:
            return TranslationOutcome(subtitles=list(subtitles), skipped=True)

        batches = chunk_subtitles_for_translation(translatable, self.cfg.max_batch_chars)
        system_prompt = translation_prompt(target_language, content_type)
        temperature = self.cfg.adult_temperature if content_type == ContentType.ADULT else self.cfg.temperature
        controller = ChunkController(self.policy, sleep=self._sleep)

        translated: dict[int, str] = {}
        fallback_batches = 0
        for number, batch in enumerate(batches, start=1):
            lines = [_flatten(sub.text) for sub in batch]
            user_prompt = "\n".join(lines)
            logger.info("Translating batch %d/%d (%d lines) to %s", number, len(batches), len(batch), target_language)

            async def call(prompt: str = user_prompt) -> str:
                return await self.client.complete(system_prompt=system_prompt, user_prompt=prompt, temperature=temperature)

            try:
                response = await controller.run(ChunkTask(index=number), call)
            except Exception as exc:
                fallback_batches += 1
                logger.error("Translation batch %d failed, keeping original text: %s", number, exc)
                response = ""

            response_lines = response.split("\n") if response else []
            for position, sub in enumerate(batch):
                line = response_lines[position].strip() if position < len(response_lines) else ""
                if line:
                    translated[id(sub)] = line

            if number < len(batches):
                await self._sleep(self.cfg.batch_pause_s)

        result = [replace(sub, text=translated.get(id(sub), sub.text)) for sub in subtitles]
        return TranslationOutcome(subtitles=result, batches=len(batches), fallback_batches=fallback_batches)
