"""Transcription path used when the remote provider is unavailable for a whole job."""

from __future__ import annotations

import json
import logging
import random
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from subtitler.core.constants import TranscriptionSource
from subtitler.schemas.config import AlternativeConfig
from subtitler.services.media import MediaError, run_command
from subtitler.services.openai_clients import parse_transcription
from subtitler.services.subtitles import Subtitle, from_segments, reindex

logger = logging.getLogger(__name__)

PLACEHOLDER_MESSAGES = {
    "fr": [
        "Ceci est un test de transcription",
        "L'audio a été détecté mais la transcription n'est pas disponible",
        "Segment audio en français",
        "Contenu audio non transcrit",
        "Parole détectée dans cette section",
    ],
    "en": [
        "This is a transcription test",
        "Audio detected but transcription unavailable",
        "English audio segment",
        "Untranscribed audio content",
        "Speech detected in this section",
    ],
    "es": [
        "Esta es una prueba de transcripción",
        "Audio detectado pero transcripción no disponible",
        "Segmento de audio en español",
        "Contenido de audio no transcrito",
        "Habla detectada en esta sección",
    ],
    "auto": [
        "Audio segment detected",
        "Speech content placeholder",
        "Transcription test segment",
        "Audio analysis complete",
        "Voice activity detected",
    ],
}


def placeholder_messages(language: str) -> list[str]:
    return PLACEHOLDER_MESSAGES.get(language, PLACEHOLDER_MESSAGES["auto"])


def synthetic_subtitles(
    duration: Optional[float],
    language: str = "auto",
    *,
    min_window_s: float = 3.0,
    max_window_s: float = 5.0,
    max_segments: int = 50,
    seed: int = 0,
) -> list[Subtitle]:
    """Deterministic placeholder windows covering ``duration`` seconds.

    Same inputs and seed give the same windows. Unknown duration yields one
    30 second placeholder.
    """
    messages = placeholder_messages(language)
    if not duration or duration <= 0:
        return [Subtitle(index=1, start=0.0, end=30.0, text=f"{messages[1]} [1]", placeholder=True)]

    rng = random.Random(seed)
    subtitles: list[Subtitle] = []
    current = 0.0
    while current < duration and len(subtitles) < max_segments:
        index = len(subtitles) + 1
        end = min(current + rng.uniform(min_window_s, max_window_s), duration)
        text = f"{messages[(index - 1) % len(messages)]} [{index}]"
        subtitles.append(Subtitle(index=index, start=current, end=end, text=text, placeholder=True))
        current = end
    return subtitles


@dataclass
class AlternativeResult:
    subtitles: list[Subtitle]
    source: TranscriptionSource


class AlternativeTranscriber:
    """Local ``whisper`` binary when installed, synthetic placeholder windows otherwise."""

    def __init__(
        self,
        cfg: Optional[AlternativeConfig] = None,
        *,
        temp_dir: Path,
        probe_duration: Callable[[Path], Awaitable[Optional[float]]],
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.cfg = cfg or AlternativeConfig()
        self.temp_dir = temp_dir
        self._probe_duration = probe_duration
        self._which = which

    def local_binary(self) -> Optional[str]:
        return self._which(self.cfg.local_binary)

    async def transcribe_local(self, binary: str, audio_path: Path, language: str = "auto") -> list[Subtitle]:
        out_dir = self.temp_dir / f"{audio_path.stem}_whisper"
        out_dir.mkdir(parents=True, exist_ok=True)
        cmd = [binary, str(audio_path), "--output_format", "json", "--output_dir", str(out_dir), "--verbose", "False"]
        if language and language != "auto":
            cmd += ["--language", language]
        try:
            await run_command(cmd, timeout=self.cfg.local_timeout_s)
            json_path = out_dir / f"{audio_path.stem}.json"
            if not json_path.exists():
                raise MediaError(f"Local transcription output not found: {json_path.name}")
            payload = json.loads(json_path.read_text(encoding="utf-8"))
        finally:
            shutil.rmtree(out_dir, ignore_errors=True)
        if not isinstance(payload, dict):
            raise MediaError("Local transcription output is not a JSON object")
        return reindex(from_segments(parse_transcription(payload)))

    async def transcribe(self, audio_path: Path, language: str = "auto") -> AlternativeResult:
        binary = self.local_binary()
        if binary:
            try:
                subtitles = await self.transcribe_local(binary, audio_path, language)
                logger.info("Local transcription produced %d subtitles", len(subtitles))
                return AlternativeResult(subtitles=subtitles, source=TranscriptionSource.LOCAL)
            except (MediaError, OSError, ValueError) as exc:
                logger.warning("Local transcription failed: %s", exc)
        else:
            logger.info("Local %s binary not available", self.cfg.local_binary)

        duration = await self._probe_duration(audio_path)
        subtitles = synthetic_subtitles(
            duration,
            language,
            min_window_s=self.cfg.synthetic_min_window_s,
            max_window_s=self.cfg.synthetic_max_window_s,
            max_segments=self.cfg.synthetic_max_segments,
            seed=int(duration * 1000) if duration else 0,
        )
        logger.warning("Generated %d synthetic subtitles for %s", len(subtitles), audio_path.name)
        return AlternativeResult(subtitles=subtitles, source=TranscriptionSource.SYNTHETIC)
