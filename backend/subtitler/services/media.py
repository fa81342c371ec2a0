"""Media processing helpers powered by ffmpeg/ffprobe."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class MediaError(RuntimeError):
    pass


@dataclass
class AudioMeta:
    duration: Optional[float]
    size: int
    codec: Optional[str] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None


@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


async def run_command(cmd: list[str], timeout: Optional[float] = None) -> ProcessResult:
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise MediaError(f"Command failed to start: {cmd[0]}: {exc}") from exc
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise MediaError(f"Command timed out after {timeout}s: {' '.join(cmd)}") from exc
    result = ProcessResult(
        returncode=proc.returncode or 0,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if result.returncode != 0:
        raise MediaError(f"Command failed: {' '.join(cmd)}\n{result.stderr.strip()[-1000:]}")
    return result


def ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None


def ffprobe_available() -> bool:
    return shutil.which("ffprobe") is not None


def _remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.error("Could not remove partial output %s: %s", path, exc)


async def probe_audio(path: Path) -> AudioMeta:
    proc = await run_command(
        [
            "ffprobe",
            "-v",
            "error",
            "-show_streams",
            "-show_format",
            "-of",
            "json",
            str(path),
        ]
    )
    payload = json.loads(proc.stdout or "{}")
    fmt = payload.get("format", {})
    audio_stream = next((s for s in payload.get("streams", []) if s.get("codec_type") == "audio"), None) or {}
    raw_duration = fmt.get("duration") or audio_stream.get("duration")
    try:
        duration: Optional[float] = float(raw_duration) if raw_duration is not None else None
    except (TypeError, ValueError):
        duration = None
    return AudioMeta(
        duration=duration,
        size=path.stat().st_size,
        codec=audio_stream.get("codec_name"),
        sample_rate=int(audio_stream["sample_rate"]) if audio_stream.get("sample_rate") else None,
        channels=audio_stream.get("channels"),
    )


async def probe_duration(path: Path) -> Optional[float]:
    """Duration in seconds, or ``None`` when the file cannot be probed."""
    if not path.exists():
        return None
    try:
        meta = await probe_audio(path)
    except (MediaError, ValueError) as exc:
        logger.warning("Could not probe duration of %s: %s", path.name, exc)
        return None
    return meta.duration


async def extract_audio(source: Path, wav_output: Path) -> Path:
    wav_output.parent.mkdir(parents=True, exist_ok=True)
    try:
        await run_command(
            [
                "ffmpeg",
                "-y",
                "-i",
                str(source),
                "-vn",
                "-ac",
                "1",
                "-ar",
                "16000",
                "-c:a",
                "pcm_s16le",
                "-f",
                "wav",
                str(wav_output),
            ]
        )
    except MediaError:
        _remove_partial(wav_output)
        raise
    if not wav_output.exists():
        raise MediaError(f"Audio extract was not created: {wav_output.name}")
    logger.info("Extracted audio %s (%.2f MB)", wav_output.name, wav_output.stat().st_size / (1024 * 1024))
    return wav_output


async def extract_audio_segment(source: Path, output: Path, start: float, duration: float) -> Path:
    output.parent.mkdir(parents=True, exist_ok=True)
    try:
        await run_command(
            [
                "ffmpeg",
                "-y",
                "-ss",
                f"{start:.3f}",
                "-t",
                f"{duration:.3f}",
                "-i",
                str(source),
                "-ac",
                "1",
                "-ar",
                "16000",
                "-c:a",
                "pcm_s16le",
                "-f",
                "wav",
                str(output),
            ]
        )
    except MediaError:
        _remove_partial(output)
        raise
    if not output.exists():
        raise MediaError(f"Segment was not created: {output.name}")
    return output


class FfmpegToolkit:
    """Media Toolkit bound to the local ffmpeg/ffprobe binaries."""

    async def probe_duration(self, path: Path) -> Optional[float]:
        return await probe_duration(path)

    async def extract_audio(self, source: Path, output: Path) -> Path:
        return await extract_audio(source, output)

    async def extract_segment(self, source: Path, output: Path, start: float, duration: float) -> Path:
        return await extract_audio_segment(source, output, start, duration)
