import asyncio
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from subtitler.core.constants import TranscriptionSource
from subtitler.schemas.config import AppConfig
from subtitler.services.alternative import AlternativeTranscriber
from subtitler.services.circuit_breaker import BreakerState, CircuitBreaker
from subtitler.services.media import MediaError
from subtitler.services.openai_clients import ProviderError
from subtitler.services.segmenter import MediaSegmenter
from subtitler.services.subtitles import is_ordered
from subtitler.services.transcription import ProviderUnavailableError, TranscriptionOrchestrator


class FakeToolkit:
    def __init__(self, duration: float) -> None:
        self.duration = duration

    async def probe_duration(self, path: Path) -> Optional[float]:
        return self.duration

    async def extract_segment(self, source: Path, output: Path, start: float, duration: float) -> Path:
        output.write_bytes(b"\0" * 64)
        return output


class FakeClient:
    """One subtitle per file.

    ``flaky`` maps a file name to errors raised once each before succeeding,
    ``broken`` to an error raised on every call.
    """

    def __init__(
        self,
        flaky: Optional[dict[str, list[Exception]]] = None,
        broken: Optional[dict[str, Exception]] = None,
        secondary_error: Optional[Exception] = None,
    ) -> None:
        self.flaky = flaky or {}
        self.broken = broken or {}
        self.secondary_error = secondary_error
        self.calls: list[str] = []
        self.secondary_calls: list[str] = []

    @staticmethod
    def payload(path: Path) -> dict[str, Any]:
        return {
            "language": "english",
            "segments": [{"start": 1.0, "end": 4.0, "text": f"Speech from {path.stem}"}],
        }

    async def transcribe(self, path: Path, language: str = "auto") -> dict[str, Any]:
        self.calls.append(path.name)
        if path.name in self.broken:
            raise self.broken[path.name]
        pending = self.flaky.get(path.name)
        if pending:
            raise pending.pop(0)
        return self.payload(path)

    async def transcribe_secondary(self, path: Path, language: str = "auto") -> dict[str, Any]:
        self.secondary_calls.append(path.name)
        if self.secondary_error is not None:
            raise self.secondary_error
        return self.payload(path)


async def _no_sleep(delay: float) -> None:
    return None


def _config(api_key: str = "test-key") -> AppConfig:
    cfg = AppConfig()
    cfg.provider.api_key = api_key
    cfg.segmentation.chunking_threshold_bytes = 10
    return cfg


def _audio(tmp_path: Path, size: int = 100) -> Path:
    path = tmp_path / "movie.wav"
    path.write_bytes(b"\0" * size)
    return path


def _orchestrator(
    tmp_path: Path,
    client: FakeClient,
    duration: float,
    cfg: Optional[AppConfig] = None,
    breaker: Optional[CircuitBreaker] = None,
    alternative: Optional[AlternativeTranscriber] = None,
) -> TranscriptionOrchestrator:
    cfg = cfg or _config()
    return TranscriptionOrchestrator(
        cfg,
        client,
        breaker or CircuitBreaker(cfg.breaker.failure_threshold, cfg.breaker.cooldown_s),
        MediaSegmenter(FakeToolkit(duration), tmp_path / "segments"),
        alternative=alternative,
        sleep=_no_sleep,
    )


def test_retried_segment_has_no_gap_or_duplicate(tmp_path: Path) -> None:
    client = FakeClient(flaky={"movie_seg0006.wav": [httpx.ReadTimeout("slow")]})
    progress: list[tuple[int, int]] = []
    orchestrator = _orchestrator(tmp_path, client, 2700.0)

    result = asyncio.run(orchestrator.transcribe(_audio(tmp_path), "en", lambda done, total: progress.append((done, total))))

    assert result.segment_count == 15
    assert result.failed_segments == 0
    assert result.source == TranscriptionSource.PRIMARY
    assert result.detected_language == "en"
    assert len(result.subtitles) == 15
    assert [s.index for s in result.subtitles] == list(range(1, 16))
    assert [s.start for s in result.subtitles] == [i * 180.0 + 1.0 for i in range(15)]
    assert result.subtitles[5].text == "Speech from movie_seg0006"
    assert is_ordered(result.subtitles)
    assert client.calls.count("movie_seg0006.wav") == 2
    assert progress[-1] == (15, 15)
    assert list((tmp_path / "segments").iterdir()) == []


def test_failed_segment_becomes_placeholder(tmp_path: Path) -> None:
    client = FakeClient(broken={"movie_seg0002.wav": ProviderError("bad request", status_code=400)})
    orchestrator = _orchestrator(tmp_path, client, 900.0)

    result = asyncio.run(orchestrator.transcribe(_audio(tmp_path)))

    assert len(result.subtitles) == 5
    failed = result.subtitles[1]
    assert failed.placeholder
    assert failed.text.startswith("[Segment 2 - transcription failed:")
    assert (failed.start, failed.end) == (180.0, 360.0)
    assert result.failed_segments == 1
    assert not result.subtitles[2].placeholder


def test_consecutive_failures_abort_remaining_segments(tmp_path: Path) -> None:
    bad = ProviderError("bad request", status_code=400)
    client = FakeClient(broken={f"movie_seg000{n}.wav": bad for n in (2, 3, 4)})
    orchestrator = _orchestrator(tmp_path, client, 900.0)

    result = asyncio.run(orchestrator.transcribe(_audio(tmp_path)))

    texts = [s.text for s in result.subtitles]
    assert texts[0] == "Speech from movie_seg0001"
    assert all("transcription failed" in t for t in texts[1:4])
    assert texts[4] == "[Segments 5-5 - transcription aborted]"
    assert result.failed_segments == 4
    assert "movie_seg0005.wav" not in client.calls
    assert list((tmp_path / "segments").iterdir()) == []


def test_connection_failure_switches_to_secondary_transport(tmp_path: Path) -> None:
    client = FakeClient(broken={"movie.wav": httpx.ConnectError("connection refused")})
    breaker = CircuitBreaker(5, 300)
    cfg = _config()
    cfg.segmentation.chunking_threshold_bytes = 10_000
    orchestrator = _orchestrator(tmp_path, client, 60.0, cfg=cfg, breaker=breaker)

    result = asyncio.run(orchestrator.transcribe(_audio(tmp_path)))

    assert result.source == TranscriptionSource.SECONDARY
    assert client.calls == ["movie.wav"] * 5
    assert client.secondary_calls == ["movie.wav"]
    assert breaker.state == BreakerState.CLOSED
    assert [s.text for s in result.subtitles] == ["Speech from movie"]


def test_quota_error_does_not_use_secondary(tmp_path: Path) -> None:
    quota = ProviderError("quota exceeded", status_code=429, code="insufficient_quota")
    client = FakeClient(broken={"movie.wav": quota})
    cfg = _config()
    cfg.segmentation.chunking_threshold_bytes = 10_000
    orchestrator = _orchestrator(tmp_path, client, 60.0, cfg=cfg, breaker=CircuitBreaker(50, 300))

    with pytest.raises(ProviderUnavailableError):
        asyncio.run(orchestrator.transcribe(_audio(tmp_path)))
    assert client.secondary_calls == []


def test_missing_api_key_uses_synthetic_alternative(tmp_path: Path) -> None:
    async def probe(path: Path) -> Optional[float]:
        return 12.0

    alternative = AlternativeTranscriber(temp_dir=tmp_path, probe_duration=probe, which=lambda name: None)
    client = FakeClient()
    orchestrator = _orchestrator(tmp_path, client, 12.0, cfg=_config(api_key=""), alternative=alternative)

    result = asyncio.run(orchestrator.transcribe(_audio(tmp_path), "fr"))

    assert result.source == TranscriptionSource.SYNTHETIC
    assert client.calls == []
    assert result.subtitles
    assert all(s.placeholder for s in result.subtitles)
    assert result.subtitles[-1].end == 12.0


def test_open_breaker_without_alternative_raises(tmp_path: Path) -> None:
    breaker = CircuitBreaker(1, 300)
    breaker.record_failure()
    orchestrator = _orchestrator(tmp_path, FakeClient(), 60.0, breaker=breaker)

    with pytest.raises(ProviderUnavailableError, match="circuit breaker"):
        asyncio.run(orchestrator.transcribe(_audio(tmp_path)))


def test_missing_audio_is_a_media_error(tmp_path: Path) -> None:
    orchestrator = _orchestrator(tmp_path, FakeClient(), 60.0)

    with pytest.raises(MediaError):
        asyncio.run(orchestrator.transcribe(tmp_path / "absent.wav"))
