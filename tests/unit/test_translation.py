import asyncio

from subtitler.core.constants import ContentType
from subtitler.schemas.config import RetryConfig, TranslationConfig
from subtitler.services.openai_clients import ProviderError
from subtitler.services.subtitles import Subtitle, placeholder
from subtitler.services.translation import (
    TranslationStage,
    chunk_subtitles_for_translation,
    translation_prompt,
)


class FakeTranslator:
    """Upper-cases every line unless a scripted response or error is queued."""

    def __init__(self, *scripted: object) -> None:
        self.scripted = list(scripted)
        self.calls: list[dict[str, object]] = []

    async def complete(self, *, system_prompt: str, user_prompt: str, temperature: float) -> str:
        self.calls.append({"system": system_prompt, "user": user_prompt, "temperature": temperature})
        if self.scripted:
            outcome = self.scripted.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return str(outcome)
        return user_prompt.upper()


async def _no_sleep(delay: float) -> None:
    return None


def _subs(*texts: str) -> list[Subtitle]:
    return [Subtitle(index=i, start=float(i), end=i + 0.5, text=t) for i, t in enumerate(texts, start=1)]


def _stage(client: FakeTranslator, **cfg) -> TranslationStage:
    return TranslationStage(client, TranslationConfig(**cfg), RetryConfig(), sleep=_no_sleep)


def test_batches_respect_character_budget() -> None:
    subs = _subs("a" * 900, "b" * 900, "c" * 900, "d" * 3000)

    batches = chunk_subtitles_for_translation(subs, max_chars=2000)

    assert [[s.text[0] for s in batch] for batch in batches] == [["a", "b"], ["c"], ["d"]]


def test_lines_map_one_to_one_and_keep_timing() -> None:
    client = FakeTranslator()
    subs = _subs("hello", "how are\nyou", "bye")

    outcome = asyncio.run(_stage(client).translate(subs, "fr"))

    assert [s.text for s in outcome.subtitles] == ["HELLO", "HOW ARE YOU", "BYE"]
    assert [(s.index, s.start, s.end) for s in outcome.subtitles] == [(s.index, s.start, s.end) for s in subs]
    assert outcome.batches == 1
    assert client.calls[0]["user"] == "hello\nhow are you\nbye"
    assert "French" in str(client.calls[0]["system"])


def test_missing_response_line_keeps_original_text() -> None:
    client = FakeTranslator("Bonjour\n\n")
    subs = _subs("Hello", "Thanks", "Bye")

    outcome = asyncio.run(_stage(client).translate(subs, "fr"))

    assert [s.text for s in outcome.subtitles] == ["Bonjour", "Thanks", "Bye"]


def test_failed_batch_falls_back_to_source_text() -> None:
    error = ProviderError("bad request", status_code=400)
    client = FakeTranslator(error)
    subs = _subs("a" * 10, "b" * 10)

    outcome = asyncio.run(_stage(client, max_batch_chars=10).translate(subs, "de"))

    assert outcome.batches == 2
    assert outcome.fallback_batches == 1
    assert [s.text for s in outcome.subtitles] == ["a" * 10, "B" * 10]


def test_transient_errors_are_retried() -> None:
    client = FakeTranslator(ProviderError("overloaded", status_code=503), "Hallo")

    outcome = asyncio.run(_stage(client).translate(_subs("Hello"), "de"))

    assert [s.text for s in outcome.subtitles] == ["Hallo"]
    assert outcome.fallback_batches == 0
    assert len(client.calls) == 2


def test_placeholders_are_not_sent() -> None:
    client = FakeTranslator()
    subs = [
        Subtitle(index=1, start=0.0, end=1.0, text="hi"),
        placeholder(2, 1.0, 2.0, "[Segment 2 - transcription failed: timeout]"),
    ]

    outcome = asyncio.run(_stage(client).translate(subs, "es"))

    assert [s.text for s in outcome.subtitles] == ["HI", "[Segment 2 - transcription failed: timeout]"]
    assert client.calls[0]["user"] == "hi"


def test_only_placeholders_skips_provider() -> None:
    client = FakeTranslator()
    subs = [placeholder(1, 0.0, 1.0, "Audio segment detected [1]")]

    outcome = asyncio.run(_stage(client).translate(subs, "es"))

    assert outcome.skipped
    assert client.calls == []
    assert outcome.subtitles == subs


def test_adult_content_uses_its_prompt_and_temperature() -> None:
    client = FakeTranslator()

    asyncio.run(_stage(client).translate(_subs("darling"), "fr", ContentType.ADULT))

    assert client.calls[0]["temperature"] == 0.2
    assert client.calls[0]["system"] == translation_prompt("fr", ContentType.ADULT)
    assert "do not censor" in translation_prompt("fr", ContentType.ADULT)
