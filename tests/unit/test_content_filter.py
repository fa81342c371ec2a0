from subtitler.core.constants import ContentType
from subtitler.schemas.config import FilterConfig
from subtitler.services.content_filter import (
    ContentAnalysis,
    ContentQualityFilter,
    KeywordContentClassifier,
    is_extreme_repetition,
    is_instruction_leakage,
    is_technical_hallucination,
)
from subtitler.services.subtitles import Subtitle, placeholder


def _sub(index: int, start: float, end: float, text: str) -> Subtitle:
    return Subtitle(index=index, start=start, end=end, text=text)


def test_repeated_no_ten_times_dropped_three_times_kept() -> None:
    flt = ContentQualityFilter()
    subs = [
        _sub(1, 0.0, 2.0, "no no no no no no no no no no"),
        _sub(2, 3.0, 4.0, "no no no"),
    ]

    result = flt.clean(subs)

    assert [s.text for s in result.subtitles] == ["no no no"]
    assert result.subtitles[0].index == 1
    assert result.removed == {"repetition": 1}


def test_repetition_predicates() -> None:
    assert is_extreme_repetition("no no no no no no no no no no")
    assert is_extreme_repetition("No, no, no, no, no, no, no, no, no")
    assert is_extreme_repetition("lalalalalalalalalalala")
    assert not is_extreme_repetition("no no no")
    assert not is_extreme_repetition("no no no no no no no no")
    assert not is_extreme_repetition("I said no, no and no again")


def test_instruction_leakage_and_non_speech() -> None:
    assert is_instruction_leakage("Transcribe all spoken content accurately")
    assert is_instruction_leakage("preserve the natural emotional context")
    assert not is_instruction_leakage("We met at the station")

    assert is_technical_hallucination("[MUSIC]")
    assert is_technical_hallucination("[МУЗЫКА]")
    assert is_technical_hallucination("  [applause] ")
    assert is_technical_hallucination("♪ la la la ♪")
    assert not is_technical_hallucination("the music was loud")


def test_processing_order_drops_noise() -> None:
    flt = ContentQualityFilter()
    subs = [
        _sub(1, 0.0, 1.0, "   "),
        _sub(2, 1.0, 2.0, "Accurately transcribe everything"),
        _sub(3, 2.0, 3.0, "[SILENCE]"),
        _sub(4, 3.0, 70.0, "a very long misaligned line"),
        _sub(5, 70.0, 72.0, "Rawr!"),
        _sub(6, 72.0, 73.0, "Hello there"),
    ]

    result = flt.clean(subs)

    assert [s.text for s in result.subtitles] == ["Rawr!", "Hello there"]
    assert [s.index for s in result.subtitles] == [1, 2]
    assert result.removed == {"empty": 1, "instruction_leakage": 1, "non_speech": 1, "too_long": 1}


def test_merges_identical_neighbours_with_short_gap() -> None:
    flt = ContentQualityFilter()
    subs = [
        _sub(1, 0.0, 1.0, "Oh yes"),
        _sub(2, 1.5, 2.5, "oh yes"),
        _sub(3, 4.0, 5.0, "oh yes"),
    ]

    result = flt.clean(subs)

    assert len(result.subtitles) == 2
    assert result.subtitles[0].start == 0.0
    assert result.subtitles[0].end == 2.5
    assert result.subtitles[1].start == 4.0
    assert result.merged == 1


def test_merge_never_exceeds_max_duration() -> None:
    flt = ContentQualityFilter(FilterConfig(max_duration_s=10))
    subs = [_sub(1, 0.0, 6.0, "again"), _sub(2, 6.5, 12.0, "again")]

    result = flt.clean(subs)

    assert len(result.subtitles) == 2


def test_filter_is_idempotent() -> None:
    flt = ContentQualityFilter()
    subs = [
        _sub(1, 0.0, 1.0, "Hi"),
        _sub(2, 1.2, 2.0, "hi"),
        _sub(3, 2.5, 3.0, "[MUSIC]"),
        _sub(4, 3.0, 4.0, "How are you?"),
        _sub(5, 4.0, 80.0, "drifted"),
        _sub(6, 80.0, 81.0, "ha ha ha ha ha ha ha ha ha ha"),
        _sub(7, 81.0, 82.0, "Fine, thanks"),
    ]

    once = flt.clean(subs).subtitles
    twice = flt.clean(once).subtitles

    assert twice == once


def test_never_empties_a_sequence_with_text() -> None:
    flt = ContentQualityFilter()
    subs = [_sub(1, 0.0, 1.0, "[MUSIC]"), _sub(2, 1.0, 2.0, "")]

    result = flt.clean(subs)

    assert [s.text for s in result.subtitles] == ["[MUSIC]"]
    assert flt.clean(result.subtitles).subtitles == result.subtitles


def test_only_empty_text_can_empty_the_sequence() -> None:
    result = ContentQualityFilter().clean([_sub(1, 0.0, 1.0, ""), _sub(2, 1.0, 2.0, "  ")])
    assert result.subtitles == []


def test_placeholders_pass_through() -> None:
    flt = ContentQualityFilter()
    subs = [
        placeholder(1, 0.0, 180.0, "[Segment 1 - transcription failed: timeout]"),
        placeholder(2, 180.0, 360.0, "[Segment 1 - transcription failed: timeout]"),
    ]

    result = flt.clean(subs)

    assert len(result.subtitles) == 2
    assert all(s.placeholder for s in result.subtitles)


def test_stretched_emotional_sounds_are_repetition() -> None:
    subs = [
        _sub(1, 0.0, 1.0, "mmmmmmmmmmmm"),
        _sub(2, 2.0, 3.0, "ahahahahahahahahahah"),
        _sub(3, 4.0, 5.0, "Oh!"),
    ]

    result = ContentQualityFilter().clean(subs)

    assert [s.text for s in result.subtitles] == ["Oh!"]
    assert result.removed == {"repetition": 2}


def test_classifier_thresholds() -> None:
    classifier = KeywordContentClassifier()

    adult = classifier.classify([_sub(1, 0, 1, "baby I love you so much darling")])
    assert adult.type == ContentType.ADULT
    assert 0 < adult.confidence <= 1

    talk = classifier.classify([_sub(1, 0, 1, "hello what do you think about the weather today")])
    assert talk.type == ContentType.CONVERSATION

    plain = classifier.classify([_sub(1, 0, 1, "the train leaves the station at nine in the morning")])
    assert plain.type == ContentType.GENERAL
    assert plain.confidence == 0.5


def test_custom_classifier_is_used() -> None:
    class AlwaysAdult:
        def classify(self, subtitles):
            return ContentAnalysis(type=ContentType.ADULT, confidence=1.0)

    result = ContentQualityFilter(classifier=AlwaysAdult()).clean([_sub(1, 0, 1, "anything")])
    assert result.analysis.type == ContentType.ADULT


def test_validate_quality_counts_suspicious_segments() -> None:
    flt = ContentQualityFilter()
    subs = [_sub(1, 0, 90, "long"), _sub(2, 90, 91, ""), _sub(3, 91, 92, "I love you")]

    stats = flt.validate_quality(subs)

    assert stats.total_segments == 3
    assert stats.suspicious_segments == 2
    assert stats.emotional_segments == 1
    assert stats.adult_content_segments == 1
    assert flt.is_acceptable(subs)
    assert not flt.is_acceptable(subs[:2])
