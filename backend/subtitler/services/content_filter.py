"""Heuristic clean-up of raw provider transcripts.

The provider hallucinates on silence and music: echoed instructions, long
runs of one token, bracketed ``[MUSIC]`` markers, minute-long segments. The
filter drops those and keeps everything else, including short emotional
utterances like "Oh!" or "Rawr!" that stricter filters treat as noise. A
sound stretched into a long run ("mmmmmmmmmmmm") still counts as repetition.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Optional, Protocol, Sequence

from subtitler.core.constants import ContentType
from subtitler.schemas.config import FilterConfig
from subtitler.services.subtitles import Subtitle, reindex

logger = logging.getLogger(__name__)

INSTRUCTION_LEAKAGE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"preserve.*natural.*emotional.*context",
        r"transcribe.*accurately",
        r"including.*intimate.*expressions",
        r"emotional.*sounds.*adult.*content",
        r"speech.*patterns",
        r"whispers.*emotional.*context",
        r"^accurately transcribe",
        r"^transcribe all spoken",
    )
]

NON_SPEECH_PATTERNS = [
    re.compile(r"^\[(МУЗЫКА|MUSIC|MUSIQUE|MÚSICA|MUSIK|INSTRUMENTAL)\]$", re.IGNORECASE),
    re.compile(r"^\[(APPLAUSE|АПЛОДИСМЕНТЫ|APPLAUDISSEMENTS|APLAUSOS)\]$", re.IGNORECASE),
    re.compile(r"^\[(SILENCE|ТИШИНА|SILENCIO|STILLE)\]$", re.IGNORECASE),
    re.compile(r"^♪.*♪$"),
    re.compile(r"^(BACKGROUND MUSIC|FOND MUSICAL)$", re.IGNORECASE),
]

EMOTIONAL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(oh|ah|mm|ohh|ahh|mmm|yes|oui|si|da|ja)+$",
        r"^(baby|honey|darling|chéri|amor|amore)+$",
        r"^(more|encore|más|mehr|di più|больше)+$",
        r"^(please|s'il te plaît|por favor|bitte|per favore|пожалуйста)+$",
        r"^(good|bon|bueno|gut|bene|хорошо)+$",
        r"^(rawr|roar|growl|purr|meow|woof|bark)+$",
        r"^(grr|grrr|rawrrr|raawwrr)+$",
        r"^(come here|viens ici|ven aquí)+$",
        r"i love you|je t'aime|te amo|ti amo|ich liebe dich|я люблю тебя",
        r"keep going|just like that|right here|hold on",
    )
]

ADULT_INDICATORS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(love|aime|amor)\b",
        r"\b(kiss|embrasse|beso)\b",
        r"\b(touch|touche|toca)\b",
        r"\b(beautiful|belle|hermosa)\b",
        r"\b(sexy|hot|caliente)\b",
        r"\b(baby|chéri|cariño)\b",
        r"\b(pleasure|plaisir|placer)\b",
        r"\b(desire|désir|deseo)\b",
    )
]

INTIMACY_KEYWORDS = (
    "love", "baby", "honey", "darling", "kiss", "touch", "feel", "want", "need", "desire",
    "beautiful", "gorgeous", "sexy", "hot", "pleasure", "passion", "intimate", "close",
    "moan", "whisper", "breathe", "gasp", "sigh", "mmm", "ahh", "ohh", "yes", "more",
    "amour", "chéri", "bébé", "ma belle", "embrasser", "toucher", "sentir", "vouloir",
    "désir", "plaisir", "intime", "proche", "gémir", "murmurer", "respirer",
    "soupirer", "oui", "encore", "plus",
    "i love you", "je t'aime", "come here", "viens ici", "so good", "c'est bon",
)

CONVERSATION_KEYWORDS = (
    "hello", "hi", "how", "what", "where", "when", "why", "think", "know", "say",
    "tell", "ask", "answer", "question", "talk", "speak", "listen", "hear",
    "salut", "bonjour", "comment", "quoi", "où", "quand", "pourquoi", "penser",
    "savoir", "dire", "parler", "écouter", "entendre",
)

_TOKEN_STRIP = re.compile(r"[^\w']+")


def _keyword_regex(keywords: Sequence[str]) -> re.Pattern[str]:
    alternatives = sorted({re.escape(k) for k in keywords}, key=len, reverse=True)
    return re.compile(r"\b(?:" + "|".join(alternatives) + r")\b", re.IGNORECASE)


@dataclass
class ContentAnalysis:
    type: ContentType
    confidence: float
    intimacy_ratio: float = 0.0
    conversation_ratio: float = 0.0
    word_count: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "confidence": round(self.confidence, 3),
            "intimacyRatio": round(self.intimacy_ratio, 4),
            "conversationRatio": round(self.conversation_ratio, 4),
            "wordCount": self.word_count,
        }


class ContentClassifier(Protocol):
    def classify(self, subtitles: Sequence[Subtitle]) -> ContentAnalysis: ...


class KeywordContentClassifier:
    """Lexical-ratio classifier: intimacy keywords first, then conversational ones."""

    def __init__(self, adult_ratio_threshold: float = 0.05, conversation_ratio_threshold: float = 0.10) -> None:
        self.adult_ratio_threshold = adult_ratio_threshold
        self.conversation_ratio_threshold = conversation_ratio_threshold
        self._intimacy = _keyword_regex(INTIMACY_KEYWORDS)
        self._conversation = _keyword_regex(CONVERSATION_KEYWORDS)

    def classify(self, subtitles: Sequence[Subtitle]) -> ContentAnalysis:
        text = " ".join(sub.text.lower() for sub in subtitles if not sub.placeholder)
        words = text.split()
        if not words:
            return ContentAnalysis(type=ContentType.GENERAL, confidence=0.5)

        intimacy_ratio = len(self._intimacy.findall(text)) / len(words)
        conversation_ratio = len(self._conversation.findall(text)) / len(words)
        if intimacy_ratio > self.adult_ratio_threshold:
            kind, confidence = ContentType.ADULT, min(intimacy_ratio * 10, 1.0)
        elif conversation_ratio > self.conversation_ratio_threshold:
            kind, confidence = ContentType.CONVERSATION, min(conversation_ratio * 5, 1.0)
        else:
            kind, confidence = ContentType.GENERAL, 0.5
        return ContentAnalysis(
            type=kind,
            confidence=confidence,
            intimacy_ratio=intimacy_ratio,
            conversation_ratio=conversation_ratio,
            word_count=len(words),
        )


def is_instruction_leakage(text: str) -> bool:
    return any(pattern.search(text) for pattern in INSTRUCTION_LEAKAGE_PATTERNS)


def is_technical_hallucination(text: str) -> bool:
    stripped = text.strip()
    return any(pattern.search(stripped) for pattern in NON_SPEECH_PATTERNS)


def is_emotional_expression(text: str) -> bool:
    stripped = text.strip()
    return any(pattern.search(stripped) for pattern in EMOTIONAL_PATTERNS)


def contains_adult_content(text: str) -> bool:
    return any(pattern.search(text) for pattern in ADULT_INDICATORS)


def is_extreme_repetition(text: str, threshold: int = 9, max_pattern_length: int = 5) -> bool:
    """One token repeated ``threshold`` times, or a short pattern repeated as often.

    >>> is_extreme_repetition("no no no no no no no no no no")
    True
    >>> is_extreme_repetition("no no no")
    False
    """
    tokens = [_TOKEN_STRIP.sub("", token.lower()) for token in text.split()]
    tokens = [token for token in tokens if token]
    if len(tokens) >= threshold and len(set(tokens)) == 1:
        return True

    compact = re.sub(r"\s+", "", text)
    pattern = re.compile(r"^(.{1,%d})\1{%d,}$" % (max_pattern_length, threshold - 1), re.IGNORECASE | re.DOTALL)
    return bool(pattern.match(compact))


@dataclass
class FilterResult:
    subtitles: list[Subtitle]
    analysis: ContentAnalysis
    removed: dict[str, int] = field(default_factory=dict)
    merged: int = 0

    @property
    def removed_total(self) -> int:
        return sum(self.removed.values())


@dataclass
class QualityStats:
    total_segments: int
    total_duration: float
    average_segment_length: float
    suspicious_segments: int
    emotional_segments: int
    adult_content_segments: int

    @property
    def suspicious_ratio(self) -> float:
        return self.suspicious_segments / self.total_segments if self.total_segments else 0.0


class ContentQualityFilter:
    def __init__(self, cfg: Optional[FilterConfig] = None, classifier: Optional[ContentClassifier] = None) -> None:
        self.cfg = cfg or FilterConfig()
        self.classifier = classifier or KeywordContentClassifier(
            self.cfg.adult_ratio_threshold, self.cfg.conversation_ratio_threshold
        )

    def _drop_reason(self, sub: Subtitle) -> Optional[str]:
        text = sub.text.strip()
        if not text:
            return "empty"
        if sub.placeholder:
            return None
        if is_instruction_leakage(text):
            return "instruction_leakage"
        if self._is_repetition(text):
            return "repetition"
        if is_technical_hallucination(text):
            return "non_speech"
        if sub.duration > self.cfg.max_duration_s:
            return "too_long"
        return None

    def _is_repetition(self, text: str) -> bool:
        return is_extreme_repetition(text, self.cfg.repetition_threshold, self.cfg.max_pattern_length)

    def _should_merge(self, current: Subtitle, nxt: Subtitle) -> bool:
        if current.placeholder or nxt.placeholder:
            return False
        if current.text.strip().lower() != nxt.text.strip().lower():
            return False
        if nxt.start - current.end >= self.cfg.merge_gap_s:
            return False
        # A merge may not create a span the next pass would drop as too long.
        return max(current.end, nxt.end) - current.start <= self.cfg.max_duration_s

    def _merge(self, subtitles: list[Subtitle]) -> tuple[list[Subtitle], int]:
        merged: list[Subtitle] = []
        count = 0
        for sub in subtitles:
            if merged and self._should_merge(merged[-1], sub):
                current = merged[-1]
                text = sub.text if len(sub.text.strip()) > len(current.text.strip()) else current.text
                merged[-1] = replace(current, end=max(current.end, sub.end), text=text)
                count += 1
                logger.debug("Merged identical subtitle %r", text)
                continue
            merged.append(sub)
        return merged, count

    def clean(self, subtitles: Sequence[Subtitle], language: str = "auto") -> FilterResult:
        removed: dict[str, int] = {}
        kept: list[Subtitle] = []
        for sub in subtitles:
            reason = self._drop_reason(sub)
            if reason is None:
                kept.append(replace(sub, text=sub.text.strip()))
            else:
                removed[reason] = removed.get(reason, 0) + 1
                logger.debug("Dropped subtitle %d (%s): %r", sub.index, reason, sub.text)

        if not kept:
            non_empty = [replace(sub, text=sub.text.strip()) for sub in subtitles if sub.text.strip()]
            if non_empty:
                logger.warning("Filter would remove all %d subtitles, keeping non-empty ones", len(non_empty))
                kept = non_empty
                removed = {"empty": len(subtitles) - len(non_empty)} if len(subtitles) > len(non_empty) else {}

        analysis = self.classifier.classify(kept)
        merged, merge_count = self._merge(kept)
        result = FilterResult(subtitles=reindex(merged), analysis=analysis, removed=removed, merged=merge_count)
        logger.info(
            "Filter (%s): kept %d of %d subtitles, content type %s (%.0f%%)",
            language,
            len(result.subtitles),
            len(subtitles),
            analysis.type.value,
            analysis.confidence * 100,
        )
        return result

    def validate_quality(self, subtitles: Sequence[Subtitle]) -> QualityStats:
        total_duration = 0.0
        suspicious = emotional = adult = 0
        for sub in subtitles:
            total_duration += sub.duration
            if sub.duration > self.cfg.max_duration_s or not sub.text.strip():
                suspicious += 1
            if is_emotional_expression(sub.text):
                emotional += 1
            if contains_adult_content(sub.text):
                adult += 1
        count = len(subtitles)
        return QualityStats(
            total_segments=count,
            total_duration=total_duration,
            average_segment_length=total_duration / count if count else 0.0,
            suspicious_segments=suspicious,
            emotional_segments=emotional,
            adult_content_segments=adult,
        )

    def is_acceptable(self, subtitles: Sequence[Subtitle]) -> bool:
        """Quality gate for a raw provider answer."""
        if not subtitles:
            return True
        return self.validate_quality(subtitles).suspicious_ratio <= self.cfg.suspicious_rejection_ratio
