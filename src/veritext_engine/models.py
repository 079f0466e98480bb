from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Tuple


class CheckType(str, Enum):
    """Kind of check requested by the caller."""

    PLAGIARISM = "plagiarism"
    AI_DETECTION = "ai_detection"
    PARAPHRASE = "paraphrase"
    CODE_SIMILARITY = "code_similarity"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SectionType(str, Enum):
    PLAGIARISM = "plagiarism"
    AI_GENERATED = "ai_generated"
    PARAPHRASED = "paraphrased"


class SourceType(str, Enum):
    WEB = "web"
    ACADEMIC = "academic"
    DATABASE = "database"
    STUDENT_PAPER = "student_paper"


@dataclass(frozen=True, slots=True)
class Document:
    """Represents an input document."""

    doc_id: str
    text: str
    language: str | None = None

    @property
    def length(self) -> int:
        return len(self.text)


@dataclass(frozen=True, slots=True)
class Token:
    """A token with inclusive-exclusive character offsets into the original text."""

    text: str
    norm: str
    start: int
    end: int


@dataclass(frozen=True, slots=True)
class Sentence:
    """A sentence span into the original text."""

    start: int
    end: int
    word_count: int

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class NormalizedText:
    """Tokens and sentence boundaries of a document, all offsets into ``text``."""

    text: str
    tokens: Tuple[Token, ...]
    sentences: Tuple[Sentence, ...]
    word_count: int
    mode: str = "prose"

    @property
    def sentence_count(self) -> int:
        return len(self.sentences)

    @property
    def token_count(self) -> int:
        return len(self.tokens)

    def segment(self, start: int, end: int) -> str:
        """Return the original substring for ``[start, end)``."""
        return self.text[start:end]

    def token_span(self, token_start: int, token_end: int) -> Tuple[int, int]:
        """Map a half-open token index range onto character offsets."""
        return self.tokens[token_start].start, self.tokens[token_end - 1].end


@dataclass(frozen=True, slots=True)
class Fingerprint:
    """Hash of one shingle plus the ranges it was derived from."""

    hash: int
    token_start: int
    token_end: int
    start: int
    end: int


@dataclass(frozen=True, slots=True)
class FingerprintSet:
    """Mapping of shingle hash to every place that hash occurs in a document."""

    k: int
    token_count: int
    entries: Mapping[int, Tuple[Fingerprint, ...]]

    def __contains__(self, value: object) -> bool:
        return value in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[int]:
        return iter(self.hashes())

    def hashes(self) -> List[int]:
        return sorted(self.entries)

    def positions(self, value: int) -> Tuple[Fingerprint, ...]:
        return self.entries.get(value, ())

    @property
    def shingle_count(self) -> int:
        return sum(len(items) for items in self.entries.values())


@dataclass(frozen=True, slots=True)
class CorpusDocument:
    """A reference document the analyzed text can be matched against."""

    doc_id: str
    text: str
    title: str | None = None
    url: str | None = None
    author: str | None = None
    source_type: SourceType = SourceType.WEB


@dataclass(frozen=True, slots=True)
class MatchSpan:
    """One contiguous run of the document attributed to a source."""

    start: int
    end: int
    token_start: int
    token_end: int
    source_start: int
    source_end: int

    @property
    def token_length(self) -> int:
        return self.token_end - self.token_start


@dataclass(frozen=True, slots=True)
class MatchedSource:
    """Corpus document with the spans of the analyzed text it covers."""

    source_id: str
    spans: Tuple[MatchSpan, ...]
    match_percentage: float
    severity: Severity
    title: str | None = None
    url: str | None = None
    author: str | None = None
    source_type: SourceType = SourceType.WEB

    @property
    def start(self) -> int:
        return min(span.start for span in self.spans)

    @property
    def end(self) -> int:
        return max(span.end for span in self.spans)

    @property
    def matched_tokens(self) -> int:
        return sum(span.token_length for span in self.spans)


@dataclass(frozen=True, slots=True)
class FlaggedSection:
    """A suspicious span of the analyzed document."""

    type: SectionType
    start: int
    end: int
    confidence: float
    severity: Severity
    explanation: str
    text: str = ""
    source_ref: str | None = None

    def __post_init__(self) -> None:
        if self.start < 0 or self.start >= self.end:
            raise ValueError(
                f"Invalid section offsets [{self.start}, {self.end}) for {self.type.value}."
            )
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence {self.confidence} outside [0, 1].")
        if self.source_ref is not None and self.type is not SectionType.PLAGIARISM:
            raise ValueError("source_ref is only valid for plagiarism sections.")


@dataclass(frozen=True, slots=True)
class DetectorOutput:
    """Score and flagged sections produced by one detector."""

    score: float
    sections: Tuple[FlaggedSection, ...] = ()
    indicators: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Immutable output of one analysis run."""

    overall_score: float
    ai_score: float
    paraphrase_score: float
    originality_score: float
    word_count: int
    sentence_count: int
    matched_sources: Tuple[MatchedSource, ...]
    flagged_sections: Tuple[FlaggedSection, ...]
    check_type: CheckType = CheckType.PLAGIARISM
    scoring_version: str = ""
    degraded: bool = False
    degraded_reasons: Tuple[str, ...] = ()
    processing_time_ms: int = 0

    @property
    def source_count(self) -> int:
        return len(self.matched_sources)

    @property
    def flagged_section_count(self) -> int:
        return len(self.flagged_sections)

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the record shape the persistence layer stores."""
        return {
            "overallScore": self.overall_score,
            "aiScore": self.ai_score,
            "paraphraseScore": self.paraphrase_score,
            "originalityScore": self.originality_score,
            "wordCount": self.word_count,
            "sentenceCount": self.sentence_count,
            "sourceCount": self.source_count,
            "flaggedSectionCount": self.flagged_section_count,
            "processingTimeMs": self.processing_time_ms,
            "checkType": self.check_type.value,
            "scoringVersion": self.scoring_version,
            "degraded": self.degraded,
            "degradedReasons": list(self.degraded_reasons),
            "matchedSources": [_source_record(s) for s in self.matched_sources],
            "flaggedSections": [_section_record(s) for s in self.flagged_sections],
        }


def _source_record(source: MatchedSource) -> Dict[str, Any]:
    return {
        "sourceId": source.source_id,
        "sourceTitle": source.title,
        "sourceUrl": source.url,
        "sourceAuthor": source.author,
        "sourceType": source.source_type.value,
        "matchPercentage": source.match_percentage,
        "severity": source.severity.value,
        "startPosition": source.start,
        "endPosition": source.end,
        "spans": [
            {
                "startPosition": span.start,
                "endPosition": span.end,
                "sourceStartPosition": span.source_start,
                "sourceEndPosition": span.source_end,
            }
            for span in source.spans
        ],
    }


def _section_record(section: FlaggedSection) -> Dict[str, Any]:
    return {
        "sectionType": section.type.value,
        "text": section.text,
        "startPosition": section.start,
        "endPosition": section.end,
        "confidence": section.confidence,
        "severity": section.severity.value,
        "explanation": section.explanation,
        "sourceRef": section.source_ref,
    }
