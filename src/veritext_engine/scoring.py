from __future__ import annotations

from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Sequence, Tuple

from .config import ScoringSettings
from .errors import AnalysisFailed
from .models import (
    AnalysisResult,
    CheckType,
    DetectorOutput,
    FlaggedSection,
    MatchedSource,
    NormalizedText,
    SectionType,
    Severity,
)

ONE_DECIMAL = Decimal("0.1")
PLAGIARISM_EXPLANATION = "Text matches {title}"


def severity_for(score: float) -> Severity:
    """Bucket a 0-100 score into a severity level."""
    if score < 20:
        return Severity.LOW
    if score < 40:
        return Severity.MEDIUM
    if score < 70:
        return Severity.HIGH
    return Severity.CRITICAL


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def round_score(value: float) -> float:
    """Round half-up to one decimal place."""
    return float(Decimal(repr(float(value))).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP))


def source_match_score(sources: Sequence[MatchedSource]) -> float:
    """Mean match percentage across matched sources (0 when none)."""
    if not sources:
        return 0.0
    return sum(source.match_percentage for source in sources) / len(sources)


def plagiarism_sections(
    normalized: NormalizedText,
    sources: Sequence[MatchedSource],
    confidence: float,
) -> List[FlaggedSection]:
    """Create one plagiarism section per matched span."""
    sections: List[FlaggedSection] = []
    for source in sources:
        label = source.title or source.url or source.source_id
        for span in source.spans:
            sections.append(
                FlaggedSection(
                    type=SectionType.PLAGIARISM,
                    start=span.start,
                    end=span.end,
                    confidence=confidence,
                    severity=source.severity,
                    explanation=PLAGIARISM_EXPLANATION.format(title=label),
                    text=normalized.segment(span.start, span.end),
                    source_ref=source.source_id,
                )
            )
    return sections


def merge_sections(groups: Iterable[Iterable[FlaggedSection]]) -> List[FlaggedSection]:
    """Concatenate sections, drop exact (type, range) duplicates, sort by offset."""
    seen: set[Tuple[SectionType, int, int]] = set()
    merged: List[FlaggedSection] = []
    for group in groups:
        for section in group:
            key = (section.type, section.start, section.end)
            if key in seen:
                continue
            seen.add(key)
            merged.append(section)
    merged.sort(key=lambda s: (s.start, s.end, s.type.value))
    return merged


def validate_offsets(
    length: int,
    sources: Sequence[MatchedSource],
    sections: Sequence[FlaggedSection],
) -> None:
    """Abort the run if any emitted offset falls outside the document."""
    source_ids = {source.source_id for source in sources}
    for source in sources:
        for span in source.spans:
            if not 0 <= span.start < span.end <= length:
                raise AnalysisFailed(
                    f"Span [{span.start}, {span.end}) of source '{source.source_id}' "
                    f"is outside the document (length {length})."
                )
    for section in sections:
        if not 0 <= section.start < section.end <= length:
            raise AnalysisFailed(
                f"Section [{section.start}, {section.end}) is outside the document "
                f"(length {length})."
            )
        if section.source_ref is not None and section.source_ref not in source_ids:
            raise AnalysisFailed(
                f"Section references unknown source '{section.source_ref}'."
            )


def aggregate(
    normalized: NormalizedText,
    sources: Sequence[MatchedSource],
    ai: DetectorOutput,
    paraphrase: DetectorOutput,
    settings: ScoringSettings,
    *,
    check_type: CheckType = CheckType.PLAGIARISM,
    scoring_version: str = "",
    degraded_reasons: Sequence[str] = (),
    processing_time_ms: int = 0,
) -> AnalysisResult:
    """Combine detector outputs into the final AnalysisResult."""
    source_score = source_match_score(sources)
    ai_score = clamp(ai.score)
    paraphrase_score = clamp(paraphrase.score)
    overall = clamp(
        source_score * settings.source_weight
        + ai_score * settings.ai_weight
        + paraphrase_score * settings.paraphrase_weight
    )
    originality = max(0.0, 100.0 - overall)

    sections = merge_sections(
        [
            plagiarism_sections(normalized, sources, settings.plagiarism_confidence),
            ai.sections,
            paraphrase.sections,
        ]
    )
    validate_offsets(len(normalized.text), sources, sections)

    return AnalysisResult(
        overall_score=round_score(overall),
        ai_score=round_score(ai_score),
        paraphrase_score=round_score(paraphrase_score),
        originality_score=round_score(originality),
        word_count=normalized.word_count,
        sentence_count=normalized.sentence_count,
        matched_sources=tuple(
            replace(source, match_percentage=round_score(source.match_percentage))
            for source in sources
        ),
        flagged_sections=tuple(sections),
        check_type=check_type,
        scoring_version=scoring_version,
        degraded=bool(degraded_reasons),
        degraded_reasons=tuple(degraded_reasons),
        processing_time_ms=processing_time_ms,
    )
