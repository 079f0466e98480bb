from __future__ import annotations

import logging
import re
from typing import Dict, List

import numpy as np

from ..cancellation import CancellationToken
from ..config import PatternCatalog, StylometrySettings
from ..models import DetectorOutput, FlaggedSection, NormalizedText, SectionType, Severity
from .base import TextDetector

logger = logging.getLogger(__name__)


class StylometricDetector(TextDetector):
    """
    Heuristic AI-generation detector built from three independent indicators:

    * each match of a catalog pattern (one flagged section per match),
    * unusually uniform sentence lengths over enough sentences,
    * a high density of formal connectors relative to sentence count.

    The score is a weighted sum of indicator counts clipped to [0, 100].
    """

    name = "stylometry"

    def __init__(self, settings: StylometrySettings, catalog: PatternCatalog) -> None:
        self._settings = settings
        self._catalog = catalog
        self._severity = Severity(settings.section_severity)
        self._formal_re = _word_alternation(catalog.formal_markers)

    def detect(
        self, normalized: NormalizedText, cancel: CancellationToken | None = None
    ) -> DetectorOutput:
        settings = self._settings
        sections: List[FlaggedSection] = []
        for pattern in self._catalog.ai_patterns:
            if cancel is not None:
                cancel.check()
            for match in pattern.regex.finditer(normalized.text):
                if match.end() <= match.start():
                    continue
                sections.append(
                    FlaggedSection(
                        type=SectionType.AI_GENERATED,
                        start=match.start(),
                        end=match.end(),
                        confidence=settings.section_confidence,
                        severity=self._severity,
                        explanation=pattern.explanation,
                        text=match.group(0),
                    )
                )

        if cancel is not None:
            cancel.check()
        variance = sentence_length_variance(normalized)
        uniform = (
            normalized.sentence_count > settings.min_sentences
            and variance < settings.variance_threshold
        )
        formal_count = (
            sum(1 for _ in self._formal_re.finditer(normalized.text))
            if self._formal_re is not None
            else 0
        )
        formal = formal_count > normalized.sentence_count * settings.formal_marker_ratio

        indicators: Dict[str, int] = {
            "pattern_matches": len(sections),
            "uniform_sentences": int(uniform),
            "formal_density": int(formal),
        }
        raw = (
            settings.pattern_weight * indicators["pattern_matches"]
            + settings.uniformity_weight * indicators["uniform_sentences"]
            + settings.formal_weight * indicators["formal_density"]
        )
        score = max(0.0, min(100.0, raw))
        logger.debug(
            "Stylometry indicators=%s variance=%.1f score=%.1f", indicators, variance, score
        )
        return DetectorOutput(score=score, sections=tuple(sections), indicators=indicators)


def sentence_length_variance(normalized: NormalizedText) -> float:
    """Population variance of sentence character lengths (0 for no sentences)."""
    if not normalized.sentences:
        return 0.0
    lengths = np.fromiter(
        (sentence.length for sentence in normalized.sentences),
        dtype=float,
        count=len(normalized.sentences),
    )
    return float(np.var(lengths))


def _word_alternation(words: tuple[str, ...]) -> re.Pattern[str] | None:
    if not words:
        return None
    body = "|".join(re.escape(word) for word in words)
    return re.compile(rf"\b(?:{body})\b", re.IGNORECASE)
