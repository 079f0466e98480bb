from __future__ import annotations

import logging
import re
from typing import List, Tuple

from ..cancellation import CancellationToken
from ..config import ParaphraseSettings, PatternCatalog
from ..models import DetectorOutput, FlaggedSection, NormalizedText, SectionType, Severity
from .base import TextDetector

logger = logging.getLogger(__name__)

EXPLANATION = "Common academic phrase that may indicate paraphrasing"


class ParaphraseDetector(TextDetector):
    """Flags academic transition and hedging phrases as a weak paraphrase signal."""

    name = "paraphrase"

    def __init__(self, settings: ParaphraseSettings, catalog: PatternCatalog) -> None:
        self._settings = settings
        self._severity = Severity(settings.section_severity)
        self._phrases: Tuple[re.Pattern[str], ...] = tuple(
            _phrase_regex(phrase) for phrase in catalog.academic_phrases
        )

    def detect(
        self, normalized: NormalizedText, cancel: CancellationToken | None = None
    ) -> DetectorOutput:
        sections: List[FlaggedSection] = []
        for regex in self._phrases:
            if cancel is not None:
                cancel.check()
            for match in regex.finditer(normalized.text):
                sections.append(
                    FlaggedSection(
                        type=SectionType.PARAPHRASED,
                        start=match.start(),
                        end=match.end(),
                        confidence=self._settings.section_confidence,
                        severity=self._severity,
                        explanation=EXPLANATION,
                        text=match.group(0),
                    )
                )
        score = max(0.0, min(100.0, self._settings.phrase_weight * len(sections)))
        logger.debug("Paraphrase phrases=%d score=%.1f", len(sections), score)
        return DetectorOutput(
            score=score,
            sections=tuple(sections),
            indicators={"phrase_matches": len(sections)},
        )


def _phrase_regex(phrase: str) -> re.Pattern[str]:
    # Whitespace inside a phrase matches any run of whitespace, e.g. line breaks.
    parts = [re.escape(part) for part in phrase.split()]
    return re.compile(r"\b" + r"\s+".join(parts) + r"\b", re.IGNORECASE)
