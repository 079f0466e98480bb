from __future__ import annotations

from abc import ABC, abstractmethod

from ..cancellation import CancellationToken
from ..models import DetectorOutput, NormalizedText


class TextDetector(ABC):
    """Abstract detector that scores normalized text on a 0-100 scale."""

    name: str = "detector"

    @abstractmethod
    def detect(
        self, normalized: NormalizedText, cancel: CancellationToken | None = None
    ) -> DetectorOutput:
        """Return a score and any flagged sections for the input text."""
        raise NotImplementedError
