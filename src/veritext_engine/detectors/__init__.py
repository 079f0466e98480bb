from __future__ import annotations

from typing import TYPE_CHECKING

from .base import TextDetector
from .paraphrase import ParaphraseDetector
from .stylometry import StylometricDetector

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from ..config import EngineConfig, PatternCatalog

__all__ = [
    "TextDetector",
    "StylometricDetector",
    "ParaphraseDetector",
    "create_detector",
]


def create_detector(
    name: str, config: "EngineConfig", catalog: "PatternCatalog"
) -> TextDetector:
    """Factory for building text detectors by name."""
    normalized = name.lower().strip()
    if normalized in {"stylometry", "ai", "ai_detection"}:
        return StylometricDetector(config.stylometry, catalog)
    if normalized == "paraphrase":
        return ParaphraseDetector(config.paraphrase, catalog)
    raise ValueError(f"Unknown detector '{name}'.")
