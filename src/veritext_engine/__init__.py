"""
veritext_engine package exports convenience helpers for library consumers.
"""

from __future__ import annotations

from .cancellation import CancellationToken
from .config import EngineConfig, config_from_dict, config_from_yaml, load_config
from .corpus import HttpCorpusIndex, InMemoryCorpusIndex, build_corpus_index
from .errors import (
    AnalysisCancelled,
    AnalysisError,
    AnalysisFailed,
    CorpusUnavailableError,
    EmptyInputError,
)
from .models import AnalysisResult, CheckType, CorpusDocument, Document
from .pipeline import Analyzer, CheckOutcome, analyze, run_check

__all__ = [
    "EngineConfig",
    "config_from_dict",
    "config_from_yaml",
    "load_config",
    "CancellationToken",
    "InMemoryCorpusIndex",
    "HttpCorpusIndex",
    "build_corpus_index",
    "AnalysisError",
    "AnalysisCancelled",
    "AnalysisFailed",
    "CorpusUnavailableError",
    "EmptyInputError",
    "AnalysisResult",
    "CheckType",
    "CorpusDocument",
    "Document",
    "Analyzer",
    "CheckOutcome",
    "analyze",
    "run_check",
]

__version__ = "0.1.0"
