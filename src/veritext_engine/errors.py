from __future__ import annotations


class AnalysisError(Exception):
    """Base class for every error raised by the analysis pipeline."""


class EmptyInputError(AnalysisError, ValueError):
    """Raised when the text to analyze is empty or whitespace-only."""

    def __init__(self, message: str = "Document text is empty.") -> None:
        super().__init__(message)


class AnalysisCancelled(AnalysisError):
    """Raised when the caller abandons a run or its deadline passes."""


class AnalysisFailed(AnalysisError):
    """Raised when a run aborts because of an internal fault."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CorpusUnavailableError(AnalysisFailed):
    """Raised when the reference corpus cannot be queried."""


class ConfigError(ValueError):
    """Raised when configuration or pattern catalog data is malformed."""
