from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .cancellation import CancellationToken
from .config import EngineConfig, PatternCatalog, load_pattern_catalog
from .corpus import CorpusIndex
from .detectors import TextDetector, create_detector
from .errors import (
    AnalysisCancelled,
    AnalysisError,
    AnalysisFailed,
    ConfigError,
    CorpusUnavailableError,
    EmptyInputError,
)
from .fingerprint import Fingerprinter
from .matching import SourceMatcher
from .models import (
    AnalysisResult,
    CheckType,
    DetectorOutput,
    Document,
    MatchedSource,
    NormalizedText,
)
from .normalization import CODE, PROSE, normalize
from .scoring import aggregate

logger = logging.getLogger(__name__)

SOURCE_MATCH = "source_match"
TEXT_DETECTORS = ("stylometry", "paraphrase")
EMPTY_OUTPUT = DetectorOutput(score=0.0)


class Analyzer:
    """Runs the detectors over one document and aggregates their output.

    An Analyzer is immutable after construction and may be shared between
    threads; every call to :meth:`analyze` is an independent run.
    """

    def __init__(
        self, config: EngineConfig | None = None, catalog: PatternCatalog | None = None
    ) -> None:
        self._config = config or EngineConfig()
        self._catalog = catalog or load_pattern_catalog(self._config.patterns_path)
        if self._config.paraphrase.section_confidence >= self._config.scoring.plagiarism_confidence:
            raise ConfigError(
                "Paraphrase confidence must stay below the plagiarism confidence."
            )
        self._fingerprinter = Fingerprinter(
            self._config.fingerprint.shingle_size, self._config.fingerprint.winnow_window
        )
        self._detectors: Dict[str, TextDetector] = {
            name: create_detector(name, self._config, self._catalog) for name in TEXT_DETECTORS
        }

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def catalog(self) -> PatternCatalog:
        return self._catalog

    @property
    def fingerprinter(self) -> Fingerprinter:
        return self._fingerprinter

    @property
    def scoring_version(self) -> str:
        return f"{self._config.scoring.formula_version}/{self._catalog.version}"

    def analyze(
        self,
        text: str,
        check_type: CheckType | str = CheckType.PLAGIARISM,
        corpus: CorpusIndex | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> AnalysisResult:
        """Analyze text and return an AnalysisResult.

        Raises EmptyInputError for blank text, AnalysisCancelled when the token
        is cancelled or its deadline passes, and AnalysisFailed (including
        CorpusUnavailableError when corpus failures are not tolerated) for any
        other fault. A partial result is never returned.
        """
        started = time.perf_counter()
        check = CheckType(check_type)
        if text is None or not text.strip():
            raise EmptyInputError()
        # Per-run token: the caller's token is observed, never mutated.
        token = CancellationToken(self._config.pipeline.timeout_seconds, parent=cancel)
        enabled = self._config.detectors_for(check.value)
        mode = CODE if check is CheckType.CODE_SIMILARITY else PROSE

        token.check()
        try:
            normalized = normalize(text, mode=mode)
        except AnalysisError:
            raise
        except Exception as exc:
            raise AnalysisFailed(f"Normalization failed: {exc}") from exc
        token.check()
        logger.info(
            "Analyzing %s check: %d words, %d sentences, detectors=%s",
            check.value,
            normalized.word_count,
            normalized.sentence_count,
            ",".join(enabled),
        )

        degraded: List[str] = []
        tasks: Dict[str, Tuple[Any, ...]] = {}
        if SOURCE_MATCH in enabled:
            if corpus is None:
                degraded.append("No reference corpus supplied; source matching skipped.")
                logger.warning("Source matching enabled but no corpus supplied")
            else:
                tasks[SOURCE_MATCH] = (self._match_sources, normalized, corpus, token, mode)
        for name in TEXT_DETECTORS:
            if name in enabled:
                tasks[name] = (self._detectors[name].detect, normalized, token)

        outputs = self._run_tasks(tasks, token, degraded)

        sources: List[MatchedSource] = outputs.get(SOURCE_MATCH) or []
        result = aggregate(
            normalized,
            sources,
            outputs.get("stylometry") or EMPTY_OUTPUT,
            outputs.get("paraphrase") or EMPTY_OUTPUT,
            self._config.scoring,
            check_type=check,
            scoring_version=self.scoring_version,
            degraded_reasons=degraded,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )
        logger.info(
            "Analysis complete: overall=%.1f ai=%.1f paraphrase=%.1f sources=%d sections=%d",
            result.overall_score,
            result.ai_score,
            result.paraphrase_score,
            result.source_count,
            result.flagged_section_count,
        )
        return result

    def analyze_document(
        self,
        document: Document,
        check_type: CheckType | str = CheckType.PLAGIARISM,
        corpus: CorpusIndex | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> AnalysisResult:
        """Analyze a Document; the document itself is never modified."""
        logger.info("Analyzing document %s (%d chars)", document.doc_id, document.length)
        return self.analyze(document.text, check_type, corpus, cancel=cancel)

    def _match_sources(
        self,
        normalized: NormalizedText,
        corpus: CorpusIndex,
        token: CancellationToken,
        mode: str,
    ) -> List[MatchedSource]:
        fingerprints = self._fingerprinter.index(normalized, token)
        matcher = SourceMatcher(self._config.matcher, self._fingerprinter, mode=mode)
        return matcher.match(normalized, fingerprints, corpus, token)

    def _run_tasks(
        self,
        tasks: Dict[str, Tuple[Any, ...]],
        token: CancellationToken,
        degraded: List[str],
    ) -> Dict[str, Any]:
        """Fan tasks out to a thread pool and join them all before returning."""
        if not tasks:
            return {}
        outputs: Dict[str, Any] = {}
        failures: Dict[str, BaseException] = {}
        cancelled = False
        workers = max(1, min(self._config.pipeline.max_workers, len(tasks)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="veritext") as pool:
            futures: Dict[Future[Any], str] = {
                pool.submit(func, *args): name for name, (func, *args) in tasks.items()
            }
            for future in as_completed(futures):
                name = futures[future]
                exc = future.exception()
                if exc is None:
                    outputs[name] = future.result()
                    continue
                if isinstance(exc, AnalysisCancelled):
                    cancelled = True
                    continue
                if (
                    isinstance(exc, CorpusUnavailableError)
                    and self._config.matcher.tolerate_corpus_failure
                ):
                    logger.warning("Corpus unavailable, degrading source match: %s", exc)
                    degraded.append(f"Corpus unavailable: {exc.reason}")
                    outputs[name] = []
                    continue
                failures[name] = exc
                # Stop sibling detectors early; the run is already lost.
                # Only the run token is cancelled, callers may reuse theirs.
                token.cancel(f"{name} failed.")

        if failures:
            name, exc = sorted(failures.items())[0]
            logger.error("Detector %s failed: %s", name, exc)
            if isinstance(exc, AnalysisFailed):
                raise exc
            raise AnalysisFailed(f"{name} detector failed: {exc}") from exc
        if cancelled:
            raise AnalysisCancelled(token.reason)
        return outputs


def analyze(
    text: str,
    check_type: CheckType | str = CheckType.PLAGIARISM,
    corpus: CorpusIndex | None = None,
    *,
    config: EngineConfig | None = None,
    cancel: CancellationToken | None = None,
) -> AnalysisResult:
    """Convenience wrapper around Analyzer(config).analyze(...)."""
    return Analyzer(config).analyze(text, check_type, corpus, cancel=cancel)


COMPLETED = "completed"
CANCELLED = "cancelled"
FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CheckOutcome:
    """Terminal state of a check as seen by the orchestrating layer."""

    status: str
    processing_time_ms: int
    result: AnalysisResult | None = None
    error_message: str | None = None
    error_type: str | None = None

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "status": self.status,
            "processingTimeMs": self.processing_time_ms,
            "errorMessage": self.error_message,
            "errorType": self.error_type,
        }
        if self.result is not None:
            record.update(self.result.to_record())
            record["processingTimeMs"] = self.processing_time_ms
        return record


def run_check(
    text: str,
    check_type: CheckType | str = CheckType.PLAGIARISM,
    corpus: CorpusIndex | None = None,
    *,
    analyzer: Analyzer | None = None,
    cancel: CancellationToken | None = None,
) -> CheckOutcome:
    """Run an analysis and fold every outcome into a CheckOutcome."""
    started = time.perf_counter()
    runner = analyzer or Analyzer()

    def elapsed() -> int:
        return int((time.perf_counter() - started) * 1000)

    try:
        result = runner.analyze(text, check_type, corpus, cancel=cancel)
    except AnalysisCancelled as exc:
        logger.info("Check cancelled: %s", exc)
        return CheckOutcome(
            status=CANCELLED,
            processing_time_ms=elapsed(),
            error_message=str(exc),
            error_type=type(exc).__name__,
        )
    except (AnalysisError, ValueError) as exc:
        logger.warning("Check failed: %s", exc)
        return CheckOutcome(
            status=FAILED,
            processing_time_ms=elapsed(),
            error_message=str(exc) or "Analysis failed",
            error_type=type(exc).__name__,
        )
    return CheckOutcome(status=COMPLETED, processing_time_ms=elapsed(), result=result)
