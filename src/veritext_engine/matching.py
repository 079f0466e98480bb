from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from .cancellation import CancellationToken
from .config import MatcherSettings
from .corpus import CorpusIndex
from .errors import AnalysisFailed, EmptyInputError
from .fingerprint import Fingerprinter
from .models import (
    CorpusDocument,
    Fingerprint,
    FingerprintSet,
    MatchedSource,
    MatchSpan,
    NormalizedText,
)
from .normalization import PROSE, normalize
from .scoring import severity_for

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Interval:
    """Token range in the document paired with a token range in a source.

    ``pieces`` keeps every single-alignment run folded into the interval as
    ``(token_start, token_end, source_start)``; the source range is the outer
    bound of those runs.
    """

    token_start: int
    token_end: int
    source_start: int
    source_end: int
    pieces: List[Tuple[int, int, int]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.pieces:
            self.pieces = [(self.token_start, self.token_end, self.source_start)]

    @property
    def length(self) -> int:
        return self.token_end - self.token_start

    @property
    def diagonal(self) -> int:
        """Alignment of the last run: document token index minus source token index."""
        token_start, _, source_start = self.pieces[-1]
        return token_start - source_start

    def covers(self, token_start: int, token_end: int) -> bool:
        return self.token_start <= token_start and token_end <= self.token_end

    def copy(self) -> Interval:
        return Interval(
            self.token_start,
            self.token_end,
            self.source_start,
            self.source_end,
            list(self.pieces),
        )


@dataclass(slots=True)
class SourceView:
    """A corpus document normalized and fingerprinted for confirmation."""

    document: CorpusDocument
    normalized: NormalizedText
    fingerprints: FingerprintSet
    norms: Tuple[str, ...]


class SourceMatcher:
    """Find corpus documents that share confirmed token runs with a document."""

    def __init__(
        self,
        settings: MatcherSettings,
        fingerprinter: Fingerprinter,
        mode: str = PROSE,
    ) -> None:
        self._settings = settings
        self._fingerprinter = fingerprinter
        self._mode = mode

    def match(
        self,
        normalized: NormalizedText,
        fingerprints: FingerprintSet,
        corpus: CorpusIndex,
        cancel: CancellationToken | None = None,
    ) -> List[MatchedSource]:
        """Return matched sources ordered by match percentage, highest first."""
        cancel = cancel or CancellationToken()
        token_count = normalized.token_count
        if token_count == 0 or not len(fingerprints):
            return []
        if corpus.shingle_size != fingerprints.k:
            raise AnalysisFailed(
                f"Corpus shingle size {corpus.shingle_size} does not match "
                f"document shingle size {fingerprints.k}."
            )

        views: Dict[str, SourceView | None] = {}
        hits = self._collect_hits(normalized, fingerprints, corpus, views, cancel)
        if not hits:
            return []

        min_tokens = min(
            self._settings.min_match_tokens or fingerprints.k, token_count
        )
        merged: Dict[str, List[Interval]] = {}
        for doc_id in sorted(hits):
            cancel.check()
            spans = [
                interval
                for interval in merge_intervals(hits[doc_id], self._settings.merge_gap_tokens)
                if interval.length >= min_tokens
            ]
            if spans:
                merged[doc_id] = spans

        owned = resolve_overlaps(merged, token_count, min_tokens, cancel)
        sources: List[MatchedSource] = []
        for doc_id, intervals in owned.items():
            view = views[doc_id]
            if view is None:  # pragma: no cover - hits only exist for loaded views
                continue
            sources.append(self._build_source(normalized, view, intervals))
        sources.sort(key=lambda s: (-s.match_percentage, s.source_id))
        logger.debug(
            "Matched %d sources from %d candidate documents", len(sources), len(views)
        )
        return sources

    def _collect_hits(
        self,
        normalized: NormalizedText,
        fingerprints: FingerprintSet,
        corpus: CorpusIndex,
        views: Dict[str, SourceView | None],
        cancel: CancellationToken,
    ) -> Dict[str, List[Interval]]:
        hits: Dict[str, List[Interval]] = defaultdict(list)
        # Extended intervals grouped per (source, diagonal) so repeated seeds are skipped.
        extended: Dict[Tuple[str, int], List[Interval]] = defaultdict(list)
        target_norms = tuple(token.norm for token in normalized.tokens)

        for value in fingerprints.hashes():
            cancel.check()
            candidates = sorted(set(corpus.lookup(value, cancel)))
            for doc_id in candidates:
                if doc_id not in views:
                    views[doc_id] = self._load_view(corpus, doc_id, cancel)
                view = views[doc_id]
                if view is None:
                    continue
                for target_fp in fingerprints.positions(value):
                    for source_fp in view.fingerprints.positions(value):
                        if not _confirm(target_norms, target_fp, view.norms, source_fp):
                            continue
                        key = (doc_id, target_fp.token_start - source_fp.token_start)
                        if any(
                            seen.covers(target_fp.token_start, target_fp.token_end)
                            for seen in extended[key]
                        ):
                            continue
                        interval = Interval(
                            target_fp.token_start,
                            target_fp.token_end,
                            source_fp.token_start,
                            source_fp.token_end,
                        )
                        if self._settings.extend_matches:
                            interval = _extend(interval, target_norms, view.norms)
                        extended[key].append(interval)
                        hits[doc_id].append(interval)
        return hits

    def _load_view(
        self, corpus: CorpusIndex, doc_id: str, cancel: CancellationToken
    ) -> SourceView | None:
        document = corpus.get_document(doc_id, cancel)
        cancel.check()
        try:
            normalized = normalize(document.text, mode=self._mode)
        except EmptyInputError:
            logger.warning("Corpus document %s has no text; ignoring", doc_id)
            return None
        fingerprints = corpus.fingerprints(doc_id)
        if (
            fingerprints is None
            or fingerprints.k != self._fingerprinter.k
            or fingerprints.token_count != normalized.token_count
        ):
            fingerprints = self._fingerprinter.index(normalized, cancel)
        return SourceView(
            document=document,
            normalized=normalized,
            fingerprints=fingerprints,
            norms=tuple(token.norm for token in normalized.tokens),
        )

    def _build_source(
        self,
        normalized: NormalizedText,
        view: SourceView,
        intervals: Sequence[Interval],
    ) -> MatchedSource:
        spans = tuple(_to_span(normalized, view.normalized, interval) for interval in intervals)
        covered = sum(interval.length for interval in intervals)
        percentage = min(100.0, covered / normalized.token_count * 100.0)
        document = view.document
        return MatchedSource(
            source_id=document.doc_id,
            spans=spans,
            match_percentage=percentage,
            severity=severity_for(percentage),
            title=document.title,
            url=document.url,
            author=document.author,
            source_type=document.source_type,
        )


def merge_intervals(intervals: Sequence[Interval], gap_tokens: int) -> List[Interval]:
    """Merge intervals that continue each other in both document and source.

    Two intervals merge when their document gap is at most gap_tokens and they
    either share an alignment or the second picks up the source within
    gap_tokens after the first ends. Runs copied from unrelated parts of the
    same source stay separate so a span never covers source text in between.
    """
    if not intervals:
        return []
    ordered = sorted(intervals, key=lambda i: (i.token_start, i.token_end))
    merged: List[Interval] = [ordered[0].copy()]
    for interval in ordered[1:]:
        current = merged[-1]
        if _continues(current, interval, gap_tokens):
            current.token_end = max(current.token_end, interval.token_end)
            current.source_start = min(current.source_start, interval.source_start)
            current.source_end = max(current.source_end, interval.source_end)
            current.pieces.extend(interval.pieces)
        else:
            merged.append(interval.copy())
    return merged


def _continues(current: Interval, interval: Interval, gap_tokens: int) -> bool:
    token_gap = interval.token_start - current.token_end
    if token_gap > gap_tokens:
        return False
    if interval.token_start - interval.source_start == current.diagonal:
        return True
    source_gap = interval.source_start - current.source_end
    return token_gap >= 0 and 0 <= source_gap <= gap_tokens


def resolve_overlaps(
    merged: Dict[str, List[Interval]],
    token_count: int,
    min_tokens: int,
    cancel: CancellationToken | None = None,
) -> Dict[str, List[Interval]]:
    """
    Give each contested token to the source with the higher raw coverage.

    Sources are ranked by covered tokens (ties broken by id); a lower-ranked
    source keeps only the parts of its intervals no higher source claimed,
    and fragments shorter than min_tokens are dropped. Intervals of the same
    source that overlap each other are claimed in document order.
    """
    ranked = sorted(merged.items(), key=lambda item: (-_coverage(item[1]), item[0]))
    claimed = [False] * token_count
    owned: Dict[str, List[Interval]] = {}
    for doc_id, intervals in ranked:
        if cancel is not None:
            cancel.check()
        kept: List[Interval] = []
        for interval in sorted(intervals, key=lambda i: (i.token_start, -i.token_end)):
            for start, end in _unclaimed_runs(claimed, interval.token_start, interval.token_end):
                if end - start < min_tokens:
                    continue
                trimmed = _trim(interval, start, end)
                if trimmed is None:
                    continue
                kept.append(trimmed)
                for idx in range(start, end):
                    claimed[idx] = True
        if kept:
            owned[doc_id] = sorted(kept, key=lambda i: i.token_start)
    return owned


def _coverage(intervals: Sequence[Interval]) -> int:
    covered = 0
    cursor = 0
    for interval in sorted(intervals, key=lambda i: i.token_start):
        start = max(interval.token_start, cursor)
        if interval.token_end > start:
            covered += interval.token_end - start
        cursor = max(cursor, interval.token_end)
    return covered


def _unclaimed_runs(claimed: List[bool], start: int, end: int) -> List[Tuple[int, int]]:
    runs: List[Tuple[int, int]] = []
    run_start: int | None = None
    for idx in range(start, end):
        if claimed[idx]:
            if run_start is not None:
                runs.append((run_start, idx))
                run_start = None
        elif run_start is None:
            run_start = idx
    if run_start is not None:
        runs.append((run_start, end))
    return runs


def _trim(interval: Interval, start: int, end: int) -> Interval | None:
    """Cut an interval to [start, end), mapping each run to its own source offsets."""
    if start == interval.token_start and end == interval.token_end:
        return interval
    pieces: List[Tuple[int, int, int]] = []
    for token_start, token_end, source_start in interval.pieces:
        lo, hi = max(start, token_start), min(end, token_end)
        if lo < hi:
            pieces.append((lo, hi, source_start + lo - token_start))
    if not pieces:
        return None
    return Interval(
        start,
        end,
        min(piece[2] for piece in pieces),
        max(piece[2] + piece[1] - piece[0] for piece in pieces),
        pieces,
    )


def _confirm(
    target_norms: Sequence[str],
    target_fp: Fingerprint,
    source_norms: Sequence[str],
    source_fp: Fingerprint,
) -> bool:
    return (
        target_norms[target_fp.token_start : target_fp.token_end]
        == source_norms[source_fp.token_start : source_fp.token_end]
    )


def _extend(
    interval: Interval, target_norms: Sequence[str], source_norms: Sequence[str]
) -> Interval:
    t_start, s_start = interval.token_start, interval.source_start
    while t_start > 0 and s_start > 0 and target_norms[t_start - 1] == source_norms[s_start - 1]:
        t_start -= 1
        s_start -= 1
    t_end, s_end = interval.token_end, interval.source_end
    while (
        t_end < len(target_norms)
        and s_end < len(source_norms)
        and target_norms[t_end] == source_norms[s_end]
    ):
        t_end += 1
        s_end += 1
    return Interval(t_start, t_end, s_start, s_end)


def _to_span(
    normalized: NormalizedText, source: NormalizedText, interval: Interval
) -> MatchSpan:
    start, end = normalized.token_span(interval.token_start, interval.token_end)
    source_start, source_end = source.token_span(interval.source_start, interval.source_end)
    return MatchSpan(
        start=start,
        end=end,
        token_start=interval.token_start,
        token_end=interval.token_end,
        source_start=source_start,
        source_end=source_end,
    )
