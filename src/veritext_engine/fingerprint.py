"""Shingle fingerprints for near-duplicate lookup.

A shingle is a window of ``k`` consecutive token norms. Each shingle is hashed
with BLAKE2b (8 byte digest) so fingerprints are stable across processes and
interpreter runs, unlike the builtin ``hash``. Optional winnowing keeps only the
minimum hash of every ``w`` consecutive shingles; any shared run of at least
``k + w - 1`` tokens still yields a common fingerprint.
"""

from __future__ import annotations

import hashlib
import logging
from collections import defaultdict
from typing import Dict, List, Sequence

from .cancellation import CancellationToken
from .models import Fingerprint, FingerprintSet, NormalizedText

logger = logging.getLogger(__name__)

SEPARATOR = "\x1f"


def hash_shingle(norms: Sequence[str]) -> int:
    """Hash a sequence of token norms into an unsigned 64-bit integer."""
    digest = hashlib.blake2b(
        SEPARATOR.join(norms).encode("utf-8"), digest_size=8
    ).digest()
    return int.from_bytes(digest, byteorder="big")


class Fingerprinter:
    """Builds FingerprintSets with a fixed shingle size."""

    def __init__(self, k: int = 5, winnow_window: int = 1) -> None:
        if k < 1:
            raise ValueError("Shingle size must be at least 1.")
        if winnow_window < 1:
            raise ValueError("Winnow window must be at least 1.")
        self._k = k
        self._winnow_window = winnow_window

    @property
    def k(self) -> int:
        return self._k

    @property
    def winnow_window(self) -> int:
        return self._winnow_window

    def index(
        self, normalized: NormalizedText, cancel: CancellationToken | None = None
    ) -> FingerprintSet:
        """Fingerprint every shingle of the document."""
        tokens = normalized.tokens
        if not tokens:
            return FingerprintSet(k=self._k, token_count=0, entries={})

        width = min(self._k, len(tokens))
        norms = [token.norm for token in tokens]
        shingles: List[Fingerprint] = []
        for idx in range(len(tokens) - width + 1):
            if cancel is not None and idx % 256 == 0:
                cancel.check()
            end_idx = idx + width
            shingles.append(
                Fingerprint(
                    hash=hash_shingle(norms[idx:end_idx]),
                    token_start=idx,
                    token_end=end_idx,
                    start=tokens[idx].start,
                    end=tokens[end_idx - 1].end,
                )
            )

        if self._winnow_window > 1:
            shingles = winnow(shingles, self._winnow_window)

        grouped: Dict[int, List[Fingerprint]] = defaultdict(list)
        for fingerprint in shingles:
            grouped[fingerprint.hash].append(fingerprint)
        logger.debug(
            "Fingerprinted %d tokens into %d shingles (%d distinct hashes)",
            len(tokens),
            len(shingles),
            len(grouped),
        )
        return FingerprintSet(
            k=self._k,
            token_count=len(tokens),
            entries={key: tuple(value) for key, value in grouped.items()},
        )


def winnow(shingles: Sequence[Fingerprint], window: int) -> List[Fingerprint]:
    """Select the minimum hash in each window, preferring the rightmost on ties."""
    if window <= 1 or len(shingles) <= window:
        if not shingles:
            return []
        if window <= 1:
            return list(shingles)
        return [_rightmost_min(shingles)]

    selected: List[Fingerprint] = []
    last_token_start = -1
    for start in range(len(shingles) - window + 1):
        chosen = _rightmost_min(shingles[start : start + window])
        if chosen.token_start != last_token_start:
            selected.append(chosen)
            last_token_start = chosen.token_start
    return selected


def _rightmost_min(items: Sequence[Fingerprint]) -> Fingerprint:
    best = items[0]
    for item in items[1:]:
        if item.hash <= best.hash:
            best = item
    return best
