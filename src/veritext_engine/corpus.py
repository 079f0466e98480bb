from __future__ import annotations

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence

import requests
from requests.utils import quote

from .cancellation import CancellationToken
from .config import CorpusSettings
from .errors import ConfigError, CorpusUnavailableError, EmptyInputError
from .fingerprint import Fingerprinter
from .models import CorpusDocument, FingerprintSet, SourceType
from .normalization import PROSE, normalize

LOGGER = logging.getLogger(__name__)

SUPPORTED_CORPUS_EXTENSIONS = {".txt", ".jsonl"}
MIN_REQUEST_TIMEOUT = 0.01


class CorpusIndex(ABC):
    """Read-only view of a reference corpus keyed by shingle hash."""

    @property
    @abstractmethod
    def shingle_size(self) -> int:
        """Shingle size the corpus was fingerprinted with."""
        raise NotImplementedError

    @abstractmethod
    def lookup(
        self, fingerprint: int, cancel: CancellationToken | None = None
    ) -> Sequence[str]:
        """Return ids of corpus documents containing the fingerprint."""
        raise NotImplementedError

    @abstractmethod
    def get_document(
        self, doc_id: str, cancel: CancellationToken | None = None
    ) -> CorpusDocument:
        """Return the full corpus document for an id returned by lookup."""
        raise NotImplementedError

    def fingerprints(self, doc_id: str) -> FingerprintSet | None:
        """Return the fingerprints stored for a document, if the backend keeps them."""
        return None


class InMemoryCorpusIndex(CorpusIndex):
    """Corpus held in process memory, built once and then shared read-only."""

    def __init__(self, fingerprinter: Fingerprinter | None = None, mode: str = PROSE) -> None:
        self._fingerprinter = fingerprinter or Fingerprinter()
        self._mode = mode
        self._documents: Dict[str, CorpusDocument] = {}
        self._fingerprints: Dict[str, FingerprintSet] = {}
        self._postings: Dict[int, List[str]] = {}

    @property
    def shingle_size(self) -> int:
        return self._fingerprinter.k

    @property
    def mode(self) -> str:
        return self._mode

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._documents

    def add(self, document: CorpusDocument) -> None:
        """Fingerprint and index a corpus document."""
        if document.doc_id in self._documents:
            raise ValueError(f"Duplicate corpus document id '{document.doc_id}'.")
        try:
            normalized = normalize(document.text, mode=self._mode)
        except EmptyInputError:
            LOGGER.warning("Skipping empty corpus document %s", document.doc_id)
            return
        fingerprints = self._fingerprinter.index(normalized)
        self._documents[document.doc_id] = document
        self._fingerprints[document.doc_id] = fingerprints
        for value in fingerprints.hashes():
            self._postings.setdefault(value, []).append(document.doc_id)

    def lookup(
        self, fingerprint: int, cancel: CancellationToken | None = None
    ) -> Sequence[str]:
        return tuple(self._postings.get(fingerprint, ()))

    def get_document(
        self, doc_id: str, cancel: CancellationToken | None = None
    ) -> CorpusDocument:
        try:
            return self._documents[doc_id]
        except KeyError as exc:
            raise CorpusUnavailableError(f"Corpus document '{doc_id}' not found.") from exc

    def fingerprints(self, doc_id: str) -> FingerprintSet | None:
        return self._fingerprints.get(doc_id)

    @classmethod
    def from_documents(
        cls,
        documents: Iterable[CorpusDocument],
        fingerprinter: Fingerprinter | None = None,
        mode: str = PROSE,
    ) -> "InMemoryCorpusIndex":
        index = cls(fingerprinter, mode=mode)
        for document in documents:
            index.add(document)
        LOGGER.info("Indexed %d corpus documents", len(index))
        return index

    @classmethod
    def from_directory(
        cls,
        directory: str | Path,
        fingerprinter: Fingerprinter | None = None,
        mode: str = PROSE,
    ) -> "InMemoryCorpusIndex":
        """Index every .txt and .jsonl file below a directory."""
        root = Path(directory)
        if not root.is_dir():
            raise ConfigError(f"Corpus directory not found: {root}")
        return cls.from_documents(iter_corpus_documents(root), fingerprinter, mode=mode)


def iter_corpus_documents(root: Path) -> Iterator[CorpusDocument]:
    """Yield corpus documents from .txt files and .jsonl records under root."""
    files = sorted(
        p
        for p in root.rglob("*")
        if p.is_file() and p.suffix.lower() in SUPPORTED_CORPUS_EXTENSIONS
    )
    for path in files:
        relative_id = path.relative_to(root).as_posix()
        if path.suffix.lower() == ".txt":
            try:
                text = path.read_text(encoding="utf-8", errors="ignore")
            except OSError as exc:
                LOGGER.warning("Unable to read corpus file %s: %s", path, exc)
                continue
            yield CorpusDocument(doc_id=relative_id, text=text, title=path.stem)
            continue

        with path.open("r", encoding="utf-8") as handle:
            for idx, line in enumerate(handle):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    LOGGER.warning("Skipping malformed JSON at %s:%d", path, idx + 1)
                    continue
                text = record.get("text") or record.get("content")
                if not text:
                    continue
                doc_id = record.get("id") or f"{relative_id}#{idx}"
                yield document_from_payload(record, str(doc_id), str(text))


def document_from_payload(
    record: Mapping[str, Any], doc_id: str, text: str
) -> CorpusDocument:
    """Build a CorpusDocument from a JSON record."""
    raw_type = str(record.get("source_type") or record.get("type") or "web").lower()
    try:
        source_type = SourceType(raw_type)
    except ValueError:
        source_type = SourceType.WEB
    return CorpusDocument(
        doc_id=doc_id,
        text=text,
        title=record.get("title"),
        url=record.get("url"),
        author=record.get("author"),
        source_type=source_type,
    )


class HttpCorpusIndex(CorpusIndex):
    """Client for a remote fingerprint service.

    Endpoints:
    * ``GET {base_url}/fingerprints/{hash}`` returns ``{"documents": [ids]}``.
    * ``GET {base_url}/documents/{id}`` returns a document record with ``text``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        shingle_size: int,
        api_key: str | None = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ConfigError("HttpCorpusIndex requires a base_url.")
        self._base_url = base_url.rstrip("/")
        self._shingle_size = shingle_size
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._session = session or requests.Session()
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"
        self._documents: Dict[str, CorpusDocument] = {}

    @property
    def shingle_size(self) -> int:
        return self._shingle_size

    def lookup(
        self, fingerprint: int, cancel: CancellationToken | None = None
    ) -> Sequence[str]:
        payload = self._get_json(f"/fingerprints/{fingerprint:016x}", cancel)
        documents = payload.get("documents", [])
        if not isinstance(documents, list):
            raise CorpusUnavailableError("Corpus lookup returned a malformed payload.")
        return tuple(str(item) for item in documents)

    def get_document(
        self, doc_id: str, cancel: CancellationToken | None = None
    ) -> CorpusDocument:
        cached = self._documents.get(doc_id)
        if cached is not None:
            return cached
        payload = self._get_json(f"/documents/{quote(doc_id, safe='')}", cancel)
        text = payload.get("text") or payload.get("content")
        if not text:
            raise CorpusUnavailableError(f"Corpus document '{doc_id}' has no text.")
        document = document_from_payload(payload, doc_id, str(text))
        self._documents[doc_id] = document
        return document

    def _get_json(
        self, path: str, cancel: CancellationToken | None = None
    ) -> Mapping[str, Any]:
        """GET a JSON object, retrying with backoff until the run is cancelled."""
        url = f"{self._base_url}{path}"
        attempt = 0
        last_error: Exception | None = None
        while attempt < self._max_attempts:
            attempt += 1
            timeout = self._timeout
            if cancel is not None:
                cancel.check()
                remaining = cancel.remaining()
                if remaining is not None:
                    timeout = max(min(timeout, remaining), MIN_REQUEST_TIMEOUT)
            try:
                response = self._session.get(url, timeout=timeout)
                response.raise_for_status()
                payload = response.json()
                if not isinstance(payload, Mapping):
                    raise CorpusUnavailableError(f"Unexpected payload from {url}.")
                return payload
            except (requests.RequestException, ValueError) as exc:
                last_error = exc
                LOGGER.warning(
                    "Corpus request %s failed (attempt %s/%s): %s",
                    url,
                    attempt,
                    self._max_attempts,
                    exc,
                )
                if attempt >= self._max_attempts:
                    break
                delay = min(2 ** (attempt - 1), 5)
                if cancel is None:
                    time.sleep(delay)
                elif cancel.wait(delay):
                    cancel.check()
        if cancel is not None:
            # A request cut short by the deadline is a cancellation, not an outage.
            cancel.check()
        raise CorpusUnavailableError(
            f"Corpus service unavailable after {self._max_attempts} attempts: {last_error}"
        ) from last_error


def build_corpus_index(
    settings: CorpusSettings, fingerprinter: Fingerprinter, mode: str = PROSE
) -> CorpusIndex | None:
    """Build the corpus backend named in settings, or None when unconfigured."""
    backend = settings.backend.lower().strip()
    if backend == "memory":
        if not settings.directory:
            return None
        return InMemoryCorpusIndex.from_directory(settings.directory, fingerprinter, mode=mode)
    if backend == "http":
        return HttpCorpusIndex(
            settings.base_url or "",
            shingle_size=fingerprinter.k,
            api_key=_resolve_api_key(settings),
            timeout=settings.request_timeout,
            max_attempts=settings.max_attempts,
        )
    raise ConfigError(f"Unknown corpus backend '{settings.backend}'.")


def _resolve_api_key(settings: CorpusSettings) -> str | None:
    if settings.api_key:
        return settings.api_key
    if settings.api_key_env:
        return os.environ.get(settings.api_key_env)
    return None
