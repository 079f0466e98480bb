import json
import time
from pathlib import Path
from typing import Any, Dict, List

import pytest
import requests
from pytest import MonkeyPatch

from veritext_engine.cancellation import CancellationToken
from veritext_engine.config import CorpusSettings, config_from_dict
from veritext_engine.corpus import (
    HttpCorpusIndex,
    InMemoryCorpusIndex,
    build_corpus_index,
    iter_corpus_documents,
)
from veritext_engine.errors import AnalysisCancelled, ConfigError, CorpusUnavailableError
from veritext_engine.fingerprint import Fingerprinter
from veritext_engine.models import SourceType
from veritext_engine.normalization import normalize
from veritext_engine.pipeline import CANCELLED, Analyzer, analyze, run_check

from tests.utils import MITOCHONDRIA, UNRELATED, build_corpus, source, write_corpus_dir


class FakeResponse:
    def __init__(self, payload: Any, status: int = 200) -> None:
        self._payload = payload
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self) -> Any:
        return self._payload


class FakeSession:
    """Serves a fixed route table and records every requested URL."""

    def __init__(self, routes: Dict[str, Any]) -> None:
        self.routes = routes
        self.headers: Dict[str, str] = {}
        self.calls: List[str] = []
        self.timeouts: List[float] = []

    def get(self, url: str, timeout: float) -> FakeResponse:
        self.calls.append(url)
        self.timeouts.append(timeout)
        for suffix, payload in self.routes.items():
            if url.endswith(suffix):
                return FakeResponse(payload)
        return FakeResponse({"documents": []})


class DownSession(FakeSession):
    def get(self, url: str, timeout: float) -> FakeResponse:
        self.calls.append(url)
        self.timeouts.append(timeout)
        raise requests.ConnectionError("connection refused")


def _corpus_routes(doc_id: str, text: str, k: int = 5) -> Dict[str, Any]:
    fingerprints = Fingerprinter(k).index(normalize(text))
    routes: Dict[str, Any] = {
        f"/fingerprints/{value:016x}": {"documents": [doc_id]} for value in fingerprints
    }
    routes[f"/documents/{doc_id}"] = {
        "text": text,
        "title": "Cell biology",
        "url": "https://example.org/cells",
        "source_type": "academic",
    }
    return routes


def test_in_memory_index_posts_fingerprints():
    """Every fingerprint of an indexed document resolves to its id."""
    corpus = build_corpus(source("bio", MITOCHONDRIA), source("geo", UNRELATED))
    fingerprints = corpus.fingerprints("bio")

    assert len(corpus) == 2
    assert "bio" in corpus
    assert corpus.shingle_size == 5
    for value in fingerprints:
        assert "bio" in corpus.lookup(value)
    assert corpus.lookup(12345) == ()


def test_in_memory_index_rejects_duplicates_and_skips_empty():
    corpus = InMemoryCorpusIndex(Fingerprinter(5))
    corpus.add(source("bio", MITOCHONDRIA))
    corpus.add(source("blank", "   "))

    assert "blank" not in corpus
    with pytest.raises(ValueError):
        corpus.add(source("bio", UNRELATED))
    with pytest.raises(CorpusUnavailableError):
        corpus.get_document("missing")


def test_from_directory_reads_txt_and_jsonl(tmp_path: Path):
    """Directory loader indexes .txt files and valid .jsonl records."""
    corpus_dir = write_corpus_dir(tmp_path, {"cells.txt": MITOCHONDRIA, "notes.md": "ignored"})
    lines = [
        json.dumps(
            {"id": "rec-1", "text": UNRELATED, "title": "Glaciers", "source_type": "academic"}
        ),
        "not json",
        json.dumps({"content": "Rivers deposit silt along their winding banks."}),
        json.dumps({"id": "no-text"}),
    ]
    (corpus_dir / "records.jsonl").write_text("\n".join(lines), encoding="utf-8")

    ids = [document.doc_id for document in iter_corpus_documents(corpus_dir)]
    assert ids == ["cells.txt", "rec-1", "records.jsonl#2"]

    corpus = InMemoryCorpusIndex.from_directory(corpus_dir, Fingerprinter(5))
    assert len(corpus) == 3
    assert corpus.get_document("cells.txt").title == "cells"
    assert corpus.get_document("rec-1").source_type is SourceType.ACADEMIC
    assert corpus.get_document("records.jsonl#2").source_type is SourceType.WEB


def test_from_directory_requires_existing_dir(tmp_path: Path):
    with pytest.raises(ConfigError):
        InMemoryCorpusIndex.from_directory(tmp_path / "missing")


def test_http_index_lookup_and_document_cache():
    """Remote lookups hit the fingerprint route and cache fetched documents."""
    session = FakeSession(_corpus_routes("remote-1", MITOCHONDRIA))
    index = HttpCorpusIndex(
        "https://corpus.example/api/", shingle_size=5, api_key="secret", session=session
    )
    value = next(iter(Fingerprinter(5).index(normalize(MITOCHONDRIA))))

    assert index.lookup(value) == ("remote-1",)
    assert session.calls[0] == f"https://corpus.example/api/fingerprints/{value:016x}"
    assert session.headers["Authorization"] == "Bearer secret"

    first = index.get_document("remote-1")
    second = index.get_document("remote-1")
    assert first is second
    assert first.source_type is SourceType.ACADEMIC
    assert sum(1 for url in session.calls if url.endswith("/documents/remote-1")) == 1


def test_http_index_retries_then_reports_unavailable(monkeypatch: MonkeyPatch):
    """Transport failures are retried with backoff before giving up."""
    delays: List[float] = []
    monkeypatch.setattr("veritext_engine.corpus.time.sleep", delays.append)
    session = DownSession({})
    index = HttpCorpusIndex(
        "https://corpus.example", shingle_size=5, max_attempts=3, session=session
    )

    with pytest.raises(CorpusUnavailableError):
        index.lookup(1)
    assert len(session.calls) == 3
    assert delays == [1, 2]


def test_http_index_quotes_document_ids():
    """Ids with reserved URL characters are escaped into one path segment."""
    session = FakeSession({"/documents/records.jsonl%232": {"text": UNRELATED}})
    index = HttpCorpusIndex("https://corpus.example", shingle_size=5, session=session)

    document = index.get_document("records.jsonl#2")

    assert document.doc_id == "records.jsonl#2"
    assert session.calls == ["https://corpus.example/documents/records.jsonl%232"]


def test_http_index_checks_cancellation_before_requesting():
    session = FakeSession({})
    index = HttpCorpusIndex("https://corpus.example", shingle_size=5, session=session)
    token = CancellationToken()
    token.cancel("user abandoned check")

    with pytest.raises(AnalysisCancelled):
        index.lookup(1, token)
    assert session.calls == []


def test_http_index_caps_request_timeout_at_deadline():
    """A request never waits longer than the run has left."""
    session = FakeSession({})
    index = HttpCorpusIndex(
        "https://corpus.example", shingle_size=5, timeout=10.0, session=session
    )

    index.lookup(1, CancellationToken(2.0))
    index.lookup(1)

    assert 0 < session.timeouts[0] <= 2.0
    assert session.timeouts[1] == 10.0


def test_down_corpus_stops_retrying_at_run_deadline():
    """Backoff waits end as soon as the analysis deadline passes."""
    session = DownSession({})
    index = HttpCorpusIndex(
        "https://corpus.example", shingle_size=5, max_attempts=5, session=session
    )
    analyzer = Analyzer(config_from_dict({"pipeline": {"timeout_seconds": 0.3}}))

    started = time.monotonic()
    outcome = run_check(MITOCHONDRIA, "plagiarism", index, analyzer=analyzer)
    elapsed = time.monotonic() - started

    assert outcome.status == CANCELLED
    assert outcome.result is None
    assert "deadline" in (outcome.error_message or "")
    assert elapsed < 3.0
    assert len(session.calls) < 5


def test_http_index_rejects_malformed_payload():
    session = FakeSession({"/fingerprints/0000000000000001": {"documents": "bio"}})
    index = HttpCorpusIndex("https://corpus.example", shingle_size=5, session=session)
    with pytest.raises(CorpusUnavailableError):
        index.lookup(1)


def test_analysis_against_remote_corpus():
    """The HTTP backend plugs into the analyzer like the in-memory one."""
    session = FakeSession(_corpus_routes("remote-1", MITOCHONDRIA))
    index = HttpCorpusIndex("https://corpus.example", shingle_size=5, session=session)

    result = analyze(MITOCHONDRIA, "plagiarism", index)

    (matched,) = result.matched_sources
    assert matched.source_id == "remote-1"
    assert matched.title == "Cell biology"
    assert matched.match_percentage == 100.0


def test_build_corpus_index_backends(tmp_path: Path, monkeypatch: MonkeyPatch):
    fingerprinter = Fingerprinter(5)
    assert build_corpus_index(CorpusSettings(), fingerprinter) is None

    corpus_dir = write_corpus_dir(tmp_path, {"cells.txt": MITOCHONDRIA})
    memory = build_corpus_index(CorpusSettings(directory=str(corpus_dir)), fingerprinter)
    assert isinstance(memory, InMemoryCorpusIndex)
    assert len(memory) == 1

    monkeypatch.setenv("VERITEXT_CORPUS_API_KEY", "from-env")
    remote = build_corpus_index(
        CorpusSettings(backend="http", base_url="https://corpus.example"), fingerprinter
    )
    assert isinstance(remote, HttpCorpusIndex)
    assert remote.shingle_size == 5

    with pytest.raises(ConfigError):
        build_corpus_index(CorpusSettings(backend="sqlite"), fingerprinter)
    with pytest.raises(ConfigError):
        build_corpus_index(CorpusSettings(backend="http"), fingerprinter)
