from __future__ import annotations

from pathlib import Path

from veritext_engine.corpus import InMemoryCorpusIndex
from veritext_engine.fingerprint import Fingerprinter
from veritext_engine.models import CorpusDocument, SourceType

MITOCHONDRIA = (
    "The mitochondria is the powerhouse of the cell and produces most of the "
    "chemical energy needed to power biochemical reactions."
)

UNRELATED = (
    "Glaciers carve deep valleys over thousands of years while rivers slowly "
    "deposit silt along their winding banks."
)

AI_FLAVOURED = (
    "As an AI language model, I cannot provide medical advice. "
    "In summary, it is important to note that rest helps recovery."
)

ACADEMIC = (
    "In conclusion, research has shown that the results hold. "
    "Furthermore, in conclusion we agree on the other hand."
)


def build_corpus(
    *documents: CorpusDocument, k: int = 5, mode: str = "prose"
) -> InMemoryCorpusIndex:
    """Index the given documents with a fresh fingerprinter."""
    return InMemoryCorpusIndex.from_documents(documents, Fingerprinter(k), mode=mode)


def source(doc_id: str, text: str, **kwargs: object) -> CorpusDocument:
    kwargs.setdefault("title", f"Title {doc_id}")
    kwargs.setdefault("source_type", SourceType.ACADEMIC)
    return CorpusDocument(doc_id=doc_id, text=text, **kwargs)  # type: ignore[arg-type]


def write_corpus_dir(root: Path, documents: dict[str, str]) -> Path:
    """Write each document as a .txt file under root/corpus and return the dir."""
    corpus_dir = root / "corpus"
    corpus_dir.mkdir(parents=True, exist_ok=True)
    for name, text in documents.items():
        (corpus_dir / name).write_text(text, encoding="utf-8")
    return corpus_dir
