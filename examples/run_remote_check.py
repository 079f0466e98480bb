"""
Tiny helper script to sanity check a remote fingerprint service.
Update the placeholder URL before running.
"""

from __future__ import annotations

import json

from veritext_engine.config import EngineConfig
from veritext_engine.corpus import build_corpus_index
from veritext_engine.pipeline import Analyzer, run_check


def main() -> None:
    config = EngineConfig()
    config.corpus.backend = "http"
    config.corpus.base_url = "https://corpus.example.invalid/api"
    config.matcher.tolerate_corpus_failure = True
    config.pipeline.timeout_seconds = 30.0

    analyzer = Analyzer(config)
    corpus = build_corpus_index(config.corpus, analyzer.fingerprinter)
    samples = [
        "The mitochondria is the powerhouse of the cell and produces most of the chemical energy.",
        "As an AI language model, I cannot provide legal advice. In summary, consult a lawyer.",
    ]

    for sample in samples:
        outcome = run_check(sample, "plagiarism", corpus, analyzer=analyzer)
        print("-" * 40)
        print(sample)
        print(json.dumps(outcome.to_record(), indent=2))


if __name__ == "__main__":
    main()
