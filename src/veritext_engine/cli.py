from __future__ import annotations

import json
import logging
from pathlib import Path

import typer
import yaml

from .config import EngineConfig, load_config
from .corpus import build_corpus_index
from .errors import ConfigError, EmptyInputError
from .models import CheckType
from .normalization import CODE, PROSE, normalize
from .pipeline import COMPLETED, Analyzer, run_check

app = typer.Typer(help="VeriText analysis engine CLI.", no_args_is_help=True)

CHECK_TYPES = ", ".join(item.value for item in CheckType)


@app.command()
def analyze(
    input_path: Path = typer.Option(
        ..., exists=True, readable=True, dir_okay=False, file_okay=True
    ),
    config: Path | None = typer.Option(None, "--config", "-c"),
    check_type: str = typer.Option(
        CheckType.PLAGIARISM.value, "--check-type", "-t", help=f"One of: {CHECK_TYPES}."
    ),
    corpus_dir: Path | None = typer.Option(
        None,
        "--corpus-dir",
        exists=True,
        file_okay=False,
        help="Directory of .txt/.jsonl reference documents.",
    ),
    corpus_url: str | None = typer.Option(
        None, "--corpus-url", help="Base URL of a remote fingerprint service."
    ),
    shingle_size: int | None = typer.Option(
        None, "--shingle-size", "-k", help="Override fingerprint.shingle_size."
    ),
    tolerate_corpus_failure: bool | None = typer.Option(
        None,
        "--tolerate-corpus-failure/--fail-on-corpus-failure",
        help="Degrade instead of failing when the corpus is unreachable.",
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Abandon the run after this many seconds."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Analyze a plain-text document and emit the result record as JSON."""
    _configure_logging(verbose)
    # Start from the YAML config (or defaults) and layer CLI overrides on top.
    cfg = load_config(config)
    _apply_overrides(
        cfg, corpus_dir, corpus_url, shingle_size, tolerate_corpus_failure, timeout
    )
    try:
        check = CheckType(check_type)
    except ValueError as exc:
        raise typer.BadParameter(f"Unknown check type '{check_type}'.") from exc

    text = input_path.read_text(encoding="utf-8")
    if not text.strip():
        raise typer.BadParameter(f"{input_path} contains no text to analyze.")

    try:
        analyzer = Analyzer(cfg)
        # The corpus must be tokenized the same way as the document it is matched against.
        mode = CODE if check is CheckType.CODE_SIMILARITY else PROSE
        corpus = build_corpus_index(cfg.corpus, analyzer.fingerprinter, mode=mode)
    except (ConfigError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    outcome = run_check(text, check, corpus, analyzer=analyzer)
    typer.echo(json.dumps(outcome.to_record(), indent=2))
    if outcome.status != COMPLETED:
        typer.echo(f"Analysis {outcome.status}: {outcome.error_message}", err=True)
        raise typer.Exit(code=1)


@app.command()
def fingerprint(
    input_path: Path = typer.Option(
        ..., exists=True, readable=True, dir_okay=False, file_okay=True
    ),
    config: Path | None = typer.Option(None, "--config", "-c"),
    code: bool = typer.Option(False, "--code", help="Tokenize as source code."),
) -> None:
    """Print tokenization and fingerprint statistics for a document."""
    cfg = load_config(config)
    analyzer = Analyzer(cfg)
    try:
        normalized = normalize(
            input_path.read_text(encoding="utf-8"), mode=CODE if code else PROSE
        )
    except EmptyInputError as exc:
        raise typer.BadParameter(str(exc)) from exc
    fingerprints = analyzer.fingerprinter.index(normalized)
    payload = {
        "wordCount": normalized.word_count,
        "sentenceCount": normalized.sentence_count,
        "tokenCount": normalized.token_count,
        "shingleSize": fingerprints.k,
        "winnowWindow": analyzer.fingerprinter.winnow_window,
        "shingleCount": fingerprints.shingle_count,
        "distinctHashes": len(fingerprints),
    }
    typer.echo(json.dumps(payload, indent=2))


@app.command("print-config")
def print_config() -> None:
    """Print the default configuration as YAML."""
    cfg = EngineConfig()
    typer.echo(yaml.safe_dump(cfg.to_dict(), sort_keys=False))


@app.command("print-patterns")
def print_patterns(
    config: Path | None = typer.Option(None, "--config", "-c"),
) -> None:
    """Print the active pattern catalog as YAML."""
    analyzer = Analyzer(load_config(config))
    typer.echo(yaml.safe_dump(analyzer.catalog.to_dict(), sort_keys=False))


def main() -> None:
    app()


def _apply_overrides(
    config: EngineConfig,
    corpus_dir: Path | None,
    corpus_url: str | None,
    shingle_size: int | None,
    tolerate_corpus_failure: bool | None,
    timeout: float | None,
) -> None:
    """Apply CLI overrides to the loaded configuration."""
    if corpus_dir is not None and corpus_url:
        raise typer.BadParameter("Use either --corpus-dir or --corpus-url, not both.")
    if corpus_dir is not None:
        config.corpus.backend = "memory"
        config.corpus.directory = str(corpus_dir)
    if corpus_url:
        config.corpus.backend = "http"
        config.corpus.base_url = corpus_url
    if shingle_size is not None:
        config.fingerprint.shingle_size = shingle_size
    if tolerate_corpus_failure is not None:
        config.matcher.tolerate_corpus_failure = tolerate_corpus_failure
    if timeout is not None:
        config.pipeline.timeout_seconds = timeout


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


if __name__ == "__main__":
    main()
