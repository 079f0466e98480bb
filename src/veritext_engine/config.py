from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Tuple, Type, TypeVar

import yaml

from .errors import ConfigError

DETECTOR_NAMES = ("source_match", "stylometry", "paraphrase")

DEFAULT_CHECK_TYPES: Dict[str, List[str]] = {
    "plagiarism": ["source_match", "stylometry", "paraphrase"],
    "code_similarity": ["source_match", "stylometry", "paraphrase"],
    "ai_detection": ["stylometry", "paraphrase"],
    "paraphrase": ["stylometry", "paraphrase"],
}


@dataclass(slots=True)
class FingerprintSettings:
    """Shingling parameters, fixed for the lifetime of an Analyzer."""

    shingle_size: int = 5
    winnow_window: int = 1


@dataclass(slots=True)
class MatcherSettings:
    """Source matching thresholds."""

    merge_gap_tokens: int = 3
    min_match_tokens: int | None = None
    extend_matches: bool = True
    tolerate_corpus_failure: bool = False


@dataclass(slots=True)
class CorpusSettings:
    """Where the reference corpus lives."""

    backend: str = "memory"
    directory: str | None = None
    base_url: str | None = None
    api_key: str | None = None
    api_key_env: str = "VERITEXT_CORPUS_API_KEY"
    request_timeout: float = 10.0
    max_attempts: int = 3


@dataclass(slots=True)
class StylometrySettings:
    """Thresholds and weights for the AI-generation detector."""

    min_sentences: int = 5
    variance_threshold: float = 200.0
    formal_marker_ratio: float = 0.3
    pattern_weight: float = 15.0
    uniformity_weight: float = 15.0
    formal_weight: float = 15.0
    section_confidence: float = 0.85
    section_severity: str = "high"


@dataclass(slots=True)
class ParaphraseSettings:
    """Weights for the paraphrase detector."""

    phrase_weight: float = 10.0
    section_confidence: float = 0.6
    section_severity: str = "low"


@dataclass(slots=True)
class ScoringSettings:
    """Aggregation weights for the overall score."""

    source_weight: float = 0.5
    ai_weight: float = 0.3
    paraphrase_weight: float = 0.2
    plagiarism_confidence: float = 0.95
    formula_version: str = "1"


@dataclass(slots=True)
class PipelineSettings:
    """Execution options for a run."""

    max_workers: int = 3
    timeout_seconds: float | None = None


@dataclass(slots=True)
class EngineConfig:
    """Configuration options for the analysis engine."""

    fingerprint: FingerprintSettings = field(default_factory=FingerprintSettings)
    matcher: MatcherSettings = field(default_factory=MatcherSettings)
    corpus: CorpusSettings = field(default_factory=CorpusSettings)
    stylometry: StylometrySettings = field(default_factory=StylometrySettings)
    paraphrase: ParaphraseSettings = field(default_factory=ParaphraseSettings)
    scoring: ScoringSettings = field(default_factory=ScoringSettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    check_types: Dict[str, List[str]] = field(
        default_factory=lambda: {key: list(value) for key, value in DEFAULT_CHECK_TYPES.items()}
    )
    patterns_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a mutable dictionary representation of the configuration."""
        return dict(asdict(self))

    def detectors_for(self, check_type: str) -> Tuple[str, ...]:
        """Return the detector names enabled for a check type."""
        try:
            names = self.check_types[check_type]
        except KeyError as exc:
            raise ConfigError(f"No detectors configured for check type '{check_type}'.") from exc
        unknown = [name for name in names if name not in DETECTOR_NAMES]
        if unknown:
            raise ConfigError(f"Unknown detector(s) {unknown} for check type '{check_type}'.")
        return tuple(names)


_SECTIONS: Dict[str, Type[Any]] = {
    "fingerprint": FingerprintSettings,
    "matcher": MatcherSettings,
    "corpus": CorpusSettings,
    "stylometry": StylometrySettings,
    "paraphrase": ParaphraseSettings,
    "scoring": ScoringSettings,
    "pipeline": PipelineSettings,
}

_T = TypeVar("_T")


def _build_section(cls: Type[_T], data: Any) -> _T:
    if isinstance(data, cls):
        return data
    if not isinstance(data, Mapping):
        raise ConfigError(f"Configuration block for {cls.__name__} must be a mapping.")
    allowed = {item.name for item in fields(cls)}  # type: ignore[arg-type]
    filtered = {key: data[key] for key in data if key in allowed}
    return cls(**filtered)


def _build_kwargs(data: Mapping[str, Any]) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    for name, cls in _SECTIONS.items():
        if name in data and data[name] is not None:
            kwargs[name] = _build_section(cls, data[name])
    if "check_types" in data and data["check_types"] is not None:
        check_types = data["check_types"]
        if not isinstance(check_types, Mapping):
            raise ConfigError("check_types must map check type names to detector lists.")
        merged = {key: list(value) for key, value in DEFAULT_CHECK_TYPES.items()}
        merged.update({str(key): list(value) for key, value in check_types.items()})
        kwargs["check_types"] = merged
    if data.get("patterns_path"):
        kwargs["patterns_path"] = str(data["patterns_path"])
    return kwargs


def config_from_dict(data: Mapping[str, Any] | None) -> EngineConfig:
    """Build an EngineConfig from a dictionary-like input."""
    if data is None:
        return EngineConfig()
    return EngineConfig(**_build_kwargs(data))


def config_from_yaml(path: str | Path) -> EngineConfig:
    """Load configuration from a YAML file."""
    contents = Path(path).read_text(encoding="utf-8")
    parsed = yaml.safe_load(contents) or {}
    if not isinstance(parsed, MutableMapping):
        raise ConfigError("Configuration YAML must define a mapping.")
    return config_from_dict(parsed)


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load configuration from YAML when provided, otherwise return defaults."""
    if path is None:
        return EngineConfig()
    return config_from_yaml(path)


@dataclass(frozen=True, slots=True)
class AIPattern:
    """A characteristic phrase of generated text."""

    name: str
    regex: re.Pattern[str]
    explanation: str


@dataclass(frozen=True, slots=True)
class PatternCatalog:
    """Versioned phrase and pattern lists used by the text detectors."""

    version: str
    ai_patterns: Tuple[AIPattern, ...]
    formal_markers: Tuple[str, ...]
    academic_phrases: Tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "ai_patterns": [
                {
                    "name": item.name,
                    "pattern": item.regex.pattern,
                    "explanation": item.explanation,
                }
                for item in self.ai_patterns
            ],
            "formal_markers": list(self.formal_markers),
            "academic_phrases": list(self.academic_phrases),
        }


DEFAULT_AI_EXPLANATION = "This phrase is commonly found in AI-generated text"


def catalog_from_dict(data: Mapping[str, Any]) -> PatternCatalog:
    """Build and compile a PatternCatalog from parsed YAML."""
    version = data.get("version")
    if not version:
        raise ConfigError("Pattern catalog must declare a version.")
    patterns: list[AIPattern] = []
    for idx, entry in enumerate(data.get("ai_patterns") or []):
        if isinstance(entry, str):
            entry = {"pattern": entry}
        if not isinstance(entry, Mapping) or not entry.get("pattern"):
            raise ConfigError(f"ai_patterns[{idx}] must define a pattern.")
        try:
            regex = re.compile(str(entry["pattern"]), re.IGNORECASE)
        except re.error as exc:
            raise ConfigError(f"ai_patterns[{idx}] is not a valid regex: {exc}") from exc
        patterns.append(
            AIPattern(
                name=str(entry.get("name") or f"pattern_{idx}"),
                regex=regex,
                explanation=str(entry.get("explanation") or DEFAULT_AI_EXPLANATION),
            )
        )
    markers = tuple(str(item).lower() for item in data.get("formal_markers") or [])
    phrases = tuple(str(item).lower() for item in data.get("academic_phrases") or [])
    return PatternCatalog(
        version=str(version),
        ai_patterns=tuple(patterns),
        formal_markers=markers,
        academic_phrases=phrases,
    )


@lru_cache(maxsize=8)
def load_pattern_catalog(path: str | None = None) -> PatternCatalog:
    """Load the pattern catalog once; defaults to the packaged catalog."""
    if path is None:
        contents = (
            resources.files("veritext_engine")
            .joinpath("data/patterns.yaml")
            .read_text(encoding="utf-8")
        )
    else:
        contents = Path(path).read_text(encoding="utf-8")
    parsed = yaml.safe_load(contents) or {}
    if not isinstance(parsed, Mapping):
        raise ConfigError("Pattern catalog YAML must define a mapping.")
    return catalog_from_dict(parsed)
