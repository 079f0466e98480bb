import pytest

from veritext_engine.config import (
    EngineConfig,
    ParaphraseSettings,
    StylometrySettings,
    load_pattern_catalog,
)
from veritext_engine.detectors import (
    ParaphraseDetector,
    StylometricDetector,
    create_detector,
)
from veritext_engine.detectors.stylometry import sentence_length_variance
from veritext_engine.models import SectionType, Severity
from veritext_engine.normalization import normalize

from tests.utils import ACADEMIC, AI_FLAVOURED, MITOCHONDRIA


@pytest.fixture
def catalog():
    return load_pattern_catalog()


def test_factory_returns_detectors(catalog):
    config = EngineConfig()
    assert isinstance(create_detector("stylometry", config, catalog), StylometricDetector)
    assert isinstance(create_detector("AI", config, catalog), StylometricDetector)
    assert isinstance(create_detector("paraphrase", config, catalog), ParaphraseDetector)
    with pytest.raises(ValueError):
        create_detector("unknown", config, catalog)


def test_ai_patterns_are_flagged_at_exact_offsets(catalog):
    detector = StylometricDetector(StylometrySettings(), catalog)
    output = detector.detect(normalize(AI_FLAVOURED))

    assert output.indicators["pattern_matches"] == 4
    assert output.indicators["uniform_sentences"] == 0
    assert output.indicators["formal_density"] == 0
    assert output.score == pytest.approx(60.0)
    for section in output.sections:
        assert section.type is SectionType.AI_GENERATED
        assert section.severity is Severity.HIGH
        assert section.confidence == pytest.approx(0.85)
        assert AI_FLAVOURED[section.start : section.end] == section.text
    texts = {section.text.lower() for section in output.sections}
    assert "as an ai language model" in texts
    assert "in summary" in texts


def test_uniform_sentence_lengths_raise_the_score(catalog):
    detector = StylometricDetector(StylometrySettings(), catalog)
    uniform = normalize(" ".join(["The cat sat here."] * 6))
    output = detector.detect(uniform)

    assert sentence_length_variance(uniform) == pytest.approx(0.0)
    assert output.indicators["uniform_sentences"] == 1
    assert output.score == pytest.approx(15.0)
    assert output.sections == ()


def test_uniformity_needs_enough_sentences(catalog):
    detector = StylometricDetector(StylometrySettings(), catalog)
    output = detector.detect(normalize(" ".join(["The cat sat here."] * 5)))
    assert output.indicators["uniform_sentences"] == 0


def test_formal_marker_density(catalog):
    detector = StylometricDetector(StylometrySettings(), catalog)
    output = detector.detect(normalize("Therefore we go. Moreover we stay."))

    assert output.indicators["formal_density"] == 1
    assert output.score == pytest.approx(15.0)


def test_stylometry_score_is_clipped(catalog):
    detector = StylometricDetector(StylometrySettings(pattern_weight=40.0), catalog)
    output = detector.detect(normalize(AI_FLAVOURED))
    assert output.score == pytest.approx(100.0)


def test_plain_text_scores_zero(catalog):
    detector = StylometricDetector(StylometrySettings(), catalog)
    output = detector.detect(normalize(MITOCHONDRIA))
    assert output.score == 0.0
    assert output.sections == ()


def test_variance_of_text_without_sentences_is_zero():
    assert sentence_length_variance(normalize("...")) == 0.0


def test_paraphrase_phrases_are_flagged(catalog):
    detector = ParaphraseDetector(ParaphraseSettings(), catalog)
    output = detector.detect(normalize(ACADEMIC))

    assert output.indicators["phrase_matches"] == 5
    assert output.score == pytest.approx(50.0)
    for section in output.sections:
        assert section.type is SectionType.PARAPHRASED
        assert section.severity is Severity.LOW
        assert section.confidence < 0.95
        assert ACADEMIC[section.start : section.end] == section.text
    assert sum(1 for s in output.sections if s.text.lower() == "in conclusion") == 2


def test_paraphrase_phrases_match_across_line_breaks(catalog):
    detector = ParaphraseDetector(ParaphraseSettings(), catalog)
    output = detector.detect(normalize("We disagree, on the\nother hand."))
    (section,) = output.sections
    assert section.text == "on the\nother hand"


def test_paraphrase_score_is_capped(catalog):
    detector = ParaphraseDetector(ParaphraseSettings(), catalog)
    output = detector.detect(normalize("In conclusion. " * 11))
    assert output.indicators["phrase_matches"] == 11
    assert output.score == pytest.approx(100.0)


def test_detection_is_deterministic(catalog):
    detector = StylometricDetector(StylometrySettings(), catalog)
    normalized = normalize(AI_FLAVOURED)
    assert detector.detect(normalized) == detector.detect(normalized)
