import pytest

from veritext_engine.config import ScoringSettings
from veritext_engine.errors import AnalysisFailed
from veritext_engine.models import (
    DetectorOutput,
    FlaggedSection,
    MatchedSource,
    MatchSpan,
    SectionType,
    Severity,
)
from veritext_engine.normalization import normalize
from veritext_engine.scoring import (
    aggregate,
    merge_sections,
    round_score,
    severity_for,
    source_match_score,
)

TEXT = "One two three four five. Six seven eight nine ten. Eleven twelve thirteen."


def _section(kind, start, end, confidence=0.5, source_ref=None):
    return FlaggedSection(
        type=kind,
        start=start,
        end=end,
        confidence=confidence,
        severity=Severity.LOW,
        explanation="x",
        source_ref=source_ref,
    )


def _source(source_id, start, end, percentage):
    span = MatchSpan(
        start=start, end=end, token_start=0, token_end=1, source_start=0, source_end=end - start
    )
    return MatchedSource(
        source_id=source_id,
        spans=(span,),
        match_percentage=percentage,
        severity=severity_for(percentage),
        title=f"Title {source_id}",
    )


@pytest.mark.parametrize(
    "score, expected",
    [
        (0.0, Severity.LOW),
        (19.99, Severity.LOW),
        (20.0, Severity.MEDIUM),
        (39.9, Severity.MEDIUM),
        (40.0, Severity.HIGH),
        (69.9, Severity.HIGH),
        (70.0, Severity.CRITICAL),
        (100.0, Severity.CRITICAL),
    ],
)
def test_severity_buckets(score, expected):
    assert severity_for(score) is expected


def test_round_score_is_half_up():
    assert round_score(12.25) == 12.3
    assert round_score(12.24) == 12.2
    assert round_score(0.0) == 0.0
    assert round_score(100.0) == 100.0


@pytest.mark.parametrize(
    "value, expected", [(1.15, 1.2), (2.675, 2.7), (0.05, 0.1), (33.349999, 33.3)]
)
def test_round_score_uses_decimal_ties(value, expected):
    """Ties round up as written, not as their nearest binary float."""
    assert round_score(value) == expected


def test_source_match_score_is_mean():
    assert source_match_score([]) == 0.0
    sources = [_source("a", 0, 3, 80.0), _source("b", 4, 7, 40.0)]
    assert source_match_score(sources) == pytest.approx(60.0)


def test_merge_sections_dedupes_and_sorts():
    first = _section(SectionType.PARAPHRASED, 10, 20)
    duplicate = _section(SectionType.PARAPHRASED, 10, 20, confidence=0.9)
    ai = _section(SectionType.AI_GENERATED, 10, 20)
    early = _section(SectionType.AI_GENERATED, 0, 5)

    merged = merge_sections([[first, ai], [duplicate, early]])

    assert merged == [early, ai, first]
    assert merged[2].confidence == 0.5


def test_aggregate_weights_and_complements():
    normalized = normalize(TEXT)
    sources = [_source("a", 0, 3, 80.0), _source("b", 4, 7, 40.0)]
    result = aggregate(
        normalized,
        sources,
        DetectorOutput(score=50.0),
        DetectorOutput(score=20.0),
        ScoringSettings(),
        scoring_version="1/test",
    )

    assert result.overall_score == pytest.approx(49.0)
    assert result.originality_score == pytest.approx(51.0)
    assert result.ai_score == 50.0
    assert result.paraphrase_score == 20.0
    assert result.word_count == 13
    assert result.sentence_count == 3
    assert result.scoring_version == "1/test"
    plagiarism = [s for s in result.flagged_sections if s.type is SectionType.PLAGIARISM]
    assert [s.source_ref for s in plagiarism] == ["a", "b"]
    assert plagiarism[0].confidence == pytest.approx(0.95)
    assert plagiarism[0].explanation == "Text matches Title a"
    assert plagiarism[0].text == "One"


def test_aggregate_clamps_detector_scores():
    normalized = normalize(TEXT)
    result = aggregate(
        normalized, [], DetectorOutput(score=250.0), DetectorOutput(score=-3.0), ScoringSettings()
    )
    assert result.ai_score == 100.0
    assert result.paraphrase_score == 0.0
    assert 0.0 <= result.overall_score <= 100.0
    assert result.originality_score == pytest.approx(100.0 - result.overall_score)


def test_aggregate_rounds_match_percentage():
    normalized = normalize(TEXT)
    result = aggregate(
        normalized,
        [_source("a", 0, 3, 100 / 3)],
        DetectorOutput(score=0.0),
        DetectorOutput(score=0.0),
        ScoringSettings(),
    )
    assert result.matched_sources[0].match_percentage == 33.3


def test_out_of_range_sections_abort_the_run():
    normalized = normalize(TEXT)
    bad = DetectorOutput(
        score=10.0, sections=(_section(SectionType.AI_GENERATED, 0, len(TEXT) + 5),)
    )
    with pytest.raises(AnalysisFailed):
        aggregate(normalized, [], bad, DetectorOutput(score=0.0), ScoringSettings())


def test_sections_validate_their_own_fields():
    with pytest.raises(ValueError):
        _section(SectionType.AI_GENERATED, 5, 5)
    with pytest.raises(ValueError):
        _section(SectionType.AI_GENERATED, 0, 5, confidence=1.5)
    with pytest.raises(ValueError):
        _section(SectionType.PARAPHRASED, 0, 5, source_ref="a")
