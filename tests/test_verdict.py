import math

import pytest

from services.verdict import (
    EN_HINTS,
    ZH_HINTS,
    build_hint,
    clamp01,
    guess_tone_from_phones,
    normalize_hint,
    normalize_tone,
    parse_assessment,
    parse_judge_content,
    verdict_from_assessment,
    verdict_from_judge,
)


@pytest.mark.parametrize("value", [float("nan"), math.inf, -math.inf, None, "abc", [1], {}])
def test_clamp_non_finite_is_zero(value):
    assert clamp01(value) == 0


@pytest.mark.parametrize("value,expected", [(0.42, 0.42), (2, 1.0), (-3, 0.0), ("0.5", 0.5), (True, 1.0)])
def test_clamp_finite_within_bounds(value, expected):
    assert clamp01(value) == expected


def test_tone_match_derived_when_absent():
    tone = normalize_tone({"expected": 3, "heard": "3"})
    assert tone.expected == "3"
    assert tone.heard == "3"
    assert tone.match is True
    assert normalize_tone({"expected": "2", "heard": "4"}).match is False


def test_tone_match_unknown_when_a_side_is_null():
    assert normalize_tone({"expected": "2", "heard": None}).match is None
    assert normalize_tone({"expected": None}).match is None


def test_tone_explicit_match_kept():
    assert normalize_tone({"expected": "2", "heard": "2", "match": False}).match is False


def test_tone_non_object_is_none():
    assert normalize_tone("3") is None
    assert normalize_tone(None) is None


def test_tone_boolean_markers_lowercased():
    tone = normalize_tone({"expected": True, "heard": False})
    assert tone.expected == "true"
    assert tone.heard == "false"
    assert tone.match is False


def test_hint_truncated_to_120():
    assert normalize_hint("x" * 200) == "x" * 120
    assert normalize_hint("short") == "short"
    assert normalize_hint(42) is None


def test_verdict_from_judge_coerces_fields():
    verdict = verdict_from_judge({"pass": 1, "score": "1.7", "tone": None, "hint": ["no"]})
    assert verdict.passed is True
    assert verdict.score == 1.0
    assert verdict.tone is None
    assert verdict.hint is None


def test_unparseable_judge_output_defaults_to_fail():
    verdict = verdict_from_judge(parse_judge_content("not json {"))
    assert verdict.model_dump(by_alias=True) == {"pass": False, "score": 0.0, "tone": None, "hint": None}


def test_parse_judge_content_rejects_non_objects():
    assert parse_judge_content("[1, 2]") == {}
    assert parse_judge_content('{"pass": true}') == {"pass": True}


def _assessment_body(accuracy=None, fluency=90, completeness=90, nested=False, words=None, overall=None):
    scores = {"FluencyScore": fluency, "CompletenessScore": completeness}
    if accuracy is not None:
        scores["AccuracyScore"] = accuracy
    if overall is not None:
        scores["OverallScore"] = overall
    nbest = [{"Display": "x", "PronunciationAssessment": scores, "Words": words or []}]
    return {"results": [{"NBest": nbest}]} if nested else {"NBest": nbest}


def test_parse_assessment_both_layouts():
    assert parse_assessment(_assessment_body(accuracy=91))["accuracy"] == 91
    assert parse_assessment(_assessment_body(accuracy=55, nested=True))["accuracy"] == 55
    assert parse_assessment({"RecognitionStatus": "NoMatch"}) is None


def test_parse_assessment_falls_back_to_overall():
    assert parse_assessment(_assessment_body(overall=64))["accuracy"] == 64


@pytest.mark.parametrize(
    "accuracy,language,passed",
    [(80, "zh-CN", True), (79, "zh-CN", False), (78, "en-US", True), (77.99, "en-US", False)],
)
def test_assessment_pass_threshold(accuracy, language, passed):
    verdict = verdict_from_assessment(parse_assessment(_assessment_body(accuracy=accuracy)), language)
    assert verdict.passed is passed


def test_assessment_score_scaled_and_rounded():
    verdict = verdict_from_assessment(parse_assessment(_assessment_body(accuracy=87.123456)), "en-US")
    assert verdict.score == 0.8712
    assert verdict.hint is None


def test_assessment_score_clamped():
    verdict = verdict_from_assessment({"accuracy": 250, "words": [], "raw": {}}, "en-US")
    assert verdict.score == 1.0


def test_english_hints_follow_lowest_sub_score():
    def hint(accuracy, fluency, completeness):
        body = _assessment_body(accuracy=accuracy, fluency=fluency, completeness=completeness)
        return build_hint(parse_assessment(body), "en")

    assert hint(60, 50, 50) == "Try slower and enunciate the vowel sound"
    assert hint(75, 60, 50) == "Try a steadier pace, less hesitation"
    assert hint(75, 80, 60) == "Say the whole word clearly"
    assert hint(75, 80, 90) == "Try a bit clearer and slower"


def test_mandarin_hints():
    low = parse_assessment(_assessment_body(accuracy=50))
    mid = parse_assessment(_assessment_body(accuracy=75))
    assert build_hint(low, "zh") == "放慢一点，注意声母与韵母的发音"
    assert build_hint(mid, "zh") == "注意声调变化，再试一次"


def test_failing_assessment_carries_hint():
    verdict = verdict_from_assessment(parse_assessment(_assessment_body(accuracy=40)), "en-US")
    assert verdict.hint == EN_HINTS["accuracy"]


def test_mandarin_tone_heuristic():
    words = [{"Word": "马", "Phonemes": [{"Phoneme": "m a 3"}]}]
    verdict = verdict_from_assessment(parse_assessment(_assessment_body(accuracy=90, words=words)), "zh-CN")
    assert verdict.tone.heard == "3"
    assert verdict.tone.expected is None
    assert verdict.tone.match is None


def test_tone_only_for_mandarin():
    words = [{"Word": "x", "Phonemes": [{"Phoneme": "a 3"}]}]
    verdict = verdict_from_assessment(parse_assessment(_assessment_body(accuracy=50, words=words)), "en-US")
    assert verdict.tone is None
    assert verdict.hint != ZH_HINTS["default"]


def test_guess_tone_ignores_multi_digit_numbers():
    assert guess_tone_from_phones([{"AccuracyScore": 100, "Offset": 12345}]) is None
    assert guess_tone_from_phones([]) is None
