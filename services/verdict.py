import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

from config import Config
from models import Tone, Verdict
from services.candidates import primary_subtag

ISOLATED_TONE_RE = re.compile(r"[^0-9]([1-5])[^0-9]")

# (accuracy<70, fluency<70, completeness<70, otherwise), first match wins
EN_HINTS = {
    "accuracy": "Try slower and enunciate the vowel sound",
    "fluency": "Try a steadier pace, less hesitation",
    "completeness": "Say the whole word clearly",
    "default": "Try a bit clearer and slower",
}
ZH_HINTS = {
    "accuracy": "放慢一点，注意声母与韵母的发音",
    "default": "注意声调变化，再试一次",
}
SUB_SCORE_FLOOR = 70


def to_number(value: Any) -> float:
    """Numeric coercion; anything unparseable or non-finite becomes 0."""
    if value is None or isinstance(value, (list, dict)):
        return 0.0
    try:
        x = float(value)
    except (TypeError, ValueError):
        return 0.0
    return x if math.isfinite(x) else 0.0


def clamp01(value: Any) -> float:
    return max(0.0, min(1.0, to_number(value)))


def _tone_marker(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def normalize_tone(tone: Any) -> Optional[Tone]:
    """Stringify expected/heard; derive match only when the judge left it out."""
    if not isinstance(tone, dict):
        return None
    expected = _tone_marker(tone.get("expected"))
    heard = _tone_marker(tone.get("heard"))
    match = tone.get("match")
    if not isinstance(match, bool):
        match = expected == heard if expected and heard else None
    return Tone(expected=expected, heard=heard, match=match)


def normalize_hint(hint: Any) -> Optional[str]:
    return hint[: Config.HINT_MAX_CHARS] if isinstance(hint, str) else None


def parse_judge_content(content: Any) -> Dict[str, Any]:
    """Decode the judge's JSON answer; malformed output becomes an empty verdict."""
    if not isinstance(content, str) or not content.strip():
        return {}
    try:
        parsed = json.loads(content)
    except ValueError:
        logging.warning("Judge returned non-JSON content, using default verdict")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def verdict_from_judge(raw: Any) -> Verdict:
    raw = raw if isinstance(raw, dict) else {}
    return Verdict(
        passed=bool(raw.get("pass")),
        score=clamp01(raw.get("score")),
        tone=normalize_tone(raw.get("tone")),
        hint=normalize_hint(raw.get("hint")),
    )


def parse_assessment(body: Any) -> Optional[Dict[str, Any]]:
    """
    First-best result of a detailed pronunciation assessment response.

    Accepts both the flat ``NBest`` layout and the ``results[0].NBest`` one.
    Returns ``{"accuracy", "words", "raw"}`` or None when no result is present.
    """
    nbest = None
    if isinstance(body, dict):
        if isinstance(body.get("NBest"), list) and body["NBest"]:
            nbest = body["NBest"][0]
        else:
            results = body.get("results")
            if isinstance(results, list) and results and isinstance(results[0], dict):
                inner = results[0].get("NBest")
                if isinstance(inner, list) and inner:
                    nbest = inner[0]
    if not isinstance(nbest, dict):
        return None

    scores = nbest.get("PronunciationAssessment") or {}
    accuracy = scores.get("AccuracyScore")
    if accuracy is None:
        accuracy = scores.get("OverallScore")
    words = nbest.get("Words")
    return {
        "accuracy": accuracy if accuracy is not None else 0,
        "words": words if isinstance(words, list) else [],
        "raw": nbest,
    }


def guess_tone_from_phones(words: List[Any]) -> Optional[str]:
    """Best-effort: first isolated digit 1-5 anywhere in the word breakdown."""
    try:
        dumped = json.dumps(words or [], ensure_ascii=False).lower()
    except (TypeError, ValueError):
        return None
    m = ISOLATED_TONE_RE.search(dumped)
    return m.group(1) if m else None


def _rounded(value: Any) -> int:
    return math.floor(to_number(value) + 0.5)


def build_hint(assessment: Dict[str, Any], lang: str) -> str:
    scores = (assessment.get("raw") or {}).get("PronunciationAssessment") or {}
    accuracy = _rounded(scores.get("AccuracyScore"))
    fluency = _rounded(scores.get("FluencyScore"))
    completeness = _rounded(scores.get("CompletenessScore"))

    if lang == "zh":
        return ZH_HINTS["accuracy"] if accuracy < SUB_SCORE_FLOOR else ZH_HINTS["default"]
    if accuracy < SUB_SCORE_FLOOR:
        return EN_HINTS["accuracy"]
    if fluency < SUB_SCORE_FLOOR:
        return EN_HINTS["fluency"]
    if completeness < SUB_SCORE_FLOOR:
        return EN_HINTS["completeness"]
    return EN_HINTS["default"]


def pass_threshold(language: str) -> float:
    if primary_subtag(language) == "zh":
        return Config.ZH_PASS_THRESHOLD
    return Config.DEFAULT_PASS_THRESHOLD


def verdict_from_assessment(assessment: Dict[str, Any], language: str) -> Verdict:
    lang = primary_subtag(language)
    raw_score = max(0.0, min(100.0, to_number(assessment.get("accuracy"))))
    score = round(raw_score / 100, 4)
    passed = score >= pass_threshold(language)

    tone = None
    if lang == "zh":
        heard = guess_tone_from_phones(assessment.get("words"))
        if heard:
            # No expected-tone source for this provider
            tone = Tone(expected=None, heard=heard, match=None)

    return Verdict(
        passed=passed,
        score=score,
        tone=tone,
        hint=None if passed else build_hint(assessment, lang),
    )
