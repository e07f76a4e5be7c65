import re
from typing import List

TRAILING_PUNCT_RE = re.compile(r"[.\u3002\uff01\uff1f!?\uff0c,\u3001\uff1b;\uff1a:\u2026]+$")
LATIN_LETTER_RE = re.compile(r"[A-Za-z]")

_HAN = "\u3005\u3007\u3021-\u3029\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff\U00020000-\U0003134f"
_KANA = "\u3041-\u309f\u30a0-\u30ff\u31f0-\u31ff\uff66-\uff9d"
_HANGUL = "\u1100-\u11ff\u3130-\u318f\uac00-\ud7af"

HAN_RE = re.compile(f"[{_HAN}]")
CJK_SCRIPT_RE = re.compile(f"[{_HAN}{_KANA}{_HANGUL}]")

CJK_LANGUAGES = {"zh", "ja", "ko"}


def primary_subtag(language: str) -> str:
    """Primary BCP-47 subtag, lowercased ("zh-CN" -> "zh")."""
    return (language or "").split("-")[0].lower()


def strip_trailing_punct(text: str) -> str:
    """Strip trailing sentence punctuation from single-token strings."""
    if not text:
        return text
    stripped = text.strip()
    if re.search(r"\s", stripped):
        return stripped
    return TRAILING_PUNCT_RE.sub("", stripped)


def normalize_candidates(raw: List[str]) -> List[str]:
    if not isinstance(raw, list):
        return []
    normalized = (strip_trailing_punct(c) for c in raw if isinstance(c, str))
    return [c for c in normalized if c]


def has_han(text: str) -> bool:
    return bool(HAN_RE.search(text or ""))


def han_only(text: str) -> str:
    return "".join(ch for ch in text or "" if HAN_RE.match(ch))


def looks_like_latin_only(text: str) -> bool:
    """A Latin letter and no Han/Kana/Hangul: likely a mis-transliteration."""
    return bool(LATIN_LETTER_RE.search(text)) and not CJK_SCRIPT_RE.search(text)


def language_filter(candidates: List[str], language: str) -> List[str]:
    """
    Drop Latin-only candidates for zh/ja/ko. An empty result stays empty;
    callers treat it as "no usable candidates".
    """
    if primary_subtag(language) in CJK_LANGUAGES:
        return [c for c in candidates if not looks_like_latin_only(c)]
    return list(candidates)
