from services.candidates import (
    has_han,
    han_only,
    language_filter,
    looks_like_latin_only,
    normalize_candidates,
    primary_subtag,
    strip_trailing_punct,
)


def test_primary_subtag():
    assert primary_subtag("zh-CN") == "zh"
    assert primary_subtag("EN-us") == "en"
    assert primary_subtag("ko") == "ko"
    assert primary_subtag("") == ""


def test_strip_trailing_punct_single_token():
    assert strip_trailing_punct("café.") == "café"
    assert strip_trailing_punct("好。") == "好"
    assert strip_trailing_punct("seven?!…") == "seven"
    assert strip_trailing_punct("  马！ ") == "马"


def test_strip_trailing_punct_leaves_phrases_alone():
    assert strip_trailing_punct("hello there.") == "hello there."


def test_normalize_drops_empty_and_keeps_order():
    assert normalize_candidates(["b.", "。", "", "a", "c d."]) == ["b", "a", "c d."]


def test_normalize_is_idempotent():
    once = normalize_candidates(["Seven.", "你好！", "two words."])
    assert normalize_candidates(once) == once


def test_normalize_ignores_non_lists():
    assert normalize_candidates(None) == []


def test_latin_only_detection():
    assert looks_like_latin_only("hello")
    assert not looks_like_latin_only("你好")
    assert not looks_like_latin_only("ma 马")
    assert not looks_like_latin_only("123")
    assert not looks_like_latin_only("カタカナ abc")
    assert not looks_like_latin_only("한국 abc")


def test_language_filter_drops_latin_for_cjk():
    assert language_filter(["hello", "你好"], "zh-CN") == ["你好"]
    assert language_filter(["konnichiwa", "こんにちは"], "ja-JP") == ["こんにちは"]


def test_language_filter_may_return_empty():
    assert language_filter(["hello", "world"], "ko-KR") == []


def test_language_filter_passes_other_languages():
    assert language_filter(["hello", "你好"], "en-US") == ["hello", "你好"]


def test_han_helpers():
    assert has_han("a马b")
    assert not has_han("abc")
    assert han_only("ma马。") == "马"
