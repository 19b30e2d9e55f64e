"""Tests for JSON extraction from model output."""

import pytest

from strategist.core.json_utils import extract_json, safe_json_parse


def test_plain_object() -> None:
    assert extract_json('{"a": 1}') == {"a": 1}


def test_fenced_block_with_language_tag() -> None:
    text = 'Here you go:\n```json\n{"intent": "chat"}\n```\nThanks'

    assert extract_json(text) == {"intent": "chat"}


def test_leading_json_word_is_stripped() -> None:
    assert extract_json('json {"ok": true}') == {"ok": True}


def test_first_balanced_object_ignores_braces_in_strings() -> None:
    text = 'Sure! {"note": "use {curly} braces", "n": 2} and then {"other": 1}'

    assert extract_json(text) == {"note": "use {curly} braces", "n": 2}


def test_array_mode() -> None:
    text = 'Memories: ["likes reels", "posts weekly"] done'

    assert extract_json(text, expect="array") == ["likes reels", "posts weekly"]


def test_extract_raises_when_nothing_parses() -> None:
    with pytest.raises(ValueError):
        extract_json("no json here")


def test_safe_parse_returns_fallback() -> None:
    assert safe_json_parse("{broken", fallback={}) == {}
    assert safe_json_parse("", fallback=None) is None
