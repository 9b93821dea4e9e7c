"""Tests for structured.py: the JSON repair cascade."""

import pytest

from voice_notes.errors import StructuredOutputError
from voice_notes.structured import (
    REPAIR_STRATEGIES,
    parse_bracket_span,
    parse_direct,
    parse_repaired,
    repair_json,
)


class TestRepairJson:
    def test_valid_json_unchanged(self):
        text = '{"title": "Weekly sync", "main_points": ["a", "b"]}'
        assert repair_json(text) == {"title": "Weekly sync", "main_points": ["a", "b"]}

    def test_valid_list(self):
        assert repair_json('[1, 2, 3]') == [1, 2, 3]

    def test_trailing_comma(self):
        result = repair_json('{"title":"X","main_points":["a","b",]}')
        assert result["title"] == "X"
        assert result["main_points"] == ["a", "b"]

    def test_prose_around_object(self):
        result = repair_json('Sure! Here you go: {"title":"X"} Hope that helps!')
        assert result == {"title": "X"}

    def test_code_fence(self):
        result = repair_json('```json\n{"title": "Fenced"}\n```')
        assert result == {"title": "Fenced"}

    def test_truncated_object(self):
        result = repair_json('{"title": "Cut off", "action_items": ["call Bob"')
        assert result["title"] == "Cut off"

    def test_nothing_recoverable_raises(self):
        with pytest.raises(StructuredOutputError) as exc:
            repair_json("I'm sorry, I can't help with that.")
        assert exc.value.text.startswith("I'm sorry")

    def test_empty_text_raises(self):
        with pytest.raises(StructuredOutputError):
            repair_json("")

    def test_scalar_json_rejected(self):
        with pytest.raises(StructuredOutputError):
            repair_json("42")


class TestStrategies:
    def test_order(self):
        assert REPAIR_STRATEGIES == [parse_direct, parse_repaired, parse_bracket_span]

    def test_direct_rejects_trailing_comma(self):
        with pytest.raises(ValueError):
            parse_direct('{"a": [1, 2,]}')

    def test_repaired_fixes_trailing_comma(self):
        assert parse_repaired('{"a": [1, 2,]}') == {"a": [1, 2]}

    def test_bracket_span_isolates_object(self):
        assert parse_bracket_span('Sure! Here you go: {"title":"X"} Hope that helps!') == {"title": "X"}

    def test_bracket_span_isolates_list(self):
        assert parse_bracket_span('Result: ["x", "y"] done') == ["x", "y"]

    def test_bracket_span_without_brackets(self):
        with pytest.raises(ValueError):
            parse_bracket_span("no json here")
