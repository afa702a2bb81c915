"""Tests for studybuddy.tools.validation — the argument schema checker."""

from __future__ import annotations

import copy

import pytest

from studybuddy.errors import SchemaValidationError
from studybuddy.tools.validation import validate_arguments

QUIZ_SCHEMA = {
    "type": "object",
    "properties": {
        "topic": {"type": "string", "minLength": 1},
        "numberOfQuestions": {"type": "integer", "minimum": 1, "maximum": 20},
        "difficulty": {"type": "string", "enum": ["easy", "medium", "hard"]},
    },
    "required": ["topic", "numberOfQuestions", "difficulty"],
    "additionalProperties": False,
}

NESTED_SCHEMA = {
    "type": "object",
    "properties": {
        "cards": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {"question": {"type": "string"}, "answer": {"type": "string"}},
                "required": ["question", "answer"],
            },
        },
        "breakMinutes": {"type": "number", "default": 5},
        "day": {"type": "string", "format": "date"},
    },
    "required": ["cards"],
}


def _violations(schema, arguments) -> dict[str, str]:
    with pytest.raises(SchemaValidationError) as exc:
        validate_arguments("tool", schema, arguments)
    return {v.path: v.message for v in exc.value.violations}


def test_valid_arguments_pass_unchanged() -> None:
    args = {"topic": "Algebra", "numberOfQuestions": 10, "difficulty": "easy"}
    assert validate_arguments("generate_quiz", QUIZ_SCHEMA, args) == args


def test_out_of_range_number() -> None:
    found = _violations(QUIZ_SCHEMA, {"topic": "Algebra", "numberOfQuestions": 25, "difficulty": "easy"})
    assert found == {"numberOfQuestions": "must be <= 20"}


def test_below_minimum() -> None:
    found = _violations(QUIZ_SCHEMA, {"topic": "Algebra", "numberOfQuestions": 0, "difficulty": "easy"})
    assert found == {"numberOfQuestions": "must be >= 1"}


def test_non_enumerated_value() -> None:
    found = _violations(QUIZ_SCHEMA, {"topic": "Algebra", "numberOfQuestions": 3, "difficulty": "brutal"})
    assert list(found) == ["difficulty"]
    assert "must be one of" in found["difficulty"]


def test_every_violation_is_reported_at_once() -> None:
    found = _violations(QUIZ_SCHEMA, {"numberOfQuestions": "ten", "extra": True})
    assert found["topic"] == "is required"
    assert found["difficulty"] == "is required"
    assert found["numberOfQuestions"] == "expected integer, got str"
    assert found["extra"] == "is not an allowed field"


def test_boolean_is_not_a_number() -> None:
    found = _violations(QUIZ_SCHEMA, {"topic": "x", "numberOfQuestions": True, "difficulty": "easy"})
    assert found == {"numberOfQuestions": "expected integer, got boolean"}


def test_integral_float_is_accepted_as_integer() -> None:
    args = {"topic": "x", "numberOfQuestions": 5.0, "difficulty": "easy"}
    validated = validate_arguments("generate_quiz", QUIZ_SCHEMA, args)
    assert validated["numberOfQuestions"] == 5
    assert isinstance(validated["numberOfQuestions"], int)


def test_nested_item_paths() -> None:
    found = _violations(NESTED_SCHEMA, {"cards": [{"question": "q", "answer": "a"}, {"question": "q2"}]})
    assert found == {"cards[1].answer": "is required"}


def test_min_items() -> None:
    found = _violations(NESTED_SCHEMA, {"cards": []})
    assert found == {"cards": "must have at least 1 item(s)"}


def test_malformed_date() -> None:
    found = _violations(NESTED_SCHEMA, {"cards": [{"question": "q", "answer": "a"}], "day": "next week"})
    assert list(found) == ["day"]


def test_defaults_filled_without_touching_input() -> None:
    args = {"cards": [{"question": "q", "answer": "a"}]}
    before = copy.deepcopy(args)

    validated = validate_arguments("tool", NESTED_SCHEMA, args)

    assert validated["breakMinutes"] == 5
    assert args == before


def test_non_object_arguments() -> None:
    with pytest.raises(SchemaValidationError) as exc:
        validate_arguments("tool", QUIZ_SCHEMA, ["not", "a", "dict"])
    assert "arguments must be an object" in str(exc.value)
