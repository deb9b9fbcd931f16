"""Tests for JSON recovery from model output."""

from rfp_engine.utils.json_parser import parse_json_object, strip_code_fences


def test_plain_json():
    assert parse_json_object('{"answer": "Yes", "found": true}') == {"answer": "Yes", "found": True}


def test_fenced_json():
    text = '```json\n{"answer": "Yes", "confidence": 0.9}\n```'

    assert parse_json_object(text) == {"answer": "Yes", "confidence": 0.9}


def test_prose_around_object():
    text = 'Here is the result:\n{"answer": "We encrypt data at rest."}\nLet me know if you need more.'

    assert parse_json_object(text) == {"answer": "We encrypt data at rest."}


def test_first_of_concatenated_objects():
    assert parse_json_object('{"answer": "A"}{"answer": "B"}') == {"answer": "A"}


def test_unrecoverable_output():
    assert parse_json_object("I could not find an answer.") is None
    assert parse_json_object("") is None
    assert parse_json_object("[1, 2, 3]") is None


def test_strip_code_fences_leaves_plain_text():
    assert strip_code_fences("  hello  ") == "hello"
