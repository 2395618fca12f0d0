"""Unit tests for decoding serialized emergency-info lists and record previews."""
import pytest

from medichain.projector import TRUNCATION_MARKER, decode_json_list, truncate_content


def test_decode_valid_list():
    assert decode_json_list('["Penicillin", "Peanuts"]') == ["Penicillin", "Peanuts"]


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "   ",
        "[not json",
        '{"allergy": "Penicillin"}',
        '"Penicillin"',
        "[1, 2, 3]",
        '["ok", null]',
    ],
)
def test_decode_degrades_to_empty_list(raw):
    assert decode_json_list(raw, "critical_allergies") == []


def test_truncate_long_content():
    content = "x" * 250
    preview = truncate_content(content, 200)
    assert preview == "x" * 200 + TRUNCATION_MARKER


def test_truncate_leaves_short_content():
    assert truncate_content("x" * 200, 200) == "x" * 200
