import base64
import json

import pytest

from quicklist.core.errors import ExtractionFailure
from quicklist.core.json_extract import (
    extract_json,
    gemini_response_text,
    repair_escapes,
    repair_structure,
    require_json,
    slice_balanced,
)


def test_whole_text_is_an_object():
    assert extract_json('  {"brand": "Nike", "size": "UK 9"}  ') == {"brand": "Nike", "size": "UK 9"}


def test_fenced_block_with_prose_around_it():
    text = 'Here is the listing:\n```json\n{"title": "Nike Air Max 90", "price": "£45"}\n```\nHope that helps!'
    assert extract_json(text) == {"title": "Nike Air Max 90", "price": "£45"}


def test_fence_without_language_tag():
    assert extract_json('```\n{"a": 1}\n```') == {"a": 1}


def test_stray_backslash_is_kept_literally():
    text = 'Result: {"category": "Home \\ Men"}'
    assert extract_json(text) == {"category": "Home \\ Men"}


def test_valid_escapes_are_untouched():
    text = '{"a": "line\\nnext", "b": "caf\\u00e9", "c": "say \\"hi\\""}'
    assert extract_json(text) == {"a": "line\nnext", "b": "café", "c": 'say "hi"'}


def test_repair_escapes_doubles_only_invalid_backslashes():
    assert repair_escapes('"a\\qb"') == '"a\\\\qb"'
    assert repair_escapes('"ok\\n"') == '"ok\\n"'
    assert repair_escapes("tail\\") == "tail\\\\"


def test_braces_inside_strings_do_not_end_the_group():
    text = 'note {"a": "x } y", "b": 1} end'
    assert extract_json(text) == {"a": "x } y", "b": 1}


def test_escaped_quote_inside_string():
    text = 'prefix {"a": "say \\"{hi\\" now", "b": 2} suffix'
    assert extract_json(text) == {"a": 'say "{hi" now', "b": 2}


def test_first_parseable_group_wins():
    text = 'first {not json} then {"ok": true} and {"later": 1}'
    assert extract_json(text) == {"ok": True}


def test_nested_object_returns_outermost():
    assert extract_json('x {"outer": {"inner": 1}} y') == {"outer": {"inner": 1}}


def test_falls_back_to_inner_group_when_outer_never_closes():
    assert extract_json('{"broken": [1, 2, {"inner": 3}') == {"inner": 3}


def test_raw_newlines_inside_strings_are_escaped():
    text = '{"title": "Nike", "description": "Line one.\nLine two.\tEnd"}'
    assert extract_json(text) == {"title": "Nike", "description": "Line one.\nLine two.\tEnd"}


def test_trailing_commas_are_dropped():
    text = '{"title": "Nike", "keywords": ["a", "b",],}'
    assert extract_json(text) == {"title": "Nike", "keywords": ["a", "b"]}


def test_truncated_output_is_closed():
    text = '{"title": "Nike Air Max 90", "brand": "Nike", "description": "Great cond'
    assert extract_json(text) == {"title": "Nike Air Max 90", "brand": "Nike", "description": "Great cond"}


def test_truncated_output_after_prose_and_open_fence():
    text = 'Here you go:\n```json\n{"title": "Levi\'s 501", "keywords": ["denim", "jea'
    assert extract_json(text) == {"title": "Levi's 501", "keywords": ["denim"]}


def test_truncated_key_and_trailing_colon():
    assert extract_json('{"title": "Nike", "bra') == {"title": "Nike"}
    assert extract_json('{"title": "Nike", "brand": ') == {"title": "Nike", "brand": None}
    assert extract_json('{"a": ') == {"a": None}


def test_truncated_run_of_backslashes_stays_literal():
    assert extract_json('{"a": "' + "\\" * 5000) == {"a": "\\" * 2500}


def test_repair_structure_closes_nested_brackets():
    assert repair_structure('{"a": [1, {"b": 2') == '{"a": [1, {"b": 2}]}'
    assert repair_structure('{"a": "x } ]"') == '{"a": "x } ]"}'


@pytest.mark.parametrize("text", ["[1, 2, 3]", "42", '"just a string"', "true"])
def test_non_objects_are_not_found(text):
    assert extract_json(text) is None


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "no braces at all",
        "{{{{",
        "}}}{",
        '{"',
        "\\",
        "{" * 10000,
        None,
        123,
    ],
)
def test_never_raises(text):
    assert extract_json(text) is None


def test_idempotent_on_its_own_output():
    text = 'Sure! ```json\n{"title": "Levi\'s 501", "keywords": ["denim", "jeans"], "n": 3}\n``` done'
    first = extract_json(text)
    assert first is not None
    assert extract_json(json.dumps(first)) == first


def test_slice_balanced_ignores_braces_in_strings():
    text = 'xx {"a": "}"} yy'
    assert slice_balanced(text, 3) == '{"a": "}"}'
    assert slice_balanced('{"a": 1', 0) is None


def test_require_json_raises_extraction_failure():
    with pytest.raises(ExtractionFailure) as exc:
        require_json("the model said nothing useful")
    assert exc.value.code == "EXTRACTION_FAILURE"
    assert "preview" in exc.value.details


def test_gemini_response_text_joins_parts_and_decodes_inline_json():
    inline = base64.b64encode(b'{"brand": "Nike"}').decode()
    payload = {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"text": "Here you go"},
                        {"inlineData": {"mimeType": "application/json", "data": inline}},
                        {"inlineData": {"mimeType": "image/png", "data": "AAAA"}},
                    ]
                }
            }
        ]
    }
    text = gemini_response_text(payload)
    assert text == 'Here you go\n{"brand": "Nike"}'
    assert extract_json(text) == {"brand": "Nike"}


def test_gemini_response_text_without_candidates():
    assert gemini_response_text({}) == ""
    assert gemini_response_text({"candidates": []}) == ""
