from unittest.mock import Mock

import pytest

from figma_atomic.extract.extract_properties_v1.main import build_extraction, coerce_scalar, extract_properties
from schemas import DesignNode, ElementRecord, ExtractionResult

BUTTON = ElementRecord(id="2:1", name="Button 1", category="button")
NODE = DesignNode.from_api({"id": "2:1", "name": "Button 1", "type": "INSTANCE",
                            "fills": [{"type": "SOLID", "color": {"r": 0, "g": 0, "b": 0}}]})


@pytest.mark.parametrize("raw,expected", [
    ("8", 8),
    ("-2", -2),
    ("0.5", 0.5),
    ("true", True),
    ("False", False),
    ("null", None),
    ("#0F172A", "#0F172A"),
    ("8px", "8px"),
    (12, 12),
    ({"a": 1}, '{"a": 1}'),
])
def test_coerce_scalar(raw, expected):
    assert coerce_scalar(raw) == expected


def test_extract_from_sections():
    reply = "\n".join([
        "---TOKENS---",
        "background: #0F172A",
        "radius: 8",
        "---VARIANTS---",
        "name:primary|description:Filled|background:#0F172A|color:#FFFFFF",
        "name:ghost|description:Transparent",
    ])
    complete = Mock(return_value=reply)
    result = extract_properties(BUTTON, NODE, complete, max_tokens=300)
    assert result.ok
    assert result.value.tokens == {"background": "#0F172A", "radius": 8}
    assert [v.name for v in result.value.variants] == ["primary", "ghost"]
    assert result.value.variants[0].style_values == {"background": "#0F172A", "color": "#FFFFFF"}
    prompt = complete.call_args[0][0]
    assert '"fills"' in prompt
    assert complete.call_args[1]["max_tokens"] == 300


def test_extract_from_json_payload():
    value = {"tokens": {"color": "#fff", "size": 14},
             "variants": [{"name": "primary", "styleValues": {"bg": "#000"}}, "junk"]}
    extraction = build_extraction(value)
    assert extraction.tokens == {"color": "#fff", "size": 14}
    assert extraction.variants[0].style_values == {"bg": "#000"}
    assert len(extraction.variants) == 1


def test_extract_failure_is_neutral():
    result = extract_properties(BUTTON, NODE, Mock(side_effect=ConnectionError("reset")))
    assert result.value == ExtractionResult()
    assert result.error.kind == "completion"


def test_extract_without_node_still_prompts():
    complete = Mock(return_value="---TOKENS---\ncolor: red\n")
    result = extract_properties(BUTTON, None, complete)
    assert "(node data unavailable)" in complete.call_args[0][0]
    assert result.value.tokens == {"color": "red"}


def test_bad_tokens_shape_is_validation_failure():
    result = extract_properties(BUTTON, NODE, Mock(return_value='{"tokens": ["a"], "variants": []}'))
    assert result.error.kind == "validation"
    assert result.value == ExtractionResult()
