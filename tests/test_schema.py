from __future__ import annotations

import allure
import pytest

from pm_flows.harness.schema import check_schema, parse_payload, validate, validate_payload

pytestmark = [
    allure.epic("Harness"),
    allure.feature("Schema Validation"),
]

SCHEMA = {
    "type": "object",
    "required": ["isViable", "impactScore"],
    "properties": {
        "isViable": {"type": "boolean"},
        "impactScore": {"type": "number", "minimum": 0, "maximum": 100},
        "concerns": {"type": "array", "items": {"type": "string"}},
    },
}


def test_validate_accepts_conforming_value() -> None:
    result = validate({"isViable": True, "impactScore": 72}, SCHEMA)

    assert result.is_valid
    assert result.payload == {"isViable": True, "impactScore": 72}
    assert result.violations == []
    assert result.error_summary is None


def test_validate_reports_every_violation_with_paths() -> None:
    result = validate({"impactScore": 140, "concerns": ["ok", 3]}, SCHEMA)

    assert not result.is_valid
    paths = [item.path for item in result.violations]
    assert "$" in paths
    assert "$.impactScore" in paths
    assert "$.concerns[1]" in paths
    keywords = {item.keyword for item in result.violations}
    assert {"required", "maximum", "type"} <= keywords
    assert result.error_summary is not None
    assert "isViable" in result.error_summary


def test_validate_payload_decodes_json_text() -> None:
    result = validate_payload('{"isViable": false, "impactScore": 10}', SCHEMA)

    assert result.is_valid
    assert result.payload == {"isViable": False, "impactScore": 10}


def test_validate_payload_rejects_non_json_text() -> None:
    result = validate_payload("Sure! Here is your analysis.", SCHEMA)

    assert not result.is_valid
    assert result.violations[0].keyword == "json"
    assert result.violations[0].path == "$"


def test_parse_payload_rejects_invalid_utf8_bytes() -> None:
    result = parse_payload(b"\xff\xfe{")

    assert not result.is_valid
    assert "UTF-8" in result.violations[0].message


def test_check_schema_rejects_malformed_schema() -> None:
    with pytest.raises(ValueError, match="Invalid output schema"):
        check_schema({"type": "object", "required": "isViable"})


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
def test_validate_payload_rejects_non_json_number_literals(literal: str) -> None:
    result = validate_payload(f'{{"isViable": true, "impactScore": {literal}}}', SCHEMA)

    assert not result.is_valid
    assert result.payload is None
    assert result.violations[0].keyword == "json"
    assert literal.lstrip("-") in result.violations[0].message


def test_parse_payload_rejects_decoded_non_finite_numbers() -> None:
    result = parse_payload({"isViable": True, "scores": [10, float("nan")]})

    assert not result.is_valid
    assert result.violations[0].message == "payload holds a non-finite number at $.scores[1]"
