from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest

from campuseav_core.db.attribute_defs import AttributeDefRow
from campuseav_core.eav.validation import check_rules_document, validate
from campuseav_core.errors import ValidationError


def _definition(
    name: str,
    value_kind: str,
    *,
    required: bool = False,
    rules: dict[str, Any] | None = None,
) -> AttributeDefRow:
    return AttributeDefRow(
        attribute_def_id="def-" + name,
        entity_type_id="type",
        name=name,
        display_name=name,
        description=None,
        value_kind=value_kind,
        category=None,
        required=required,
        multi_valued=False,
        default_value=None,
        validation_rules=rules or {},
        sort_order=0,
        is_active=True,
        created_at="2024-01-01T00:00:00.000Z",
        updated_at="2024-01-01T00:00:00.000Z",
        deleted_at=None,
    )


AWARD_YEAR = _definition("award_year", "integer", rules={"min": 1900, "max": 2100})


@pytest.mark.parametrize("year", [1900, 2024, 2100, "1999"])
def test_award_year_bounds_are_inclusive(year) -> None:
    assert validate(year, AWARD_YEAR) == int(year)


@pytest.mark.parametrize(("year", "rule"), [(1899, "min"), (2101, "max")])
def test_award_year_outside_bounds(year: int, rule: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate(year, AWARD_YEAR)
    assert excinfo.value.field == "award_year"
    assert excinfo.value.rule == rule


def test_required_attribute_rejects_missing_values() -> None:
    title = _definition("award_title", "string", required=True)
    for missing in (None, "", "   "):
        with pytest.raises(ValidationError) as excinfo:
            validate(missing, title)
        assert excinfo.value.rule == "required"


def test_optional_missing_value_is_none() -> None:
    assert validate(None, _definition("award_category", "string")) is None


def test_required_check_runs_before_kind() -> None:
    definition = _definition("count", "integer", required=True, rules={"min": 1})
    with pytest.raises(ValidationError) as excinfo:
        validate("", definition)
    assert excinfo.value.rule == "required"

    with pytest.raises(ValidationError) as excinfo:
        validate("many", definition)
    assert excinfo.value.rule == "kind"


def test_decimal_range() -> None:
    gpa = _definition("student_gpa", "decimal", rules={"min": 0, "max": 4.0})
    assert validate("3.75", gpa) == Decimal("3.75")
    with pytest.raises(ValidationError):
        validate("4.01", gpa)


def test_enum_membership() -> None:
    condition = _definition(
        "equipment_condition", "string", rules={"enum": ["Excellent", "Good", "Fair", "Poor"]}
    )
    assert validate("Good", condition) == "Good"
    with pytest.raises(ValidationError) as excinfo:
        validate("Broken", condition)
    assert excinfo.value.rule == "enum"


def test_string_length_cap_and_text_max_length() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate("x" * 501, _definition("name", "string"))
    assert excinfo.value.rule == "length"

    notes = _definition("notes", "text", rules={"max_length": 10})
    assert validate("short", notes) == "short"
    with pytest.raises(ValidationError):
        validate("much too long", notes)


def test_pattern_must_match_whole_value() -> None:
    orcid = _definition("orcid", "string", rules={"pattern": r"\d{4}-\d{4}-\d{4}-\d{3}[\dX]"})
    assert validate("0000-0002-1825-0097", orcid) == "0000-0002-1825-0097"
    with pytest.raises(ValidationError) as excinfo:
        validate("id 0000-0002-1825-0097", orcid)
    assert excinfo.value.rule == "pattern"


def test_check_rules_document() -> None:
    assert check_rules_document({"min": 1, "max": 5, "enum": ["a"]}) == []

    unknown = check_rules_document({"minimum": 1})
    assert unknown and unknown[0]["validator"] == "additionalProperties"

    inverted = check_rules_document({"min": 10, "max": 1})
    assert [e["validator"] for e in inverted] == ["range"]

    bad_pattern = check_rules_document({"pattern": "("})
    assert [e["validator"] for e in bad_pattern] == ["pattern"]
