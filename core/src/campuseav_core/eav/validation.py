from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

from jsonschema import Draft202012Validator
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from campuseav_core.db.attribute_defs import AttributeDefRow
from campuseav_core.eav.codec import STRING_MAX_LENGTH, ValueKind, coerce, parse_value_kind
from campuseav_core.errors import InvalidValueKind, SchemaError, ValidationError

RULES_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "min": {"type": "number"},
        "max": {"type": "number"},
        "enum": {"type": "array", "minItems": 1},
        "pattern": {"type": "string", "minLength": 1},
        "min_length": {"type": "integer", "minimum": 0},
        "max_length": {"type": "integer", "minimum": 0},
    },
    "additionalProperties": False,
}

_RULES_VALIDATOR = Draft202012Validator(RULES_SCHEMA)


class ValidationRules(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min: int | float | None = None
    max: int | float | None = None
    enum: list[Any] | None = None
    pattern: str | None = None
    min_length: int | None = None
    max_length: int | None = None


def check_rules_document(doc: Any) -> list[dict[str, Any]]:
    """Structural problems with a validation-rules document, sorted by path."""

    errors: list[dict[str, Any]] = []
    for e in _RULES_VALIDATOR.iter_errors(doc):
        errors.append(
            {
                "path": list(e.path),
                "message": e.message,
                "validator": e.validator,
            }
        )

    if not errors and isinstance(doc, dict):
        lo, hi = doc.get("min"), doc.get("max")
        if lo is not None and hi is not None and lo > hi:
            errors.append(
                {"path": ["min"], "message": "min must not exceed max", "validator": "range"}
            )
        pattern = doc.get("pattern")
        if pattern is not None:
            try:
                re.compile(pattern)
            except re.error as err:
                errors.append({"path": ["pattern"], "message": str(err), "validator": "pattern"})

    errors.sort(key=lambda err: ("/".join(map(str, err.get("path", []))), err.get("message", "")))
    return errors


def rules_for(definition: AttributeDefRow) -> ValidationRules:
    try:
        return ValidationRules.model_validate(definition.validation_rules or {})
    except PydanticValidationError as err:
        raise SchemaError(
            f"Attribute '{definition.name}' has malformed validation rules"
        ) from err


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _allowed(value: Any, options: list[Any], kind: ValueKind) -> bool:
    for option in options:
        try:
            if coerce(option, kind) == value:
                return True
        except InvalidValueKind:
            continue
    return False


def validate(value: Any, definition: AttributeDefRow) -> Any:
    """Check `value` against the definition and return it coerced to the value kind.

    Returns None for a missing value on an optional attribute. Rules run in a
    fixed order: required, kind, min/max, enum, length, pattern.
    """

    name = definition.name
    kind = parse_value_kind(definition.value_kind)
    rules = rules_for(definition)

    if _is_missing(value):
        if definition.required:
            raise ValidationError(name, "required", "value is required")
        return None

    try:
        coerced = coerce(value, kind)
    except InvalidValueKind as err:
        raise ValidationError(name, "kind", err.reason) from err

    if kind in (ValueKind.INTEGER, ValueKind.DECIMAL):
        number = Decimal(coerced)
        if rules.min is not None and number < Decimal(str(rules.min)):
            raise ValidationError(name, "min", f"must be >= {rules.min}")
        if rules.max is not None and number > Decimal(str(rules.max)):
            raise ValidationError(name, "max", f"must be <= {rules.max}")

    if rules.enum is not None and not _allowed(coerced, rules.enum, kind):
        raise ValidationError(
            name, "enum", f"must be one of: {', '.join(str(o) for o in rules.enum)}"
        )

    if isinstance(coerced, str) and kind in (ValueKind.STRING, ValueKind.TEXT):
        limit = rules.max_length
        if kind is ValueKind.STRING:
            limit = STRING_MAX_LENGTH if limit is None else min(limit, STRING_MAX_LENGTH)
        if limit is not None and len(coerced) > limit:
            raise ValidationError(name, "length", f"must be at most {limit} characters")
        if rules.min_length is not None and len(coerced) < rules.min_length:
            raise ValidationError(
                name, "length", f"must be at least {rules.min_length} characters"
            )

        if rules.pattern is not None:
            try:
                matched = re.fullmatch(rules.pattern, coerced)
            except re.error:
                raise ValidationError(name, "pattern", "definition pattern is invalid") from None
            if matched is None:
                raise ValidationError(name, "pattern", "does not match the required pattern")

    return coerced
