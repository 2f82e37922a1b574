from __future__ import annotations

from typing import Any


class EavError(Exception):
    """Base class for errors raised by the attribute engine."""

    code = "eav_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> Any | None:
        return None


class SchemaError(EavError):
    code = "schema_error"


class EntityTypeNotFound(SchemaError):
    code = "entity_type_not_found"

    def __init__(self, entity_type: str) -> None:
        super().__init__(f"Unknown entity type '{entity_type}'")
        self.entity_type = entity_type


class AttributeNotFound(SchemaError):
    code = "attribute_not_found"

    def __init__(self, entity_type: str, attribute_name: str) -> None:
        super().__init__(f"Attribute '{attribute_name}' is not defined for '{entity_type}'")
        self.entity_type = entity_type
        self.attribute_name = attribute_name

    def details(self) -> Any | None:
        return {"entity_type": self.entity_type, "attribute": self.attribute_name}


class InvalidValueKind(EavError):
    code = "invalid_value"

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"Cannot represent value as {kind}: {reason}")
        self.kind = kind
        self.reason = reason


class ValidationError(EavError):
    code = "validation_error"

    def __init__(self, field: str, rule: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.rule = rule
        self.reason = reason

    def details(self) -> Any | None:
        return {"field": self.field, "rule": self.rule, "reason": self.reason}


class ConstraintViolation(EavError):
    code = "conflict"


class MigrationRecordError(EavError):
    code = "migration_record_error"

    def __init__(self, entity_id: str, reason: str) -> None:
        super().__init__(f"{entity_id}: {reason}")
        self.entity_id = entity_id
        self.reason = reason


class TransactionError(EavError):
    code = "transaction_error"


class GroupNotFound(EavError):
    code = "not_found"

    def __init__(self, group_id: str) -> None:
        super().__init__(f"Group '{group_id}' not found")
        self.group_id = group_id
