from __future__ import annotations

from campuseav_core.eav.catalog import AttributeCatalog, AttributeSpec
from campuseav_core.eav.codec import TypedSlots, ValueKind, decode, encode
from campuseav_core.eav.service import EavService, FieldResult, GroupSpec
from campuseav_core.eav.store import AttributeValueStore, UpsertResult
from campuseav_core.eav.validation import ValidationRules, validate

__all__ = [
    "AttributeCatalog",
    "AttributeSpec",
    "AttributeValueStore",
    "EavService",
    "FieldResult",
    "GroupSpec",
    "TypedSlots",
    "UpsertResult",
    "ValidationRules",
    "ValueKind",
    "decode",
    "encode",
    "validate",
]
