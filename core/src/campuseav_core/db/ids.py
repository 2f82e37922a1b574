from __future__ import annotations

import hashlib
import uuid

# Namespace for group ids derived during legacy migrations.
GROUP_ID_NAMESPACE = uuid.UUID("6f1c2f0e-9a53-4c0b-8f7e-3d2b1a0c9e41")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _new_id() -> str:
    return sha256_hex(uuid.uuid4().bytes)


def new_entity_type_id() -> str:
    """Generate a new entity type ID.

    IDs are SHA-256 hex strings (64 chars) and are generated at creation time.
    """

    return _new_id()


def new_attribute_def_id() -> str:
    return _new_id()


def new_attribute_value_id() -> str:
    return _new_id()


def new_migration_log_id() -> str:
    return _new_id()


def new_audit_log_id() -> str:
    return _new_id()


def new_group_id() -> str:
    """Random group id for a repeating record created through the service."""

    return str(uuid.uuid4())


def migration_group_id(plan_name: str, entity_id: str, index: int) -> str:
    """Deterministic group id for the `index`-th legacy record of an entity.

    The same legacy data always yields the same id, so re-running a migration
    dedupes instead of creating new groups.
    """

    return str(uuid.uuid5(GROUP_ID_NAMESPACE, f"{plan_name}:{entity_id}:{index}"))
