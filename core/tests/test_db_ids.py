from __future__ import annotations

import uuid

from campuseav_core.db.ids import (
    migration_group_id,
    new_attribute_value_id,
    new_group_id,
    sha256_hex,
)


def test_sha256_hex_known_value() -> None:
    assert sha256_hex(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_new_attribute_value_id_is_sha256_hex() -> None:
    value_id = new_attribute_value_id()
    assert len(value_id) == 64
    assert all(c in "0123456789abcdef" for c in value_id)


def test_new_group_id_is_uuid() -> None:
    assert uuid.UUID(new_group_id()).version == 4


def test_migration_group_id_is_deterministic() -> None:
    first = migration_group_id("instructor_awards", "42", 0)
    assert first == migration_group_id("instructor_awards", "42", 0)
    assert first != migration_group_id("instructor_awards", "42", 1)
    assert first != migration_group_id("instructor_awards", "43", 0)
