from __future__ import annotations

from pathlib import Path

import pytest

from campuseav_core.db import like_prefix, transaction
from campuseav_core.db.migrate import apply_migrations
from campuseav_core.eav.catalog import AttributeCatalog, AttributeSpec, category_of
from campuseav_core.errors import (
    AttributeNotFound,
    ConstraintViolation,
    EntityTypeNotFound,
    InvalidValueKind,
    SchemaError,
)


def _db(tmp_path: Path) -> Path:
    db_path = tmp_path / "eav.sqlite3"
    apply_migrations(db_path)
    return db_path


def test_category_of() -> None:
    assert category_of("student_gpa") == "student"
    assert category_of("nickname") is None


def test_ensure_entity_type_is_idempotent(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    catalog = AttributeCatalog()

    with transaction(db_path) as conn:
        first = catalog.ensure_entity_type(conn, "Instructor", "instructors")
        second = catalog.ensure_entity_type(conn, "Instructor", "instructors")
        assert first == second
        assert catalog.resolve_entity_type(conn, "Instructor").table_name == "instructors"

        with pytest.raises(EntityTypeNotFound):
            catalog.resolve_entity_type(conn, "Nobody")


def test_define_and_list_in_sort_order(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    catalog = AttributeCatalog()

    with transaction(db_path) as conn:
        type_id = catalog.ensure_entity_type(conn, "User", "users")
        catalog.define_attribute(
            conn, type_id, AttributeSpec("student_major", "string", sort_order=2)
        )
        catalog.define_attribute(
            conn, type_id, AttributeSpec("student_gpa", "decimal", sort_order=1)
        )
        catalog.define_attribute(
            conn, type_id, AttributeSpec("staff_department", "string", sort_order=0)
        )

        names = [d.name for d in catalog.list_active(conn, type_id)]
        assert names == ["staff_department", "student_gpa", "student_major"]

        students = [d.name for d in catalog.list_active(conn, type_id, "student")]
        assert students == ["student_gpa", "student_major"]


def test_define_rejects_duplicates_and_bad_rules(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    catalog = AttributeCatalog()

    with transaction(db_path) as conn:
        type_id = catalog.ensure_entity_type(conn, "Facility", "facilities")
        catalog.define_attribute(conn, type_id, AttributeSpec("capacity", "integer"))

        with pytest.raises(ConstraintViolation):
            catalog.define_attribute(conn, type_id, AttributeSpec("capacity", "integer"))

        with pytest.raises(SchemaError):
            catalog.define_attribute(
                conn, type_id, AttributeSpec("floors", "integer", validation_rules={"max": "ten"})
            )

        with pytest.raises(SchemaError):
            catalog.define_attribute(
                conn, type_id, AttributeSpec("accessible", "boolean", default_value="maybe")
            )

        with pytest.raises(InvalidValueKind):
            catalog.define_attribute(conn, type_id, AttributeSpec("photo", "binary"))


def test_ensure_attribute_never_overwrites(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    catalog = AttributeCatalog()

    with transaction(db_path) as conn:
        type_id = catalog.ensure_entity_type(conn, "Facility", "facilities")
        original = catalog.ensure_attribute(
            conn, type_id, AttributeSpec("capacity", "integer", validation_rules={"max": 100})
        )
        again = catalog.ensure_attribute(
            conn, type_id, AttributeSpec("capacity", "integer", validation_rules={"max": 5})
        )
        assert again == original
        definition = catalog.get_definition(conn, "Facility", "capacity")
        assert definition.validation_rules == {"max": 100}


def test_update_attribute(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    catalog = AttributeCatalog()

    with transaction(db_path) as conn:
        type_id = catalog.ensure_entity_type(conn, "Assessment", "assessments")
        catalog.define_attribute(conn, type_id, AttributeSpec("retry_delay_hours", "integer"))

        row = catalog.update_attribute(
            conn,
            type_id,
            "retry_delay_hours",
            display_name="Retry Delay",
            default_value=24,
            validation_rules={"min": 0, "max": 720},
        )
        assert row.display_name == "Retry Delay"
        assert row.default_value == "24"
        assert row.validation_rules == {"min": 0, "max": 720}

        with pytest.raises(SchemaError):
            catalog.update_attribute(conn, type_id, "retry_delay_hours", default_value="soon")

        with pytest.raises(AttributeNotFound):
            catalog.update_attribute(conn, type_id, "missing", display_name="x")


def test_soft_delete_by_prefix_invalidates_cache(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    catalog = AttributeCatalog(cache_ttl_s=3600)

    with transaction(db_path) as conn:
        type_id = catalog.ensure_entity_type(conn, "Instructor", "instructors")
        catalog.define_attribute(conn, type_id, AttributeSpec("award_title", "string"))
        catalog.define_attribute(conn, type_id, AttributeSpec("award_year", "integer"))
        catalog.define_attribute(conn, type_id, AttributeSpec("awardee_note", "text"))
        assert len(catalog.list_active(conn, type_id)) == 3

        # "_" in the prefix is literal, so awardee_note survives.
        deleted = catalog.soft_delete(conn, type_id, like_prefix("award_"))
        assert deleted == 2
        assert [d.name for d in catalog.list_active(conn, type_id)] == ["awardee_note"]

        with pytest.raises(AttributeNotFound):
            catalog.get_definition(conn, "Instructor", "award_title")

