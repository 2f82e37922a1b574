from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from campuseav_core.config import EavConfig
from campuseav_core.db import like_prefix
from campuseav_core.db.migrate import apply_migrations
from campuseav_core.eav.catalog import AttributeSpec
from campuseav_core.eav.service import EavService
from campuseav_core.errors import (
    AttributeNotFound,
    ConstraintViolation,
    EntityTypeNotFound,
    GroupNotFound,
    ValidationError,
)
from campuseav_core.jobs.plans import INSTRUCTOR_AWARDS
from campuseav_core.legacy import SqliteBlobSource

AWARDS = INSTRUCTOR_AWARDS.group.spec()


def _service(tmp_path: Path, **config) -> EavService:
    db_path = tmp_path / "eav.sqlite3"
    apply_migrations(db_path)
    service = EavService(db_path, config=EavConfig(**config))

    specs = (
        AttributeSpec("instructor_orcid", "string"),
        AttributeSpec(
            "instructor_tenure_status",
            "string",
            validation_rules={"enum": ["Non-tenure Track", "Tenure Track", "Tenured"]},
        ),
        AttributeSpec("instructor_accepts_advisees", "boolean", default_value=True),
        *INSTRUCTOR_AWARDS.attributes,
    )
    for spec in specs:
        service.define_attribute("Instructor", spec, table_ref="instructors")
    return service


def _add_legacy_table(db_path: Path, rows: dict[str, str | None]) -> SqliteBlobSource:
    with sqlite3.connect(db_path) as conn:
        conn.execute("CREATE TABLE instructors (id TEXT PRIMARY KEY, awards TEXT);")
        conn.executemany(
            "INSERT INTO instructors (id, awards) VALUES (?, ?);", list(rows.items())
        )
    return SqliteBlobSource(db_path, table="instructors", id_column="id", blob_column="awards")


def test_profile_applies_defaults(tmp_path: Path) -> None:
    service = _service(tmp_path)

    profile = service.get_profile("Instructor", "1")
    assert profile["instructor_orcid"] is None
    assert profile["instructor_accepts_advisees"] is True
    assert profile["award_title"] == []

    instructor_only = service.get_profile("Instructor", "1", category="instructor")
    assert set(instructor_only) == {
        "instructor_orcid",
        "instructor_tenure_status",
        "instructor_accepts_advisees",
    }


def test_set_update_clear_and_audit(tmp_path: Path) -> None:
    service = _service(tmp_path)

    created = service.set_attribute(
        "Instructor", "1", "instructor_orcid", "0000-0001", changed_by="registrar"
    )
    assert (created.ok, created.action, created.value, created.occurrence) == (
        True,
        "created",
        "0000-0001",
        0,
    )

    assert service.set_attribute("Instructor", "1", "instructor_orcid", "0000-0001").action == (
        "unchanged"
    )
    assert service.set_attribute("Instructor", "1", "instructor_orcid", "0000-0002").action == (
        "updated"
    )
    assert service.get_profile("Instructor", "1")["instructor_orcid"] == "0000-0002"

    cleared = service.set_attribute("Instructor", "1", "instructor_orcid", None)
    assert cleared.action == "cleared"
    assert service.get_profile("Instructor", "1")["instructor_orcid"] is None

    trail = service.audit_trail("Instructor", "1")
    assert [e.action for e in trail] == ["delete", "update", "create"]
    assert trail[1].old_value == "0000-0001"
    assert trail[1].new_value == "0000-0002"
    assert trail[2].changed_by == "registrar"


def test_multi_valued_attribute_returns_list(tmp_path: Path) -> None:
    service = _service(tmp_path)

    first = service.set_attribute("Instructor", "1", "award_title", "Best Teacher")
    second = service.set_attribute("Instructor", "1", "award_title", "Research Prize")
    assert (first.occurrence, second.occurrence) == (0, 1)

    profile = service.get_profile("Instructor", "1")
    assert profile["award_title"] == ["Best Teacher", "Research Prize"]

    assert service.delete_attribute("Instructor", "1", "award_title", occurrence=0) == 1
    assert service.get_profile("Instructor", "1")["award_title"] == ["Research Prize"]


def test_invalid_value_writes_nothing(tmp_path: Path) -> None:
    service = _service(tmp_path)

    with pytest.raises(ValidationError) as excinfo:
        service.set_attribute("Instructor", "1", "award_year", 2101)
    assert excinfo.value.rule == "max"

    with pytest.raises(ValidationError):
        service.set_attribute("Instructor", "1", "instructor_tenure_status", "Tenured-ish")

    assert service.get_profile("Instructor", "1")["award_year"] == []
    assert service.audit_trail("Instructor", "1") == []


def test_unknown_names_raise(tmp_path: Path) -> None:
    service = _service(tmp_path)

    with pytest.raises(AttributeNotFound):
        service.set_attribute("Instructor", "1", "shoe_size", 44)
    with pytest.raises(EntityTypeNotFound):
        service.get_profile("Spaceship", "1")


def test_bulk_update_is_per_field(tmp_path: Path) -> None:
    service = _service(tmp_path)

    results = service.bulk_update(
        "Instructor",
        "1",
        {"instructor_orcid": "0000-0003", "award_year": 1800, "shoe_size": 44},
        changed_by="import",
    )

    by_field = {r.field: r for r in results}
    assert by_field["instructor_orcid"].ok is True
    assert by_field["award_year"].ok is False
    assert by_field["award_year"].error["code"] == "validation_error"
    assert by_field["award_year"].error["details"]["rule"] == "min"
    assert by_field["shoe_size"].error["code"] == "attribute_not_found"

    profile = service.get_profile("Instructor", "1")
    assert profile["instructor_orcid"] == "0000-0003"
    assert profile["award_year"] == []


def test_bulk_update_rejects_integers_sqlite_cannot_hold(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.define_attribute("Instructor", AttributeSpec("instructor_course_count", "integer"))

    results = service.bulk_update(
        "Instructor", "1", {"instructor_orcid": "0000-0007", "instructor_course_count": 10**20}
    )

    assert [(r.field, r.ok) for r in results] == [
        ("instructor_orcid", True),
        ("instructor_course_count", False),
    ]
    assert results[1].error["details"]["rule"] == "kind"

    with pytest.raises(ValidationError):
        service.set_attribute("Instructor", "1", "instructor_course_count", -(2**63) - 1)

    service.set_attribute("Instructor", "1", "instructor_course_count", 2**63 - 1)
    profile = service.get_profile("Instructor", "1")
    assert profile["instructor_orcid"] == "0000-0007"
    assert profile["instructor_course_count"] == 2**63 - 1


def test_initialize_defaults_once(tmp_path: Path) -> None:
    service = _service(tmp_path)

    first = service.initialize_defaults("Instructor", "1")
    assert [(r.field, r.action, r.value) for r in first] == [
        ("instructor_accepts_advisees", "initialized", True)
    ]

    second = service.initialize_defaults("Instructor", "1")
    assert [(r.field, r.action) for r in second] == [("instructor_accepts_advisees", "skipped")]


def test_catalog_administration(tmp_path: Path) -> None:
    service = _service(tmp_path)

    with pytest.raises(ConstraintViolation):
        service.define_attribute("Instructor", AttributeSpec("instructor_orcid", "string"))

    row = service.update_attribute("Instructor", "instructor_orcid", display_name="ORCID iD")
    assert row.display_name == "ORCID iD"

    with pytest.raises(AttributeNotFound) as excinfo:
        service.update_attribute("Instructor", "shoe_size", display_name="Shoe")
    assert excinfo.value.entity_type == "Instructor"

    assert service.decommission_attribute("Instructor", like_prefix("award_")) == 6
    names = [d.name for d in service.list_attributes("Instructor")]
    assert not any(name.startswith("award_") for name in names)


def test_legacy_fallback_follows_rollout_flag(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = _add_legacy_table(
        service.db_path, {"1": json.dumps([{"title": "Best Teacher", "year": 2019}])}
    )
    service.register_legacy_source("Instructor", source)

    assert service.is_eav_enabled("Instructor", "1") is True
    assert "award_title" in service.get_profile("Instructor", "1")

    service.set_eav_enabled("Instructor", "1", False)
    assert service.get_profile("Instructor", "1") == {
        "awards": [{"title": "Best Teacher", "year": 2019}]
    }


def test_instances_without_flag_use_configured_default(tmp_path: Path) -> None:
    service = _service(tmp_path, default_eav_enabled=False)
    source = _add_legacy_table(service.db_path, {"1": "Best Teacher, Research Prize", "2": None})
    service.register_legacy_source("Instructor", source)

    assert service.get_profile("Instructor", "1") == {"awards": ["Best Teacher", "Research Prize"]}
    assert service.get_profile("Instructor", "2") == {}

    service.set_eav_enabled("Instructor", "2", True)
    assert service.get_profile("Instructor", "2")["instructor_accepts_advisees"] is True


def test_group_lifecycle(tmp_path: Path) -> None:
    service = _service(tmp_path)

    first = service.add_group(
        "Instructor", "1", AWARDS, {"title": "Best Teacher", "year": "2020"}
    )
    second = service.add_group("Instructor", "1", AWARDS, {"title": "Research Prize"})
    assert (first["occurrence"], second["occurrence"]) == (0, 1)
    assert first["year"] == 2020

    records = service.list_groups("Instructor", "1", AWARDS)
    assert [r["title"] for r in records] == ["Best Teacher", "Research Prize"]
    assert "year" not in records[1]

    updated = service.update_group(
        "Instructor", "1", AWARDS, second["group_id"], {"year": 2021}
    )
    assert updated["year"] == 2021
    assert updated["occurrence"] == 1

    assert service.delete_group("Instructor", "1", AWARDS, first["group_id"]) == 3
    remaining = service.list_groups("Instructor", "1", AWARDS)
    assert [r["group_id"] for r in remaining] == [second["group_id"]]

    with pytest.raises(GroupNotFound):
        service.update_group("Instructor", "1", AWARDS, first["group_id"], {"year": 2000})
    with pytest.raises(ValidationError):
        service.add_group("Instructor", "1", AWARDS, {"title": "X", "venue": "Hall"})
    with pytest.raises(ValidationError):
        service.add_group("Instructor", "1", AWARDS, {"year": 2000})

    # A new group never reuses an occupied occurrence.
    third = service.add_group("Instructor", "1", AWARDS, {"title": "Service Award"})
    assert third["occurrence"] == 2
