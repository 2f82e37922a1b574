from __future__ import annotations

from pathlib import Path

import pytest

from campuseav_core.db import transaction
from campuseav_core.db.migrate import apply_migrations
from campuseav_core.eav.catalog import AttributeCatalog, AttributeSpec
from campuseav_core.eav.codec import decode, encode
from campuseav_core.eav.store import AttributeValueStore
from campuseav_core.errors import ConstraintViolation, InvalidValueKind


def _db(tmp_path: Path) -> Path:
    db_path = tmp_path / "eav.sqlite3"
    apply_migrations(db_path)
    return db_path


def _define(conn, *specs: AttributeSpec):
    catalog = AttributeCatalog(cache_ttl_s=0)
    type_id = catalog.ensure_entity_type(conn, "Instructor", "instructors")
    return [catalog.define_attribute(conn, type_id, spec) for spec in specs]


def test_single_valued_upsert_updates_in_place(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    store = AttributeValueStore()

    with transaction(db_path) as conn:
        (orcid,) = _define(conn, AttributeSpec("instructor_orcid", "string"))

        created = store.upsert(conn, "Instructor", "7", orcid, encode("a", "string"))
        assert created.action == "created"
        assert created.row.sort_order == 0

        same = store.upsert(conn, "Instructor", "7", orcid, encode("a", "string"))
        assert same.action == "unchanged"

        updated = store.upsert(conn, "Instructor", "7", orcid, encode("b", "string"))
        assert updated.action == "updated"
        assert updated.row.attribute_value_id == created.row.attribute_value_id

        rows = store.get_all(conn, "Instructor", "7", orcid)
        assert [decode(r) for r in rows] == ["b"]


def test_multi_valued_upsert_appends(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    store = AttributeValueStore()

    with transaction(db_path) as conn:
        (titles,) = _define(conn, AttributeSpec("award_title", "string", multi_valued=True))

        for title in ("Best Teacher", "Research Prize", "Service Award"):
            store.upsert(conn, "Instructor", "7", titles, encode(title, "string"))

        rows = store.get_all(conn, "Instructor", "7", titles)
        assert [r.sort_order for r in rows] == [0, 1, 2]
        assert decode(store.get(conn, "Instructor", "7", titles, occurrence=1)) == "Research Prize"

        replaced = store.upsert(
            conn, "Instructor", "7", titles, encode("Research Medal", "string"), occurrence=1
        )
        assert replaced.action == "updated"
        assert len(store.get_all(conn, "Instructor", "7", titles)) == 3


def test_insert_conflict_and_kind_mismatch(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    store = AttributeValueStore()

    with transaction(db_path) as conn:
        (year,) = _define(conn, AttributeSpec("award_year", "integer", multi_valued=True))

        store.insert(conn, "Instructor", "7", year, encode(2020, "integer"), 0)
        with pytest.raises(ConstraintViolation):
            store.insert(conn, "Instructor", "7", year, encode(2021, "integer"), 0)

        with pytest.raises(InvalidValueKind):
            store.insert(conn, "Instructor", "7", year, encode("2021", "string"), 1)


def test_dedupe_check_matches_exact_slots(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    store = AttributeValueStore()

    with transaction(db_path) as conn:
        (year,) = _define(conn, AttributeSpec("award_year", "integer", multi_valued=True))
        store.insert(conn, "Instructor", "7", year, encode(2020, "integer"), 0)

        def seen(value: int, occurrence: int | None = None) -> bool:
            return store.dedupe_check(
                conn,
                year.attribute_def_id,
                "7",
                "Instructor",
                encode(value, "integer"),
                occurrence=occurrence,
            )

        assert seen(2020)
        assert seen(2020, occurrence=0)
        assert not seen(2020, occurrence=1)
        assert not seen(2019)


def test_soft_delete_hides_values_and_frees_the_occurrence(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    store = AttributeValueStore()

    with transaction(db_path) as conn:
        (year,) = _define(conn, AttributeSpec("award_year", "integer", multi_valued=True))
        store.insert(conn, "Instructor", "7", year, encode(2020, "integer"), 0)
        store.insert(conn, "Instructor", "7", year, encode(2021, "integer"), 1)

        assert store.soft_delete(conn, "Instructor", "7", year, occurrence=0) == 1
        assert [r.sort_order for r in store.get_all(conn, "Instructor", "7", year)] == [1]

        store.insert(conn, "Instructor", "7", year, encode(2022, "integer"), 0)
        assert store.soft_delete_for_definitions(conn, [year.attribute_def_id]) == 2
        assert store.list_for_entity(conn, "Instructor", "7") == []
