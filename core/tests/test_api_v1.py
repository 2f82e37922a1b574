from __future__ import annotations

import json
import sqlite3
from pathlib import Path

from fastapi.testclient import TestClient

from campuseav_core.app import create_app
from campuseav_core.db import resolve_db_path
from campuseav_core.db.migrate import apply_migrations
from campuseav_core.home import ensure_campuseav_layout

AWARDS = [
    {"title": "Best Teacher", "year": 2019},
    {"title": "Research Prize", "year": 2021, "category": "research"},
]


def _seed_instructors(home: Path) -> None:
    db_path = resolve_db_path(ensure_campuseav_layout(home))
    apply_migrations(db_path)
    with sqlite3.connect(db_path) as conn:
        conn.execute("CREATE TABLE instructors (id TEXT PRIMARY KEY, awards TEXT);")
        conn.execute("INSERT INTO instructors (id, awards) VALUES ('1', ?);", (json.dumps(AWARDS),))


def test_attribute_definitions_and_values(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("CAMPUSEAV_HOME", str(tmp_path))

    with TestClient(create_app()) as client:
        assert client.get("/v1/ping").json() == {"ok": True, "data": {"pong": True}, "error": None}

        created = client.post(
            "/v1/entity-types/Course/attributes",
            json={
                "name": "course_credits",
                "value_kind": "integer",
                "display_name": "Credits",
                "validation_rules": {"min": 0, "max": 12},
                "table_ref": "courses",
            },
        )
        assert created.status_code == 200
        assert created.json()["data"]["category"] == "course"

        dup = client.post(
            "/v1/entity-types/Course/attributes",
            json={"name": "course_credits", "value_kind": "integer"},
        )
        assert dup.status_code == 409
        assert dup.json()["error"]["code"] == "conflict"

        bad_name = client.post(
            "/v1/entity-types/Course/attributes",
            json={"name": "Course Credits", "value_kind": "integer"},
        )
        assert bad_name.status_code == 422
        assert bad_name.json()["error"]["code"] == "validation_error"

        bad_rules = client.post(
            "/v1/entity-types/Course/attributes",
            json={"name": "course_level", "value_kind": "integer", "validation_rules": {"x": 1}},
        )
        assert bad_rules.status_code == 400
        assert bad_rules.json()["error"]["code"] == "schema_error"

        types = client.get("/v1/entity-types").json()["data"]["items"]
        assert [(t["name"], t["table_name"]) for t in types] == [("Course", "courses")]

        listed = client.get("/v1/entity-types/Course/attributes")
        assert [d["name"] for d in listed.json()["data"]["items"]] == ["course_credits"]

        missing_type = client.get("/v1/entity-types/Ghost/attributes")
        assert missing_type.status_code == 404
        assert missing_type.json()["error"]["code"] == "entity_type_not_found"

        put = client.put(
            "/v1/entities/Course/c1/attributes/course_credits",
            json={"value": "4", "changed_by": "registrar"},
        )
        assert put.status_code == 200
        assert put.json()["data"]["action"] == "created"
        assert put.json()["data"]["value"] == 4

        too_many = client.put(
            "/v1/entities/Course/c1/attributes/course_credits", json={"value": 40}
        )
        assert too_many.status_code == 422
        assert too_many.json()["error"]["details"] == {
            "field": "course_credits",
            "rule": "max",
            "reason": "must be <= 12",
        }

        unknown = client.put("/v1/entities/Course/c1/attributes/course_fee", json={"value": 1})
        assert unknown.status_code == 404
        assert unknown.json()["error"]["code"] == "attribute_not_found"

        bulk = client.patch(
            "/v1/entities/Course/c1/profile",
            json={"values": {"course_credits": 3, "course_fee": 10}},
        )
        assert bulk.status_code == 200
        items = {i["field"]: i for i in bulk.json()["data"]["items"]}
        assert items["course_credits"]["action"] == "updated"
        assert items["course_fee"]["ok"] is False

        profile = client.get("/v1/entities/Course/c1/profile")
        assert profile.json()["data"] == {"course_credits": 3}

        audit = client.get("/v1/entities/Course/c1/audit")
        assert [e["action"] for e in audit.json()["data"]["items"]] == ["update", "create"]

        patched = client.patch(
            "/v1/entity-types/Course/attributes/course_credits",
            json={"display_name": "Credit Hours", "default_value": 3},
        )
        assert patched.status_code == 200
        assert patched.json()["data"]["display_name"] == "Credit Hours"
        assert patched.json()["data"]["default_value"] == "3"

        cleared = client.delete("/v1/entities/Course/c1/attributes/course_credits")
        assert cleared.json()["data"] == {"deleted": 1}
        assert client.get("/v1/entities/Course/c1/profile").json()["data"] == {
            "course_credits": 3
        }

        initialized = client.post("/v1/entities/Course/c2/initialize", json={})
        assert [i["action"] for i in initialized.json()["data"]["items"]] == ["initialized"]

        removed = client.delete("/v1/entity-types/Course/attributes/course_credits")
        assert removed.json()["data"] == {"deleted": 1}
        again = client.delete("/v1/entity-types/Course/attributes/course_credits")
        assert again.status_code == 404
        assert again.json()["error"]["code"] == "not_found"


def test_migration_endpoints_and_groups(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("CAMPUSEAV_HOME", str(tmp_path))
    _seed_instructors(tmp_path)

    with TestClient(create_app()) as client:
        info = client.get("/v1/system/info").json()["data"]
        assert info["legacy_sources"] == ["Instructor"]

        plans = client.get("/v1/migrations/plans").json()["data"]["items"]
        assert "instructor_awards" in plans

        dry = client.post("/v1/migrations/instructor_awards/run", json={"dry_run": True})
        assert dry.status_code == 200
        assert dry.json()["data"]["dry_run"] is True
        assert client.get("/v1/entity-types/Instructor/attributes").status_code == 404

        live = client.post("/v1/migrations/instructor_awards/run", json={})
        assert live.status_code == 200
        assert live.json()["data"]["stats"]["groups_extracted"] == 2

        logs = client.get("/v1/migrations/logs").json()["data"]["items"]
        assert sorted(log["dry_run"] for log in logs) == [False, True]

        groups_url = "/v1/entities/Instructor/1/groups/instructor_awards"
        groups = client.get(groups_url).json()["data"]["items"]
        assert [g["title"] for g in groups] == ["Best Teacher", "Research Prize"]

        added = client.post(groups_url, json={"fields": {"title": "Keynote", "year": 2023}})
        assert added.status_code == 200
        group_id = added.json()["data"]["group_id"]
        assert added.json()["data"]["occurrence"] == 2

        updated = client.patch(f"{groups_url}/{group_id}", json={"fields": {"year": 2024}})
        assert updated.json()["data"]["year"] == 2024

        deleted = client.delete(f"{groups_url}/{group_id}")
        assert deleted.json()["data"] == {"deleted": 3}
        assert client.delete(f"{groups_url}/{group_id}").status_code == 404

        no_table = client.post("/v1/migrations/facility_equipment/run", json={})
        assert no_table.status_code == 400
        unknown_plan = client.post("/v1/migrations/nope/run", json={})
        assert unknown_plan.status_code == 400

        rollback = client.post("/v1/migrations/instructor_awards/rollback", json={})
        assert rollback.status_code == 200
        assert rollback.json()["data"]["stats"]["definitions_deleted"] == 6

        flag = client.get("/v1/entities/Instructor/1/eav-enabled").json()["data"]
        assert flag == {"enabled": False}
        profile = client.get("/v1/entities/Instructor/1/profile").json()["data"]
        assert profile == {"awards": AWARDS}

        switched = client.put("/v1/entities/Instructor/1/eav-enabled", json={"enabled": True})
        assert switched.json()["data"] == {"enabled": True}
