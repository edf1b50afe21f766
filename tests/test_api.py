"""
Test: HTTP endpoints for course activities, activity instances, groups,
heartbeats and user administration.
"""
from datetime import timedelta
from types import SimpleNamespace

import pytest

import google_docs
import main
from google_docs import SourceFetchError
from models import ActivityGroup, ActivityHeartbeat, ActivityInstance, GroupMember, PogilActivity, utcnow

SHEET = [
    "\\title{Loops}",
    "\\question{Why loop?}",
    "\\sampleresponses{To repeat}",
    "\\endquestion",
]


def make_groups(ids):
    return {"groups": [{"members": [{"student_id": sid, "role": None} for sid in ids]}]}


@pytest.fixture
def instance_id(client, seed):
    response = client.post("/api/activity-instances", json={
        "activityName": "loops",
        "courseId": seed["course"].id,
        "userId": seed["students"][0].id,
    })
    return response.json()["instanceId"]


@pytest.fixture
def grouped_instance(client, seed, instance_id):
    ids = [s.id for s in seed["students"][:4]]
    members = [{"student_id": sid, "role": role} for sid, role in zip(ids, main.ROLES)]
    response = client.post(f"/api/activity-instances/{instance_id}/setup-groups",
                           json={"groups": [{"members": members}]})
    assert response.status_code == 200
    return instance_id


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


class TestCourseActivities:
    def test_lists_activity_without_instance(self, client, seed):
        response = client.get(f"/api/courses/{seed['course'].id}/activities")
        assert response.status_code == 200
        [activity] = response.json()
        assert activity["activity_name"] == "loops"
        assert activity["title"] == "Loops and Iteration"
        assert activity["instance_id"] is None
        assert activity["is_ready"] is False

    def test_ready_once_groups_exist(self, client, seed, grouped_instance):
        [activity] = client.get(f"/api/courses/{seed['course'].id}/activities").json()
        assert activity["instance_id"] == grouped_instance
        assert activity["is_ready"] is True

    def test_activities_of_other_courses_are_hidden(self, client, seed, db_session):
        db_session.add(PogilActivity(name="other", course_id=seed["course"].id + 99))
        db_session.commit()
        names = [a["activity_name"] for a in client.get(f"/api/courses/{seed['course'].id}/activities").json()]
        assert names == ["loops"]

    def test_unknown_course(self, client, seed):
        assert client.get("/api/courses/999/activities").status_code == 404


class TestCreateActivityInstance:
    def test_creates_then_reuses_general_instance(self, client, seed, instance_id):
        response = client.post("/api/activity-instances", json={
            "activityName": "loops", "courseId": seed["course"].id, "userId": seed["students"][1].id,
        })
        assert response.json() == {"instanceId": instance_id}

    def test_unknown_activity(self, client, seed):
        response = client.post("/api/activity-instances", json={"activityName": "nope", "courseId": 1})
        assert response.status_code == 404
        assert response.json()["detail"] == "Activity not found"

    def test_group_member_may_join(self, client, seed, grouped_instance):
        response = client.post("/api/activity-instances", json={
            "activityName": "loops",
            "courseId": seed["course"].id,
            "userEmail": seed["students"][2].email,
        })
        assert response.json() == {"instanceId": grouped_instance}

    def test_instructor_may_join(self, client, seed, grouped_instance):
        response = client.post("/api/activity-instances", json={
            "activityName": "loops", "courseId": seed["course"].id, "userId": seed["instructor"].id,
        })
        assert response.status_code == 200

    def test_outsider_is_rejected(self, client, seed, grouped_instance):
        response = client.post("/api/activity-instances", json={
            "activityName": "loops",
            "courseId": seed["course"].id,
            "userId": seed["outsider"].id,
            "userEmail": seed["outsider"].email,
        })
        assert response.status_code == 403

    def test_with_roles(self, client, seed, db_session):
        ids = [s.id for s in seed["students"][:4]]
        response = client.post("/api/activity-instances/with-roles", json={
            "activityName": "loops",
            "courseId": seed["course"].id,
            "roles": dict(zip(main.ROLES, ids)),
        })
        assert response.status_code == 200
        instance = db_session.get(ActivityInstance, response.json()["instanceId"])
        [group] = instance.groups
        assert group.group_number == 1
        assert {(m.student_id, m.role) for m in group.members} == set(zip(ids, main.ROLES))


class TestGetInstance:
    def test_found(self, client, seed, instance_id):
        response = client.get(f"/api/activity-instances/{instance_id}")
        assert response.json() == {"id": instance_id, "course_id": seed["course"].id, "activity_name": "loops"}

    def test_missing(self, client, seed):
        assert client.get("/api/activity-instances/999").status_code == 404


class TestSetupGroupsForActivity:
    def test_shuffles_present_students(self, client, seed, db_session):
        ids = [s.id for s in seed["students"]]
        response = client.post("/api/activity-instances/setup-groups", json={
            "activityId": seed["activity"].id,
            "courseId": seed["course"].id,
            "presentStudentIds": ids,
        })
        assert response.status_code == 201
        instance = db_session.get(ActivityInstance, response.json()["instanceId"])
        assert [g.group_number for g in instance.groups] == [1, 2]
        assert [len(g.members) for g in instance.groups] == [4, 2]
        assigned = sorted(m.student_id for g in instance.groups for m in g.members)
        assert assigned == sorted(ids)
        assert [m.role for m in instance.groups[1].members] == ["facilitator", "spokesperson"]

    def test_missing_fields(self, client, seed):
        response = client.post("/api/activity-instances/setup-groups", json={"activityId": seed["activity"].id})
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing required fields"

    def test_unknown_activity(self, client, seed):
        response = client.post("/api/activity-instances/setup-groups", json={
            "activityId": 999, "courseId": seed["course"].id, "presentStudentIds": [1],
        })
        assert response.status_code == 404


class TestSetupGroupsForInstance:
    def test_replaces_existing_groups(self, client, seed, grouped_instance, db_session):
        ids = [s.id for s in seed["students"]]
        payload = {"groups": [
            {"members": [{"student_id": sid, "role": "facilitator"} for sid in ids[:3]]},
            {"members": [{"student_id": sid} for sid in ids[3:]]},
        ]}
        response = client.post(f"/api/activity-instances/{grouped_instance}/setup-groups", json=payload)
        assert response.json() == {"success": True}

        groups = client.get(f"/api/activity-instances/{grouped_instance}/groups").json()
        assert [g["group_number"] for g in groups] == [1, 2]
        assert [len(g["members"]) for g in groups] == [3, 3]
        assert db_session.query(GroupMember).count() == 6
        assert db_session.query(ActivityGroup).count() == 2

    def test_fewer_than_four_students_keeps_existing_groups(self, client, seed, grouped_instance, db_session):
        response = client.post(f"/api/activity-instances/{grouped_instance}/setup-groups",
                               json=make_groups([seed["students"][0].id]))
        assert response.status_code == 400
        assert response.json()["detail"] == "At least 4 students are required"
        assert db_session.query(GroupMember).count() == 4

    def test_empty_groups(self, client, seed, instance_id):
        response = client.post(f"/api/activity-instances/{instance_id}/setup-groups", json={"groups": []})
        assert response.status_code == 400

    def test_unknown_role(self, client, seed, instance_id):
        payload = {"groups": [{"members": [{"student_id": s.id, "role": "captain"} for s in seed["students"]]}]}
        response = client.post(f"/api/activity-instances/{instance_id}/setup-groups", json=payload)
        assert response.status_code == 400

    def test_unknown_instance(self, client, seed):
        response = client.post("/api/activity-instances/999/setup-groups",
                               json=make_groups([s.id for s in seed["students"]]))
        assert response.status_code == 404


class TestGroupsAndStudents:
    def test_groups_include_member_details(self, client, seed, grouped_instance):
        [group] = client.get(f"/api/activity-instances/{grouped_instance}/groups").json()
        first = group["members"][0]
        assert first["name"] == "Student 1"
        assert first["email"] == "student1@school.edu"
        assert first["role"] == "facilitator"

    def test_enrolled_students(self, client, seed, instance_id):
        response = client.get(f"/api/activity-instances/{instance_id}/enrolled-students")
        students = response.json()["students"]
        assert len(students) == 6
        assert seed["outsider"].email not in {s["email"] for s in students}

    def test_enrolled_students_unknown_instance(self, client, seed):
        assert client.get("/api/activity-instances/999/enrolled-students").status_code == 404


class TestHeartbeatAndActiveStudent:
    def test_missing_user_id(self, client, seed, instance_id):
        response = client.post(f"/api/activity-instances/{instance_id}/heartbeat", json={})
        assert response.status_code == 400

    def test_heartbeat_is_upserted(self, client, seed, instance_id, db_session):
        user_id = seed["students"][0].id
        for _ in range(2):
            response = client.post(f"/api/activity-instances/{instance_id}/heartbeat", json={"userId": user_id})
            assert response.json() == {"success": True}
        assert db_session.query(ActivityHeartbeat).count() == 1

    def test_no_active_student_without_heartbeats(self, client, seed, grouped_instance):
        response = client.get(f"/api/activity-instances/{grouped_instance}/active-student")
        assert response.json() == {"activeStudentId": None}

    def test_active_student_is_a_present_member(self, client, seed, grouped_instance):
        present = [seed["students"][0].id, seed["students"][1].id]
        for user_id in present + [seed["outsider"].id]:
            client.post(f"/api/activity-instances/{grouped_instance}/heartbeat", json={"userId": user_id})

        active = client.get(f"/api/activity-instances/{grouped_instance}/active-student").json()["activeStudentId"]
        assert active in present

    def test_rotation_follows_clock(self, client, seed, grouped_instance, monkeypatch):
        present = sorted([seed["students"][0].id, seed["students"][1].id])
        for user_id in present:
            client.post(f"/api/activity-instances/{grouped_instance}/heartbeat", json={"userId": user_id})

        url = f"/api/activity-instances/{grouped_instance}/active-student"
        monkeypatch.setattr(main, "time", SimpleNamespace(time=lambda: 0.0))
        assert client.get(url).json()["activeStudentId"] == present[0]
        monkeypatch.setattr(main, "time", SimpleNamespace(time=lambda: 60.0))
        assert client.get(url).json()["activeStudentId"] == present[1]

    def test_stale_heartbeats_are_ignored(self, client, seed, grouped_instance, db_session):
        db_session.add(ActivityHeartbeat(
            activity_instance_id=grouped_instance,
            user_id=seed["students"][0].id,
            updated_at=utcnow() - timedelta(minutes=5),
        ))
        db_session.commit()
        response = client.get(f"/api/activity-instances/{grouped_instance}/active-student")
        assert response.json() == {"activeStudentId": None}

    def test_filter_by_group_number(self, client, seed, grouped_instance):
        client.post(f"/api/activity-instances/{grouped_instance}/heartbeat", json={"userId": seed["students"][0].id})
        url = f"/api/activity-instances/{grouped_instance}/active-student"
        assert client.get(url, params={"groupNumber": 2}).json() == {"activeStudentId": None}
        assert client.get(url, params={"groupNumber": 1}).json() == {"activeStudentId": seed["students"][0].id}


class TestSheetEndpoints:
    def test_preview(self, client, seed, instance_id, monkeypatch):
        requested = []
        monkeypatch.setattr(main, "fetch_sheet_lines", lambda url: requested.append(url) or SHEET)
        response = client.get(f"/api/activity-instances/{instance_id}/preview")
        assert response.status_code == 200
        body = response.json()
        assert body["lines"] == SHEET
        assert [b["type"] for b in body["blocks"]] == ["header", "question"]
        assert requested == [seed["activity"].sheet_url]

    def test_preview_without_sheet_url(self, client, seed, instance_id, db_session):
        seed["activity"].sheet_url = None
        db_session.commit()
        response = client.get(f"/api/activity-instances/{instance_id}/preview")
        assert response.status_code == 404
        assert response.json()["detail"] == "No sheet_url found"

    def test_preview_fetch_failure(self, client, seed, instance_id, monkeypatch):
        def boom(url):
            raise SourceFetchError("down")

        monkeypatch.setattr(main, "fetch_sheet_lines", boom)
        response = client.get(f"/api/activity-instances/{instance_id}/preview")
        assert response.status_code == 500

    def test_render_run_mode_hides_samples(self, client, seed, instance_id, monkeypatch):
        monkeypatch.setattr(main, "fetch_sheet_lines", lambda url: SHEET)
        url = f"/api/activity-instances/{instance_id}/render"
        assert "To repeat" in client.get(url).json()["html"]
        assert "To repeat" not in client.get(url, params={"mode": "run"}).json()["html"]

    def test_render_rejects_unknown_mode(self, client, seed, instance_id):
        response = client.get(f"/api/activity-instances/{instance_id}/render", params={"mode": "edit"})
        assert response.status_code == 422

    def test_doc(self, client, seed, instance_id, monkeypatch):
        monkeypatch.setattr(main, "fetch_document_html", lambda url: "<p>\\question{q1}</p>\n<p>Why?</p>")
        response = client.get(f"/api/activity-instances/{instance_id}/doc")
        assert response.json() == {"lines": [{"type": "question", "id": "q1", "content": "<p>Why?</p>"}]}

    def test_doc_failure(self, client, seed, instance_id, monkeypatch):
        def boom(url):
            raise SourceFetchError("Invalid sheet_url")

        monkeypatch.setattr(main, "fetch_document_html", boom)
        response = client.get(f"/api/activity-instances/{instance_id}/doc")
        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to load document"

    def test_doc_with_missing_key_file(self, client, seed, instance_id, monkeypatch):
        monkeypatch.setattr(google_docs, "GOOGLE_SERVICE_ACCOUNT_FILE", "/nonexistent/key.json")
        response = client.get(f"/api/activity-instances/{instance_id}/doc")
        assert response.status_code == 500
        assert response.json() == {"detail": "Failed to load document"}

    def test_parse_lines(self, client):
        response = client.post("/api/sheets/parse", json={"lines": ["\\name{Loops}", "hello"]})
        assert response.json() == {"blocks": [
            {"type": "header", "tag": "name", "content": "Loops"},
            {"type": "text", "content": "hello"},
        ]}


class TestAdminUsers:
    def test_list_users(self, client, seed):
        users = client.get("/admin/users").json()
        assert len(users) == 8
        assert users[0] == {"id": seed["instructor"].id, "email": "prof@school.edu",
                            "name": "Prof Ada", "role": "instructor"}

    def test_update_role(self, client, seed, db_session):
        user_id = seed["students"][0].id
        response = client.put(f"/admin/users/{user_id}/role", json={"role": "instructor"})
        assert response.json() == {"success": True}
        db_session.expire_all()
        assert seed["students"][0].role == "instructor"

    def test_invalid_role(self, client, seed):
        response = client.put(f"/admin/users/{seed['students'][0].id}/role", json={"role": "wizard"})
        assert response.status_code == 400

    def test_unknown_user(self, client, seed):
        assert client.put("/admin/users/999/role", json={"role": "root"}).status_code == 404
