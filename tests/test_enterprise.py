import pytest

from techformpro.extensions import mail


@pytest.fixture
def enterprise(make_user):
    return make_user("enterprise", display_name="Acme Corp")


def add_employee(client, headers, **overrides):
    body = {"display_name": "Jane Doe", "email": "jane@acme.example", "phone_number": "06 12 34 56 78"}
    body.update(overrides)
    return client.post("/api/enterprise/employees", json=body, headers=headers)


def test_create_employee(client, storage, enterprise, auth):
    with mail.record_messages() as outbox:
        resp = add_employee(client, auth(enterprise))

    assert resp.status_code == 201
    employee = resp.get_json()
    assert employee["username"] == "jane.doe"
    assert employee["role"] == "student"
    assert employee["enterprise_id"] == enterprise["id"]
    assert len(outbox) == 1

    login = client.post("/api/login", json={"username": "jane.doe", "password": "0612345678"})
    assert login.status_code == 200


def test_employee_usernames_are_unique(client, enterprise, auth):
    headers = auth(enterprise)
    add_employee(client, headers)

    second = add_employee(client, headers, email="jane2@acme.example")

    assert second.get_json()["username"] == "jane.doe1"


def test_duplicate_employee_email(client, enterprise, auth):
    headers = auth(enterprise)
    add_employee(client, headers)

    assert add_employee(client, headers, display_name="Other").status_code == 400


def test_students_cannot_use_enterprise_endpoints(client, student, auth):
    assert client.get("/api/enterprise/employees", headers=auth(student)).status_code == 403


def test_enterprise_admin_acts_for_its_enterprise(client, make_user, enterprise, auth):
    manager = make_user("enterprise_admin", enterprise_id=enterprise["id"])

    resp = add_employee(client, auth(manager))

    assert resp.status_code == 201
    assert resp.get_json()["enterprise_id"] == enterprise["id"]


def test_cannot_delete_another_enterprises_employee(client, storage, make_user, enterprise, auth):
    employee = add_employee(client, auth(enterprise)).get_json()
    rival = make_user("enterprise")

    denied = client.delete(f"/api/enterprise/employees/{employee['id']}", headers=auth(rival))
    allowed = client.delete(f"/api/enterprise/employees/{employee['id']}", headers=auth(enterprise))

    assert denied.status_code == 404
    assert allowed.status_code == 204
    assert storage.get_user(employee["id"]) is None


def test_course_grants(client, storage, make_course, enterprise, auth):
    headers = auth(enterprise)
    course = make_course(price=5000)
    employee = add_employee(client, headers).get_json()
    grant_url = f"/api/enterprise/employees/{employee['id']}/courses"

    inactive = client.post(grant_url, json={"course_id": course["id"]}, headers=headers)
    assert inactive.status_code == 400

    toggle = client.patch(f"/api/enterprise/courses/{course['id']}", json={"active": True}, headers=headers)
    assert toggle.get_json() == {"course_id": course["id"], "active": True}

    granted = client.post(grant_url, json={"course_id": course["id"]}, headers=headers)
    duplicate = client.post(grant_url, json={"course_id": course["id"]}, headers=headers)
    assert granted.status_code == 201
    assert granted.get_json()["assigned_by"] == enterprise["id"]
    assert duplicate.status_code == 400

    listing = client.get("/api/enterprise/employee-course-access", headers=headers).get_json()
    assert [(g["employee_id"], g["course_id"]) for g in listing] == [(employee["id"], course["id"])]

    revoked = client.delete(f"{grant_url}/{course['id']}", headers=headers)
    assert revoked.status_code == 204
    assert storage.get_employee_course_access(employee["id"], course["id"]) is None


def test_deactivating_course_drops_employee_grants(client, storage, make_course, enterprise, auth):
    headers = auth(enterprise)
    course = make_course()
    employee = add_employee(client, headers).get_json()
    client.patch(f"/api/enterprise/courses/{course['id']}", json={"active": True}, headers=headers)
    client.post(f"/api/enterprise/employees/{employee['id']}/courses", json={"course_id": course["id"]},
                headers=headers)

    client.patch(f"/api/enterprise/courses/{course['id']}", json={"active": False}, headers=headers)

    assert storage.get_employee_course_access(employee["id"], course["id"]) is None
    courses = client.get("/api/enterprise/courses", headers=headers).get_json()
    assert courses[0]["active"] is False


def test_employee_grant_unlocks_paid_enrollment(client, make_course, make_session, enterprise, auth):
    headers = auth(enterprise)
    course = make_course(price=5000)
    session = make_session(course)
    employee = add_employee(client, headers).get_json()
    client.patch(f"/api/enterprise/courses/{course['id']}", json={"active": True}, headers=headers)
    client.post(f"/api/enterprise/employees/{employee['id']}/courses", json={"course_id": course["id"]},
                headers=headers)

    resp = client.post("/api/enrollments", json={"session_id": session["id"]}, headers=auth(employee))

    assert resp.status_code == 201


def test_progress_and_analytics(client, storage, make_course, make_session, enterprise, trainer, auth):
    headers = auth(enterprise)
    course = make_course()
    session = make_session(course)
    jane = add_employee(client, headers).get_json()
    john = add_employee(client, headers, display_name="John Smith", email="john@acme.example").get_json()
    client.patch(f"/api/enterprise/courses/{course['id']}", json={"active": True}, headers=headers)
    for employee in (jane, john):
        client.post(f"/api/enterprise/employees/{employee['id']}/courses", json={"course_id": course["id"]},
                    headers=headers)

    client.post("/api/progress", json={"course_id": course["id"], "progress": 80, "time_spent_minutes": 90},
                headers=auth(jane))
    client.post("/api/progress", json={"course_id": course["id"], "progress": 40, "time_spent_minutes": 30},
                headers=auth(john))
    client.post(f"/api/sessions/{session['id']}/attendance",
                json={"employee_id": jane["id"], "attended": True}, headers=auth(trainer))
    client.post(f"/api/sessions/{session['id']}/attendance",
                json={"employee_id": john["id"], "attended": False}, headers=auth(trainer))

    analytics = client.get("/api/enterprise/analytics", headers=headers).get_json()

    assert analytics["total_employees"] == 2
    assert analytics["active_courses"] == 1
    assert analytics["total_sessions"] == 1
    assert analytics["completion"]["overall"] == 60
    assert analytics["completion"]["by_category"] == [{"name": "DevOps & Cloud", "percentage": 60}]
    assert analytics["attendance"]["overall"] == 50
    assert len(analytics["attendance"]["by_month"]) == 1
    assert analytics["time_spent"]["total_hours"] == 2.0
    assert analytics["time_spent"]["by_employee"] == [
        {"employee_id": jane["id"], "name": "Jane Doe", "hours": 1.5},
        {"employee_id": john["id"], "name": "John Smith", "hours": 0.5},
    ]

    dashboard = client.get("/api/enterprise/dashboard", headers=headers).get_json()
    assert dashboard["average_completion"] == 60
    assert dashboard["average_attendance"] == 50


def test_progress_accumulates_time(client, storage, make_course, enterprise, auth):
    headers = auth(enterprise)
    course = make_course()
    employee = add_employee(client, headers).get_json()
    client.patch(f"/api/enterprise/courses/{course['id']}", json={"active": True}, headers=headers)
    client.post(f"/api/enterprise/employees/{employee['id']}/courses", json={"course_id": course["id"]},
                headers=headers)

    client.post("/api/progress", json={"course_id": course["id"], "progress": 10, "time_spent_minutes": 15},
                headers=auth(employee))
    resp = client.post("/api/progress", json={"course_id": course["id"], "progress": 25, "time_spent_minutes": 20},
                       headers=auth(employee))

    assert resp.get_json()["progress"] == 25
    assert resp.get_json()["time_spent_minutes"] == 35


def test_progress_requires_grant(client, make_course, student, auth):
    resp = client.post("/api/progress", json={"course_id": make_course()["id"], "progress": 10},
                       headers=auth(student))

    assert resp.status_code == 403


def test_invalid_employee_email(client, enterprise, auth):
    resp = add_employee(client, auth(enterprise), email="jane.acme.example")

    assert resp.status_code == 400
    assert "email" in resp.get_json()["errors"]


def test_cannot_manage_another_enterprises_grants(client, storage, make_course, make_user, enterprise, auth):
    course = make_course()
    employee = add_employee(client, auth(enterprise)).get_json()
    client.patch(f"/api/enterprise/courses/{course['id']}", json={"active": True}, headers=auth(enterprise))
    client.post(f"/api/enterprise/employees/{employee['id']}/courses", json={"course_id": course["id"]},
                headers=auth(enterprise))
    rival = make_user("enterprise")
    client.patch(f"/api/enterprise/courses/{course['id']}", json={"active": True}, headers=auth(rival))
    grant_url = f"/api/enterprise/employees/{employee['id']}/courses"

    granted = client.post(grant_url, json={"course_id": course["id"]}, headers=auth(rival))
    revoked = client.delete(f"{grant_url}/{course['id']}", headers=auth(rival))
    progress = client.get(f"/api/enterprise/employees/{employee['id']}/progress", headers=auth(rival))

    assert granted.status_code == 404
    assert revoked.status_code == 404
    assert progress.status_code == 404
    assert storage.get_employee_course_access(employee["id"], course["id"]) is not None


def test_employee_progress_view(client, make_course, enterprise, auth):
    headers = auth(enterprise)
    course = make_course(title="Terraform basics")
    employee = add_employee(client, headers).get_json()
    client.patch(f"/api/enterprise/courses/{course['id']}", json={"active": True}, headers=headers)
    client.post(f"/api/enterprise/employees/{employee['id']}/courses", json={"course_id": course["id"]},
                headers=headers)
    client.post("/api/progress", json={"course_id": course["id"], "progress": 30, "time_spent_minutes": 45},
                headers=auth(employee))

    resp = client.get(f"/api/enterprise/employees/{employee['id']}/progress", headers=headers)

    assert resp.status_code == 200
    [row] = resp.get_json()
    assert row["course_id"] == course["id"]
    assert row["course_title"] == "Terraform basics"
    assert row["progress"] == 30
    assert row["time_spent_minutes"] == 45


def test_upcoming_sessions_cover_active_courses_only(client, make_course, make_session, enterprise, auth):
    headers = auth(enterprise)
    active = make_course()
    other = make_course(title="Other course")
    later = make_session(active, days_ahead=9)
    sooner = make_session(active, days_ahead=2)
    make_session(active, days_ahead=-3)
    make_session(other, days_ahead=1)
    client.patch(f"/api/enterprise/courses/{active['id']}", json={"active": True}, headers=headers)

    sessions = client.get("/api/enterprise/upcoming-sessions", headers=headers).get_json()

    assert [s["id"] for s in sessions] == [sooner["id"], later["id"]]


def test_recent_activities(client, make_course, make_session, make_user, enterprise, trainer, auth):
    headers = auth(enterprise)
    session = make_session(make_course())
    jane = add_employee(client, headers).get_json()
    john = add_employee(client, headers, display_name="John Smith", email="john@acme.example").get_json()
    outsider = make_user()
    for employee, attended in ((jane, True), (john, False), (outsider, True)):
        client.post(f"/api/sessions/{session['id']}/attendance",
                    json={"employee_id": employee["id"], "attended": attended}, headers=auth(trainer))

    activities = client.get("/api/enterprise/recent-activities", headers=headers).get_json()

    assert sorted((a["employee_name"], a["status"]) for a in activities) == [
        ("Jane Doe", "present"),
        ("John Smith", "absent"),
    ]
    assert activities[0]["course_title"] == "Kubernetes in practice"


def new_enterprise(client, headers, **overrides):
    body = {
        "username": "globex",
        "email": "it@globex.example",
        "password": "secret123",
        "display_name": "Globex",
    }
    body.update(overrides)
    return client.post("/api/admin/enterprises", json=body, headers=headers)


def test_admin_creates_enterprise_with_courses(client, make_course, admin, auth):
    headers = auth(admin)
    course = make_course()

    resp = new_enterprise(client, headers, course_ids=[course["id"]])

    assert resp.status_code == 201
    created = resp.get_json()
    assert created["role"] == "enterprise"
    assert created["course_ids"] == [course["id"]]
    assert created["employee_count"] == 0
    assert "password" not in created

    login = client.post("/api/login", json={"username": "globex", "password": "secret123"})
    assert login.status_code == 200

    listing = client.get("/api/admin/enterprises", headers=headers).get_json()
    assert [e["id"] for e in listing] == [created["id"]]


def test_admin_enterprise_validation(client, make_course, admin, student, auth):
    headers = auth(admin)

    unknown_course = new_enterprise(client, headers, course_ids=[999])
    new_enterprise(client, headers)
    duplicate = new_enterprise(client, headers, email="other@globex.example")
    forbidden = client.get("/api/admin/enterprises", headers=auth(student))
    not_enterprise = client.get(f"/api/admin/enterprises/{student['id']}", headers=headers)

    assert unknown_course.status_code == 400
    assert duplicate.status_code == 400
    assert forbidden.status_code == 403
    assert not_enterprise.status_code == 404


def test_admin_reassigns_enterprise_courses(client, storage, make_course, admin, auth):
    headers = auth(admin)
    first, second = make_course(), make_course(title="Second course")
    enterprise = new_enterprise(client, headers, course_ids=[first["id"]]).get_json()
    employee = add_employee(client, auth(enterprise)).get_json()
    client.post(f"/api/enterprise/employees/{employee['id']}/courses", json={"course_id": first["id"]},
                headers=auth(enterprise))

    updated = client.patch(f"/api/admin/enterprises/{enterprise['id']}",
                           json={"display_name": "Globex Corp", "course_ids": [second["id"]]}, headers=headers)

    body = updated.get_json()
    assert updated.status_code == 200
    assert body["display_name"] == "Globex Corp"
    assert body["course_ids"] == [second["id"]]
    assert body["employee_count"] == 1
    assert storage.get_employee_course_access(employee["id"], first["id"]) is None

    assigned = client.post(f"/api/admin/enterprises/{enterprise['id']}/courses",
                           json={"course_ids": [first["id"]]}, headers=headers)
    assert assigned.get_json()["course_ids"] == sorted([first["id"], second["id"]])


def test_admin_deletes_enterprise(client, storage, admin, auth):
    headers = auth(admin)
    enterprise = new_enterprise(client, headers).get_json()
    employee = add_employee(client, auth(enterprise)).get_json()

    resp = client.delete(f"/api/admin/enterprises/{enterprise['id']}", headers=headers)

    assert resp.status_code == 204
    assert storage.get_user(enterprise["id"]) is None
    assert storage.get_user(employee["id"])["enterprise_id"] is None
    assert client.delete(f"/api/admin/enterprises/{enterprise['id']}", headers=headers).status_code == 404
