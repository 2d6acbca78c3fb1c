COURSE = {
    "title": "Terraform fundamentals",
    "description": "Infrastructure as code from scratch",
    "level": "beginner",
    "duration": 90,
    "max_students": 12,
}


def course_body(category, **overrides):
    body = dict(COURSE, category_id=category["id"])
    body.update(overrides)
    return body


def test_trainer_course_starts_pending_with_approval_request(client, storage, trainer, category, auth):
    resp = client.post("/api/courses", json=course_body(category), headers=auth(trainer))

    assert resp.status_code == 201
    course = resp.get_json()
    assert course["approval_status"] == "pending"
    assert course["trainer_id"] == trainer["id"]

    pending = storage.get_pending_approval_for_item("course", course["id"])
    assert pending["requester_id"] == trainer["id"]


def test_admin_course_is_approved(client, admin, trainer, category, auth):
    resp = client.post("/api/courses", json=course_body(category, trainer_id=trainer["id"]), headers=auth(admin))

    assert resp.status_code == 201
    assert resp.get_json()["approval_status"] == "approved"
    assert resp.get_json()["trainer_id"] == trainer["id"]


def test_created_course_details_match_stored_rows(client, storage, trainer, category, auth):
    created = client.post("/api/courses", json=course_body(category), headers=auth(trainer)).get_json()

    resp = client.get(f"/api/courses/{created['id']}", headers=auth(trainer))

    assert resp.status_code == 200
    course = resp.get_json()
    assert course["category"] == category
    stored_trainer = storage.get_user(trainer["id"])
    assert course["trainer"]["id"] == stored_trainer["id"]
    assert course["trainer"]["username"] == stored_trainer["username"]
    assert "password" not in course["trainer"]


def test_students_cannot_create_courses(client, student, category, auth):
    resp = client.post("/api/courses", json=course_body(category), headers=auth(student))

    assert resp.status_code == 403


def test_unknown_category_rejected(client, trainer, category, auth):
    resp = client.post("/api/courses", json=course_body(category, category_id=999), headers=auth(trainer))

    assert resp.status_code == 400


def test_public_listing_only_shows_approved(client, make_course):
    approved = make_course(title="Approved")
    make_course(title="Pending", approval_status="pending")
    make_course(title="Rejected", approval_status="rejected")

    resp = client.get("/api/courses")

    assert resp.status_code == 200
    assert [c["id"] for c in resp.get_json()] == [approved["id"]]


def test_pending_course_hidden_from_public(client, make_course, trainer, student, auth):
    course = make_course(approval_status="pending")

    assert client.get(f"/api/courses/{course['id']}").status_code == 404
    assert client.get(f"/api/courses/{course['id']}", headers=auth(student)).status_code == 404
    assert client.get(f"/api/courses/{course['id']}", headers=auth(trainer)).status_code == 200


def test_trainer_listing_includes_own_unapproved(client, make_course, trainer, auth):
    make_course()
    make_course(approval_status="rejected")

    public = client.get(f"/api/courses/trainer/{trainer['id']}")
    own = client.get(f"/api/courses/trainer/{trainer['id']}", headers=auth(trainer))

    assert len(public.get_json()) == 1
    assert len(own.get_json()) == 2


def test_courses_by_category(client, make_course, category):
    make_course()

    assert len(client.get(f"/api/courses/category/{category['id']}").get_json()) == 1
    assert client.get("/api/courses/category/999").status_code == 404


def test_approve_course_notifies_trainer_once(client, storage, admin, trainer, category, auth):
    course = client.post("/api/courses", json=course_body(category), headers=auth(trainer)).get_json()
    url = f"/api/admin/courses/{course['id']}/approval"

    first = client.patch(url, json={"status": "approved"}, headers=auth(admin))
    second = client.patch(url, json={"status": "approved"}, headers=auth(admin))

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.get_json()["approval_status"] == "approved"
    notifications = storage.get_notifications_by_user(trainer["id"])
    assert len(notifications) == 1
    assert notifications[0]["type"] == "approval"

    approvals = storage.get_approval_requests(type="course")
    assert approvals[0]["status"] == "approved"
    assert approvals[0]["reviewer_id"] == admin["id"]


def test_rejected_course_goes_back_to_review_when_edited(client, storage, admin, trainer, category, auth):
    course = client.post("/api/courses", json=course_body(category), headers=auth(trainer)).get_json()
    client.patch(f"/api/admin/courses/{course['id']}/approval",
                 json={"status": "rejected", "notes": "Needs a syllabus"}, headers=auth(admin))

    resp = client.patch(f"/api/courses/{course['id']}", json={"description": "Now with a syllabus"},
                        headers=auth(trainer))

    assert resp.status_code == 200
    assert resp.get_json()["approval_status"] == "pending"
    assert storage.get_pending_approval_for_item("course", course["id"]) is not None


def test_only_owner_or_admin_can_edit(client, make_course, make_user, admin, auth):
    course = make_course()
    other_trainer = make_user("trainer")

    denied = client.patch(f"/api/courses/{course['id']}", json={"title": "Mine now"}, headers=auth(other_trainer))
    allowed = client.patch(f"/api/courses/{course['id']}", json={"title": "Renamed"}, headers=auth(admin))

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert allowed.get_json()["title"] == "Renamed"


def test_delete_course(client, make_course, make_session, trainer, auth):
    course = make_course()
    make_session(course)

    resp = client.delete(f"/api/courses/{course['id']}", headers=auth(trainer))

    assert resp.status_code == 204
    assert client.get(f"/api/courses/{course['id']}").status_code == 404
    assert client.get("/api/sessions").get_json() == []


def test_deleting_trainer_deletes_their_courses(client, make_course, admin, trainer, auth):
    first = make_course()
    second = make_course(title="Second course")

    resp = client.delete(f"/api/admin/users/{trainer['id']}", headers=auth(admin))

    assert resp.status_code == 204
    assert client.get(f"/api/courses/{first['id']}").status_code == 404
    assert client.get(f"/api/courses/{second['id']}").status_code == 404


def test_admin_course_listing_by_status(client, make_course, admin, auth):
    make_course()
    make_course(approval_status="pending")

    pending = client.get("/api/admin/courses?status=pending", headers=auth(admin))
    invalid = client.get("/api/admin/courses?status=maybe", headers=auth(admin))

    assert len(pending.get_json()) == 1
    assert invalid.status_code == 400


def test_categories(client, admin, auth):
    created = client.post("/api/categories", json={"name": "Data Science"}, headers=auth(admin))
    duplicate = client.post("/api/categories", json={"name": "Data Science", "slug": "data-science"},
                            headers=auth(admin))

    assert created.status_code == 201
    assert created.get_json()["slug"] == "data-science"
    assert duplicate.status_code == 400
    assert [c["name"] for c in client.get("/api/categories").get_json()] == ["Data Science"]


def test_my_courses_lists_purchases(client, storage, make_course, student, auth):
    bought = make_course(title="Bought", price=5000)
    make_course(title="Not bought", price=5000)
    storage.grant_course_access(student["id"], bought["id"])

    resp = client.get("/api/courses/user", headers=auth(student))

    assert resp.status_code == 200
    [course] = resp.get_json()
    assert course["id"] == bought["id"]
    assert course["access"] == "purchase"
    assert course["trainer"]["id"] == bought["trainer_id"]


def test_my_courses_includes_employer_grants(client, storage, make_course, make_user, auth):
    enterprise = make_user("enterprise")
    employee = make_user(enterprise_id=enterprise["id"])
    course = make_course()
    storage.set_enterprise_course_access(enterprise["id"], course["id"], True)
    storage.grant_employee_course_access(employee["id"], course["id"], assigned_by=enterprise["id"])

    courses = client.get("/api/courses/user", headers=auth(employee)).get_json()

    assert [(c["id"], c["access"]) for c in courses] == [(course["id"], "enterprise")]


def test_my_courses_with_subscription(client, make_course, make_user, auth):
    subscriber = make_user(is_subscribed=True, subscription_type="monthly")
    make_course()
    make_course(title="Second")
    make_course(title="Pending", approval_status="pending")

    courses = client.get("/api/courses/user", headers=auth(subscriber)).get_json()

    assert len(courses) == 2
    assert {c["access"] for c in courses} == {"subscription"}


def test_my_courses_requires_login(client):
    assert client.get("/api/courses/user").status_code == 401
