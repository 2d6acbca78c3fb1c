COURSE = {
    "title": "Ansible for beginners",
    "description": "Automate your servers",
    "level": "beginner",
    "duration": 60,
    "max_students": 8,
}


def submit_course(client, headers, category):
    return client.post("/api/courses", json=dict(COURSE, category_id=category["id"]), headers=headers).get_json()


def test_pending_requests_listed_with_details(client, trainer, admin, category, auth):
    course = submit_course(client, auth(trainer), category)

    resp = client.get("/api/admin/approvals?status=pending", headers=auth(admin))

    assert resp.status_code == 200
    [approval] = resp.get_json()
    assert approval["type"] == "course"
    assert approval["item"]["id"] == course["id"]
    assert approval["requester"]["id"] == trainer["id"]


def test_approve_request_approves_course(client, storage, trainer, admin, category, auth):
    course = submit_course(client, auth(trainer), category)
    request_id = storage.get_pending_approval_for_item("course", course["id"])["id"]

    resp = client.post(f"/api/admin/approvals/{request_id}/approve", json={}, headers=auth(admin))

    assert resp.status_code == 200
    assert resp.get_json()["status"] == "approved"
    assert storage.get_course(course["id"])["approval_status"] == "approved"
    assert len(storage.get_notifications_by_user(trainer["id"])) == 1


def test_reject_requires_notes(client, storage, trainer, admin, category, auth):
    course = submit_course(client, auth(trainer), category)
    request_id = storage.get_pending_approval_for_item("course", course["id"])["id"]

    missing = client.post(f"/api/admin/approvals/{request_id}/reject", json={}, headers=auth(admin))
    rejected = client.post(f"/api/admin/approvals/{request_id}/reject",
                           json={"notes": "Too short"}, headers=auth(admin))

    assert missing.status_code == 400
    assert rejected.status_code == 200
    assert rejected.get_json()["notes"] == "Too short"
    assert storage.get_course(course["id"])["approval_status"] == "rejected"


def test_reviewed_request_cannot_be_decided_again(client, storage, trainer, admin, category, auth):
    course = submit_course(client, auth(trainer), category)
    request_id = storage.get_pending_approval_for_item("course", course["id"])["id"]
    client.post(f"/api/admin/approvals/{request_id}/approve", json={}, headers=auth(admin))

    resp = client.post(f"/api/admin/approvals/{request_id}/reject", json={"notes": "changed my mind"},
                       headers=auth(admin))

    assert resp.status_code == 400


def test_unknown_request(client, admin, auth):
    assert client.get("/api/admin/approvals/999", headers=auth(admin)).status_code == 404


def test_request_closes_when_course_already_has_that_status(client, storage, trainer, admin, category, auth):
    course = submit_course(client, auth(trainer), category)
    request_id = storage.get_pending_approval_for_item("course", course["id"])["id"]
    storage.update_course(course["id"], {"approval_status": "approved"})

    resp = client.post(f"/api/admin/approvals/{request_id}/approve", json={}, headers=auth(admin))

    assert resp.status_code == 200
    assert storage.get_approval_request(request_id)["status"] == "approved"
    assert storage.get_pending_approval_for_item("course", course["id"]) is None
    assert storage.get_notifications_by_user(trainer["id"]) == []
