def test_admin_user_management(client, storage, admin, auth):
    headers = auth(admin)
    created = client.post("/api/admin/users", json={
        "username": "newtrainer",
        "email": "newtrainer@example.com",
        "password": "secret123",
        "display_name": "New Trainer",
        "role": "trainer",
    }, headers=headers)
    assert created.status_code == 201
    user_id = created.get_json()["id"]

    promoted = client.patch(f"/api/admin/users/{user_id}/role", json={"role": "admin"}, headers=headers)
    assert promoted.get_json()["role"] == "admin"

    trainers = client.get("/api/admin/users?role=trainer", headers=headers).get_json()
    assert trainers == []

    assert client.get(f"/api/admin/users/{user_id}", headers=headers).status_code == 200
    assert client.delete(f"/api/admin/users/{user_id}", headers=headers).status_code == 204
    assert client.get(f"/api/admin/users/{user_id}", headers=headers).status_code == 404


def test_admin_cannot_delete_self(client, admin, auth):
    assert client.delete(f"/api/admin/users/{admin['id']}", headers=auth(admin)).status_code == 400


def test_non_admin_forbidden(client, student, auth):
    assert client.get("/api/admin/users", headers=auth(student)).status_code == 403


def test_admin_sets_subscription(client, storage, admin, student, auth):
    resp = client.patch(f"/api/admin/users/{student['id']}/subscription", json={
        "is_subscribed": True,
        "subscription_type": "annual",
        "subscription_end_date": "2030-01-01T00:00:00Z",
    }, headers=auth(admin))

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["is_subscribed"] is True
    assert body["subscription_end_date"] == "2030-01-01T00:00:00"


def test_deleting_enterprise_detaches_employees(client, storage, admin, make_user, auth):
    enterprise = make_user("enterprise")
    employee = make_user(enterprise_id=enterprise["id"])

    client.delete(f"/api/admin/users/{enterprise['id']}", headers=auth(admin))

    assert storage.get_user(employee["id"])["enterprise_id"] is None


def test_settings(client, admin, auth):
    headers = auth(admin)

    saved = client.put("/api/admin/settings/platform_fee_percentage",
                       json={"value": "20", "type": "pricing"}, headers=headers)
    invalid = client.put("/api/admin/settings/platform_fee_percentage",
                         json={"value": "150", "type": "pricing"}, headers=headers)
    client.put("/api/admin/settings/support_email", json={"value": "help@example.com", "type": "email"},
               headers=headers)

    assert saved.status_code == 200
    assert saved.get_json()["value"] == "20"
    assert invalid.status_code == 400
    pricing = client.get("/api/admin/settings?type=pricing", headers=headers).get_json()
    assert [s["key"] for s in pricing] == ["platform_fee_percentage"]


def test_dashboard_stats(client, make_course, make_session, student, admin, auth):
    course = make_course(price=5000)
    make_session(course)
    make_course(approval_status="pending")
    payment = client.post("/api/payments", json={"type": "course", "course_id": course["id"]},
                          headers=auth(student)).get_json()
    client.post(f"/api/admin/payments/{payment['id']}/approve", headers=auth(admin))

    stats = client.get("/api/admin/dashboard/stats", headers=auth(admin)).get_json()

    assert stats["users"]["by_role"]["student"] == 1
    assert stats["courses"] == {"total": 2, "pending": 1, "approved": 1}
    assert stats["total_sessions"] == 1
    assert stats["revenue"] == {"total": 5000, "platform": 750}
    assert stats["pending_payments"] == 0


def test_trainer_revenue(client, make_course, student, admin, trainer, auth):
    course = make_course(price=5000)
    payment = client.post("/api/payments", json={"type": "course", "course_id": course["id"]},
                          headers=auth(student)).get_json()
    client.post(f"/api/admin/payments/{payment['id']}/approve", headers=auth(admin))

    revenue = client.get("/api/trainer/revenue", headers=auth(trainer)).get_json()

    assert revenue["total_revenue"] == 4250
    assert revenue["by_course"] == [
        {"course_id": course["id"], "title": course["title"], "revenue": 4250, "payments": 1}
    ]


def test_unknown_route_returns_json(client):
    resp = client.get("/api/nope")

    assert resp.status_code == 404
    assert "message" in resp.get_json()


def test_init_db_seeds_defaults_once(app, storage):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["init-db"])
    second = runner.invoke(args=["init-db"])

    assert first.exit_code == 0
    assert "Seeded 6 categories, 3 plans, admin account" in first.output
    assert second.exit_code == 0
    assert "Seeded 0 categories, 0 plans" in second.output
    assert "admin account" not in second.output

    assert len(storage.get_all_categories()) == 6
    assert [p["plan_type"] for p in storage.get_plans()] == ["monthly", "annual", "business"]
    assert storage.get_user_by_username(app.config["ADMIN_USERNAME"])["role"] == "admin"
    assert storage.get_setting("platform_fee_percentage")["value"] == str(app.config["PLATFORM_FEE_PERCENTAGE"])
