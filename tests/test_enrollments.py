from datetime import datetime, timedelta

from techformpro.extensions import mail


def enroll(client, headers, session):
    return client.post("/api/enrollments", json={"session_id": session["id"]}, headers=headers)


def test_free_course_enrollment_without_subscription(client, storage, make_course, make_session, student, auth):
    session = make_session(make_course(price=0))

    with mail.record_messages() as outbox:
        resp = enroll(client, auth(student), session)

    assert resp.status_code == 201
    assert resp.get_json()["session_id"] == session["id"]
    assert storage.count_enrollments(session["id"]) == 1

    notifications = storage.get_notifications_by_user(student["id"])
    assert [n["type"] for n in notifications] == ["confirmation"]
    assert len(outbox) == 1
    assert outbox[0].recipients == [student["email"]]


def test_paid_course_requires_subscription(client, storage, make_course, make_session, student, auth):
    session = make_session(make_course(price=5000))

    resp = enroll(client, auth(student), session)

    assert resp.status_code == 403
    assert storage.count_enrollments(session["id"]) == 0


def test_paid_course_with_active_subscription(client, storage, make_course, make_session, make_user, auth):
    subscriber = make_user(
        is_subscribed=True,
        subscription_type="monthly",
        subscription_end_date=datetime.utcnow() + timedelta(days=10),
    )
    session = make_session(make_course(price=5000))

    assert enroll(client, auth(subscriber), session).status_code == 201


def test_expired_subscription_does_not_count(client, make_course, make_session, make_user, auth):
    lapsed = make_user(
        is_subscribed=True,
        subscription_type="monthly",
        subscription_end_date=datetime.utcnow() - timedelta(days=1),
    )
    session = make_session(make_course(price=5000))

    assert enroll(client, auth(lapsed), session).status_code == 403


def test_paid_course_with_course_access(client, storage, make_course, make_session, student, auth):
    course = make_course(price=5000)
    storage.grant_course_access(student["id"], course["id"])

    assert enroll(client, auth(student), make_session(course)).status_code == 201


def test_second_enrollment_rejected(client, storage, make_course, make_session, student, auth):
    session = make_session(make_course())
    headers = auth(student)

    enroll(client, headers, session)
    resp = enroll(client, headers, session)

    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Already enrolled"
    assert storage.count_enrollments(session["id"]) == 1


def test_capacity_is_never_exceeded(client, storage, make_course, make_session, make_user, auth):
    session = make_session(make_course(max_students=2))

    statuses = [enroll(client, auth(make_user()), session).status_code for _ in range(3)]

    assert statuses == [201, 201, 400]
    assert storage.count_enrollments(session["id"]) == 2


def test_session_full_message(client, make_course, make_session, make_user, auth):
    session = make_session(make_course(max_students=1))
    enroll(client, auth(make_user()), session)

    resp = enroll(client, auth(make_user()), session)

    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Session is full"


def test_session_max_participants_caps_capacity(client, make_course, make_session, make_user, auth):
    session = make_session(make_course(max_students=10), max_participants=1)
    enroll(client, auth(make_user()), session)

    assert enroll(client, auth(make_user()), session).status_code == 400


def test_unapproved_course_rejected(client, make_course, make_session, student, auth):
    session = make_session(make_course(approval_status="pending"))

    assert enroll(client, auth(student), session).status_code == 400


def test_unknown_session(client, student, auth):
    resp = client.post("/api/enrollments", json={"session_id": 999}, headers=auth(student))

    assert resp.status_code == 404


def test_cancel_enrollment(client, storage, make_course, make_session, student, auth):
    session = make_session(make_course())
    headers = auth(student)
    enroll(client, headers, session)

    resp = client.delete(f"/api/enrollments/{session['id']}", headers=headers)
    again = client.delete(f"/api/enrollments/{session['id']}", headers=headers)

    assert resp.status_code == 204
    assert again.status_code == 404
    assert storage.get_enrollment(student["id"], session["id"]) is None
    types = [n["type"] for n in storage.get_notifications_by_user(student["id"])]
    assert "cancellation" in types


def test_user_enrollments_include_session_details(client, make_course, make_session, student, auth):
    session = make_session(make_course())
    enroll(client, auth(student), session)

    resp = client.get("/api/enrollments/user", headers=auth(student))

    assert resp.status_code == 200
    [enrollment] = resp.get_json()
    assert enrollment["session"]["id"] == session["id"]
    assert enrollment["session"]["enrollment_count"] == 1
    assert enrollment["session"]["course"]["title"] == "Kubernetes in practice"


def test_session_enrollments_visible_to_course_trainer(client, make_course, make_session, make_user,
                                                       student, trainer, auth):
    session = make_session(make_course())
    enroll(client, auth(student), session)

    own = client.get(f"/api/enrollments/session/{session['id']}", headers=auth(trainer))
    other = client.get(f"/api/enrollments/session/{session['id']}", headers=auth(make_user("trainer")))

    assert own.status_code == 200
    assert own.get_json()[0]["user"]["id"] == student["id"]
    assert other.status_code == 403


def test_owner_or_admin_enrollment_listing(client, make_user, student, admin, auth):
    other = make_user()

    assert client.get(f"/api/users/{student['id']}/enrollments", headers=auth(student)).status_code == 200
    assert client.get(f"/api/users/{student['id']}/enrollments", headers=auth(admin)).status_code == 200
    assert client.get(f"/api/users/{student['id']}/enrollments", headers=auth(other)).status_code == 403
