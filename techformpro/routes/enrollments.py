from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required

from techformpro.errors import BadRequest, Forbidden, NotFound, AlreadyEnrolledError, SessionFullError
from techformpro.helpers.subscription import has_active_subscription
from techformpro.schemas import parse_body, EnrollmentCreate
from techformpro.storage import get_storage, public_user
from techformpro.utils.auth import role_required, load_user
from techformpro.utils.mailer import send_template_email
from techformpro.utils.notify import notify

bp = Blueprint("enrollments", __name__, url_prefix="/api")


def session_capacity(course, session):
    capacity = course["max_students"]
    if session["max_participants"]:
        capacity = min(capacity, session["max_participants"])
    return capacity


def has_course_access(user, course):
    storage = get_storage()
    return (
        has_active_subscription(user)
        or course["price"] == 0
        or storage.get_course_access(user["id"], course["id"]) is not None
        or storage.get_employee_course_access(user["id"], course["id"]) is not None
    )


@bp.route("/enrollments/user", methods=["GET"])
@jwt_required()
def my_enrollments():
    user = load_user()
    storage = get_storage()

    result = []
    for enrollment in storage.get_enrollments_by_user(user["id"]):
        enrollment["session"] = storage.get_session_with_details(enrollment["session_id"])
        result.append(enrollment)
    return jsonify(result), 200


@bp.route("/enrollments/session/<int:session_id>", methods=["GET"])
@role_required("trainer", "admin")
def session_enrollments(session_id):
    user = load_user()
    storage = get_storage()
    session = storage.get_session(session_id)
    if not session:
        raise NotFound("Session not found")
    course = storage.get_course(session["course_id"])
    if user["role"] != "admin" and course["trainer_id"] != user["id"]:
        raise Forbidden("You can only view enrollments of your own sessions")

    result = []
    for enrollment in storage.get_enrollments_by_session(session_id):
        enrollment["user"] = public_user(storage.get_user(enrollment["user_id"]))
        result.append(enrollment)
    return jsonify(result), 200


@bp.route("/enrollments", methods=["POST"])
@jwt_required()
def enroll():
    user = load_user()
    payload = parse_body(EnrollmentCreate)
    storage = get_storage()

    session = storage.get_session(payload.session_id)
    if not session:
        raise NotFound("Session not found")
    course = storage.get_course(session["course_id"])
    if course["approval_status"] != "approved":
        raise BadRequest("Course is not open for enrollment")
    if storage.get_enrollment(user["id"], session["id"]):
        raise BadRequest("Already enrolled")
    if not has_course_access(user, course):
        raise Forbidden("An active subscription or course purchase is required")

    try:
        enrollment = storage.enroll(user["id"], session["id"], session_capacity(course, session))
    except AlreadyEnrolledError:
        raise BadRequest("Already enrolled")
    except SessionFullError:
        raise BadRequest("Session is full")

    current_app.logger.info("User %s enrolled in session %s", user["id"], session["id"])

    # Enrollment is committed; follow-ups are best effort
    try:
        notify(user["id"], f'You are enrolled in "{course["title"]}" on {session["date"]:%Y-%m-%d %H:%M} UTC.',
               "confirmation")
    except Exception as e:
        current_app.logger.error("Could not create enrollment notification for user %s: %s", user["id"], e)

    send_template_email(
        user["email"],
        f"Enrollment confirmed: {course['title']}",
        "enrollment_confirmation",
        display_name=user["display_name"],
        course=course,
        session=session,
    )
    return jsonify(enrollment), 201


@bp.route("/enrollments/<int:session_id>", methods=["DELETE"])
@jwt_required()
def cancel_enrollment(session_id):
    user = load_user()
    storage = get_storage()
    enrollment = storage.get_enrollment(user["id"], session_id)
    if not enrollment:
        raise NotFound("Enrollment not found")

    storage.delete_enrollment(enrollment["id"])
    session = storage.get_session(session_id)
    course = storage.get_course(session["course_id"]) if session else None
    title = course["title"] if course else f"session #{session_id}"
    notify(user["id"], f'Your enrollment in "{title}" has been cancelled.', "cancellation")

    current_app.logger.info("User %s cancelled enrollment in session %s", user["id"], session_id)
    return "", 204
