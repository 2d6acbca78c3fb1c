from flask import Blueprint, jsonify, request, current_app
from flask_jwt_extended import jwt_required

from techformpro.errors import BadRequest, Forbidden, NotFound
from techformpro.schemas import parse_body, changes, SessionCreate, SessionUpdate, AttendanceIn
from techformpro.storage import get_storage
from techformpro.utils.auth import role_required, load_user, optional_user

bp = Blueprint("sessions", __name__, url_prefix="/api")


def _manages(user, course):
    return user is not None and (user["role"] == "admin" or user["id"] == course["trainer_id"])


def _session_and_course(session_id):
    storage = get_storage()
    session = storage.get_session(session_id)
    if not session:
        raise NotFound("Session not found")
    return session, storage.get_course(session["course_id"])


@bp.route("/sessions", methods=["GET"])
def list_sessions():
    course_id = request.args.get("course_id", type=int)
    sessions = get_storage().get_sessions_with_details(course_id=course_id, approved_only=True)
    return jsonify(sessions), 200


@bp.route("/sessions/upcoming", methods=["GET"])
def upcoming_sessions():
    return jsonify(get_storage().get_sessions_with_details(upcoming=True, approved_only=True)), 200


@bp.route("/sessions/<int:session_id>", methods=["GET"])
def get_session(session_id):
    storage = get_storage()
    session = storage.get_session_with_details(session_id)
    if not session:
        raise NotFound("Session not found")

    user = optional_user()
    course = session["course"]
    if course["approval_status"] != "approved" and not _manages(user, course):
        raise NotFound("Session not found")

    if user:
        session["is_enrolled"] = storage.get_enrollment(user["id"], session_id) is not None
    return jsonify(session), 200


@bp.route("/sessions", methods=["POST"])
@role_required("trainer", "admin")
def create_session():
    user = load_user()
    payload = parse_body(SessionCreate)
    storage = get_storage()

    course = storage.get_course(payload.course_id)
    if not course:
        raise NotFound("Course not found")
    if not _manages(user, course):
        raise Forbidden("You can only schedule sessions for your own courses")

    session = storage.create_session(payload.model_dump())
    current_app.logger.info("Session %s scheduled for course %s", session["id"], course["id"])
    return jsonify(storage.get_session_with_details(session["id"])), 201


@bp.route("/sessions/<int:session_id>", methods=["PATCH"])
@jwt_required()
def update_session(session_id):
    user = load_user()
    session, course = _session_and_course(session_id)
    if not _manages(user, course):
        raise Forbidden("You can only edit sessions of your own courses")

    data = changes(parse_body(SessionUpdate))
    if not data:
        raise BadRequest("No fields to update")
    start = data.get("date", session["date"])
    end = data.get("end_date", session["end_date"])
    if start and end and end <= start:
        raise BadRequest("end_date must be after date")

    storage = get_storage()
    storage.update_session(session_id, data)
    return jsonify(storage.get_session_with_details(session_id)), 200


@bp.route("/sessions/<int:session_id>", methods=["DELETE"])
@jwt_required()
def delete_session(session_id):
    user = load_user()
    _, course = _session_and_course(session_id)
    if not _manages(user, course):
        raise Forbidden("You can only delete sessions of your own courses")

    get_storage().delete_session(session_id)
    return "", 204


@bp.route("/sessions/trainer/<int:trainer_id>", methods=["GET"])
def trainer_sessions(trainer_id):
    storage = get_storage()
    if not storage.get_user(trainer_id):
        raise NotFound("Trainer not found")

    user = optional_user()
    own = user is not None and (user["role"] == "admin" or user["id"] == trainer_id)
    sessions = storage.get_sessions_with_details(trainer_id=trainer_id, approved_only=not own)
    return jsonify(sessions), 200


@bp.route("/sessions/<int:session_id>/attendance", methods=["POST"])
@role_required("trainer", "admin")
def record_attendance(session_id):
    user = load_user()
    _, course = _session_and_course(session_id)
    if not _manages(user, course):
        raise Forbidden("You can only record attendance for your own sessions")

    payload = parse_body(AttendanceIn)
    storage = get_storage()
    if not storage.get_user(payload.employee_id):
        raise NotFound("Employee not found")

    row = storage.record_attendance(
        payload.employee_id,
        session_id,
        payload.attended,
        joined_at=payload.joined_at,
        left_at=payload.left_at,
    )
    return jsonify(row), 200
