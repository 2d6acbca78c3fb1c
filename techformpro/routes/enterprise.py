from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required
from werkzeug.security import generate_password_hash

from techformpro.errors import BadRequest, Forbidden, NotFound, DuplicateError
from techformpro.helpers.enterprise import set_course_active
from techformpro.schemas import parse_body, EmployeeCreate, EnterpriseCourseToggle, EmployeeCourseGrant, ProgressIn
from techformpro.storage import get_storage, public_user
from techformpro.utils.auth import role_required, load_user, acting_enterprise_id
from techformpro.utils.mailer import send_template_email
from techformpro.utils.slug import slugify

bp = Blueprint("enterprise", __name__, url_prefix="/api")

ENTERPRISE_ROLES = ("enterprise", "enterprise_admin")
UPCOMING_LIMIT = 5
ACTIVITY_LIMIT = 10


def _enterprise_id():
    return acting_enterprise_id(load_user())


def _employee_or_404(employee_id, enterprise_id):
    employee = get_storage().get_user(employee_id)
    if not employee or employee["enterprise_id"] != enterprise_id:
        raise NotFound("Employee not found")
    return employee


def employee_username(display_name):
    """Derive a free username from a display name: jane.doe, jane.doe1 ..."""
    storage = get_storage()
    base = slugify(display_name).replace("-", ".") or "employee"
    if len(base) < 3:
        base = f"{base}.employee"
    username, counter = base, 1
    while storage.get_user_by_username(username):
        username = f"{base}{counter}"
        counter += 1
    return username


@bp.route("/enterprise/dashboard", methods=["GET"])
@role_required(*ENTERPRISE_ROLES)
def dashboard():
    analytics = get_storage().get_enterprise_analytics(_enterprise_id())
    return jsonify({
        "total_employees": analytics["total_employees"],
        "active_courses": analytics["active_courses"],
        "total_sessions": analytics["total_sessions"],
        "average_completion": analytics["completion"]["overall"],
        "average_attendance": analytics["attendance"]["overall"],
    }), 200


@bp.route("/enterprise/employees", methods=["GET"])
@role_required(*ENTERPRISE_ROLES)
def list_employees():
    storage = get_storage()
    result = []
    for employee in storage.get_employees(_enterprise_id()):
        row = public_user(employee)
        row["course_ids"] = [a["course_id"] for a in storage.get_employee_course_accesses(employee_id=employee["id"])]
        result.append(row)
    return jsonify(result), 200


@bp.route("/enterprise/employees", methods=["POST"])
@role_required(*ENTERPRISE_ROLES)
def create_employee():
    enterprise_id = _enterprise_id()
    payload = parse_body(EmployeeCreate)
    storage = get_storage()

    username = employee_username(payload.display_name)
    # Employees sign in with their phone number until they change it
    password = payload.phone_number.replace(" ", "")
    try:
        employee = storage.create_user({
            "username": username,
            "email": payload.email,
            "password": generate_password_hash(password),
            "display_name": payload.display_name,
            "phone_number": payload.phone_number,
            "role": "student",
            "enterprise_id": enterprise_id,
        })
    except DuplicateError:
        raise BadRequest("Email already exists")

    enterprise = storage.get_user(enterprise_id)
    send_template_email(
        employee["email"],
        "Your TechFormPro account",
        "employee_welcome",
        display_name=employee["display_name"],
        enterprise_name=enterprise["display_name"],
        username=username,
        password=password,
        login_url=f"{current_app.config['FRONTEND_URL']}/login",
    )

    current_app.logger.info("Enterprise %s created employee %s", enterprise_id, employee["id"])
    return jsonify(public_user(employee)), 201


@bp.route("/enterprise/employees/<int:employee_id>", methods=["DELETE"])
@role_required(*ENTERPRISE_ROLES)
def delete_employee(employee_id):
    enterprise_id = _enterprise_id()
    _employee_or_404(employee_id, enterprise_id)
    get_storage().delete_user(employee_id)
    current_app.logger.info("Enterprise %s deleted employee %s", enterprise_id, employee_id)
    return "", 204


@bp.route("/enterprise/courses", methods=["GET"])
@role_required(*ENTERPRISE_ROLES)
def enterprise_courses():
    enterprise_id = _enterprise_id()
    storage = get_storage()
    active = {a["course_id"] for a in storage.get_enterprise_course_accesses(enterprise_id)}

    courses = storage.get_courses_with_details(approval_status="approved")
    for course in courses:
        course["active"] = course["id"] in active
    return jsonify(courses), 200


@bp.route("/enterprise/courses/<int:course_id>", methods=["PATCH"])
@role_required(*ENTERPRISE_ROLES)
def toggle_course(course_id):
    enterprise_id = _enterprise_id()
    payload = parse_body(EnterpriseCourseToggle)
    storage = get_storage()

    course = storage.get_course(course_id)
    if not course or course["approval_status"] != "approved":
        raise NotFound("Course not found")

    set_course_active(enterprise_id, course_id, payload.active)
    return jsonify({"course_id": course_id, "active": payload.active}), 200


@bp.route("/enterprise/employee-course-access", methods=["GET"])
@role_required(*ENTERPRISE_ROLES)
def employee_course_access():
    storage = get_storage()
    result = []
    for employee in storage.get_employees(_enterprise_id()):
        result.extend(storage.get_employee_course_accesses(employee_id=employee["id"]))
    return jsonify(result), 200


@bp.route("/enterprise/employees/<int:employee_id>/courses", methods=["POST"])
@role_required(*ENTERPRISE_ROLES)
def grant_course(employee_id):
    user = load_user()
    enterprise_id = acting_enterprise_id(user)
    _employee_or_404(employee_id, enterprise_id)
    payload = parse_body(EmployeeCourseGrant)
    storage = get_storage()

    if not storage.has_enterprise_course_access(enterprise_id, payload.course_id):
        raise BadRequest("Course is not active for this enterprise")
    try:
        grant = storage.grant_employee_course_access(employee_id, payload.course_id, assigned_by=user["id"])
    except DuplicateError:
        raise BadRequest("Employee already has access to this course")
    return jsonify(grant), 201


@bp.route("/enterprise/employees/<int:employee_id>/courses/<int:course_id>", methods=["DELETE"])
@role_required(*ENTERPRISE_ROLES)
def revoke_course(employee_id, course_id):
    _employee_or_404(employee_id, _enterprise_id())
    if not get_storage().revoke_employee_course_access(employee_id, course_id):
        raise NotFound("Course access not found")
    return "", 204


@bp.route("/enterprise/analytics", methods=["GET"])
@role_required(*ENTERPRISE_ROLES)
def analytics():
    return jsonify(get_storage().get_enterprise_analytics(_enterprise_id())), 200


@bp.route("/progress", methods=["POST"])
@jwt_required()
def report_progress():
    user = load_user()
    payload = parse_body(ProgressIn)
    storage = get_storage()

    if not user["enterprise_id"]:
        raise Forbidden("Progress tracking is available to enterprise employees only")
    if not storage.get_employee_course_access(user["id"], payload.course_id):
        raise Forbidden("No access to this course")

    row = storage.upsert_course_progress(
        user["id"], payload.course_id, payload.progress, payload.time_spent_minutes
    )
    return jsonify(row), 200


@bp.route("/enterprise/employees/<int:employee_id>/progress", methods=["GET"])
@role_required(*ENTERPRISE_ROLES)
def employee_progress(employee_id):
    _employee_or_404(employee_id, _enterprise_id())
    storage = get_storage()

    result = []
    for row in storage.get_course_progress(employee_id=employee_id):
        course = storage.get_course(row["course_id"])
        row["course_title"] = course["title"] if course else None
        result.append(row)
    return jsonify(result), 200


@bp.route("/enterprise/upcoming-sessions", methods=["GET"])
@role_required(*ENTERPRISE_ROLES)
def upcoming_sessions():
    storage = get_storage()
    active = {a["course_id"] for a in storage.get_enterprise_course_accesses(_enterprise_id())}
    sessions = [
        s for s in storage.get_sessions_with_details(upcoming=True, approved_only=True)
        if s["course_id"] in active
    ]
    return jsonify(sessions[:UPCOMING_LIMIT]), 200


@bp.route("/enterprise/recent-activities", methods=["GET"])
@role_required(*ENTERPRISE_ROLES)
def recent_activities():
    """Latest session attendance records of the enterprise's employees."""
    storage = get_storage()
    records = []
    for employee in storage.get_employees(_enterprise_id()):
        for row in storage.get_attendance(employee_id=employee["id"]):
            records.append((row, employee))
    records.sort(key=lambda r: (r[0]["created_at"], r[0]["id"]), reverse=True)

    result = []
    for row, employee in records[:ACTIVITY_LIMIT]:
        session = storage.get_session_with_details(row["session_id"])
        result.append({
            "employee_id": employee["id"],
            "employee_name": employee["display_name"],
            "session_id": row["session_id"],
            "course_title": session["course"]["title"] if session and session["course"] else None,
            "status": "present" if row["attended"] else "absent",
            "date": row["created_at"],
        })
    return jsonify(result), 200
