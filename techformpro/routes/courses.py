from flask import Blueprint, jsonify, request, current_app
from flask_jwt_extended import jwt_required

from techformpro.errors import BadRequest, Forbidden, NotFound
from techformpro.helpers.approval import decide_course, open_course_request
from techformpro.helpers.subscription import has_active_subscription
from techformpro.models.course import APPROVAL_STATUSES
from techformpro.schemas import parse_body, changes, CourseCreate, CourseUpdate, ApprovalDecision
from techformpro.storage import get_storage
from techformpro.utils.auth import role_required, load_user, optional_user

bp = Blueprint("courses", __name__, url_prefix="/api")


def _can_manage(user, course):
    return user is not None and (user["role"] == "admin" or user["id"] == course["trainer_id"])


def _check_category(category_id):
    if get_storage().get_category(category_id) is None:
        raise BadRequest("Category not found")


@bp.route("/courses", methods=["GET"])
def list_courses():
    category_id = request.args.get("category_id", type=int)
    courses = get_storage().get_courses_with_details(category_id=category_id, approval_status="approved")
    return jsonify(courses), 200


@bp.route("/courses/<int:course_id>", methods=["GET"])
def get_course(course_id):
    course = get_storage().get_course_with_details(course_id)
    if not course:
        raise NotFound("Course not found")

    # Unapproved courses are only visible to their trainer and admins
    if course["approval_status"] != "approved" and not _can_manage(optional_user(), course):
        raise NotFound("Course not found")
    return jsonify(course), 200


@bp.route("/courses", methods=["POST"])
@role_required("trainer", "admin")
def create_course():
    user = load_user()
    payload = parse_body(CourseCreate)
    storage = get_storage()
    _check_category(payload.category_id)

    data = payload.model_dump()
    if user["role"] == "admin":
        trainer_id = payload.trainer_id or user["id"]
        trainer = storage.get_user(trainer_id)
        if not trainer or trainer["role"] not in ("trainer", "admin"):
            raise BadRequest("trainer_id must reference a trainer")
        data.update(trainer_id=trainer_id, approval_status="approved")
    else:
        data.update(trainer_id=user["id"], approval_status="pending")

    with storage.atomic():
        course = storage.create_course(data)
        if course["approval_status"] == "pending":
            open_course_request(course, user["id"])

    current_app.logger.info("Course %s created by user %s", course["id"], user["id"])
    return jsonify(storage.get_course_with_details(course["id"])), 201


@bp.route("/courses/<int:course_id>", methods=["PATCH"])
@jwt_required()
def update_course(course_id):
    user = load_user()
    storage = get_storage()
    course = storage.get_course(course_id)
    if not course:
        raise NotFound("Course not found")
    if not _can_manage(user, course):
        raise Forbidden("You can only edit your own courses")

    data = changes(parse_body(CourseUpdate))
    if not data:
        raise BadRequest("No fields to update")
    if "category_id" in data:
        _check_category(data["category_id"])

    with storage.atomic():
        # A rejected course goes back into review once its trainer edits it
        resubmit = user["role"] != "admin" and course["approval_status"] == "rejected"
        if resubmit:
            data["approval_status"] = "pending"
        storage.update_course(course_id, data)
        if resubmit:
            open_course_request(course, user["id"])

    return jsonify(storage.get_course_with_details(course_id)), 200


@bp.route("/courses/<int:course_id>", methods=["DELETE"])
@jwt_required()
def delete_course(course_id):
    user = load_user()
    storage = get_storage()
    course = storage.get_course(course_id)
    if not course:
        raise NotFound("Course not found")
    if not _can_manage(user, course):
        raise Forbidden("You can only delete your own courses")

    storage.delete_course(course_id)
    current_app.logger.info("Course %s deleted by user %s", course_id, user["id"])
    return "", 204


@bp.route("/courses/trainer/<int:trainer_id>", methods=["GET"])
def trainer_courses(trainer_id):
    storage = get_storage()
    trainer = storage.get_user(trainer_id)
    if not trainer:
        raise NotFound("Trainer not found")

    user = optional_user()
    if user and (user["role"] == "admin" or user["id"] == trainer_id):
        courses = storage.get_courses_with_details(trainer_id=trainer_id)
    else:
        courses = storage.get_courses_with_details(trainer_id=trainer_id, approval_status="approved")
    return jsonify(courses), 200


@bp.route("/courses/category/<int:category_id>", methods=["GET"])
def category_courses(category_id):
    storage = get_storage()
    if not storage.get_category(category_id):
        raise NotFound("Category not found")
    return jsonify(storage.get_courses_with_details(category_id=category_id, approval_status="approved")), 200


@bp.route("/admin/courses", methods=["GET"])
@role_required("admin")
def admin_courses():
    status = request.args.get("status")
    if status and status not in APPROVAL_STATUSES:
        raise BadRequest(f"status must be one of {', '.join(APPROVAL_STATUSES)}")
    return jsonify(get_storage().get_courses_with_details(approval_status=status or None)), 200


@bp.route("/admin/courses/<int:course_id>/approval", methods=["PATCH"])
@role_required("admin")
def set_course_approval(course_id):
    admin = load_user()
    payload = parse_body(ApprovalDecision)
    decide_course(course_id, payload.status, admin["id"], payload.notes)
    return jsonify(get_storage().get_course_with_details(course_id)), 200


@bp.route("/courses/user", methods=["GET"])
@jwt_required()
def my_courses():
    """Courses the caller can follow: every course with a subscription, else purchases and employer grants."""
    user = load_user()
    storage = get_storage()

    if has_active_subscription(user):
        courses = storage.get_courses_with_details(approval_status="approved")
        for course in courses:
            course["access"] = "subscription"
        return jsonify(courses), 200

    sources = {a["course_id"]: "purchase" for a in storage.get_course_accesses(user["id"])}
    for grant in storage.get_employee_course_accesses(employee_id=user["id"]):
        sources.setdefault(grant["course_id"], "enterprise")

    result = []
    for course_id in sorted(sources):
        course = storage.get_course_with_details(course_id)
        if course:
            course["access"] = sources[course_id]
            result.append(course)
    return jsonify(result), 200
