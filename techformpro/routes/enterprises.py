from flask import Blueprint, jsonify, current_app
from werkzeug.security import generate_password_hash

from techformpro.errors import BadRequest, NotFound, DuplicateError
from techformpro.helpers.enterprise import approved_course_or_400, enterprise_summary, set_course_active
from techformpro.schemas import parse_body, changes, EnterpriseCreate, EnterpriseUpdate, EnterpriseCourseAssign
from techformpro.storage import get_storage
from techformpro.utils.auth import role_required, load_user

bp = Blueprint("enterprises", __name__, url_prefix="/api/admin")


def _enterprise_or_404(enterprise_id):
    enterprise = get_storage().get_user(enterprise_id)
    if not enterprise or enterprise["role"] != "enterprise":
        raise NotFound("Enterprise not found")
    return enterprise


@bp.route("/enterprises", methods=["GET"])
@role_required("admin")
def list_enterprises():
    enterprises = get_storage().get_all_users(role="enterprise")
    enterprises.sort(key=lambda e: e["display_name"].lower())
    return jsonify([enterprise_summary(e) for e in enterprises]), 200


@bp.route("/enterprises", methods=["POST"])
@role_required("admin")
def create_enterprise():
    payload = parse_body(EnterpriseCreate)
    storage = get_storage()
    course_ids = sorted(set(payload.course_ids))
    for course_id in course_ids:
        approved_course_or_400(course_id)

    data = payload.model_dump(exclude={"course_ids"})
    data.update(password=generate_password_hash(payload.password), role="enterprise")
    try:
        with storage.atomic():
            enterprise = storage.create_user(data)
            for course_id in course_ids:
                storage.set_enterprise_course_access(enterprise["id"], course_id, True)
    except DuplicateError:
        raise BadRequest("Username or email already exists")

    current_app.logger.info("Enterprise %s created by admin %s", enterprise["id"], load_user()["id"])
    return jsonify(enterprise_summary(enterprise)), 201


@bp.route("/enterprises/<int:enterprise_id>", methods=["GET"])
@role_required("admin")
def get_enterprise(enterprise_id):
    return jsonify(enterprise_summary(_enterprise_or_404(enterprise_id))), 200


@bp.route("/enterprises/<int:enterprise_id>", methods=["PATCH"])
@role_required("admin")
def update_enterprise(enterprise_id):
    _enterprise_or_404(enterprise_id)
    data = changes(parse_body(EnterpriseUpdate))
    storage = get_storage()

    course_ids = data.pop("course_ids", None)
    if course_ids is not None:
        for course_id in course_ids:
            approved_course_or_400(course_id)

    try:
        with storage.atomic():
            if data:
                storage.update_user(enterprise_id, data)
            if course_ids is not None:
                # course_ids replaces the whole assignment
                current = {a["course_id"] for a in storage.get_enterprise_course_accesses(enterprise_id)}
                for course_id in current - set(course_ids):
                    set_course_active(enterprise_id, course_id, False)
                for course_id in set(course_ids) - current:
                    set_course_active(enterprise_id, course_id, True)
    except DuplicateError:
        raise BadRequest("Email already exists")

    return jsonify(enterprise_summary(storage.get_user(enterprise_id))), 200


@bp.route("/enterprises/<int:enterprise_id>", methods=["DELETE"])
@role_required("admin")
def delete_enterprise(enterprise_id):
    _enterprise_or_404(enterprise_id)
    get_storage().delete_user(enterprise_id)
    current_app.logger.info("Enterprise %s deleted by admin %s", enterprise_id, load_user()["id"])
    return "", 204


@bp.route("/enterprises/<int:enterprise_id>/courses", methods=["POST"])
@role_required("admin")
def assign_courses(enterprise_id):
    enterprise = _enterprise_or_404(enterprise_id)
    payload = parse_body(EnterpriseCourseAssign)
    for course_id in payload.course_ids:
        approved_course_or_400(course_id)

    storage = get_storage()
    with storage.atomic():
        for course_id in payload.course_ids:
            set_course_active(enterprise_id, course_id, True)
    return jsonify(enterprise_summary(enterprise)), 200
