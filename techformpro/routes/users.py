from flask import Blueprint, jsonify, request, current_app
from werkzeug.security import generate_password_hash

from techformpro.errors import BadRequest, NotFound, DuplicateError
from techformpro.schemas import parse_body, AdminUserCreate, RoleUpdate, SubscriptionUpdate
from techformpro.storage import get_storage, public_user
from techformpro.utils.auth import role_required, owner_or_admin, load_user

bp = Blueprint("users", __name__, url_prefix="/api")


def _get_user_or_404(user_id):
    user = get_storage().get_user(user_id)
    if not user:
        raise NotFound("User not found")
    return user


@bp.route("/admin/users", methods=["GET"])
@role_required("admin")
def list_users():
    role = request.args.get("role")
    users = get_storage().get_all_users(role=role)
    return jsonify([public_user(u) for u in users]), 200


@bp.route("/admin/users", methods=["POST"])
@role_required("admin")
def create_user():
    payload = parse_body(AdminUserCreate)
    storage = get_storage()

    if payload.enterprise_id is not None:
        enterprise = storage.get_user(payload.enterprise_id)
        if not enterprise or enterprise["role"] != "enterprise":
            raise BadRequest("enterprise_id must reference an enterprise account")

    data = payload.model_dump()
    data["password"] = generate_password_hash(payload.password)
    try:
        user = storage.create_user(data)
    except DuplicateError:
        raise BadRequest("Username or email already exists")
    return jsonify(public_user(user)), 201


@bp.route("/admin/users/<int:user_id>", methods=["GET"])
@role_required("admin")
def get_user(user_id):
    return jsonify(public_user(_get_user_or_404(user_id))), 200


@bp.route("/admin/users/<int:user_id>", methods=["DELETE"])
@role_required("admin")
def delete_user(user_id):
    admin = load_user()
    if admin["id"] == user_id:
        raise BadRequest("You cannot delete your own account")

    if not get_storage().delete_user(user_id):
        raise NotFound("User not found")

    current_app.logger.info("User %s deleted by admin %s", user_id, admin["id"])
    return "", 204


@bp.route("/admin/users/<int:user_id>/role", methods=["PATCH"])
@role_required("admin")
def update_role(user_id):
    _get_user_or_404(user_id)
    payload = parse_body(RoleUpdate)
    user = get_storage().update_user(user_id, {"role": payload.role})
    return jsonify(public_user(user)), 200


@bp.route("/admin/users/<int:user_id>/subscription", methods=["PATCH"])
@role_required("admin")
def update_subscription(user_id):
    _get_user_or_404(user_id)
    payload = parse_body(SubscriptionUpdate)

    data = payload.model_dump()
    if not payload.is_subscribed:
        data.update(subscription_type=None, subscription_end_date=None)
    elif payload.subscription_type is None:
        raise BadRequest("subscription_type is required when activating a subscription")

    user = get_storage().update_user(user_id, data)
    return jsonify(public_user(user)), 200


@bp.route("/users/<int:user_id>/enrollments", methods=["GET"])
@owner_or_admin("user_id")
def user_enrollments(user_id):
    _get_user_or_404(user_id)
    storage = get_storage()

    result = []
    for enrollment in storage.get_enrollments_by_user(user_id):
        enrollment["session"] = storage.get_session_with_details(enrollment["session_id"])
        result.append(enrollment)
    return jsonify(result), 200


@bp.route("/users/<int:user_id>/payments", methods=["GET"])
@owner_or_admin("user_id")
def user_payments(user_id):
    _get_user_or_404(user_id)
    return jsonify(get_storage().get_payments(user_id=user_id)), 200
