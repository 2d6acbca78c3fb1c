from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required

from techformpro.errors import BadRequest, NotFound
from techformpro.helpers.subscription import subscription_status, has_active_subscription
from techformpro.schemas import parse_body, changes, PlanCreate, PlanUpdate
from techformpro.storage import get_storage
from techformpro.utils.auth import role_required, load_user
from techformpro.utils.notify import notify

bp = Blueprint("subscriptions", __name__, url_prefix="/api")


@bp.route("/subscription-plans", methods=["GET"])
def active_plans():
    return jsonify(get_storage().get_plans(active_only=True)), 200


@bp.route("/subscription", methods=["GET"])
@jwt_required()
def my_subscription():
    return jsonify(subscription_status(load_user())), 200


@bp.route("/subscription", methods=["DELETE"])
@jwt_required()
def cancel_subscription():
    user = load_user()
    if not has_active_subscription(user):
        raise BadRequest("No active subscription")

    storage = get_storage()
    with storage.atomic():
        storage.update_user(user["id"], {
            "is_subscribed": False,
            "subscription_type": None,
            "subscription_end_date": None,
        })
        notify(user["id"], "Your subscription has been cancelled.", "subscription")

    current_app.logger.info("User %s cancelled their subscription", user["id"])
    return "", 204


@bp.route("/admin/subscription-plans", methods=["GET"])
@role_required("admin")
def all_plans():
    return jsonify(get_storage().get_plans()), 200


@bp.route("/admin/subscription-plans", methods=["POST"])
@role_required("admin")
def create_plan():
    payload = parse_body(PlanCreate)
    return jsonify(get_storage().create_plan(payload.model_dump())), 201


@bp.route("/admin/subscription-plans/<int:plan_id>", methods=["PATCH"])
@role_required("admin")
def update_plan(plan_id):
    data = changes(parse_body(PlanUpdate))
    if not data:
        raise BadRequest("No fields to update")
    plan = get_storage().update_plan(plan_id, data)
    if not plan:
        raise NotFound("Subscription plan not found")
    return jsonify(plan), 200
