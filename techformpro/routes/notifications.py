from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required

from techformpro.errors import NotFound
from techformpro.schemas import parse_body, NotificationBroadcast
from techformpro.storage import get_storage
from techformpro.utils.auth import role_required, load_user
from techformpro.utils.notify import notify

bp = Blueprint("notifications", __name__, url_prefix="/api")


def _own_notification(notification_id, user):
    notification = get_storage().get_notification(notification_id)
    # Someone else's notification looks the same as a missing one
    if not notification or notification["user_id"] != user["id"]:
        raise NotFound("Notification not found")
    return notification


@bp.route("/notifications", methods=["GET"])
@jwt_required()
def list_notifications():
    user = load_user()
    return jsonify(get_storage().get_notifications_by_user(user["id"])), 200


@bp.route("/notifications/<int:notification_id>/read", methods=["PATCH"])
@jwt_required()
def mark_read(notification_id):
    user = load_user()
    _own_notification(notification_id, user)
    return jsonify(get_storage().mark_notification_as_read(notification_id)), 200


@bp.route("/notifications/read-all", methods=["POST"])
@jwt_required()
def mark_all_read():
    user = load_user()
    updated = get_storage().mark_all_notifications_as_read(user["id"])
    return jsonify({"updated": updated}), 200


@bp.route("/notifications/<int:notification_id>", methods=["DELETE"])
@jwt_required()
def delete_notification(notification_id):
    user = load_user()
    _own_notification(notification_id, user)
    get_storage().delete_notification(notification_id)
    return "", 204


@bp.route("/admin/notifications", methods=["POST"])
@role_required("admin")
def broadcast():
    payload = parse_body(NotificationBroadcast)
    storage = get_storage()

    if payload.user_id is not None:
        if not storage.get_user(payload.user_id):
            raise NotFound("User not found")
        recipients = [payload.user_id]
    else:
        recipients = [u["id"] for u in storage.get_all_users(role=payload.role)]

    with storage.atomic():
        for user_id in recipients:
            notify(user_id, payload.message, payload.type)

    current_app.logger.info("Broadcast %r sent to %d users", payload.type, len(recipients))
    return jsonify({"sent": len(recipients)}), 201
