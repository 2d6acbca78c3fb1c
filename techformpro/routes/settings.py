from flask import Blueprint, jsonify, request

from techformpro.errors import BadRequest
from techformpro.models.notification import SETTING_TYPES
from techformpro.schemas import parse_body, SettingUpdate
from techformpro.storage import get_storage
from techformpro.utils.auth import role_required

bp = Blueprint("settings", __name__, url_prefix="/api/admin")


@bp.route("/settings", methods=["GET"])
@role_required("admin")
def list_settings():
    type = request.args.get("type")
    if type and type not in SETTING_TYPES:
        raise BadRequest(f"type must be one of {', '.join(SETTING_TYPES)}")
    return jsonify(get_storage().get_settings(type=type or None)), 200


@bp.route("/settings/<key>", methods=["PUT"])
@role_required("admin")
def put_setting(key):
    payload = parse_body(SettingUpdate)

    if key == "platform_fee_percentage":
        try:
            value = int(payload.value)
        except (TypeError, ValueError):
            raise BadRequest("platform_fee_percentage must be an integer")
        if not 0 <= value <= 100:
            raise BadRequest("platform_fee_percentage must be between 0 and 100")

    return jsonify(get_storage().upsert_setting(key, payload.value, payload.type)), 200
