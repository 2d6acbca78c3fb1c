from flask import Blueprint, jsonify, request

from techformpro.errors import NotFound
from techformpro.helpers.approval import decide_request
from techformpro.schemas import parse_body, ApproveIn, RejectIn
from techformpro.storage import get_storage, public_user
from techformpro.utils.auth import role_required, load_user

bp = Blueprint("approvals", __name__, url_prefix="/api/admin")


def _with_details(approval):
    storage = get_storage()
    approval["requester"] = public_user(storage.get_user(approval["requester_id"]))
    if approval["type"] == "course":
        approval["item"] = storage.get_course(approval["item_id"])
    elif approval["type"] == "session":
        approval["item"] = storage.get_session(approval["item_id"])
    else:
        approval["item"] = storage.get_blog_post(approval["item_id"])
    return approval


@bp.route("/approvals", methods=["GET"])
@role_required("admin")
def list_approvals():
    approvals = get_storage().get_approval_requests(
        status=request.args.get("status") or None,
        type=request.args.get("type") or None,
    )
    return jsonify([_with_details(a) for a in approvals]), 200


@bp.route("/approvals/<int:request_id>", methods=["GET"])
@role_required("admin")
def get_approval(request_id):
    approval = get_storage().get_approval_request(request_id)
    if not approval:
        raise NotFound("Approval request not found")
    return jsonify(_with_details(approval)), 200


@bp.route("/approvals/<int:request_id>/approve", methods=["POST"])
@role_required("admin")
def approve(request_id):
    admin = load_user()
    payload = parse_body(ApproveIn)
    approval = decide_request(request_id, "approved", admin["id"], payload.notes)
    return jsonify(_with_details(approval)), 200


@bp.route("/approvals/<int:request_id>/reject", methods=["POST"])
@role_required("admin")
def reject(request_id):
    admin = load_user()
    payload = parse_body(RejectIn)
    approval = decide_request(request_id, "rejected", admin["id"], payload.notes)
    return jsonify(_with_details(approval)), 200
