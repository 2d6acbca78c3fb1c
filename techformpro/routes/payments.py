from flask import Blueprint, jsonify, request, current_app
from flask_jwt_extended import jwt_required

from techformpro.errors import BadRequest, NotFound
from techformpro.helpers.payment import apply_payment_status, split_amount
from techformpro.models.payment import PAYMENT_STATUSES
from techformpro.schemas import parse_body, PaymentCreate, PaymentStatusUpdate
from techformpro.storage import get_storage
from techformpro.utils.auth import role_required, load_user

bp = Blueprint("payments", __name__, url_prefix="/api")


def _purchase_target(payload, user):
    """Resolve what is being bought. Returns the payment fields derived from it."""
    storage = get_storage()

    if payload.type == "subscription":
        plan = storage.get_plan(payload.plan_id)
        if not plan or not plan["is_active"]:
            raise NotFound("Subscription plan not found")
        return {"plan_id": plan["id"], "amount": plan["price"]}

    if payload.type == "session":
        session = storage.get_session(payload.session_id)
        if not session:
            raise NotFound("Session not found")
        course_id = session["course_id"]
    else:
        course_id = payload.course_id

    course = storage.get_course(course_id)
    if not course or course["approval_status"] != "approved":
        raise NotFound("Course not found")
    if course["price"] == 0:
        raise BadRequest("This course is free")
    if storage.get_course_access(user["id"], course["id"]):
        raise BadRequest("You already own this course")
    return {
        "course_id": course["id"],
        "session_id": payload.session_id if payload.type == "session" else None,
        "trainer_id": course["trainer_id"],
        "amount": course["price"],
    }


@bp.route("/payments", methods=["POST"])
@jwt_required()
def create_payment():
    user = load_user()
    payload = parse_body(PaymentCreate)

    data = _purchase_target(payload, user)
    platform_fee, trainer_share = split_amount(data["amount"], payload.type)
    data.update(
        user_id=user["id"],
        type=payload.type,
        payment_method=payload.payment_method,
        status="pending",
        platform_fee=platform_fee,
        trainer_share=trainer_share,
    )

    payment = get_storage().create_payment(data)
    current_app.logger.info("Payment %s created by user %s (%s)", payment["id"], user["id"], payload.type)
    return jsonify(payment), 201


@bp.route("/admin/payments", methods=["GET"])
@role_required("admin")
def list_payments():
    status = request.args.get("status")
    if status and status not in PAYMENT_STATUSES:
        raise BadRequest(f"status must be one of {', '.join(PAYMENT_STATUSES)}")
    return jsonify(get_storage().get_payments_with_details(status=status or None)), 200


@bp.route("/admin/payments/<int:payment_id>", methods=["GET"])
@role_required("admin")
def get_payment(payment_id):
    payment = get_storage().get_payment_with_details(payment_id)
    if not payment:
        raise NotFound("Payment not found")
    return jsonify(payment), 200


@bp.route("/admin/payments/<int:payment_id>/approve", methods=["POST"])
@role_required("admin")
def approve_payment(payment_id):
    admin = load_user()
    apply_payment_status(payment_id, "approved", admin["id"])
    return jsonify(get_storage().get_payment_with_details(payment_id)), 200


@bp.route("/admin/payments/<int:payment_id>", methods=["PATCH"])
@role_required("admin")
def update_payment_status(payment_id):
    admin = load_user()
    payload = parse_body(PaymentStatusUpdate)
    apply_payment_status(payment_id, payload.status, admin["id"])
    return jsonify(get_storage().get_payment_with_details(payment_id)), 200
