from flask import current_app

from techformpro.errors import BadRequest, NotFound
from techformpro.helpers.subscription import compute_end_date
from techformpro.storage import get_storage
from techformpro.utils.notify import notify

TRANSITIONS = {
    "pending": ("approved", "rejected"),
    "approved": ("rejected", "refunded"),
}


def platform_fee_percentage():
    setting = get_storage().get_setting("platform_fee_percentage")
    if setting and setting["value"] not in (None, ""):
        try:
            return int(setting["value"])
        except ValueError:
            current_app.logger.warning("Invalid platform_fee_percentage setting: %r", setting["value"])
    return current_app.config.get("PLATFORM_FEE_PERCENTAGE", 15)


def split_amount(amount, payment_type):
    """Return (platform_fee, trainer_share) in cents."""
    if payment_type == "subscription":
        return amount, 0
    fee = amount * platform_fee_percentage() // 100
    return fee, amount - fee


def _course_id(payment):
    if payment["course_id"]:
        return payment["course_id"]
    if payment["session_id"]:
        session = get_storage().get_session(payment["session_id"])
        if session:
            return session["course_id"]
    return None


def _grant(payment):
    storage = get_storage()
    if payment["type"] == "subscription":
        plan = storage.get_plan(payment["plan_id"]) if payment["plan_id"] else None
        if plan is None:
            raise BadRequest("Payment has no subscription plan")
        user = storage.get_user(payment["user_id"])
        storage.update_user(user["id"], {
            "is_subscribed": True,
            "subscription_type": plan["plan_type"],
            "subscription_end_date": compute_end_date(plan, user["subscription_end_date"]),
        })
        return

    course_id = _course_id(payment)
    if course_id is None:
        raise BadRequest("Payment is not linked to a course")
    storage.grant_course_access(payment["user_id"], course_id, payment["id"])


def _revoke(payment):
    storage = get_storage()
    if payment["type"] == "subscription":
        storage.update_user(payment["user_id"], {
            "is_subscribed": False,
            "subscription_type": None,
            "subscription_end_date": None,
        })
        return

    course_id = _course_id(payment)
    if course_id is None:
        return
    # the payment is no longer approved here; another approved one keeps the grant
    covering = next((
        p for p in storage.get_payments(status="approved", user_id=payment["user_id"])
        if p["type"] != "subscription" and _course_id(p) == course_id
    ), None)
    storage.revoke_course_access(payment["user_id"], course_id)
    if covering is not None:
        storage.grant_course_access(payment["user_id"], course_id, covering["id"])


def apply_payment_status(payment_id, status, actor_id=None):
    """
    Move a payment to ``status`` and apply its side effects in one
    transaction: approval grants access or activates the subscription,
    leaving ``approved`` takes it back, and the payer is notified.
    """
    storage = get_storage()
    payment = storage.get_payment(payment_id)
    if payment is None:
        raise NotFound("Payment not found")

    current = payment["status"]
    if status not in TRANSITIONS.get(current, ()):
        raise BadRequest(f"Cannot change payment status from {current} to {status}")

    with storage.atomic():
        updated = storage.update_payment(payment_id, {"status": status})
        if status == "approved":
            _grant(payment)
        elif current == "approved":
            _revoke(payment)
        notify(
            payment["user_id"],
            f"Your payment #{payment_id} of {payment['amount'] / 100:.2f} EUR is now {status}.",
            "payment",
        )

    current_app.logger.info(
        "Payment %s moved from %s to %s by user %s", payment_id, current, status, actor_id
    )
    return updated
