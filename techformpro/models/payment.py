from techformpro.extensions import db
from techformpro.models.base import Serializable
from datetime import datetime

PAYMENT_TYPES = ("subscription", "course", "session")
PAYMENT_STATUSES = ("pending", "approved", "rejected", "refunded")
PLAN_TYPES = ("monthly", "annual", "business")


class SubscriptionPlan(Serializable, db.Model):
    __tablename__ = "subscription_plans"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    plan_type = db.Column(db.Enum(*PLAN_TYPES, name="plan_type"), nullable=False)
    price = db.Column(db.Integer, nullable=False)  # cents
    duration_days = db.Column(db.Integer, nullable=False)
    features = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Payment(Serializable, db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount = db.Column(db.Integer, nullable=False)  # cents
    type = db.Column(db.Enum(*PAYMENT_TYPES, name="payment_type"), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
    session_id = db.Column(db.Integer, db.ForeignKey("sessions.id", ondelete="SET NULL"), nullable=True)
    trainer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("subscription_plans.id"), nullable=True)
    status = db.Column(db.Enum(*PAYMENT_STATUSES, name="payment_status"), nullable=False, default="pending")
    payment_method = db.Column(db.String(50), nullable=True)
    platform_fee = db.Column(db.Integer, nullable=False, default=0)
    trainer_share = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", foreign_keys=[user_id])
    trainer = db.relationship("User", foreign_keys=[trainer_id])
    course = db.relationship("Course")
