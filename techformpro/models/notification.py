from techformpro.extensions import db
from techformpro.models.base import Serializable
from datetime import datetime

SETTING_TYPES = ("api", "system", "email", "pricing")
APPROVAL_TYPES = ("course", "session", "post")


class Notification(Serializable, db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(50), nullable=False)  # confirmation, cancellation, approval, payment ...
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Setting(Serializable, db.Model):
    __tablename__ = "settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(120), unique=True, nullable=False)
    value = db.Column(db.Text, nullable=True)
    type = db.Column(db.Enum(*SETTING_TYPES, name="setting_type"), nullable=False, default="system")
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ApprovalRequest(Serializable, db.Model):
    __tablename__ = "approval_requests"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.Enum(*APPROVAL_TYPES, name="approval_type"), nullable=False)
    item_id = db.Column(db.Integer, nullable=False)
    requester_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = db.Column(
        db.Enum("pending", "approved", "rejected", name="approval_request_status"),
        nullable=False,
        default="pending"
    )
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
