from techformpro.extensions import db
from techformpro.models.base import Serializable
from datetime import datetime

ROLES = ("student", "trainer", "admin", "enterprise", "enterprise_admin")
SUBSCRIPTION_TYPES = ("monthly", "annual", "business")


class User(Serializable, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password = db.Column(db.String(256), nullable=False)
    display_name = db.Column(db.String(120), nullable=False)
    role = db.Column(db.Enum(*ROLES, name="role"), nullable=False, default="student")

    # Subscription
    is_subscribed = db.Column(db.Boolean, nullable=False, default=False)
    subscription_type = db.Column(db.Enum(*SUBSCRIPTION_TYPES, name="subscription_type"), nullable=True)
    subscription_end_date = db.Column(db.DateTime, nullable=True)

    # Employees point at the enterprise account that provisioned them
    enterprise_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    phone_number = db.Column(db.String(50), nullable=True)

    reset_token = db.Column(db.String(64), nullable=True, index=True)
    reset_token_expires_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    enterprise = db.relationship("User", remote_side=[id], backref="employees")

    def __repr__(self):
        return f"<User {self.username}>"
