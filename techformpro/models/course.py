from techformpro.extensions import db
from techformpro.models.base import Serializable
from datetime import datetime

LEVELS = ("beginner", "intermediate", "advanced")
APPROVAL_STATUSES = ("pending", "approved", "rejected")


class Category(Serializable, db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    slug = db.Column(db.String(150), unique=True, nullable=False)


class Course(Serializable, db.Model):
    __tablename__ = "courses"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    level = db.Column(db.Enum(*LEVELS, name="course_level"), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False)
    trainer_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    duration = db.Column(db.Integer, nullable=False)  # minutes
    max_students = db.Column(db.Integer, nullable=False)
    approval_status = db.Column(
        db.Enum(*APPROVAL_STATUSES, name="approval_status"),
        nullable=False,
        default="pending"
    )
    price = db.Column(db.Integer, nullable=False, default=0)  # cents
    thumbnail = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    trainer = db.relationship("User")
    category = db.relationship("Category")

    def __repr__(self):
        return f"<Course {self.title}>"


class CourseSession(Serializable, db.Model):
    """A scheduled live occurrence of a course."""

    __tablename__ = "sessions"

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(
        db.Integer,
        db.ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False
    )
    date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=True)
    zoom_link = db.Column(db.String(500), nullable=False)
    recording_link = db.Column(db.String(500), nullable=True)
    max_participants = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    course = db.relationship("Course")
