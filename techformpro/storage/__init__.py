"""
Data-access layer.

Every route handler talks to a ``Storage``; two implementations share the
contract below:

* ``DatabaseStorage`` keeps rows in the relational schema through
  Flask-SQLAlchemy.
* ``MemoryStorage`` keeps rows in dicts and is used by tests and for demo
  runs without a database.

Rows cross the boundary as plain dicts keyed by column name. Lookups return
``None`` when nothing matches, updates return ``None`` for unknown ids and
deletes return a bool. Callers are expected to check parent references
(category, trainer, course ...) before creating rows.
"""
from abc import ABC, abstractmethod

from flask import current_app

PRIVATE_USER_FIELDS = ("password", "reset_token", "reset_token_expires_at")


def public_user(user):
    """Strip credentials from a user row before it leaves the API."""
    if user is None:
        return None
    return {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}


class Storage(ABC):

    # --- transactions ---
    @abstractmethod
    def atomic(self):
        """Context manager: writes inside commit together or not at all."""

    # --- users ---
    @abstractmethod
    def get_user(self, user_id): ...

    @abstractmethod
    def get_user_by_username(self, username): ...

    @abstractmethod
    def get_user_by_email(self, email): ...

    @abstractmethod
    def get_user_by_reset_token(self, token): ...

    @abstractmethod
    def get_all_users(self, role=None): ...

    @abstractmethod
    def get_employees(self, enterprise_id): ...

    @abstractmethod
    def create_user(self, data):
        """Raises DuplicateError when username or email is taken."""

    @abstractmethod
    def update_user(self, user_id, data): ...

    @abstractmethod
    def delete_user(self, user_id):
        """Removes the user with every dependent row, including the courses they train."""

    # --- categories ---
    @abstractmethod
    def get_category(self, category_id): ...

    @abstractmethod
    def get_category_by_slug(self, slug): ...

    @abstractmethod
    def get_all_categories(self): ...

    @abstractmethod
    def create_category(self, data): ...

    # --- courses ---
    @abstractmethod
    def get_course(self, course_id): ...

    @abstractmethod
    def get_courses(self, trainer_id=None, category_id=None, approval_status=None): ...

    @abstractmethod
    def create_course(self, data): ...

    @abstractmethod
    def update_course(self, course_id, data): ...

    @abstractmethod
    def delete_course(self, course_id): ...

    @abstractmethod
    def get_course_with_details(self, course_id):
        """Course row plus ``trainer`` and ``category`` sub-objects."""

    @abstractmethod
    def get_courses_with_details(self, trainer_id=None, category_id=None, approval_status=None): ...

    # --- sessions ---
    @abstractmethod
    def get_session(self, session_id): ...

    @abstractmethod
    def create_session(self, data): ...

    @abstractmethod
    def update_session(self, session_id, data): ...

    @abstractmethod
    def delete_session(self, session_id): ...

    @abstractmethod
    def get_session_with_details(self, session_id):
        """Session row plus ``course`` (with details) and ``enrollment_count``."""

    @abstractmethod
    def get_sessions_with_details(self, upcoming=False, trainer_id=None, course_id=None,
                                  approved_only=False): ...

    # --- enrollments ---
    @abstractmethod
    def get_enrollment(self, user_id, session_id): ...

    @abstractmethod
    def get_enrollments_by_session(self, session_id): ...

    @abstractmethod
    def get_enrollments_by_user(self, user_id): ...

    @abstractmethod
    def get_all_enrollments(self): ...

    @abstractmethod
    def count_enrollments(self, session_id): ...

    @abstractmethod
    def enroll(self, user_id, session_id, capacity):
        """
        Check capacity and insert in one transaction.

        Raises AlreadyEnrolledError if the pair exists and SessionFullError
        when ``capacity`` enrollments are already recorded.
        """

    @abstractmethod
    def delete_enrollment(self, enrollment_id): ...

    # --- course access ---
    @abstractmethod
    def get_course_access(self, user_id, course_id): ...

    @abstractmethod
    def get_course_accesses(self, user_id): ...

    @abstractmethod
    def grant_course_access(self, user_id, course_id, payment_id=None):
        """Idempotent. Returns (row, created)."""

    @abstractmethod
    def revoke_course_access(self, user_id, course_id): ...

    # --- subscription plans ---
    @abstractmethod
    def get_plan(self, plan_id): ...

    @abstractmethod
    def get_plans(self, active_only=False): ...

    @abstractmethod
    def create_plan(self, data): ...

    @abstractmethod
    def update_plan(self, plan_id, data): ...

    # --- payments ---
    @abstractmethod
    def get_payment(self, payment_id): ...

    @abstractmethod
    def get_payments(self, status=None, user_id=None, trainer_id=None): ...

    @abstractmethod
    def create_payment(self, data): ...

    @abstractmethod
    def update_payment(self, payment_id, data): ...

    @abstractmethod
    def get_payment_with_details(self, payment_id):
        """Payment row plus ``user``, ``trainer``, ``course`` and ``plan``."""

    @abstractmethod
    def get_payments_with_details(self, status=None): ...

    # --- notifications ---
    @abstractmethod
    def create_notification(self, data): ...

    @abstractmethod
    def get_notification(self, notification_id): ...

    @abstractmethod
    def get_notifications_by_user(self, user_id):
        """Newest first."""

    @abstractmethod
    def mark_notification_as_read(self, notification_id): ...

    @abstractmethod
    def mark_all_notifications_as_read(self, user_id):
        """Returns the number of rows changed."""

    @abstractmethod
    def delete_notification(self, notification_id): ...

    # --- settings ---
    @abstractmethod
    def get_setting(self, key): ...

    @abstractmethod
    def get_settings(self, type=None): ...

    @abstractmethod
    def upsert_setting(self, key, value, type="system"): ...

    # --- approval requests ---
    @abstractmethod
    def create_approval_request(self, data): ...

    @abstractmethod
    def get_approval_request(self, request_id): ...

    @abstractmethod
    def get_approval_requests(self, status=None, type=None): ...

    @abstractmethod
    def get_pending_approval_for_item(self, type, item_id): ...

    @abstractmethod
    def update_approval_request(self, request_id, data): ...

    # --- enterprise ---
    @abstractmethod
    def get_enterprise_course_accesses(self, enterprise_id): ...

    @abstractmethod
    def has_enterprise_course_access(self, enterprise_id, course_id): ...

    @abstractmethod
    def set_enterprise_course_access(self, enterprise_id, course_id, active):
        """Returns True when a row was added or removed."""

    @abstractmethod
    def get_employee_course_accesses(self, employee_id=None, course_id=None): ...

    @abstractmethod
    def get_employee_course_access(self, employee_id, course_id): ...

    @abstractmethod
    def grant_employee_course_access(self, employee_id, course_id, assigned_by=None):
        """Raises DuplicateError when the grant exists."""

    @abstractmethod
    def revoke_employee_course_access(self, employee_id, course_id): ...

    @abstractmethod
    def upsert_course_progress(self, employee_id, course_id, progress, time_spent_minutes=0): ...

    @abstractmethod
    def get_course_progress(self, employee_id=None, course_id=None): ...

    @abstractmethod
    def record_attendance(self, employee_id, session_id, attended, joined_at=None, left_at=None): ...

    @abstractmethod
    def get_attendance(self, employee_id=None, session_id=None): ...

    @abstractmethod
    def get_enterprise_analytics(self, enterprise_id):
        """Completion, attendance and time-spent aggregates over an enterprise's employees."""

    # --- blog ---
    @abstractmethod
    def get_blog_categories(self): ...

    @abstractmethod
    def get_blog_category(self, category_id): ...

    @abstractmethod
    def create_blog_category(self, data): ...

    @abstractmethod
    def get_blog_post(self, post_id): ...

    @abstractmethod
    def get_blog_post_by_slug(self, slug): ...

    @abstractmethod
    def get_blog_posts(self, status=None, author_id=None, category_id=None):
        """Newest first."""

    @abstractmethod
    def create_blog_post(self, data): ...

    @abstractmethod
    def update_blog_post(self, post_id, data): ...

    @abstractmethod
    def delete_blog_post(self, post_id): ...

    @abstractmethod
    def get_blog_post_with_details(self, post_id):
        """Post row plus ``author``, ``category`` and approved ``comment_count``."""

    @abstractmethod
    def create_blog_comment(self, data): ...

    @abstractmethod
    def get_blog_comment(self, comment_id): ...

    @abstractmethod
    def get_blog_comments(self, post_id=None, approved=None): ...

    @abstractmethod
    def update_blog_comment(self, comment_id, data): ...

    @abstractmethod
    def delete_blog_comment(self, comment_id): ...


def init_storage(app):
    backend = app.config.get("STORAGE_BACKEND", "database")
    if backend == "memory":
        from .memory import MemoryStorage
        storage = MemoryStorage()
    elif backend == "database":
        from .database import DatabaseStorage
        storage = DatabaseStorage()
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")

    app.extensions["storage"] = storage
    app.logger.info("Using %s storage backend", backend)
    return storage


def get_storage():
    return current_app.extensions["storage"]


def analytics_payload(total_employees, active_courses, total_sessions, avg_progress,
                      progress_by_category, avg_attendance, attendance_by_month,
                      total_minutes, minutes_by_employee):
    """Shape raw aggregates into the enterprise analytics payload."""
    by_category = sorted(
        ({"name": name, "percentage": round(float(avg or 0))} for name, avg in progress_by_category),
        key=lambda c: (-c["percentage"], c["name"])
    )
    by_month = sorted(
        ({"month": f"{int(y):04d}-{int(m):02d}", "percentage": round(float(avg or 0))}
         for y, m, avg in attendance_by_month),
        key=lambda m: m["month"]
    )
    by_employee = sorted(
        ({"employee_id": eid, "name": name, "hours": round(int(total or 0) / 60, 1)}
         for eid, name, total in minutes_by_employee),
        key=lambda e: (-e["hours"], e["employee_id"])
    )[:10]
    return {
        "total_employees": total_employees,
        "active_courses": active_courses,
        "total_sessions": total_sessions,
        "completion": {
            "overall": round(float(avg_progress or 0)),
            "by_category": by_category,
        },
        "attendance": {
            "overall": round(float(avg_attendance or 0)),
            "by_month": by_month,
        },
        "time_spent": {
            "total_hours": round(int(total_minutes or 0) / 60, 1),
            "by_employee": by_employee,
        },
    }
