import copy
import threading
from contextlib import contextmanager
from datetime import datetime

from techformpro.errors import AlreadyEnrolledError, SessionFullError, DuplicateError
from techformpro.models import (
    User, Category, Course, CourseSession, Enrollment, CourseAccess,
    SubscriptionPlan, Payment, Notification, Setting, ApprovalRequest,
    EnterpriseCourseAccess, EnterpriseEmployeeCourseAccess,
    EmployeeCourseProgress, EmployeeSessionAttendance,
    BlogCategory, BlogPost, BlogComment,
)
from . import Storage, public_user, analytics_payload

MODELS = (
    User, Category, Course, CourseSession, Enrollment, CourseAccess,
    SubscriptionPlan, Payment, Notification, Setting, ApprovalRequest,
    EnterpriseCourseAccess, EnterpriseEmployeeCourseAccess,
    EmployeeCourseProgress, EmployeeSessionAttendance,
    BlogCategory, BlogPost, BlogComment,
)


def _copy(row):
    if row is None:
        return None
    return {k: list(v) if isinstance(v, list) else v for k, v in row.items()}


class MemoryStorage(Storage):
    """
    Dict-backed storage.

    Rows are shaped from the SQLAlchemy column definitions so both backends
    return identical keys and defaults. Writes that span several tables run
    under ``atomic()``, which holds a re-entrant lock and restores a snapshot
    if the block raises.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self._tables = {model.__tablename__: {} for model in MODELS}
        self._counters = {model.__tablename__: 1 for model in MODELS}

    # --- generic helpers ---

    def _table(self, model):
        return self._tables[model.__tablename__]

    def _insert(self, model, data):
        row = {}
        for column in model.__table__.columns:
            if column.primary_key:
                continue
            if column.name in data:
                row[column.name] = data[column.name]
            elif column.default is not None:
                default = column.default
                row[column.name] = default.arg(None) if default.is_callable else default.arg
            else:
                row[column.name] = None
        name = model.__tablename__
        row["id"] = self._counters[name]
        self._counters[name] += 1
        # keep column order identical to model.to_dict()
        row = {c.name: row[c.name] for c in model.__table__.columns}
        self._tables[name][row["id"]] = row
        return _copy(row)

    def _get(self, model, row_id):
        return _copy(self._table(model).get(row_id))

    def _rows(self, model, **filters):
        return [
            _copy(row) for row in self._table(model).values()
            if all(row.get(k) == v for k, v in filters.items())
        ]

    def _first(self, model, **filters):
        rows = self._rows(model, **filters)
        return rows[0] if rows else None

    def _update(self, model, row_id, data):
        row = self._table(model).get(row_id)
        if row is None:
            return None
        columns = {c.name: c for c in model.__table__.columns}
        for key, value in data.items():
            if key in columns and key != "id":
                row[key] = value
        for name, column in columns.items():
            if column.onupdate is not None and name not in data:
                row[name] = column.onupdate.arg(None)
        return _copy(row)

    def _delete(self, model, row_id):
        return self._table(model).pop(row_id, None) is not None

    def _delete_where(self, model, predicate):
        table = self._table(model)
        for row_id in [rid for rid, row in table.items() if predicate(row)]:
            del table[row_id]

    def _nullify(self, model, column, value):
        for row in self._table(model).values():
            if row[column] == value:
                row[column] = None

    def _check_unique(self, model, data, *columns, exclude_id=None, lower=False):
        for column in columns:
            value = data.get(column)
            if value is None:
                continue
            for row in self._table(model).values():
                if row["id"] == exclude_id:
                    continue
                existing = row[column]
                if lower and isinstance(existing, str) and isinstance(value, str):
                    if existing.lower() == value.lower():
                        raise DuplicateError(f"{model.__tablename__}.{column} already exists")
                elif existing == value:
                    raise DuplicateError(f"{model.__tablename__}.{column} already exists")

    @contextmanager
    def atomic(self):
        with self._lock:
            snapshot = None
            if self._depth == 0:
                snapshot = (copy.deepcopy(self._tables), dict(self._counters))
            self._depth += 1
            try:
                yield self
            except Exception:
                if snapshot is not None:
                    self._tables, self._counters = snapshot
                raise
            finally:
                self._depth -= 1

    # --- users ---

    def get_user(self, user_id):
        return self._get(User, user_id)

    def get_user_by_username(self, username):
        username = username.lower()
        return next((_copy(u) for u in self._table(User).values() if u["username"].lower() == username), None)

    def get_user_by_email(self, email):
        email = email.lower()
        return next((_copy(u) for u in self._table(User).values() if u["email"].lower() == email), None)

    def get_user_by_reset_token(self, token):
        return self._first(User, reset_token=token)

    def get_all_users(self, role=None):
        if role:
            return self._rows(User, role=role)
        return self._rows(User)

    def get_employees(self, enterprise_id):
        return self._rows(User, enterprise_id=enterprise_id)

    def create_user(self, data):
        with self._lock:
            self._check_unique(User, data, "username", "email", lower=True)
            return self._insert(User, data)

    def update_user(self, user_id, data):
        with self._lock:
            self._check_unique(User, data, "username", "email", exclude_id=user_id, lower=True)
            return self._update(User, user_id, data)

    def delete_user(self, user_id):
        if user_id not in self._table(User):
            return False
        with self.atomic():
            for course in self._rows(Course, trainer_id=user_id):
                self.delete_course(course["id"])

            self._delete_where(Enrollment, lambda r: r["user_id"] == user_id)
            self._delete_where(Notification, lambda r: r["user_id"] == user_id)
            self._delete_where(Payment, lambda r: r["user_id"] == user_id)
            self._nullify(Payment, "trainer_id", user_id)
            self._delete_where(CourseAccess, lambda r: r["user_id"] == user_id)
            self._delete_where(EnterpriseCourseAccess, lambda r: r["enterprise_id"] == user_id)
            self._delete_where(EnterpriseEmployeeCourseAccess, lambda r: r["employee_id"] == user_id)
            self._nullify(EnterpriseEmployeeCourseAccess, "assigned_by", user_id)
            self._delete_where(EmployeeCourseProgress, lambda r: r["employee_id"] == user_id)
            self._delete_where(EmployeeSessionAttendance, lambda r: r["employee_id"] == user_id)
            self._delete_where(ApprovalRequest, lambda r: r["requester_id"] == user_id)
            self._nullify(ApprovalRequest, "reviewer_id", user_id)

            for post in self._rows(BlogPost, author_id=user_id):
                self.delete_blog_post(post["id"])
            self._delete_comments(lambda r: r["user_id"] == user_id)

            self._nullify(User, "enterprise_id", user_id)
            self._delete(User, user_id)
        return True

    # --- categories ---

    def get_category(self, category_id):
        return self._get(Category, category_id)

    def get_category_by_slug(self, slug):
        return self._first(Category, slug=slug)

    def get_all_categories(self):
        return self._rows(Category)

    def create_category(self, data):
        with self._lock:
            self._check_unique(Category, data, "name", "slug")
            return self._insert(Category, data)

    # --- courses ---

    def get_course(self, course_id):
        return self._get(Course, course_id)

    def get_courses(self, trainer_id=None, category_id=None, approval_status=None):
        filters = {}
        if trainer_id is not None:
            filters["trainer_id"] = trainer_id
        if category_id is not None:
            filters["category_id"] = category_id
        if approval_status is not None:
            filters["approval_status"] = approval_status
        return self._rows(Course, **filters)

    def create_course(self, data):
        return self._insert(Course, data)

    def update_course(self, course_id, data):
        return self._update(Course, course_id, data)

    def delete_course(self, course_id):
        if course_id not in self._table(Course):
            return False
        with self.atomic():
            for session in self._rows(CourseSession, course_id=course_id):
                self.delete_session(session["id"])
            self._delete_where(CourseAccess, lambda r: r["course_id"] == course_id)
            self._delete_where(EnterpriseCourseAccess, lambda r: r["course_id"] == course_id)
            self._delete_where(EnterpriseEmployeeCourseAccess, lambda r: r["course_id"] == course_id)
            self._delete_where(EmployeeCourseProgress, lambda r: r["course_id"] == course_id)
            self._delete_where(
                ApprovalRequest, lambda r: r["type"] == "course" and r["item_id"] == course_id
            )
            self._nullify(Payment, "course_id", course_id)
            self._delete(Course, course_id)
        return True

    def _course_details(self, course):
        course["trainer"] = public_user(self._get(User, course["trainer_id"]))
        course["category"] = self._get(Category, course["category_id"])
        return course

    def get_course_with_details(self, course_id):
        course = self._get(Course, course_id)
        if course is None:
            return None
        return self._course_details(course)

    def get_courses_with_details(self, trainer_id=None, category_id=None, approval_status=None):
        courses = self.get_courses(trainer_id, category_id, approval_status)
        return [self._course_details(c) for c in courses]

    # --- sessions ---

    def get_session(self, session_id):
        return self._get(CourseSession, session_id)

    def create_session(self, data):
        return self._insert(CourseSession, data)

    def update_session(self, session_id, data):
        return self._update(CourseSession, session_id, data)

    def delete_session(self, session_id):
        if session_id not in self._table(CourseSession):
            return False
        with self.atomic():
            self._delete_where(Enrollment, lambda r: r["session_id"] == session_id)
            self._delete_where(EmployeeSessionAttendance, lambda r: r["session_id"] == session_id)
            self._delete_where(
                ApprovalRequest, lambda r: r["type"] == "session" and r["item_id"] == session_id
            )
            self._nullify(Payment, "session_id", session_id)
            self._delete(CourseSession, session_id)
        return True

    def _session_details(self, session):
        course = self._get(Course, session["course_id"])
        session["course"] = self._course_details(course) if course else None
        session["enrollment_count"] = self.count_enrollments(session["id"])
        return session

    def get_session_with_details(self, session_id):
        session = self._get(CourseSession, session_id)
        if session is None:
            return None
        return self._session_details(session)

    def get_sessions_with_details(self, upcoming=False, trainer_id=None, course_id=None,
                                  approved_only=False):
        now = datetime.utcnow()
        result = []
        for session in self._rows(CourseSession):
            course = self._table(Course).get(session["course_id"])
            if course is None:
                continue
            if upcoming and session["date"] <= now:
                continue
            if trainer_id is not None and course["trainer_id"] != trainer_id:
                continue
            if course_id is not None and session["course_id"] != course_id:
                continue
            if approved_only and course["approval_status"] != "approved":
                continue
            result.append(self._session_details(session))
        return sorted(result, key=lambda s: (s["date"], s["id"]))

    # --- enrollments ---

    def get_enrollment(self, user_id, session_id):
        return self._first(Enrollment, user_id=user_id, session_id=session_id)

    def get_enrollments_by_session(self, session_id):
        return self._rows(Enrollment, session_id=session_id)

    def get_enrollments_by_user(self, user_id):
        return self._rows(Enrollment, user_id=user_id)

    def get_all_enrollments(self):
        return self._rows(Enrollment)

    def count_enrollments(self, session_id):
        return sum(1 for r in self._table(Enrollment).values() if r["session_id"] == session_id)

    def enroll(self, user_id, session_id, capacity):
        with self.atomic():
            if self.get_enrollment(user_id, session_id):
                raise AlreadyEnrolledError("Already enrolled in this session")
            if capacity is not None and self.count_enrollments(session_id) >= capacity:
                raise SessionFullError("Session is full")
            return self._insert(Enrollment, {"user_id": user_id, "session_id": session_id})

    def delete_enrollment(self, enrollment_id):
        return self._delete(Enrollment, enrollment_id)

    # --- course access ---

    def get_course_access(self, user_id, course_id):
        return self._first(CourseAccess, user_id=user_id, course_id=course_id)

    def get_course_accesses(self, user_id):
        return self._rows(CourseAccess, user_id=user_id)

    def grant_course_access(self, user_id, course_id, payment_id=None):
        with self._lock:
            existing = self.get_course_access(user_id, course_id)
            if existing:
                return existing, False
            row = self._insert(CourseAccess, {
                "user_id": user_id, "course_id": course_id, "payment_id": payment_id
            })
            return row, True

    def revoke_course_access(self, user_id, course_id):
        existing = self.get_course_access(user_id, course_id)
        if not existing:
            return False
        return self._delete(CourseAccess, existing["id"])

    # --- subscription plans ---

    def get_plan(self, plan_id):
        return self._get(SubscriptionPlan, plan_id)

    def get_plans(self, active_only=False):
        if active_only:
            return self._rows(SubscriptionPlan, is_active=True)
        return self._rows(SubscriptionPlan)

    def create_plan(self, data):
        return self._insert(SubscriptionPlan, data)

    def update_plan(self, plan_id, data):
        return self._update(SubscriptionPlan, plan_id, data)

    # --- payments ---

    def get_payment(self, payment_id):
        return self._get(Payment, payment_id)

    def get_payments(self, status=None, user_id=None, trainer_id=None):
        filters = {}
        if status is not None:
            filters["status"] = status
        if user_id is not None:
            filters["user_id"] = user_id
        if trainer_id is not None:
            filters["trainer_id"] = trainer_id
        rows = self._rows(Payment, **filters)
        return sorted(rows, key=lambda p: (p["created_at"], p["id"]), reverse=True)

    def create_payment(self, data):
        return self._insert(Payment, data)

    def update_payment(self, payment_id, data):
        return self._update(Payment, payment_id, data)

    def _payment_details(self, payment):
        payment["user"] = public_user(self._get(User, payment["user_id"]))
        payment["trainer"] = public_user(self._get(User, payment["trainer_id"]))
        payment["course"] = self._get(Course, payment["course_id"])
        payment["plan"] = self._get(SubscriptionPlan, payment["plan_id"])
        return payment

    def get_payment_with_details(self, payment_id):
        payment = self._get(Payment, payment_id)
        if payment is None:
            return None
        return self._payment_details(payment)

    def get_payments_with_details(self, status=None):
        return [self._payment_details(p) for p in self.get_payments(status=status)]

    # --- notifications ---

    def create_notification(self, data):
        return self._insert(Notification, data)

    def get_notification(self, notification_id):
        return self._get(Notification, notification_id)

    def get_notifications_by_user(self, user_id):
        rows = self._rows(Notification, user_id=user_id)
        return sorted(rows, key=lambda n: (n["created_at"], n["id"]), reverse=True)

    def mark_notification_as_read(self, notification_id):
        return self._update(Notification, notification_id, {"is_read": True})

    def mark_all_notifications_as_read(self, user_id):
        changed = 0
        for row in self._table(Notification).values():
            if row["user_id"] == user_id and not row["is_read"]:
                row["is_read"] = True
                changed += 1
        return changed

    def delete_notification(self, notification_id):
        return self._delete(Notification, notification_id)

    # --- settings ---

    def get_setting(self, key):
        return self._first(Setting, key=key)

    def get_settings(self, type=None):
        if type:
            return self._rows(Setting, type=type)
        return self._rows(Setting)

    def upsert_setting(self, key, value, type="system"):
        with self._lock:
            existing = self.get_setting(key)
            if existing:
                return self._update(Setting, existing["id"], {"value": value, "type": type})
            return self._insert(Setting, {"key": key, "value": value, "type": type})

    # --- approval requests ---

    def create_approval_request(self, data):
        return self._insert(ApprovalRequest, data)

    def get_approval_request(self, request_id):
        return self._get(ApprovalRequest, request_id)

    def get_approval_requests(self, status=None, type=None):
        filters = {}
        if status is not None:
            filters["status"] = status
        if type is not None:
            filters["type"] = type
        rows = self._rows(ApprovalRequest, **filters)
        return sorted(rows, key=lambda r: (r["created_at"], r["id"]), reverse=True)

    def get_pending_approval_for_item(self, type, item_id):
        return self._first(ApprovalRequest, type=type, item_id=item_id, status="pending")

    def update_approval_request(self, request_id, data):
        return self._update(ApprovalRequest, request_id, data)

    # --- enterprise ---

    def get_enterprise_course_accesses(self, enterprise_id):
        return self._rows(EnterpriseCourseAccess, enterprise_id=enterprise_id)

    def has_enterprise_course_access(self, enterprise_id, course_id):
        return self._first(EnterpriseCourseAccess, enterprise_id=enterprise_id, course_id=course_id) is not None

    def set_enterprise_course_access(self, enterprise_id, course_id, active):
        with self._lock:
            existing = self._first(EnterpriseCourseAccess, enterprise_id=enterprise_id, course_id=course_id)
            if active and not existing:
                self._insert(EnterpriseCourseAccess, {"enterprise_id": enterprise_id, "course_id": course_id})
                return True
            if not active and existing:
                return self._delete(EnterpriseCourseAccess, existing["id"])
            return False

    def get_employee_course_accesses(self, employee_id=None, course_id=None):
        filters = {}
        if employee_id is not None:
            filters["employee_id"] = employee_id
        if course_id is not None:
            filters["course_id"] = course_id
        return self._rows(EnterpriseEmployeeCourseAccess, **filters)

    def get_employee_course_access(self, employee_id, course_id):
        return self._first(EnterpriseEmployeeCourseAccess, employee_id=employee_id, course_id=course_id)

    def grant_employee_course_access(self, employee_id, course_id, assigned_by=None):
        with self._lock:
            if self.get_employee_course_access(employee_id, course_id):
                raise DuplicateError("Employee already has access to this course")
            return self._insert(EnterpriseEmployeeCourseAccess, {
                "employee_id": employee_id, "course_id": course_id, "assigned_by": assigned_by
            })

    def revoke_employee_course_access(self, employee_id, course_id):
        existing = self.get_employee_course_access(employee_id, course_id)
        if not existing:
            return False
        return self._delete(EnterpriseEmployeeCourseAccess, existing["id"])

    def upsert_course_progress(self, employee_id, course_id, progress, time_spent_minutes=0):
        with self._lock:
            existing = self._first(EmployeeCourseProgress, employee_id=employee_id, course_id=course_id)
            if existing:
                return self._update(EmployeeCourseProgress, existing["id"], {
                    "progress": progress,
                    "time_spent_minutes": existing["time_spent_minutes"] + time_spent_minutes,
                })
            return self._insert(EmployeeCourseProgress, {
                "employee_id": employee_id,
                "course_id": course_id,
                "progress": progress,
                "time_spent_minutes": time_spent_minutes,
            })

    def get_course_progress(self, employee_id=None, course_id=None):
        filters = {}
        if employee_id is not None:
            filters["employee_id"] = employee_id
        if course_id is not None:
            filters["course_id"] = course_id
        return self._rows(EmployeeCourseProgress, **filters)

    def record_attendance(self, employee_id, session_id, attended, joined_at=None, left_at=None):
        with self._lock:
            values = {"attended": attended, "joined_at": joined_at, "left_at": left_at}
            existing = self._first(EmployeeSessionAttendance, employee_id=employee_id, session_id=session_id)
            if existing:
                return self._update(EmployeeSessionAttendance, existing["id"], values)
            return self._insert(EmployeeSessionAttendance, dict(values, employee_id=employee_id, session_id=session_id))

    def get_attendance(self, employee_id=None, session_id=None):
        filters = {}
        if employee_id is not None:
            filters["employee_id"] = employee_id
        if session_id is not None:
            filters["session_id"] = session_id
        return self._rows(EmployeeSessionAttendance, **filters)

    def get_enterprise_analytics(self, enterprise_id):
        employees = {u["id"]: u for u in self.get_employees(enterprise_id)}
        course_ids = {a["course_id"] for a in self.get_enterprise_course_accesses(enterprise_id)}
        total_sessions = sum(
            1 for s in self._table(CourseSession).values() if s["course_id"] in course_ids
        )

        progress = [p for p in self._table(EmployeeCourseProgress).values() if p["employee_id"] in employees]
        attendance = [a for a in self._table(EmployeeSessionAttendance).values() if a["employee_id"] in employees]

        by_category = {}
        for p in progress:
            course = self._table(Course).get(p["course_id"])
            category = self._table(Category).get(course["category_id"]) if course else None
            if category is None:
                continue
            by_category.setdefault(category["name"], []).append(p["progress"])

        by_month = {}
        for a in attendance:
            key = (a["created_at"].year, a["created_at"].month)
            by_month.setdefault(key, []).append(100 if a["attended"] else 0)

        minutes = {}
        for p in progress:
            minutes[p["employee_id"]] = minutes.get(p["employee_id"], 0) + p["time_spent_minutes"]

        return analytics_payload(
            total_employees=len(employees),
            active_courses=len(course_ids),
            total_sessions=total_sessions,
            avg_progress=_avg([p["progress"] for p in progress]),
            progress_by_category=[(name, _avg(values)) for name, values in by_category.items()],
            avg_attendance=_avg([100 if a["attended"] else 0 for a in attendance]),
            attendance_by_month=[(y, m, _avg(values)) for (y, m), values in by_month.items()],
            total_minutes=sum(minutes.values()),
            minutes_by_employee=[
                (eid, employees[eid]["display_name"], total) for eid, total in minutes.items()
            ],
        )

    # --- blog ---

    def get_blog_categories(self):
        return self._rows(BlogCategory)

    def get_blog_category(self, category_id):
        return self._get(BlogCategory, category_id)

    def create_blog_category(self, data):
        with self._lock:
            self._check_unique(BlogCategory, data, "name", "slug")
            return self._insert(BlogCategory, data)

    def get_blog_post(self, post_id):
        return self._get(BlogPost, post_id)

    def get_blog_post_by_slug(self, slug):
        return self._first(BlogPost, slug=slug)

    def get_blog_posts(self, status=None, author_id=None, category_id=None):
        filters = {}
        if status is not None:
            filters["status"] = status
        if author_id is not None:
            filters["author_id"] = author_id
        if category_id is not None:
            filters["category_id"] = category_id
        rows = self._rows(BlogPost, **filters)
        return sorted(rows, key=lambda p: (p["created_at"], p["id"]), reverse=True)

    def create_blog_post(self, data):
        with self._lock:
            self._check_unique(BlogPost, data, "slug")
            return self._insert(BlogPost, data)

    def update_blog_post(self, post_id, data):
        with self._lock:
            self._check_unique(BlogPost, data, "slug", exclude_id=post_id)
            return self._update(BlogPost, post_id, data)

    def delete_blog_post(self, post_id):
        if post_id not in self._table(BlogPost):
            return False
        with self.atomic():
            self._delete_comments(lambda r: r["post_id"] == post_id)
            self._delete(BlogPost, post_id)
        return True

    def _delete_comments(self, predicate):
        table = self._table(BlogComment)
        doomed = {rid for rid, row in table.items() if predicate(row)}
        # replies go with their parent
        while True:
            replies = {rid for rid, row in table.items() if row["parent_id"] in doomed and rid not in doomed}
            if not replies:
                break
            doomed |= replies
        for rid in doomed:
            del table[rid]

    def get_blog_post_with_details(self, post_id):
        post = self._get(BlogPost, post_id)
        if post is None:
            return None
        post["author"] = public_user(self._get(User, post["author_id"]))
        post["category"] = self._get(BlogCategory, post["category_id"])
        post["comment_count"] = len(self._rows(BlogComment, post_id=post_id, is_approved=True))
        return post

    def create_blog_comment(self, data):
        return self._insert(BlogComment, data)

    def get_blog_comment(self, comment_id):
        return self._get(BlogComment, comment_id)

    def get_blog_comments(self, post_id=None, approved=None):
        filters = {}
        if post_id is not None:
            filters["post_id"] = post_id
        if approved is not None:
            filters["is_approved"] = approved
        return self._rows(BlogComment, **filters)

    def update_blog_comment(self, comment_id, data):
        return self._update(BlogComment, comment_id, data)

    def delete_blog_comment(self, comment_id):
        if comment_id not in self._table(BlogComment):
            return False
        self._delete_comments(lambda r: r["id"] == comment_id)
        return True


def _avg(values):
    values = [v for v in values if v is not None]
    if not values:
        return None
    return sum(values) / len(values)

