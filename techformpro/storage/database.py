import threading
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import func, case, extract, select
from sqlalchemy.exc import IntegrityError

from techformpro.extensions import db
from techformpro.errors import AlreadyEnrolledError, SessionFullError, DuplicateError
from techformpro.models import (
    User, Category, Course, CourseSession, Enrollment, CourseAccess,
    SubscriptionPlan, Payment, Notification, Setting, ApprovalRequest,
    EnterpriseCourseAccess, EnterpriseEmployeeCourseAccess,
    EmployeeCourseProgress, EmployeeSessionAttendance,
    BlogCategory, BlogPost, BlogComment,
)
from . import Storage, public_user, analytics_payload


def _columns(model, data):
    names = model.__table__.columns.keys()
    return {k: v for k, v in data.items() if k in names and k != "id"}


def _dict(obj):
    return obj.to_dict() if obj is not None else None


class DatabaseStorage(Storage):
    """Storage backed by Flask-SQLAlchemy's scoped session."""

    def __init__(self):
        self._state = threading.local()

    @property
    def _depth(self):
        return getattr(self._state, "depth", 0)

    @contextmanager
    def atomic(self):
        depth = self._depth
        self._state.depth = depth + 1
        try:
            yield self
            if depth == 0:
                db.session.commit()
        except Exception:
            if depth == 0:
                db.session.rollback()
            raise
        finally:
            self._state.depth = depth

    def _commit(self):
        # inside atomic() the outermost block commits
        try:
            if self._depth:
                db.session.flush()
            else:
                db.session.commit()
        except IntegrityError as e:
            if not self._depth:
                db.session.rollback()
            raise DuplicateError(str(e.orig)) from e

    # --- generic helpers ---

    def _create(self, model, data):
        obj = model(**_columns(model, data))
        db.session.add(obj)
        self._commit()
        return obj.to_dict()

    def _get(self, model, row_id):
        if row_id is None:
            return None
        return _dict(db.session.get(model, row_id))

    def _update(self, model, row_id, data):
        obj = db.session.get(model, row_id)
        if obj is None:
            return None
        for key, value in _columns(model, data).items():
            setattr(obj, key, value)
        self._commit()
        return obj.to_dict()

    def _delete(self, model, row_id):
        obj = db.session.get(model, row_id)
        if obj is None:
            return False
        db.session.delete(obj)
        self._commit()
        return True

    @staticmethod
    def _all(query):
        return [obj.to_dict() for obj in query.all()]

    # --- users ---

    def get_user(self, user_id):
        return self._get(User, user_id)

    def get_user_by_username(self, username):
        return _dict(User.query.filter(func.lower(User.username) == username.lower()).first())

    def get_user_by_email(self, email):
        return _dict(User.query.filter(func.lower(User.email) == email.lower()).first())

    def get_user_by_reset_token(self, token):
        return _dict(User.query.filter_by(reset_token=token).first())

    def get_all_users(self, role=None):
        query = User.query
        if role:
            query = query.filter_by(role=role)
        return self._all(query.order_by(User.id))

    def get_employees(self, enterprise_id):
        return self._all(User.query.filter_by(enterprise_id=enterprise_id).order_by(User.id))

    def _check_user_unique(self, data, exclude_id=None):
        for field in ("username", "email"):
            value = data.get(field)
            if value is None:
                continue
            column = getattr(User, field)
            query = User.query.filter(func.lower(column) == value.lower())
            if exclude_id is not None:
                query = query.filter(User.id != exclude_id)
            if query.first():
                raise DuplicateError(f"users.{field} already exists")

    def create_user(self, data):
        self._check_user_unique(data)
        return self._create(User, data)

    def update_user(self, user_id, data):
        self._check_user_unique(data, exclude_id=user_id)
        return self._update(User, user_id, data)

    def delete_user(self, user_id):
        if db.session.get(User, user_id) is None:
            return False
        with self.atomic():
            for course in Course.query.filter_by(trainer_id=user_id).all():
                self.delete_course(course.id)

            Enrollment.query.filter_by(user_id=user_id).delete()
            Notification.query.filter_by(user_id=user_id).delete()
            CourseAccess.query.filter_by(user_id=user_id).delete()
            Payment.query.filter_by(user_id=user_id).delete()
            Payment.query.filter_by(trainer_id=user_id).update({Payment.trainer_id: None})
            EnterpriseCourseAccess.query.filter_by(enterprise_id=user_id).delete()
            EnterpriseEmployeeCourseAccess.query.filter_by(employee_id=user_id).delete()
            EnterpriseEmployeeCourseAccess.query.filter_by(assigned_by=user_id).update(
                {EnterpriseEmployeeCourseAccess.assigned_by: None}
            )
            EmployeeCourseProgress.query.filter_by(employee_id=user_id).delete()
            EmployeeSessionAttendance.query.filter_by(employee_id=user_id).delete()
            ApprovalRequest.query.filter_by(requester_id=user_id).delete()
            ApprovalRequest.query.filter_by(reviewer_id=user_id).update({ApprovalRequest.reviewer_id: None})

            for post in BlogPost.query.filter_by(author_id=user_id).all():
                self.delete_blog_post(post.id)
            self._delete_comments(BlogComment.user_id == user_id)

            # Detach employees rather than deleting them
            User.query.filter_by(enterprise_id=user_id).update({User.enterprise_id: None})
            User.query.filter_by(id=user_id).delete()
            self._commit()
        return True

    # --- categories ---

    def get_category(self, category_id):
        return self._get(Category, category_id)

    def get_category_by_slug(self, slug):
        return _dict(Category.query.filter_by(slug=slug).first())

    def get_all_categories(self):
        return self._all(Category.query.order_by(Category.id))

    def create_category(self, data):
        return self._create(Category, data)

    # --- courses ---

    @staticmethod
    def _course_query(trainer_id=None, category_id=None, approval_status=None):
        query = Course.query
        if trainer_id is not None:
            query = query.filter_by(trainer_id=trainer_id)
        if category_id is not None:
            query = query.filter_by(category_id=category_id)
        if approval_status is not None:
            query = query.filter_by(approval_status=approval_status)
        return query.order_by(Course.id)

    def get_course(self, course_id):
        return self._get(Course, course_id)

    def get_courses(self, trainer_id=None, category_id=None, approval_status=None):
        return self._all(self._course_query(trainer_id, category_id, approval_status))

    def create_course(self, data):
        return self._create(Course, data)

    def update_course(self, course_id, data):
        return self._update(Course, course_id, data)

    def delete_course(self, course_id):
        if db.session.get(Course, course_id) is None:
            return False
        with self.atomic():
            for session in CourseSession.query.filter_by(course_id=course_id).all():
                self.delete_session(session.id)
            CourseAccess.query.filter_by(course_id=course_id).delete()
            EnterpriseCourseAccess.query.filter_by(course_id=course_id).delete()
            EnterpriseEmployeeCourseAccess.query.filter_by(course_id=course_id).delete()
            EmployeeCourseProgress.query.filter_by(course_id=course_id).delete()
            ApprovalRequest.query.filter_by(type="course", item_id=course_id).delete()
            Payment.query.filter_by(course_id=course_id).update({Payment.course_id: None})
            Course.query.filter_by(id=course_id).delete()
            self._commit()
        return True

    @staticmethod
    def _course_details(course):
        row = course.to_dict()
        row["trainer"] = public_user(_dict(course.trainer))
        row["category"] = _dict(course.category)
        return row

    def get_course_with_details(self, course_id):
        course = db.session.get(Course, course_id)
        if course is None:
            return None
        return self._course_details(course)

    def get_courses_with_details(self, trainer_id=None, category_id=None, approval_status=None):
        query = self._course_query(trainer_id, category_id, approval_status)
        return [self._course_details(c) for c in query.all()]

    # --- sessions ---

    def get_session(self, session_id):
        return self._get(CourseSession, session_id)

    def create_session(self, data):
        return self._create(CourseSession, data)

    def update_session(self, session_id, data):
        return self._update(CourseSession, session_id, data)

    def delete_session(self, session_id):
        if db.session.get(CourseSession, session_id) is None:
            return False
        with self.atomic():
            Enrollment.query.filter_by(session_id=session_id).delete()
            EmployeeSessionAttendance.query.filter_by(session_id=session_id).delete()
            ApprovalRequest.query.filter_by(type="session", item_id=session_id).delete()
            Payment.query.filter_by(session_id=session_id).update({Payment.session_id: None})
            CourseSession.query.filter_by(id=session_id).delete()
            self._commit()
        return True

    def _session_details(self, session, enrollment_count):
        row = session.to_dict()
        row["course"] = self._course_details(session.course) if session.course else None
        row["enrollment_count"] = int(enrollment_count or 0)
        return row

    def get_session_with_details(self, session_id):
        session = db.session.get(CourseSession, session_id)
        if session is None:
            return None
        return self._session_details(session, self.count_enrollments(session_id))

    def get_sessions_with_details(self, upcoming=False, trainer_id=None, course_id=None,
                                  approved_only=False):
        counts = (
            db.session.query(Enrollment.session_id, func.count(Enrollment.id).label("total"))
            .group_by(Enrollment.session_id)
            .subquery()
        )
        query = (
            db.session.query(CourseSession, func.coalesce(counts.c.total, 0))
            .join(Course, Course.id == CourseSession.course_id)
            .outerjoin(counts, counts.c.session_id == CourseSession.id)
        )
        if upcoming:
            query = query.filter(CourseSession.date > datetime.utcnow())
        if trainer_id is not None:
            query = query.filter(Course.trainer_id == trainer_id)
        if course_id is not None:
            query = query.filter(CourseSession.course_id == course_id)
        if approved_only:
            query = query.filter(Course.approval_status == "approved")
        query = query.order_by(CourseSession.date, CourseSession.id)
        return [self._session_details(session, total) for session, total in query.all()]

    # --- enrollments ---

    def get_enrollment(self, user_id, session_id):
        return _dict(Enrollment.query.filter_by(user_id=user_id, session_id=session_id).first())

    def get_enrollments_by_session(self, session_id):
        return self._all(Enrollment.query.filter_by(session_id=session_id).order_by(Enrollment.id))

    def get_enrollments_by_user(self, user_id):
        return self._all(Enrollment.query.filter_by(user_id=user_id).order_by(Enrollment.id))

    def get_all_enrollments(self):
        return self._all(Enrollment.query.order_by(Enrollment.id))

    def count_enrollments(self, session_id):
        return Enrollment.query.filter_by(session_id=session_id).count()

    def enroll(self, user_id, session_id, capacity):
        with self.atomic():
            # Serialize concurrent enrollments on the same session
            CourseSession.query.filter_by(id=session_id).with_for_update().first()

            if Enrollment.query.filter_by(user_id=user_id, session_id=session_id).first():
                raise AlreadyEnrolledError("Already enrolled in this session")
            if capacity is not None and self.count_enrollments(session_id) >= capacity:
                raise SessionFullError("Session is full")

            enrollment = Enrollment(user_id=user_id, session_id=session_id)
            db.session.add(enrollment)
            try:
                db.session.flush()
            except IntegrityError as e:
                raise AlreadyEnrolledError("Already enrolled in this session") from e
            return enrollment.to_dict()

    def delete_enrollment(self, enrollment_id):
        return self._delete(Enrollment, enrollment_id)

    # --- course access ---

    def get_course_access(self, user_id, course_id):
        return _dict(CourseAccess.query.filter_by(user_id=user_id, course_id=course_id).first())

    def get_course_accesses(self, user_id):
        return self._all(CourseAccess.query.filter_by(user_id=user_id).order_by(CourseAccess.id))

    def grant_course_access(self, user_id, course_id, payment_id=None):
        existing = self.get_course_access(user_id, course_id)
        if existing:
            return existing, False
        row = self._create(CourseAccess, {
            "user_id": user_id, "course_id": course_id, "payment_id": payment_id
        })
        return row, True

    def revoke_course_access(self, user_id, course_id):
        access = CourseAccess.query.filter_by(user_id=user_id, course_id=course_id).first()
        if access is None:
            return False
        return self._delete(CourseAccess, access.id)

    # --- subscription plans ---

    def get_plan(self, plan_id):
        return self._get(SubscriptionPlan, plan_id)

    def get_plans(self, active_only=False):
        query = SubscriptionPlan.query
        if active_only:
            query = query.filter_by(is_active=True)
        return self._all(query.order_by(SubscriptionPlan.id))

    def create_plan(self, data):
        return self._create(SubscriptionPlan, data)

    def update_plan(self, plan_id, data):
        return self._update(SubscriptionPlan, plan_id, data)

    # --- payments ---

    @staticmethod
    def _payment_query(status=None, user_id=None, trainer_id=None):
        query = Payment.query
        if status is not None:
            query = query.filter_by(status=status)
        if user_id is not None:
            query = query.filter_by(user_id=user_id)
        if trainer_id is not None:
            query = query.filter_by(trainer_id=trainer_id)
        return query.order_by(Payment.created_at.desc(), Payment.id.desc())

    def get_payment(self, payment_id):
        return self._get(Payment, payment_id)

    def get_payments(self, status=None, user_id=None, trainer_id=None):
        return self._all(self._payment_query(status, user_id, trainer_id))

    def create_payment(self, data):
        return self._create(Payment, data)

    def update_payment(self, payment_id, data):
        return self._update(Payment, payment_id, data)

    def _payment_details(self, payment):
        row = payment.to_dict()
        row["user"] = public_user(_dict(payment.user))
        row["trainer"] = public_user(_dict(payment.trainer))
        row["course"] = _dict(payment.course)
        row["plan"] = self._get(SubscriptionPlan, payment.plan_id)
        return row

    def get_payment_with_details(self, payment_id):
        payment = db.session.get(Payment, payment_id)
        if payment is None:
            return None
        return self._payment_details(payment)

    def get_payments_with_details(self, status=None):
        return [self._payment_details(p) for p in self._payment_query(status).all()]

    # --- notifications ---

    def create_notification(self, data):
        return self._create(Notification, data)

    def get_notification(self, notification_id):
        return self._get(Notification, notification_id)

    def get_notifications_by_user(self, user_id):
        query = Notification.query.filter_by(user_id=user_id)
        return self._all(query.order_by(Notification.created_at.desc(), Notification.id.desc()))

    def mark_notification_as_read(self, notification_id):
        return self._update(Notification, notification_id, {"is_read": True})

    def mark_all_notifications_as_read(self, user_id):
        changed = Notification.query.filter_by(user_id=user_id, is_read=False).update(
            {Notification.is_read: True}
        )
        self._commit()
        return changed

    def delete_notification(self, notification_id):
        return self._delete(Notification, notification_id)

    # --- settings ---

    def get_setting(self, key):
        return _dict(Setting.query.filter_by(key=key).first())

    def get_settings(self, type=None):
        query = Setting.query
        if type:
            query = query.filter_by(type=type)
        return self._all(query.order_by(Setting.id))

    def upsert_setting(self, key, value, type="system"):
        setting = Setting.query.filter_by(key=key).first()
        if setting is None:
            return self._create(Setting, {"key": key, "value": value, "type": type})
        return self._update(Setting, setting.id, {"value": value, "type": type})

    # --- approval requests ---

    def create_approval_request(self, data):
        return self._create(ApprovalRequest, data)

    def get_approval_request(self, request_id):
        return self._get(ApprovalRequest, request_id)

    def get_approval_requests(self, status=None, type=None):
        query = ApprovalRequest.query
        if status is not None:
            query = query.filter_by(status=status)
        if type is not None:
            query = query.filter_by(type=type)
        return self._all(query.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc()))

    def get_pending_approval_for_item(self, type, item_id):
        query = ApprovalRequest.query.filter_by(type=type, item_id=item_id, status="pending")
        return _dict(query.order_by(ApprovalRequest.id).first())

    def update_approval_request(self, request_id, data):
        return self._update(ApprovalRequest, request_id, data)

    # --- enterprise ---

    def get_enterprise_course_accesses(self, enterprise_id):
        query = EnterpriseCourseAccess.query.filter_by(enterprise_id=enterprise_id)
        return self._all(query.order_by(EnterpriseCourseAccess.id))

    def has_enterprise_course_access(self, enterprise_id, course_id):
        query = EnterpriseCourseAccess.query.filter_by(enterprise_id=enterprise_id, course_id=course_id)
        return query.first() is not None

    def set_enterprise_course_access(self, enterprise_id, course_id, active):
        access = EnterpriseCourseAccess.query.filter_by(enterprise_id=enterprise_id, course_id=course_id).first()
        if active and access is None:
            self._create(EnterpriseCourseAccess, {"enterprise_id": enterprise_id, "course_id": course_id})
            return True
        if not active and access is not None:
            return self._delete(EnterpriseCourseAccess, access.id)
        return False

    def get_employee_course_accesses(self, employee_id=None, course_id=None):
        query = EnterpriseEmployeeCourseAccess.query
        if employee_id is not None:
            query = query.filter_by(employee_id=employee_id)
        if course_id is not None:
            query = query.filter_by(course_id=course_id)
        return self._all(query.order_by(EnterpriseEmployeeCourseAccess.id))

    def get_employee_course_access(self, employee_id, course_id):
        query = EnterpriseEmployeeCourseAccess.query.filter_by(employee_id=employee_id, course_id=course_id)
        return _dict(query.first())

    def grant_employee_course_access(self, employee_id, course_id, assigned_by=None):
        if self.get_employee_course_access(employee_id, course_id):
            raise DuplicateError("Employee already has access to this course")
        return self._create(EnterpriseEmployeeCourseAccess, {
            "employee_id": employee_id, "course_id": course_id, "assigned_by": assigned_by
        })

    def revoke_employee_course_access(self, employee_id, course_id):
        access = EnterpriseEmployeeCourseAccess.query.filter_by(
            employee_id=employee_id, course_id=course_id
        ).first()
        if access is None:
            return False
        return self._delete(EnterpriseEmployeeCourseAccess, access.id)

    def upsert_course_progress(self, employee_id, course_id, progress, time_spent_minutes=0):
        row = EmployeeCourseProgress.query.filter_by(employee_id=employee_id, course_id=course_id).first()
        if row is None:
            return self._create(EmployeeCourseProgress, {
                "employee_id": employee_id,
                "course_id": course_id,
                "progress": progress,
                "time_spent_minutes": time_spent_minutes,
            })
        return self._update(EmployeeCourseProgress, row.id, {
            "progress": progress,
            "time_spent_minutes": row.time_spent_minutes + time_spent_minutes,
        })

    def get_course_progress(self, employee_id=None, course_id=None):
        query = EmployeeCourseProgress.query
        if employee_id is not None:
            query = query.filter_by(employee_id=employee_id)
        if course_id is not None:
            query = query.filter_by(course_id=course_id)
        return self._all(query.order_by(EmployeeCourseProgress.id))

    def record_attendance(self, employee_id, session_id, attended, joined_at=None, left_at=None):
        values = {"attended": attended, "joined_at": joined_at, "left_at": left_at}
        row = EmployeeSessionAttendance.query.filter_by(employee_id=employee_id, session_id=session_id).first()
        if row is None:
            return self._create(EmployeeSessionAttendance, dict(values, employee_id=employee_id, session_id=session_id))
        return self._update(EmployeeSessionAttendance, row.id, values)

    def get_attendance(self, employee_id=None, session_id=None):
        query = EmployeeSessionAttendance.query
        if employee_id is not None:
            query = query.filter_by(employee_id=employee_id)
        if session_id is not None:
            query = query.filter_by(session_id=session_id)
        return self._all(query.order_by(EmployeeSessionAttendance.id))

    def get_enterprise_analytics(self, enterprise_id):
        employees = select(User.id).where(User.enterprise_id == enterprise_id)
        courses = select(EnterpriseCourseAccess.course_id).where(
            EnterpriseCourseAccess.enterprise_id == enterprise_id
        )
        total_employees = User.query.filter_by(enterprise_id=enterprise_id).count()
        active_courses = EnterpriseCourseAccess.query.filter_by(enterprise_id=enterprise_id).count()
        total_sessions = CourseSession.query.filter(CourseSession.course_id.in_(courses)).count()

        progress_filter = EmployeeCourseProgress.employee_id.in_(employees)
        avg_progress = db.session.query(func.avg(EmployeeCourseProgress.progress)).filter(progress_filter).scalar()
        progress_by_category = (
            db.session.query(Category.name, func.avg(EmployeeCourseProgress.progress))
            .join(Course, Course.id == EmployeeCourseProgress.course_id)
            .join(Category, Category.id == Course.category_id)
            .filter(progress_filter)
            .group_by(Category.name)
            .all()
        )

        attended = func.avg(case((EmployeeSessionAttendance.attended.is_(True), 100), else_=0))
        attendance_filter = EmployeeSessionAttendance.employee_id.in_(employees)
        avg_attendance = db.session.query(attended).filter(attendance_filter).scalar()
        year = extract("year", EmployeeSessionAttendance.created_at)
        month = extract("month", EmployeeSessionAttendance.created_at)
        attendance_by_month = (
            db.session.query(year, month, attended)
            .filter(attendance_filter)
            .group_by(year, month)
            .all()
        )

        total_minutes = (
            db.session.query(func.sum(EmployeeCourseProgress.time_spent_minutes))
            .filter(progress_filter)
            .scalar()
        )
        minutes_by_employee = (
            db.session.query(User.id, User.display_name, func.sum(EmployeeCourseProgress.time_spent_minutes))
            .join(EmployeeCourseProgress, EmployeeCourseProgress.employee_id == User.id)
            .filter(User.enterprise_id == enterprise_id)
            .group_by(User.id, User.display_name)
            .all()
        )

        return analytics_payload(
            total_employees=total_employees,
            active_courses=active_courses,
            total_sessions=total_sessions,
            avg_progress=avg_progress,
            progress_by_category=progress_by_category,
            avg_attendance=avg_attendance,
            attendance_by_month=attendance_by_month,
            total_minutes=total_minutes,
            minutes_by_employee=minutes_by_employee,
        )

    # --- blog ---

    def get_blog_categories(self):
        return self._all(BlogCategory.query.order_by(BlogCategory.id))

    def get_blog_category(self, category_id):
        return self._get(BlogCategory, category_id)

    def create_blog_category(self, data):
        return self._create(BlogCategory, data)

    def get_blog_post(self, post_id):
        return self._get(BlogPost, post_id)

    def get_blog_post_by_slug(self, slug):
        return _dict(BlogPost.query.filter_by(slug=slug).first())

    def get_blog_posts(self, status=None, author_id=None, category_id=None):
        query = BlogPost.query
        if status is not None:
            query = query.filter_by(status=status)
        if author_id is not None:
            query = query.filter_by(author_id=author_id)
        if category_id is not None:
            query = query.filter_by(category_id=category_id)
        return self._all(query.order_by(BlogPost.created_at.desc(), BlogPost.id.desc()))

    def create_blog_post(self, data):
        return self._create(BlogPost, data)

    def update_blog_post(self, post_id, data):
        return self._update(BlogPost, post_id, data)

    def delete_blog_post(self, post_id):
        if db.session.get(BlogPost, post_id) is None:
            return False
        with self.atomic():
            self._delete_comments(BlogComment.post_id == post_id)
            BlogPost.query.filter_by(id=post_id).delete()
            self._commit()
        return True

    def _delete_comments(self, criterion):
        doomed = {c.id for c in BlogComment.query.filter(criterion).all()}
        # replies go with their parent
        frontier = set(doomed)
        while frontier:
            replies = {
                c.id for c in BlogComment.query.filter(BlogComment.parent_id.in_(frontier)).all()
            } - doomed
            doomed |= replies
            frontier = replies
        if doomed:
            BlogComment.query.filter(BlogComment.id.in_(doomed)).delete()

    def get_blog_post_with_details(self, post_id):
        post = db.session.get(BlogPost, post_id)
        if post is None:
            return None
        row = post.to_dict()
        row["author"] = public_user(_dict(post.author))
        row["category"] = _dict(post.category)
        row["comment_count"] = BlogComment.query.filter_by(post_id=post_id, is_approved=True).count()
        return row

    def create_blog_comment(self, data):
        return self._create(BlogComment, data)

    def get_blog_comment(self, comment_id):
        return self._get(BlogComment, comment_id)

    def get_blog_comments(self, post_id=None, approved=None):
        query = BlogComment.query
        if post_id is not None:
            query = query.filter_by(post_id=post_id)
        if approved is not None:
            query = query.filter_by(is_approved=approved)
        return self._all(query.order_by(BlogComment.id))

    def update_blog_comment(self, comment_id, data):
        return self._update(BlogComment, comment_id, data)

    def delete_blog_comment(self, comment_id):
        if db.session.get(BlogComment, comment_id) is None:
            return False
        with self.atomic():
            self._delete_comments(BlogComment.id == comment_id)
        return True
