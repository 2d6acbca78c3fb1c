from .user import User
from .course import Category, Course, CourseSession
from .enrollment import Enrollment, CourseAccess
from .payment import SubscriptionPlan, Payment
from .notification import Notification, Setting, ApprovalRequest
from .enterprise import (
    EnterpriseCourseAccess,
    EnterpriseEmployeeCourseAccess,
    EmployeeCourseProgress,
    EmployeeSessionAttendance,
)
from .blog import BlogCategory, BlogPost, BlogComment
