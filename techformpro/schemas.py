from datetime import datetime, timezone
from typing import List, Literal, Optional

from flask import request
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

Role = Literal["student", "trainer", "admin", "enterprise", "enterprise_admin"]
Level = Literal["beginner", "intermediate", "advanced"]
PlanType = Literal["monthly", "annual", "business"]
SettingType = Literal["api", "system", "email", "pricing"]


def parse_body(schema):
    """Validate the JSON body against ``schema``; ValidationError becomes a 400."""
    return schema.model_validate(request.get_json(silent=True) or {})


def changes(payload):
    """Only the fields the client actually sent."""
    return payload.model_dump(exclude_unset=True)


class Schema(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    @field_validator("*")
    @classmethod
    def naive_utc(cls, value):
        # timestamps are stored as naive UTC
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class EmailSchema(Schema):

    @field_validator("email", mode="after", check_fields=False)
    @classmethod
    def lower_email(cls, value):
        # usernames and emails are matched case-insensitively
        return value.lower() if value is not None else value


# --- auth / users ---

class RegisterIn(EmailSchema):
    username: str = Field(min_length=3, max_length=80)
    email: EmailStr
    password: str = Field(min_length=6)
    display_name: str = Field(min_length=1, max_length=120)
    role: Literal["student", "trainer", "enterprise"] = "student"
    phone_number: Optional[str] = None


class LoginIn(Schema):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ProfileUpdate(EmailSchema):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None


class PasswordChange(Schema):
    current_password: str
    new_password: str = Field(min_length=6)


class ForgotPasswordIn(EmailSchema):
    email: EmailStr


class ResetPasswordIn(Schema):
    token: str = Field(min_length=1)
    password: str = Field(min_length=6)


class AdminUserCreate(RegisterIn):
    role: Role = "student"
    enterprise_id: Optional[int] = None


class RoleUpdate(Schema):
    role: Role


class SubscriptionUpdate(Schema):
    is_subscribed: bool
    subscription_type: Optional[PlanType] = None
    subscription_end_date: Optional[datetime] = None


# --- catalog ---

class CategoryCreate(Schema):
    name: str = Field(min_length=1, max_length=120)
    slug: Optional[str] = None


class CourseCreate(Schema):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    level: Level
    category_id: int
    duration: int = Field(gt=0)
    max_students: int = Field(gt=0)
    price: int = Field(default=0, ge=0)
    thumbnail: Optional[str] = None
    trainer_id: Optional[int] = None


class CourseUpdate(Schema):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1)
    level: Optional[Level] = None
    category_id: Optional[int] = None
    duration: Optional[int] = Field(default=None, gt=0)
    max_students: Optional[int] = Field(default=None, gt=0)
    price: Optional[int] = Field(default=None, ge=0)
    thumbnail: Optional[str] = None


class ApprovalDecision(Schema):
    status: Literal["approved", "rejected"]
    notes: Optional[str] = None


class ApproveIn(Schema):
    notes: Optional[str] = None


class RejectIn(Schema):
    notes: str = Field(min_length=1)


class SessionCreate(Schema):
    course_id: int
    date: datetime
    end_date: Optional[datetime] = None
    zoom_link: str = Field(min_length=1, max_length=500)
    recording_link: Optional[str] = None
    max_participants: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date is not None and self.end_date <= self.date:
            raise ValueError("end_date must be after date")
        return self


class SessionUpdate(Schema):
    date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    zoom_link: Optional[str] = Field(default=None, min_length=1, max_length=500)
    recording_link: Optional[str] = None
    max_participants: Optional[int] = Field(default=None, gt=0)


class AttendanceIn(Schema):
    employee_id: int
    attended: bool = True
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None


class EnrollmentCreate(Schema):
    session_id: int


# --- payments / subscriptions ---

class PaymentCreate(Schema):
    type: Literal["subscription", "course", "session"]
    course_id: Optional[int] = None
    session_id: Optional[int] = None
    plan_id: Optional[int] = None
    payment_method: Optional[str] = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def check_target(self):
        required = {"subscription": "plan_id", "course": "course_id", "session": "session_id"}[self.type]
        if getattr(self, required) is None:
            raise ValueError(f"{required} is required for {self.type} payments")
        return self


class PaymentStatusUpdate(Schema):
    status: Literal["approved", "rejected", "refunded"]


class PlanCreate(Schema):
    name: str = Field(min_length=1, max_length=120)
    description: str = ""
    plan_type: PlanType
    price: int = Field(ge=0)
    duration_days: int = Field(gt=0)
    features: List[str] = []
    is_active: bool = True


class PlanUpdate(Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    duration_days: Optional[int] = Field(default=None, gt=0)
    features: Optional[List[str]] = None
    is_active: Optional[bool] = None


# --- notifications ---

class NotificationBroadcast(Schema):
    message: str = Field(min_length=1)
    type: str = "system"
    role: Optional[Role] = None
    user_id: Optional[int] = None

    @model_validator(mode="after")
    def check_one_target(self):
        if (self.role is None) == (self.user_id is None):
            raise ValueError("Provide exactly one of role or user_id")
        return self


# --- enterprise ---

class EmployeeCreate(EmailSchema):
    display_name: str = Field(min_length=1, max_length=120)
    email: EmailStr
    phone_number: str = Field(min_length=6, max_length=50)


class EnterpriseCreate(EmailSchema):
    username: str = Field(min_length=3, max_length=80)
    email: EmailStr
    password: str = Field(min_length=6)
    display_name: str = Field(min_length=1, max_length=120)
    phone_number: Optional[str] = None
    course_ids: List[int] = []


class EnterpriseUpdate(EmailSchema):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    course_ids: Optional[List[int]] = None


class EnterpriseCourseAssign(Schema):
    course_ids: List[int] = Field(min_length=1)


class EnterpriseCourseToggle(Schema):
    active: bool


class EmployeeCourseGrant(Schema):
    course_id: int


class ProgressIn(Schema):
    course_id: int
    progress: int = Field(ge=0, le=100)
    time_spent_minutes: int = Field(default=0, ge=0)


# --- blog ---

class BlogCategoryCreate(Schema):
    name: str = Field(min_length=1, max_length=120)
    slug: Optional[str] = None
    description: Optional[str] = None


class BlogPostCreate(Schema):
    title: str = Field(min_length=1, max_length=255)
    slug: Optional[str] = None
    excerpt: str = Field(min_length=1)
    content: str = Field(min_length=1)
    featured_image: Optional[str] = None
    category_id: int
    status: Literal["draft", "published"] = "draft"
    read_time: Optional[int] = Field(default=None, gt=0)
    tags: List[str] = []


class BlogPostUpdate(Schema):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    excerpt: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = Field(default=None, min_length=1)
    featured_image: Optional[str] = None
    category_id: Optional[int] = None
    status: Optional[Literal["draft", "published", "archived"]] = None
    read_time: Optional[int] = Field(default=None, gt=0)
    tags: Optional[List[str]] = None


class CommentCreate(Schema):
    content: str = Field(min_length=1)
    parent_id: Optional[int] = None


# --- settings ---

class SettingUpdate(Schema):
    value: Optional[str] = None
    type: SettingType = "system"
