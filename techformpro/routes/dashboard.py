from flask import Blueprint, jsonify

from techformpro.models.user import ROLES
from techformpro.storage import get_storage
from techformpro.utils.auth import role_required, load_user

bp = Blueprint("dashboard", __name__, url_prefix="/api")


@bp.route("/admin/dashboard/stats", methods=["GET"])
@role_required("admin")
def admin_stats():
    """Return the admin dashboard summary."""
    storage = get_storage()
    users = storage.get_all_users()
    courses = storage.get_courses()
    approved = storage.get_payments(status="approved")

    return jsonify({
        "users": {
            "total": len(users),
            "by_role": {role: sum(1 for u in users if u["role"] == role) for role in ROLES},
        },
        "courses": {
            "total": len(courses),
            "pending": sum(1 for c in courses if c["approval_status"] == "pending"),
            "approved": sum(1 for c in courses if c["approval_status"] == "approved"),
        },
        "total_sessions": len(storage.get_sessions_with_details()),
        "total_enrollments": len(storage.get_all_enrollments()),
        "revenue": {
            "total": sum(p["amount"] for p in approved),
            "platform": sum(p["platform_fee"] for p in approved),
        },
        "pending_payments": len(storage.get_payments(status="pending")),
        "pending_approvals": len(storage.get_approval_requests(status="pending")),
    }), 200


@bp.route("/trainer/revenue", methods=["GET"])
@role_required("trainer")
def trainer_revenue():
    trainer = load_user()
    storage = get_storage()
    payments = storage.get_payments(status="approved", trainer_id=trainer["id"])

    by_course = {}
    for payment in payments:
        entry = by_course.setdefault(payment["course_id"], {
            "course_id": payment["course_id"],
            "title": None,
            "revenue": 0,
            "payments": 0,
        })
        entry["revenue"] += payment["trainer_share"]
        entry["payments"] += 1

    for entry in by_course.values():
        course = storage.get_course(entry["course_id"]) if entry["course_id"] else None
        entry["title"] = course["title"] if course else None

    return jsonify({
        "total_revenue": sum(p["trainer_share"] for p in payments),
        "total_sales": sum(p["amount"] for p in payments),
        "by_course": sorted(by_course.values(), key=lambda e: -e["revenue"]),
        "recent_payments": payments[:10],
    }), 200
