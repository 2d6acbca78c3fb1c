from techformpro.errors import BadRequest
from techformpro.storage import get_storage, public_user


def approved_course_or_400(course_id):
    course = get_storage().get_course(course_id)
    if not course or course["approval_status"] != "approved":
        raise BadRequest(f"Course {course_id} not found")
    return course


def set_course_active(enterprise_id, course_id, active):
    """Toggle an enterprise's access to a course; deactivation drops employee grants."""
    storage = get_storage()
    with storage.atomic():
        changed = storage.set_enterprise_course_access(enterprise_id, course_id, active)
        if not active:
            for employee in storage.get_employees(enterprise_id):
                storage.revoke_employee_course_access(employee["id"], course_id)
    return changed


def enterprise_summary(enterprise):
    storage = get_storage()
    row = public_user(enterprise)
    row["employee_count"] = len(storage.get_employees(enterprise["id"]))
    row["course_ids"] = sorted(a["course_id"] for a in storage.get_enterprise_course_accesses(enterprise["id"]))
    return row
