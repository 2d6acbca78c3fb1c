"""
Admin review decisions.

The course approval endpoint and the approval-request endpoints both land
here so a decision has one implementation: update the reviewed item, close
its pending request and notify the requester.
"""
from datetime import datetime

from flask import current_app

from techformpro.errors import BadRequest, NotFound
from techformpro.storage import get_storage
from techformpro.utils.notify import notify


def open_course_request(course, requester_id):
    return get_storage().create_approval_request({
        "type": "course",
        "item_id": course["id"],
        "requester_id": requester_id,
    })


def _close_pending(type, item_id, status, reviewer_id, notes):
    storage = get_storage()
    pending = storage.get_pending_approval_for_item(type, item_id)
    if pending:
        storage.update_approval_request(pending["id"], {
            "status": status,
            "reviewer_id": reviewer_id,
            "notes": notes,
        })


def decide_course(course_id, status, reviewer_id, notes=None):
    """Set a course's approval status. Returns (course, changed)."""
    storage = get_storage()
    course = storage.get_course(course_id)
    if course is None:
        raise NotFound("Course not found")
    if course["approval_status"] == status:
        return course, False

    with storage.atomic():
        course = storage.update_course(course_id, {"approval_status": status})
        _close_pending("course", course_id, status, reviewer_id, notes)
        message = f'Your course "{course["title"]}" has been {status}.'
        if notes:
            message += f" Notes: {notes}"
        notify(course["trainer_id"], message, "approval")

    current_app.logger.info("Course %s %s by user %s", course_id, status, reviewer_id)
    return course, True


def decide_request(request_id, status, reviewer_id, notes=None):
    """Resolve an approval request and apply the decision to its item."""
    storage = get_storage()
    approval = storage.get_approval_request(request_id)
    if approval is None:
        raise NotFound("Approval request not found")
    if approval["status"] != "pending":
        raise BadRequest("Request has already been reviewed")

    with storage.atomic():
        if approval["type"] == "course":
            decide_course(approval["item_id"], status, reviewer_id, notes)
            # decide_course skips _close_pending when the status is unchanged
            _close_pending("course", approval["item_id"], status, reviewer_id, notes)
        else:
            if approval["type"] == "post":
                _apply_post_decision(approval["item_id"], status)
            storage.update_approval_request(request_id, {
                "status": status,
                "reviewer_id": reviewer_id,
                "notes": notes,
            })
            message = f"Your {approval['type']} request #{approval['item_id']} has been {status}."
            if notes:
                message += f" Notes: {notes}"
            notify(approval["requester_id"], message, "approval")

    current_app.logger.info("Approval request %s %s by user %s", request_id, status, reviewer_id)
    return storage.get_approval_request(request_id)


def _apply_post_decision(post_id, status):
    storage = get_storage()
    post = storage.get_blog_post(post_id)
    if post is None:
        raise NotFound("Blog post not found")
    if status == "approved":
        storage.update_blog_post(post_id, {
            "status": "published",
            "published_at": post["published_at"] or datetime.utcnow(),
        })
    else:
        storage.update_blog_post(post_id, {"status": "draft"})
