from datetime import datetime

from flask import Blueprint, jsonify, request, current_app
from flask_jwt_extended import jwt_required

from techformpro.errors import BadRequest, Forbidden, NotFound, DuplicateError
from techformpro.schemas import (
    parse_body, changes, BlogCategoryCreate, BlogPostCreate, BlogPostUpdate, CommentCreate,
)
from techformpro.storage import get_storage, public_user
from techformpro.utils.auth import role_required, load_user, optional_user
from techformpro.utils.slug import slugify, unique_slug

bp = Blueprint("blog", __name__, url_prefix="/api")


def _can_edit(user, post):
    return user is not None and (user["role"] == "admin" or user["id"] == post["author_id"])


def _request_publication(post, user):
    storage = get_storage()
    if not storage.get_pending_approval_for_item("post", post["id"]):
        storage.create_approval_request({"type": "post", "item_id": post["id"], "requester_id": user["id"]})


@bp.route("/blog/categories", methods=["GET"])
def list_categories():
    return jsonify(get_storage().get_blog_categories()), 200


@bp.route("/admin/blog/categories", methods=["POST"])
@role_required("admin")
def create_category():
    payload = parse_body(BlogCategoryCreate)
    data = payload.model_dump()
    data["slug"] = slugify(payload.slug or payload.name)
    try:
        category = get_storage().create_blog_category(data)
    except DuplicateError:
        raise BadRequest("Blog category already exists")
    return jsonify(category), 201


@bp.route("/blog/posts", methods=["GET"])
def list_posts():
    storage = get_storage()
    posts = storage.get_blog_posts(status="published", category_id=request.args.get("category_id", type=int))
    return jsonify([storage.get_blog_post_with_details(p["id"]) for p in posts]), 200


@bp.route("/blog/posts/<slug>", methods=["GET"])
def get_post(slug):
    storage = get_storage()
    post = storage.get_blog_post_by_slug(slug)
    if not post:
        raise NotFound("Post not found")
    if post["status"] != "published" and not _can_edit(optional_user(), post):
        raise NotFound("Post not found")

    if post["status"] == "published":
        storage.update_blog_post(post["id"], {"view_count": post["view_count"] + 1})
    return jsonify(storage.get_blog_post_with_details(post["id"])), 200


@bp.route("/blog/posts", methods=["POST"])
@role_required("trainer", "admin")
def create_post():
    user = load_user()
    payload = parse_body(BlogPostCreate)
    storage = get_storage()
    if not storage.get_blog_category(payload.category_id):
        raise BadRequest("Blog category not found")

    data = payload.model_dump()
    data["author_id"] = user["id"]
    data["slug"] = unique_slug(payload.slug or payload.title, lambda s: storage.get_blog_post_by_slug(s) is not None)

    # Only admins publish directly; trainers go through review
    wants_publish = payload.status == "published"
    if wants_publish and user["role"] == "admin":
        data["published_at"] = datetime.utcnow()
    else:
        data["status"] = "draft"

    with storage.atomic():
        post = storage.create_blog_post(data)
        if wants_publish and user["role"] != "admin":
            _request_publication(post, user)

    current_app.logger.info("Blog post %s created by user %s", post["id"], user["id"])
    return jsonify(storage.get_blog_post_with_details(post["id"])), 201


@bp.route("/blog/posts/<int:post_id>", methods=["PATCH"])
@jwt_required()
def update_post(post_id):
    user = load_user()
    storage = get_storage()
    post = storage.get_blog_post(post_id)
    if not post:
        raise NotFound("Post not found")
    if not _can_edit(user, post):
        raise Forbidden("You can only edit your own posts")

    data = changes(parse_body(BlogPostUpdate))
    if not data:
        raise BadRequest("No fields to update")
    if "category_id" in data and not storage.get_blog_category(data["category_id"]):
        raise BadRequest("Blog category not found")

    with storage.atomic():
        if data.get("status") == "published":
            if user["role"] == "admin":
                data["published_at"] = post["published_at"] or datetime.utcnow()
            else:
                data.pop("status")
                _request_publication(post, user)
        if data:
            storage.update_blog_post(post_id, data)

    return jsonify(storage.get_blog_post_with_details(post_id)), 200


@bp.route("/blog/posts/<int:post_id>", methods=["DELETE"])
@jwt_required()
def delete_post(post_id):
    user = load_user()
    storage = get_storage()
    post = storage.get_blog_post(post_id)
    if not post:
        raise NotFound("Post not found")
    if not _can_edit(user, post):
        raise Forbidden("You can only delete your own posts")

    storage.delete_blog_post(post_id)
    return "", 204


@bp.route("/blog/posts/<int:post_id>/comments", methods=["GET"])
def list_comments(post_id):
    storage = get_storage()
    if not storage.get_blog_post(post_id):
        raise NotFound("Post not found")

    comments = storage.get_blog_comments(post_id=post_id, approved=True)
    for comment in comments:
        comment["user"] = public_user(storage.get_user(comment["user_id"]))
    return jsonify(comments), 200


@bp.route("/blog/posts/<int:post_id>/comments", methods=["POST"])
@jwt_required()
def add_comment(post_id):
    user = load_user()
    payload = parse_body(CommentCreate)
    storage = get_storage()

    post = storage.get_blog_post(post_id)
    if not post or post["status"] != "published":
        raise NotFound("Post not found")
    if payload.parent_id is not None:
        parent = storage.get_blog_comment(payload.parent_id)
        if not parent or parent["post_id"] != post_id:
            raise BadRequest("Parent comment not found on this post")

    comment = storage.create_blog_comment({
        "post_id": post_id,
        "user_id": user["id"],
        "parent_id": payload.parent_id,
        "content": payload.content,
        "is_approved": user["role"] == "admin",
    })
    return jsonify(comment), 201


@bp.route("/admin/blog/comments", methods=["GET"])
@role_required("admin")
def moderation_queue():
    approved = request.args.get("approved")
    if approved is not None:
        approved = approved.lower() in ("true", "1", "yes")
    return jsonify(get_storage().get_blog_comments(approved=approved)), 200


@bp.route("/admin/blog/comments/<int:comment_id>/approve", methods=["PATCH"])
@role_required("admin")
def approve_comment(comment_id):
    comment = get_storage().update_blog_comment(comment_id, {"is_approved": True})
    if not comment:
        raise NotFound("Comment not found")
    return jsonify(comment), 200


@bp.route("/admin/blog/comments/<int:comment_id>", methods=["DELETE"])
@role_required("admin")
def delete_comment(comment_id):
    if not get_storage().delete_blog_comment(comment_id):
        raise NotFound("Comment not found")
    return "", 204
