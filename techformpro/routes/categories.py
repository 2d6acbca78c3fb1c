from flask import Blueprint, jsonify

from techformpro.errors import BadRequest, DuplicateError
from techformpro.schemas import parse_body, CategoryCreate
from techformpro.storage import get_storage
from techformpro.utils.auth import role_required
from techformpro.utils.slug import unique_slug, slugify

bp = Blueprint("categories", __name__, url_prefix="/api")


@bp.route("/categories", methods=["GET"])
def list_categories():
    return jsonify(get_storage().get_all_categories()), 200


@bp.route("/categories", methods=["POST"])
@role_required("admin")
def create_category():
    payload = parse_body(CategoryCreate)
    storage = get_storage()

    if payload.slug:
        slug = slugify(payload.slug)
    else:
        slug = unique_slug(payload.name, lambda s: storage.get_category_by_slug(s) is not None)

    try:
        category = storage.create_category({"name": payload.name, "slug": slug})
    except DuplicateError:
        raise BadRequest("Category already exists")
    return jsonify(category), 201
