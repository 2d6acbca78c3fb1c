import secrets
from datetime import datetime, timedelta

from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import create_access_token, jwt_required
from werkzeug.security import generate_password_hash, check_password_hash

from techformpro.errors import BadRequest, Unauthorized, DuplicateError
from techformpro.schemas import (
    parse_body, changes, RegisterIn, LoginIn, ProfileUpdate, PasswordChange,
    ForgotPasswordIn, ResetPasswordIn,
)
from techformpro.storage import get_storage, public_user
from techformpro.utils.auth import load_user
from techformpro.utils.mailer import send_template_email

bp = Blueprint("auth", __name__, url_prefix="/api")


def issue_token(user):
    return create_access_token(
        identity=str(user["id"]),
        additional_claims={"role": user["role"]},
    )


@bp.route("/register", methods=["POST"])
def register():
    payload = parse_body(RegisterIn)
    data = payload.model_dump()
    data["password"] = generate_password_hash(payload.password)

    try:
        user = get_storage().create_user(data)
    except DuplicateError:
        raise BadRequest("Username or email already exists")

    current_app.logger.info("Registered user %s (%s)", user["id"], user["role"])
    return jsonify({"access_token": issue_token(user), "user": public_user(user)}), 201


@bp.route("/login", methods=["POST"])
def login():
    payload = parse_body(LoginIn)
    storage = get_storage()

    user = storage.get_user_by_username(payload.username) or storage.get_user_by_email(payload.username)
    if not user or not check_password_hash(user["password"], payload.password):
        raise Unauthorized("Invalid username or password")

    return jsonify({"access_token": issue_token(user), "user": public_user(user)}), 200


@bp.route("/user", methods=["GET"])
@jwt_required()
def get_current_user():
    return jsonify(public_user(load_user())), 200


@bp.route("/user/profile", methods=["PATCH"])
@jwt_required()
def update_profile():
    user = load_user()
    data = changes(parse_body(ProfileUpdate))
    if not data:
        raise BadRequest("No fields to update")

    try:
        updated = get_storage().update_user(user["id"], data)
    except DuplicateError:
        raise BadRequest("Email already in use")
    return jsonify(public_user(updated)), 200


@bp.route("/user/password", methods=["PATCH"])
@jwt_required()
def change_password():
    user = load_user()
    payload = parse_body(PasswordChange)
    if not check_password_hash(user["password"], payload.current_password):
        raise BadRequest("Current password is incorrect")

    get_storage().update_user(user["id"], {"password": generate_password_hash(payload.new_password)})
    return jsonify({"message": "Password updated successfully"}), 200


@bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    payload = parse_body(ForgotPasswordIn)
    storage = get_storage()
    user = storage.get_user_by_email(payload.email)

    # Same answer whether or not the address exists
    response = {"message": "If this email is registered, a reset link has been sent."}
    if not user:
        return jsonify(response), 200

    token = secrets.token_urlsafe(32)
    ttl = current_app.config.get("PASSWORD_RESET_TTL_MINUTES", 60)
    storage.update_user(user["id"], {
        "reset_token": token,
        "reset_token_expires_at": datetime.utcnow() + timedelta(minutes=ttl),
    })

    send_template_email(
        user["email"],
        "Reset your TechFormPro password",
        "password_reset",
        display_name=user["display_name"],
        reset_url=f"{current_app.config['FRONTEND_URL']}/reset-password?token={token}",
        ttl_minutes=ttl,
    )
    return jsonify(response), 200


@bp.route("/reset-password", methods=["POST"])
def reset_password():
    payload = parse_body(ResetPasswordIn)
    storage = get_storage()
    user = storage.get_user_by_reset_token(payload.token)

    expires = user["reset_token_expires_at"] if user else None
    if not user or not expires or expires < datetime.utcnow():
        raise BadRequest("Invalid or expired reset token")

    storage.update_user(user["id"], {
        "password": generate_password_hash(payload.password),
        "reset_token": None,
        "reset_token_expires_at": None,
    })
    current_app.logger.info("Password reset for user %s", user["id"])
    return jsonify({"message": "Password has been reset"}), 200
