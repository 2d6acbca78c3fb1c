from functools import wraps

from flask_jwt_extended import jwt_required, get_jwt_identity, verify_jwt_in_request

from techformpro.errors import Unauthorized, Forbidden
from techformpro.storage import get_storage


def current_user():
    """The stored user behind the request's token, or None."""
    identity = get_jwt_identity()
    if identity is None:
        return None
    return get_storage().get_user(int(identity))


def optional_user():
    """Like current_user() for routes that also serve anonymous callers."""
    verify_jwt_in_request(optional=True)
    return current_user()


def load_user():
    user = current_user()
    if not user:
        raise Unauthorized("User not found")
    return user


def role_required(*roles):
    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, **kwargs):
            user = load_user()
            if user["role"] not in roles:
                raise Forbidden("Access denied")
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def owner_or_admin(param="user_id"):
    """The ``param`` path argument must be the caller's own id unless they are an admin."""
    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, **kwargs):
            user = load_user()
            if user["role"] != "admin" and kwargs.get(param) != user["id"]:
                raise Forbidden("Access denied")
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def acting_enterprise_id(user):
    """Enterprise id an enterprise or enterprise_admin user acts for."""
    if user["role"] == "enterprise":
        return user["id"]
    if user["role"] == "enterprise_admin" and user["enterprise_id"]:
        return user["enterprise_id"]
    raise Forbidden("Enterprise access required")
