from flask import jsonify, current_app
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """An error that maps directly to an HTTP response."""

    status_code = 400

    def __init__(self, message, status_code=None, errors=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors

    def to_dict(self):
        body = {"message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class BadRequest(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


# Raised by the storage layer

class StorageError(Exception):
    pass


class AlreadyEnrolledError(StorageError):
    pass


class SessionFullError(StorageError):
    pass


class DuplicateError(StorageError):
    pass


def validation_errors(exc):
    """Flatten a pydantic ValidationError into {field: message}."""
    errors = {}
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"]) or "body"
        errors.setdefault(field, err["msg"])
    return errors


def register_error_handlers(app):

    @app.errorhandler(ApiError)
    def handle_api_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({"message": "Validation error", "errors": validation_errors(e)}), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({"message": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        current_app.logger.exception("Unhandled error: %s", e)
        return jsonify({"message": "Internal server error"}), 500
