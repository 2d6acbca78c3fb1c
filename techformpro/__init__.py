from datetime import date, datetime

from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import Config
from .errors import register_error_handlers
from .extensions import db, migrate, jwt, mail
from .routes import (
    auth, users, categories, courses, sessions, enrollments, payments,
    subscriptions, approvals, notifications, enterprise, enterprises, blog, settings, dashboard,
)
from .storage import init_storage


class JSONProvider(DefaultJSONProvider):
    """Render timestamps as ISO-8601 instead of HTTP dates."""

    @staticmethod
    def default(o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


def register_jwt_handlers(jwt):

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({"message": "Authentication required"}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify({"message": "Invalid token"}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({"message": "Token has expired"}), 401


def create_app(config_object=Config):
    app = Flask(__name__)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)
    CORS(app, resources={r"/api/*": {"origins": "*"}})
    app.config.from_object(config_object)
    app.json = JSONProvider(app)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    mail.init_app(app)

    register_jwt_handlers(jwt)
    register_error_handlers(app)
    init_storage(app)

    # Register blueprints
    for module in (auth, users, categories, courses, sessions, enrollments, payments,
                   subscriptions, approvals, notifications, enterprise, enterprises, blog, settings,
                   dashboard):
        app.register_blueprint(module.bp)

    from .seed import register_commands
    register_commands(app)

    return app
