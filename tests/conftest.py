from datetime import datetime, timedelta
from itertools import count

import pytest
from flask_jwt_extended import create_access_token
from werkzeug.security import generate_password_hash

from techformpro import create_app
from techformpro.config import TestingConfig
from techformpro.extensions import db
from techformpro.storage import get_storage

_ids = count(1)


@pytest.fixture(params=["memory", "database"])
def app(request):
    backend = request.param

    class Config(TestingConfig):
        STORAGE_BACKEND = backend

    app = create_app(Config)
    with app.app_context():
        if backend == "database":
            db.create_all()
        yield app
        if backend == "database":
            db.session.remove()
            db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def storage(app):
    return get_storage()


@pytest.fixture
def make_user(storage):
    def _make_user(role="student", password="secret123", **fields):
        n = next(_ids)
        data = {
            "username": f"{role}{n}",
            "email": f"{role}{n}@example.com",
            "password": generate_password_hash(password),
            "display_name": f"{role.title()} {n}",
            "role": role,
        }
        data.update(fields)
        return storage.create_user(data)
    return _make_user


@pytest.fixture
def auth():
    def _auth(user):
        token = create_access_token(identity=str(user["id"]), additional_claims={"role": user["role"]})
        return {"Authorization": f"Bearer {token}"}
    return _auth


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def trainer(make_user):
    return make_user("trainer")


@pytest.fixture
def student(make_user):
    return make_user("student")


@pytest.fixture
def category(storage):
    return storage.create_category({"name": "DevOps & Cloud", "slug": "devops-cloud"})


@pytest.fixture
def make_course(storage, trainer, category):
    def _make_course(**fields):
        data = {
            "title": "Kubernetes in practice",
            "description": "Deploy and operate clusters",
            "level": "intermediate",
            "category_id": category["id"],
            "trainer_id": trainer["id"],
            "duration": 120,
            "max_students": 10,
            "approval_status": "approved",
            "price": 0,
        }
        data.update(fields)
        return storage.create_course(data)
    return _make_course


@pytest.fixture
def make_session(storage):
    def _make_session(course, days_ahead=7, **fields):
        data = {
            "course_id": course["id"],
            "date": datetime.utcnow() + timedelta(days=days_ahead),
            "zoom_link": "https://zoom.example.com/j/123",
        }
        data.update(fields)
        return storage.create_session(data)
    return _make_session


@pytest.fixture
def plan(storage):
    return storage.create_plan({
        "name": "Basic Monthly",
        "plan_type": "monthly",
        "price": 2900,
        "duration_days": 30,
        "features": ["Access to every course"],
    })
