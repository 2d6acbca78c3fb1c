import click
from flask import current_app
from werkzeug.security import generate_password_hash

from techformpro.extensions import db
from techformpro.storage import get_storage

DEFAULT_CATEGORIES = [
    ("DevOps & Cloud", "devops-cloud"),
    ("Web Development", "dev-web"),
    ("Artificial Intelligence", "ai"),
    ("Cybersecurity", "cybersecurity"),
    ("Databases", "database"),
    ("Mobile", "mobile"),
]

DEFAULT_PLANS = [
    {
        "name": "Basic Monthly",
        "description": "Access to every course for one month",
        "plan_type": "monthly",
        "price": 2900,
        "duration_days": 30,
        "features": ["Access to every course", "Email support", "Course certificates"],
    },
    {
        "name": "Premium Annual",
        "description": "Access to every course for one year",
        "plan_type": "annual",
        "price": 27900,
        "duration_days": 365,
        "features": [
            "Access to every course",
            "Priority support",
            "Course certificates",
            "Monthly mentoring sessions",
            "Exclusive resources",
        ],
    },
    {
        "name": "Business",
        "description": "For companies training several employees",
        "plan_type": "business",
        "price": 49900,
        "duration_days": 30,
        "features": [
            "Every course for 10 users",
            "Dedicated support",
            "Course certificates",
            "Weekly mentoring sessions",
            "Progress tracking per employee",
        ],
    },
]


def seed_defaults():
    """Insert reference data that is missing. Safe to run repeatedly."""
    storage = get_storage()
    config = current_app.config
    created = {"categories": 0, "plans": 0, "admin": False}

    for name, slug in DEFAULT_CATEGORIES:
        if not storage.get_category_by_slug(slug):
            storage.create_category({"name": name, "slug": slug})
            created["categories"] += 1

    if not storage.get_plans():
        for plan in DEFAULT_PLANS:
            storage.create_plan(plan)
            created["plans"] += 1

    if not storage.get_setting("platform_fee_percentage"):
        storage.upsert_setting("platform_fee_percentage", str(config["PLATFORM_FEE_PERCENTAGE"]), "pricing")

    if not storage.get_user_by_username(config["ADMIN_USERNAME"]):
        storage.create_user({
            "username": config["ADMIN_USERNAME"],
            "email": config["ADMIN_EMAIL"],
            "password": generate_password_hash(config["ADMIN_PASSWORD"]),
            "display_name": "Administrator",
            "role": "admin",
        })
        created["admin"] = True

    return created


def register_commands(app):

    @app.cli.command("init-db")
    def init_db():
        """Create tables and seed default data."""
        if app.config["STORAGE_BACKEND"] == "database":
            db.create_all()
        created = seed_defaults()
        click.echo(
            f"Seeded {created['categories']} categories, {created['plans']} plans"
            + (", admin account" if created["admin"] else "")
        )
