import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()

_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "default-secret")
    FLASK_ENV = os.getenv("FLASK_ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL") or f"sqlite:///{os.path.join(_root, 'techformpro.db')}"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "database" or "memory"
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "database")

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "jwt-secret")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.getenv("JWT_ACCESS_TOKEN_HOURS", 12)))

    # Mail Configuration
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.ethereal.email")
    MAIL_PORT = int(os.getenv("MAIL_PORT", 587))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "True").lower() in ("true", "1", "yes")
    MAIL_USE_SSL = os.getenv("MAIL_USE_SSL", "False").lower() in ("true", "1", "yes")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = ("TechFormPro", os.getenv("MAIL_SENDER_ADDRESS", "noreply@techformpro.fr"))

    # Business rules
    PLATFORM_FEE_PERCENTAGE = int(os.getenv("PLATFORM_FEE_PERCENTAGE", 15))
    PASSWORD_RESET_TTL_MINUTES = int(os.getenv("PASSWORD_RESET_TTL_MINUTES", 60))
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # Seed admin account used by `flask init-db`
    ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@techformpro.fr")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "Admin123")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    STORAGE_BACKEND = "memory"
    JWT_SECRET_KEY = "test-jwt-secret-with-enough-length-for-hs256"
    MAIL_SUPPRESS_SEND = True
    LOG_LEVEL = "WARNING"
