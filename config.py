import os
from dotenv import load_dotenv

# Load .env variables (optional .env file in project root)
load_dotenv()

class Config:
    """Base configuration shared across environments."""
    SECRET_KEY = os.getenv("SECRET_KEY", "clinic-desk-local")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False  # turn True only when debugging SQL

    # sql | redis | memory
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "sql")
    STORAGE_KEY_PREFIX = os.getenv("STORAGE_KEY_PREFIX", "os_")

    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
    REDIS_DB = int(os.getenv("REDIS_DB", 0))

    CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Asia/Kolkata")
    REMINDER_HOURS_AHEAD = int(os.getenv("REMINDER_HOURS_AHEAD", 48))
    # Gap the caller leaves between two dispatches of a "send all" batch
    DISPATCH_STAGGER_MS = int(os.getenv("DISPATCH_STAGGER_MS", 800))

    LOG_DIR = os.getenv("LOG_DIR", "logs")

class DevConfig(Config):
    """Local development configuration"""
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///clinic_desk.db")
    DEBUG = True

class ProdConfig(Config):
    """On-device configuration used by the packaged app"""
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///clinic_desk.db"
    )
    DEBUG = False

class TestConfig(Config):
    """Isolated configuration for the test-suite"""
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STORAGE_BACKEND = "memory"
    CLINIC_TIMEZONE = "UTC"
    TESTING = True
    DEBUG = False
