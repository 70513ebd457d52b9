"""Application configuration, read from the environment (and ``.env``)."""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _database_url() -> str:
    url = os.environ.get("DATABASE_URL", "sqlite:///coin_studio.db")
    # Some hosts still hand out the pre-1.4 scheme.
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


class Config:
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")

    # Bearer tokens from the identity provider expire after this many seconds.
    AUTH_TOKEN_MAX_AGE = int(os.environ.get("AUTH_TOKEN_MAX_AGE", 86400))

    DEFAULT_APPOINTMENT_COINS = int(os.environ.get("DEFAULT_APPOINTMENT_COINS", 20))
    LEDGER_MAX_ATTEMPTS = int(os.environ.get("LEDGER_MAX_ATTEMPTS", 3))

    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    SWAGGER = {"title": "Coin Studio API", "uiversion": 3}


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = "test-secret-key"
