"""pytest configuration: application, client, user and token fixtures."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the app package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app import create_app  # noqa: E402
from app.auth import build_token  # noqa: E402
from app.config import TestingConfig  # noqa: E402
from app.extensions import db  # noqa: E402
from app.models import Product, User  # noqa: E402


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(user_id: str = "user-1", *, role: str = "customer") -> str:
        with app.app_context():
            db.session.add(User(id=user_id, email=f"{user_id}@example.com", role=role))
            db.session.commit()
        return user_id

    return _make_user


@pytest.fixture
def make_product(app):
    def _make_product(title: str = "Argan Oil", *, price_cents: int = 2500, is_active: bool = True) -> str:
        with app.app_context():
            product = Product(title=title, price_cents=price_cents, is_active=is_active)
            db.session.add(product)
            db.session.commit()
            return product.id

    return _make_product


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user_id: str, **claims: object) -> dict[str, str]:
        with app.app_context():
            token = build_token({"sub": user_id, **claims})
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
