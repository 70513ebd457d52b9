"""Tests for the database health endpoint."""
from __future__ import annotations

from unittest.mock import patch

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session


def test_database_health_endpoint_ok(client) -> None:
    response = client.get("/db-health")

    assert response.status_code == 200
    assert response.json == {"database": "ok"}


def test_database_health_endpoint_unavailable(client) -> None:
    with patch.object(
        Session,
        "execute",
        side_effect=OperationalError("SELECT 1", {}, Exception("unable to open database file")),
    ):
        response = client.get("/db-health")

    assert response.status_code == 500
    assert response.json == {"database": "unavailable"}
