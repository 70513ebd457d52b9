"""Smoke tests for the health endpoints."""
from __future__ import annotations


def test_health_endpoint(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json == {"status": "ok"}


def test_health_needs_no_token(client) -> None:
    response = client.get("/health", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 200
