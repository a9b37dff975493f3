"""Tests for structured error responses."""
from __future__ import annotations

import pytest

from settlement.errors import (
    Conflict, GenerationFailure, InsufficientFunds, InvalidState, NotFound, ValidationFailed,
)

from conftest import ADMIN_HEADERS


@pytest.mark.asyncio
async def test_404_returns_structured_error(client):
    resp = await client.post("/api/v1/orders/nonexistent-order/commissions")
    assert resp.status_code == 404
    data = resp.json()
    assert data["error"] == "not_found"
    assert "message" in data


@pytest.mark.asyncio
async def test_validation_error_returns_structured_error(client):
    resp = await client.post("/api/v1/affiliates/any/payouts", json={"amount": "-5"})
    assert resp.status_code == 422
    data = resp.json()
    assert data["error"] == "validation_error"
    assert isinstance(data["details"], list)


@pytest.mark.asyncio
async def test_invalid_pagination_returns_structured_error(client):
    resp = await client.get("/api/v1/commissions?company_id=c&limit=0", headers=ADMIN_HEADERS)
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_settling_unknown_payout(client):
    resp = await client.post(
        "/api/v1/payouts/missing/record-external", json={"transaction_id": "T"}, headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


@pytest.mark.parametrize("error, status, code", [
    (NotFound, 404, "not_found"),
    (Conflict, 409, "conflict"),
    (GenerationFailure, 409, "code_generation_failed"),
    (InvalidState, 409, "invalid_state"),
    (InsufficientFunds, 422, "insufficient_funds"),
    (ValidationFailed, 400, "validation_error"),
])
def test_error_codes(error, status, code):
    exc = error("boom")
    assert exc.status_code == status
    assert exc.code == code
    assert exc.message == "boom"
