"""Tests for request ID tracing middleware and log correlation."""
import logging

import pytest

from settlement.logging_config import RequestIDFilter
from settlement.middleware.request_id import request_id_var


@pytest.mark.asyncio
async def test_response_includes_request_id(client):
    """Every response should have X-Request-ID header."""
    resp = await client.get("/health")
    assert "x-request-id" in resp.headers
    assert len(resp.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_client_request_id_honored(client):
    resp = await client.get("/api/v1/affiliates/missing", headers={"X-Request-ID": "payout-trace-1"})
    assert resp.status_code == 404
    assert resp.headers["x-request-id"] == "payout-trace-1"


@pytest.mark.asyncio
async def test_unique_ids_per_request(client):
    r1 = await client.get("/health")
    r2 = await client.get("/health")
    assert r1.headers["x-request-id"] != r2.headers["x-request-id"]


def test_filter_stamps_records_inside_a_request():
    record = logging.LogRecord("settlement", logging.INFO, __file__, 1, "msg", None, None)
    token = request_id_var.set("rid-42")
    try:
        RequestIDFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert record.request_id == "rid-42"


def test_filter_leaves_records_outside_a_request():
    record = logging.LogRecord("settlement", logging.INFO, __file__, 1, "msg", None, None)
    assert RequestIDFilter().filter(record) is True
    assert not hasattr(record, "request_id")
