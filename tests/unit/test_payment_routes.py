#!/usr/bin/env python3
"""
Unit tests for the admin payment routes.
"""

import pytest
from fastapi.testclient import TestClient

from teambot.core.config import settings
from teambot.main import app
from tests.fixtures.doubles import BusyScheduler, make_scheduler, make_tx


@pytest.fixture
def client(ledger, sheet, notifier):
    app.state.ledger = ledger
    app.state.messenger = notifier
    app.state.sheet = sheet
    app.state.scheduler = make_scheduler(ledger, sheet, notifier)
    return TestClient(app, headers={"X-Admin-Token": settings.ADMIN_TOKEN})


class TestAdminAccess:
    def test_missing_token(self, client):
        response = client.get("/payments/watermark", headers={"X-Admin-Token": ""})
        assert response.status_code == 403

    def test_wrong_token(self, client):
        response = client.get("/payments/watermark", headers={"X-Admin-Token": "nope"})
        assert response.status_code == 403


class TestPaymentRoutes:
    def test_watermark_empty_ledger(self, client):
        response = client.get("/payments/watermark")

        assert response.status_code == 200
        assert response.json() == {"last_order": None, "default_order": settings.DEFAULT_LAST_ORDER}

    def test_check_then_watermark(self, client, ledger, sheet):
        ledger.set_account_name("1/100", "Alice")
        app.state.scheduler.reconciler.fetcher.transactions = [make_tx(10, 100, account="1/100"), make_tx(0, 0)]

        response = client.post("/payments/check")

        assert response.status_code == 200
        body = response.json()
        assert (body["new"], body["applied"], body["failed"]) == (1, 1, 0)
        assert client.get("/payments/watermark").json()["last_order"] == 10

    def test_unprocessed_and_sweep(self, client, ledger, sheet):
        ledger.set_account_name("1/100", "Alice")
        sheet.failing_columns.add(0)
        app.state.scheduler.reconciler.fetcher.transactions = [make_tx(10, 100, account="1/100"), make_tx(0, 0)]
        client.post("/payments/check")

        pending = client.get("/payments/unprocessed").json()
        assert [(p["accounted_order"], p["name"], p["processed_at"]) for p in pending] == [(10, "Alice", None)]

        sheet.failing_columns.clear()
        response = client.post("/payments/sweep")
        assert response.json()["applied"] == 1
        assert client.get("/payments/unprocessed").json() == []

    def test_check_while_running(self, client):
        app.state.scheduler = BusyScheduler()
        assert client.post("/payments/check").status_code == 409
        assert client.post("/payments/sweep").status_code == 409
