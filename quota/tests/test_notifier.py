"""Tests for the decision webhook."""
from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from quota import notifier
from quota.models import APPROVED, REJECTED, Entrepreneurship, QuotaAssignment, User


def _payload(state=APPROVED):
    owner = User(first_name="Ana", last_name="Ruiz", email="ana@example.org", phone="555-0100")
    ent = Entrepreneurship(name="Acme")
    assignment = QuotaAssignment(entrepreneurship_id=1, tier="Growth", cohort=2, state=state)
    return notifier.decision_payload(ent, assignment, owner)


def _mock_client(post: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.post = post
    client_cls = MagicMock()
    client_cls.return_value.__aenter__.return_value = client
    return client_cls


class TestDecisionPayload:
    def test_labels(self):
        assert _payload()["action"] == "Aprobada"
        assert _payload(REJECTED)["action"] == "Rechazada"

    def test_fields(self):
        payload = _payload()
        assert payload == {
            "action": "Aprobada",
            "entrepreneurship": "Acme",
            "name": "Ana Ruiz",
            "email": "ana@example.org",
            "phone": "555-0100",
            "tier": "Growth",
            "cohort": 2,
        }

    def test_missing_owner(self):
        ent = Entrepreneurship(name="Orphan")
        assignment = QuotaAssignment(entrepreneurship_id=1, tier="Scale", cohort=1, state=APPROVED)
        payload = notifier.decision_payload(ent, assignment, None)
        assert payload["name"] == ""
        assert payload["email"] == ""


class TestSendDecision:
    @pytest.mark.asyncio
    async def test_no_url_skips(self, monkeypatch):
        monkeypatch.delenv("QUOTA_WEBHOOK_URL", raising=False)
        with patch("quota.notifier.httpx.AsyncClient") as client_cls:
            assert await notifier.send_decision(_payload()) is False
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_posts_payload(self, monkeypatch):
        monkeypatch.setenv("QUOTA_WEBHOOK_URL", "https://hooks.example.org/quota")
        post = AsyncMock(return_value=MagicMock())
        with patch("quota.notifier.httpx.AsyncClient", _mock_client(post)):
            assert await notifier.send_decision(_payload()) is True
        post.assert_awaited_once()
        assert post.await_args.args[0] == "https://hooks.example.org/quota"
        assert post.await_args.kwargs["json"]["entrepreneurship"] == "Acme"

    @pytest.mark.asyncio
    async def test_explicit_url_overrides_env(self, monkeypatch):
        monkeypatch.setenv("QUOTA_WEBHOOK_URL", "https://hooks.example.org/env")
        post = AsyncMock(return_value=MagicMock())
        with patch("quota.notifier.httpx.AsyncClient", _mock_client(post)):
            await notifier.send_decision(_payload(), url="https://hooks.example.org/direct")
        assert post.await_args.args[0] == "https://hooks.example.org/direct"

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        post = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        with patch("quota.notifier.httpx.AsyncClient", _mock_client(post)), \
             caplog.at_level(logging.WARNING, logger="quota.notifier"):
            assert await notifier.send_decision(_payload(), url="https://hooks.example.org/down") is False
        assert "Webhook notification failed for Acme" in caplog.text
