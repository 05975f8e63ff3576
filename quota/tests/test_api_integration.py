"""Integration tests for the FastAPI endpoints.

Uses TestClient with an in-memory database shared through StaticPool.
"""
from __future__ import annotations

import io
from unittest.mock import AsyncMock, patch

import openpyxl
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker

from quota.models import (
    APPROVED, AUTOMATIC, DRAFT, REVIEWER, SUBMITTED,
    Base, Entrepreneurship, Evaluation, MentorAssignment, QuotaAssignment, User,
)


@pytest.fixture()
def test_db():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, TestSession


@pytest.fixture()
def client(test_db, tmp_path, monkeypatch):
    """FastAPI TestClient using the in-memory database; notifications are mocked."""
    monkeypatch.setenv("QUOTA_DB_PATH", str(tmp_path / "lifespan.db"))
    engine, TestSession = test_db
    from quota.app import app, db_session

    def override_db_session():
        session = TestSession()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    with patch("quota.services.notifier.send_decision", new_callable=AsyncMock) as mock_send:
        with TestClient(app, raise_server_exceptions=True) as c:
            yield c, TestSession, mock_send
    app.dependency_overrides.clear()


@pytest.fixture()
def seeded_client(client):
    """Three scored ventures, one unscored, one already approved in Growth."""
    c, TestSession, mock_send = client
    session = TestSession()
    ids = {}
    for name, scores, first in (
        ("Acme", (72, 88), "Ana"),       # Scale candidate
        ("Bolt", (55,), "Beto"),         # Growth candidate
        ("Cora", (20, 30), "Caro"),      # Starter candidate
        ("Dune", (), "Dani"),            # no evaluations
        ("Echo", (65,), "Eva"),          # Growth beneficiary
    ):
        owner = User(first_name=first, last_name="Test", email=f"{first.lower()}@example.org", phone="555")
        ent = Entrepreneurship(name=name, owner=owner)
        session.add(ent)
        session.flush()
        for score in scores:
            session.add(Evaluation(entrepreneurship_id=ent.id, score=score, kind=AUTOMATIC, status=SUBMITTED))
        ids[name] = ent.id
    session.add(QuotaAssignment(entrepreneurship_id=ids["Echo"], tier="Growth", cohort=1, state=APPROVED))
    session.execute(
        Entrepreneurship.__table__.update()
        .where(Entrepreneurship.__table__.c.id == ids["Echo"])
        .values(tier="Growth")
    )
    session.commit()
    session.close()
    return c, TestSession, ids, mock_send


class TestRankingEndpoints:
    def test_rankings(self, seeded_client):
        c, _, ids, _ = seeded_client
        resp = c.get("/api/rankings")
        assert resp.status_code == 200
        data = resp.json()
        assert [r["entrepreneurship_id"] for r in data] == [ids["Acme"], ids["Echo"], ids["Bolt"], ids["Cora"]]
        assert data[0]["position"] == 1
        assert data[0]["score"] == 80.0
        assert data[0]["owner_name"] == "Ana Test"

    def test_rankings_limit(self, seeded_client):
        c, _, _, _ = seeded_client
        assert len(c.get("/api/rankings", params={"limit": 2}).json()) == 2

    def test_rankings_null_policy(self, seeded_client):
        c, TestSession, ids, _ = seeded_client
        session = TestSession()
        session.add(Evaluation(entrepreneurship_id=ids["Bolt"], score=None, kind=REVIEWER, status=SUBMITTED))
        session.commit()
        session.close()
        exclude = {r["entrepreneurship_id"]: r for r in c.get("/api/rankings").json()}
        zero = {r["entrepreneurship_id"]: r for r in c.get("/api/rankings", params={"null_scores": "zero"}).json()}
        assert exclude[ids["Bolt"]]["score"] == 55.0
        assert zero[ids["Bolt"]]["score"] == 27.5

    def test_rankings_csv(self, seeded_client):
        c, _, _, _ = seeded_client
        resp = c.get("/api/rankings/export.csv")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "attachment" in resp.headers["content-disposition"]
        lines = resp.text.splitlines()
        assert lines[0] == "Position,Entrepreneurship,Beneficiary,Email,Average Score,Evaluations"
        assert lines[1] == "1,Acme,Ana Test,ana@example.org,80.00,2"


class TestEntrepreneurshipEndpoints:
    def test_candidates_by_tier(self, seeded_client):
        c, _, ids, _ = seeded_client
        resp = c.get("/api/entrepreneurships", params={"view": "candidates", "tier": "Growth"})
        assert resp.status_code == 200
        assert [r["id"] for r in resp.json()] == [ids["Bolt"]]

    def test_beneficiaries(self, seeded_client):
        c, _, ids, _ = seeded_client
        data = c.get("/api/entrepreneurships", params={"view": "beneficiaries"}).json()
        assert [r["id"] for r in data] == [ids["Echo"]]
        assert data[0]["assigned_tier"] == "Growth"

    def test_bad_view_and_tier(self, seeded_client):
        c, _, _, _ = seeded_client
        assert c.get("/api/entrepreneurships", params={"view": "mentors"}).status_code == 400
        assert c.get("/api/entrepreneurships", params={"tier": "Gold"}).status_code == 400


class TestQuotaEndpoints:
    def test_usage(self, seeded_client):
        c, _, _, _ = seeded_client
        data = {u["tier"]: u for u in c.get("/api/quotas").json()}
        assert data["Growth"]["used"] == 1
        assert data["Growth"]["available"] == 79
        assert data["Growth"]["cohorts"]["1"]["used"] == 1
        assert data["Scale"]["has_cohorts"] is False
        assert data["Scale"]["cohorts"] == {}

    def test_board(self, seeded_client):
        c, _, ids, _ = seeded_client
        resp = c.get("/api/quotas/growth")
        assert resp.status_code == 200
        board = resp.json()
        assert [i["id"] for i in board["items"]] == [ids["Echo"], ids["Bolt"]]
        assert board["items"][0]["state"] == APPROVED
        assert board["items"][1]["state"] is None
        asc = c.get("/api/quotas/growth", params={"sort_dir": "asc"}).json()
        assert [i["id"] for i in asc["items"]] == [ids["Bolt"], ids["Echo"]]

    def test_board_unknown_tier(self, seeded_client):
        c, _, _, _ = seeded_client
        assert c.get("/api/quotas/platinum").status_code == 400

    def test_approve(self, seeded_client):
        c, _, ids, mock_send = seeded_client
        resp = c.post("/api/quotas/Scale/approve", json={"entrepreneurship_id": ids["Acme"], "actor_id": 1})
        assert resp.status_code == 200
        data = resp.json()
        assert data["state"] == APPROVED
        assert data["tier"] == "Scale"
        assert data["approved_by"] == 1
        mock_send.assert_awaited_once()
        payload = mock_send.await_args.args[0]
        assert payload["action"] == "Aprobada"
        assert payload["email"] == "ana@example.org"
        status = c.get("/api/users/1/quota-status").json()
        assert status == {"approved": True, "tier": "Scale", "cohort": 1}

    def test_approve_ineligible(self, seeded_client):
        c, _, ids, mock_send = seeded_client
        resp = c.post("/api/quotas/Starter/approve", json={"entrepreneurship_id": ids["Dune"], "cohort": 1})
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "ineligible"
        mock_send.assert_not_awaited()

    def test_approve_not_found(self, seeded_client):
        c, _, _, _ = seeded_client
        resp = c.post("/api/quotas/Scale/approve", json={"entrepreneurship_id": 999})
        assert resp.status_code == 404

    def test_approve_invalid_cohort(self, seeded_client):
        c, _, ids, _ = seeded_client
        resp = c.post("/api/quotas/Growth/approve", json={"entrepreneurship_id": ids["Bolt"], "cohort": 3})
        assert resp.status_code == 422

    def test_approve_capacity_exceeded(self, seeded_client):
        c, TestSession, ids, _ = seeded_client
        session = TestSession()
        for i in range(45):
            ent = Entrepreneurship(name=f"Filler {i}")
            session.add(ent)
            session.flush()
            session.add(QuotaAssignment(entrepreneurship_id=ent.id, tier="Scale", cohort=1, state=APPROVED))
        session.commit()
        session.close()
        resp = c.post("/api/quotas/Scale/approve", json={"entrepreneurship_id": ids["Acme"]})
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "capacity_exceeded"
        usage = {u["tier"]: u for u in c.get("/api/quotas").json()}
        assert usage["Scale"]["used"] == 45

    def test_approve_pending_reviews(self, seeded_client):
        c, TestSession, ids, _ = seeded_client
        session = TestSession()
        session.add(MentorAssignment(entrepreneurship_id=ids["Bolt"], mentor_id=1, active=True))
        session.add(Evaluation(entrepreneurship_id=ids["Bolt"], score=60, kind=REVIEWER, status=DRAFT))
        session.commit()
        session.close()
        resp = c.post("/api/quotas/Growth/approve", json={"entrepreneurship_id": ids["Bolt"], "cohort": 2})
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "pending_evaluations"

    def test_reject_twice(self, seeded_client):
        c, _, ids, mock_send = seeded_client
        first = c.post("/api/quotas/Starter/reject", json={"entrepreneurship_id": ids["Cora"]})
        second = c.post("/api/quotas/Starter/reject", json={"entrepreneurship_id": ids["Cora"]})
        assert first.status_code == second.status_code == 200
        assert first.json()["id"] == second.json()["id"]
        assert second.json()["state"] == "rejected"
        assert second.json()["cohort"] == 1
        assert mock_send.await_count == 1

    def test_approve_then_reject_returns_to_classified_board(self, seeded_client):
        c, _, ids, _ = seeded_client
        assert c.post("/api/quotas/Growth/approve", json={"entrepreneurship_id": ids["Acme"], "cohort": 1}).status_code == 200
        assert ids["Acme"] not in [i["id"] for i in c.get("/api/quotas/Scale").json()["items"]]
        assert c.post("/api/quotas/Growth/reject", json={"entrepreneurship_id": ids["Acme"]}).status_code == 200
        scale_ids = [i["id"] for i in c.get("/api/quotas/Scale").json()["items"]]
        assert scale_ids == [ids["Acme"]]
        rows = c.get("/api/entrepreneurships", params={"tier": "Scale"}).json()
        assert [r["id"] for r in rows] == [ids["Acme"]]

    def test_approve_without_cohort(self, seeded_client):
        c, _, ids, _ = seeded_client
        resp = c.post("/api/quotas/Growth/approve", json={"entrepreneurship_id": ids["Bolt"]})
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "invalid_cohort"

    def test_board_csv_export(self, seeded_client):
        c, _, _, _ = seeded_client
        resp = c.get("/api/quotas/Growth/export.csv", params={"state": "approved"})
        assert resp.status_code == 200
        lines = resp.text.splitlines()
        assert lines[0].endswith(",Cohort")
        assert len(lines) == 2
        assert lines[1].startswith("Echo,Eva Test,65.00,1,")

    def test_board_xlsx_export(self, seeded_client):
        c, _, _, _ = seeded_client
        resp = c.get("/api/quotas/Growth/export.xlsx")
        assert resp.status_code == 200
        wb = openpyxl.load_workbook(io.BytesIO(resp.content))
        assert wb.sheetnames == ["Growth - Todos", "Growth - Approved", "Growth - Rejected", "Growth - Pending"]
        assert wb["Growth - Todos"].max_row == 3
        assert wb["Growth - Approved"].max_row == 2

    def test_quota_status_without_venture(self, seeded_client):
        c, _, _, _ = seeded_client
        assert c.get("/api/users/999/quota-status").json() == {"approved": False, "tier": None, "cohort": None}


class TestProgressAndStats:
    def test_progress(self, seeded_client):
        c, _, ids, _ = seeded_client
        data = c.get("/api/progress", params={"filter": "pending"}).json()
        assert data["summary"] == {"total": 5, "without_evaluations": 1, "with_evaluations": 4}
        assert [i["entrepreneurship_id"] for i in data["items"]] == [ids["Dune"]]

    def test_progress_bad_sort(self, seeded_client):
        c, _, _, _ = seeded_client
        assert c.get("/api/progress", params={"sort_by": "mentor"}).status_code == 400

    def test_stats(self, seeded_client):
        c, _, _, _ = seeded_client
        data = c.get("/api/stats").json()
        assert data["total"] == 5
        assert data["evaluated"] == 4
        assert data["beneficiaries"] == 1
        assert data["approved_by_tier"] == {"Growth": 1}
        assert data["candidates_by_tier"] == {"Scale": 1, "Growth": 1, "Starter": 1}
