from __future__ import annotations

import logging
from typing import Any

import httpx

from quota import config
from quota.models import APPROVED, REJECTED, Entrepreneurship, QuotaAssignment, User

log = logging.getLogger(__name__)

_USER_AGENT = "QuotaBot/1.0"

ACTION_LABELS = {APPROVED: "Aprobada", REJECTED: "Rechazada"}


def decision_payload(ent: Entrepreneurship, assignment: QuotaAssignment, owner: User | None) -> dict[str, Any]:
    return {
        "action": ACTION_LABELS.get(assignment.state, assignment.state),
        "entrepreneurship": ent.name,
        "name": owner.full_name if owner else "",
        "email": owner.email if owner else "",
        "phone": owner.phone if owner else "",
        "tier": assignment.tier,
        "cohort": assignment.cohort,
    }


async def send_decision(payload: dict[str, Any], url: str | None = None) -> bool:
    """POST a decision to the configured webhook. Returns False instead of raising on failure."""
    url = url if url is not None else config.webhook_url()
    if not url:
        log.debug("No webhook configured, skipping %s notification", payload.get("action"))
        return False
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(config.webhook_timeout()),
            headers={"User-Agent": _USER_AGENT},
        ) as client:
            resp = await client.post(url, json=payload)
            resp.raise_for_status()
    except Exception as exc:
        log.warning("Webhook notification failed for %s: %s", payload.get("entrepreneurship"), exc)
        return False
    return True
