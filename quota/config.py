"""Program configuration: tier capacities, score thresholds, and environment settings."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------

STARTER = "Starter"
GROWTH = "Growth"
SCALE = "Scale"

# Ordered bottom to top
TIERS = (STARTER, GROWTH, SCALE)

COHORTS = (1, 2)

# classify(): score >= SCALE_THRESHOLD -> Scale, >= GROWTH_THRESHOLD -> Growth
SCALE_THRESHOLD = 70.0
GROWTH_THRESHOLD = 40.0

RANKING_LIMIT = 100


@dataclass(frozen=True)
class TierCapacity:
    tier: str
    max_slots: int
    max_per_cohort: int | None = None

    @property
    def has_cohorts(self) -> bool:
        return self.max_per_cohort is not None


CAPACITIES: dict[str, TierCapacity] = {
    STARTER: TierCapacity(STARTER, max_slots=100, max_per_cohort=50),
    GROWTH: TierCapacity(GROWTH, max_slots=80, max_per_cohort=40),
    SCALE: TierCapacity(SCALE, max_slots=45),
}


def normalize_tier(name: str) -> str:
    """Match a tier name case-insensitively. Raises ValueError if unknown."""
    for tier in TIERS:
        if tier.casefold() == (name or "").strip().casefold():
            return tier
    raise ValueError(f"Unknown tier '{name}' (expected one of: {', '.join(TIERS)})")


def get_capacity(tier: str) -> TierCapacity:
    return CAPACITIES[normalize_tier(tier)]


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

DATA_DIR = Path(__file__).parent / "data"


def db_path() -> Path:
    return Path(os.environ.get("QUOTA_DB_PATH", "") or DATA_DIR / "quota.db")


def webhook_url() -> str:
    return os.environ.get("QUOTA_WEBHOOK_URL", "").strip()


def webhook_timeout() -> float:
    try:
        return float(os.environ.get("QUOTA_WEBHOOK_TIMEOUT", "10"))
    except ValueError:
        return 10.0
