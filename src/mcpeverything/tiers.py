"""Subscription tiers and the monthly generation quota.

Free tier: 5 servers per month
Pro and Enterprise tiers: unlimited servers

Usage is kept in a small JSON ledger holding a counter and the month it
counts for. The counter starts over whenever the month changes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import QuotaExceededError

logger = logging.getLogger(__name__)

UPGRADE_MESSAGE = "Upgrade to Pro for unlimited deployments."


class UserTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    @property
    def display_name(self) -> str:
        return self.value.title()


@dataclass(frozen=True)
class TierLimits:
    """What a tier allows."""

    monthly_server_limit: Optional[int]  # None means unlimited

    @property
    def unlimited(self) -> bool:
        return self.monthly_server_limit is None


TIER_CONFIG: dict[UserTier, TierLimits] = {
    UserTier.FREE: TierLimits(monthly_server_limit=5),
    UserTier.PRO: TierLimits(monthly_server_limit=None),
    UserTier.ENTERPRISE: TierLimits(monthly_server_limit=None),
}


def current_period(now: Optional[datetime] = None) -> str:
    """Usage period for a moment, as ``YYYY-MM``."""
    return (now or datetime.now()).strftime("%Y-%m")


def parse_tier(value: str) -> UserTier:
    """Tier from its name.

    Raises:
        ValueError: For unknown tier names.
    """
    try:
        return UserTier(value.strip().lower())
    except ValueError:
        valid = ", ".join(tier.value for tier in UserTier)
        raise ValueError(f"Unknown tier: {value} (expected one of: {valid})") from None


@dataclass
class UsageRecord:
    """Generations counted in one period."""

    period: str
    servers_generated: int = 0


class UsageLedger:
    """Generation counter persisted as JSON."""

    def __init__(self, path: Path):
        """Initialize the ledger.

        Args:
            path: JSON file holding the counter; created on first write.
        """
        self.path = path

    def _read(self) -> Optional[UsageRecord]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return UsageRecord(
                period=str(data["period"]),
                servers_generated=int(data.get("servers_generated", 0)),
            )
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable usage ledger {self.path}: {e}")
            return None

    def _write(self, record: UsageRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"period": record.period, "servers_generated": record.servers_generated}, f, indent=2)

    def current_usage(self, now: Optional[datetime] = None) -> UsageRecord:
        """Usage for the current period, starting over if the stored period ended."""
        period = current_period(now)
        record = self._read()
        if record is None or record.period != period:
            if record is not None:
                logger.info(f"Usage period changed from {record.period} to {period}, resetting counter")
            record = UsageRecord(period=period)
        return record

    def check_quota(self, tier: UserTier, now: Optional[datetime] = None) -> UsageRecord:
        """Ensure the tier may generate another server this period.

        Returns:
            The current usage record.

        Raises:
            QuotaExceededError: If the tier's monthly limit is reached.
        """
        usage = self.current_usage(now)
        limits = TIER_CONFIG[tier]
        if limits.unlimited:
            return usage

        if usage.servers_generated >= limits.monthly_server_limit:
            raise QuotaExceededError(
                f"You have reached your monthly limit of {limits.monthly_server_limit} servers. "
                f"{UPGRADE_MESSAGE}"
            )
        return usage

    def record_generation(self, now: Optional[datetime] = None) -> UsageRecord:
        """Count one generated server in the current period."""
        usage = self.current_usage(now)
        usage.servers_generated += 1
        self._write(usage)
        logger.info(f"Recorded generation: {usage.servers_generated} this period ({usage.period})")
        return usage


def tier_status(tier: UserTier, usage: UsageRecord) -> str:
    """One-line description of a tier's usage."""
    limits = TIER_CONFIG[tier]
    if limits.unlimited:
        return f"{tier.display_name} tier: {usage.servers_generated} servers this month (unlimited)"
    remaining = max(0, limits.monthly_server_limit - usage.servers_generated)
    return (
        f"{tier.display_name} tier: {usage.servers_generated}/{limits.monthly_server_limit} "
        f"servers this month ({remaining} remaining)"
    )
