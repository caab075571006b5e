"""Tests for tiers and the monthly quota."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from mcpeverything.errors import QuotaExceededError
from mcpeverything.tiers import UsageLedger, UsageRecord, UserTier, parse_tier, tier_status

MARCH = datetime(2026, 3, 15)
APRIL = datetime(2026, 4, 1)


@pytest.fixture
def ledger(tmp_path: Path) -> UsageLedger:
    """Ledger stored under tmp_path."""
    return UsageLedger(tmp_path / "state" / "usage.json")


class TestParseTier:
    """Tests for parse_tier."""

    def test_known_tiers(self) -> None:
        """Test case-insensitive tier names."""
        assert parse_tier("free") is UserTier.FREE
        assert parse_tier(" PRO ") is UserTier.PRO
        assert parse_tier("Enterprise") is UserTier.ENTERPRISE

    def test_unknown_tier(self) -> None:
        """Test that unknown names list the valid ones."""
        with pytest.raises(ValueError, match="expected one of: free, pro, enterprise"):
            parse_tier("gold")


class TestUsageLedger:
    """Tests for UsageLedger."""

    def test_empty_ledger(self, ledger: UsageLedger) -> None:
        """Test that a missing file means no usage."""
        usage = ledger.current_usage(MARCH)

        assert usage == UsageRecord(period="2026-03", servers_generated=0)

    def test_record_generation(self, ledger: UsageLedger) -> None:
        """Test that generations are counted and persisted."""
        ledger.record_generation(MARCH)
        usage = ledger.record_generation(MARCH)

        assert usage.servers_generated == 2
        assert json.loads(ledger.path.read_text()) == {"period": "2026-03", "servers_generated": 2}

    def test_free_tier_limit(self, ledger: UsageLedger) -> None:
        """Test that the free tier stops after five servers a month."""
        for _ in range(4):
            ledger.record_generation(MARCH)
        ledger.check_quota(UserTier.FREE, MARCH)
        ledger.record_generation(MARCH)

        with pytest.raises(QuotaExceededError, match="monthly limit of 5 servers") as exc_info:
            ledger.check_quota(UserTier.FREE, MARCH)

        assert exc_info.value.stage == "quota"

    def test_paid_tiers_are_unlimited(self, ledger: UsageLedger) -> None:
        """Test that pro and enterprise never hit the quota."""
        for _ in range(7):
            ledger.record_generation(MARCH)

        assert ledger.check_quota(UserTier.PRO, MARCH).servers_generated == 7
        assert ledger.check_quota(UserTier.ENTERPRISE, MARCH).servers_generated == 7

    def test_new_month_resets(self, ledger: UsageLedger) -> None:
        """Test that the counter starts over in a new month."""
        for _ in range(5):
            ledger.record_generation(MARCH)

        usage = ledger.check_quota(UserTier.FREE, APRIL)

        assert usage == UsageRecord(period="2026-04", servers_generated=0)

    def test_unreadable_file(self, ledger: UsageLedger) -> None:
        """Test that a corrupt ledger is treated as empty."""
        ledger.path.parent.mkdir(parents=True)
        ledger.path.write_text("not json")

        assert ledger.current_usage(MARCH).servers_generated == 0


class TestTierStatus:
    """Tests for tier_status."""

    def test_free(self) -> None:
        """Test the remaining count for the free tier."""
        status = tier_status(UserTier.FREE, UsageRecord("2026-03", 3))

        assert status == "Free tier: 3/5 servers this month (2 remaining)"

    def test_unlimited(self) -> None:
        """Test paid tier status."""
        status = tier_status(UserTier.PRO, UsageRecord("2026-03", 12))

        assert status == "Pro tier: 12 servers this month (unlimited)"
