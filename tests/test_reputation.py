"""
Tests for reputation metrics.
"""
from datetime import datetime, timedelta

from swapsmith_api.reputation import activity_label, calculate_reputation_metrics, trust_label

NOW = datetime(2026, 10, 19, 12, 0)


def entry(status: str, volume_usd=None, days_ago: int = 1) -> dict:
    return {"status": status, "volume_usd": volume_usd, "created_at": NOW - timedelta(days=days_ago)}


class TestCalculateReputation:

    def test_no_history(self):
        metrics = calculate_reputation_metrics([], now=NOW)

        assert metrics["trustScore"] == 0
        assert metrics["trustLabel"] == "New User"
        assert metrics["totalSwaps"] == 0
        assert metrics["recentActivity"] == "inactive"
        assert metrics["lastSwapDate"] is None

    def test_mixed_history(self):
        entries = [
            entry("settled", 1000.0),
            entry("settled", 1000.0),
            entry("completed", 1000.0),
            entry("failed", 500.0),
            entry("pending", 200.0),
        ]

        metrics = calculate_reputation_metrics(entries, now=NOW)

        # 75% success -> 45, 3000 USD -> 6, 4 finished swaps -> 4
        assert metrics["trustScore"] == 55
        assert metrics["trustLabel"] == "Fair"
        assert metrics["successRate"] == 75.0
        assert metrics["successfulSwaps"] == 3
        assert metrics["failedSwaps"] == 1
        assert metrics["pendingSwaps"] == 1
        assert metrics["totalVolumeSwapped"] == 3000.0
        assert metrics["avgSwapValue"] == 1000.0
        assert metrics["recentActivity"] == "active"

    def test_pending_only_scores_zero(self):
        metrics = calculate_reputation_metrics([entry("pending"), entry("processing")], now=NOW)

        assert metrics["trustScore"] == 0
        assert metrics["successRate"] == 0.0
        assert metrics["pendingSwaps"] == 2

    def test_missing_volume_counts_as_zero(self):
        metrics = calculate_reputation_metrics([entry("settled", None)], now=NOW)
        assert metrics["totalVolumeSwapped"] == 0.0

    def test_old_swaps_not_recent(self):
        entries = [entry("settled", 10.0, days_ago=45), entry("settled", 10.0, days_ago=2)]

        metrics = calculate_reputation_metrics(entries, now=NOW)

        assert metrics["recentSwaps"] == 1
        assert metrics["recentActivity"] == "moderate"
        assert metrics["lastSwapDate"] == NOW - timedelta(days=2)

    def test_perfect_record(self):
        entries = [entry("settled", 1000.0) for _ in range(20)]

        metrics = calculate_reputation_metrics(entries, now=NOW)

        assert metrics["trustScore"] == 100
        assert metrics["trustLabel"] == "Excellent"


class TestLabels:

    def test_trust_labels(self):
        assert trust_label(80) == "Excellent"
        assert trust_label(60) == "Good"
        assert trust_label(40) == "Fair"
        assert trust_label(1) == "Building"
        assert trust_label(0) == "New User"

    def test_activity_labels(self):
        assert activity_label(5) == "active"
        assert activity_label(1) == "moderate"
        assert activity_label(0) == "inactive"
