"""Tests for token accounting."""

import pytest

from agent.tokens import TokenTracker, TokenUsage


class TestTokenUsage:
    """Additive counters and cost."""

    def test_add_and_total(self):
        """add() sums every counter in place."""
        usage = TokenUsage(input=10, output=5)
        usage.add(TokenUsage(input=1, output=2, cache_reads=3, cache_writes=4))
        assert usage.to_dict() == {"input": 11, "output": 7, "cache_reads": 3, "cache_writes": 4}
        assert usage.total == 25

    def test_cost(self):
        """Cost uses per-million pricing."""
        usage = TokenUsage(input=1_000_000, output=1_000_000)
        assert usage.cost() == pytest.approx(18.0)
        assert usage.cost({"input": 1, "output": 1, "cache_reads": 0, "cache_writes": 0}) == pytest.approx(2.0)

    def test_str(self):
        """String form is used in logs."""
        assert str(TokenUsage(input=3, output=4)).endswith("COST: $0.00")


class TestTokenTracker:
    """Usage tree."""

    def test_totals_roll_up(self):
        """A parent's total includes every descendant."""
        root = TokenTracker("main")
        tool = root.child("agentExecute")
        sub = tool.child("agent:1234")
        root.add(TokenUsage(input=100, output=10))
        sub.add(TokenUsage(input=50, output=5))

        assert root.total_usage().to_dict()["input"] == 150
        assert tool.total_usage().input == 50
        assert root.usage.input == 100

    def test_total_usage_is_a_copy(self):
        """Mutating a total never changes the tracker."""
        root = TokenTracker()
        root.add(TokenUsage(input=1))
        root.total_usage().add(TokenUsage(input=100))
        assert root.total_usage().input == 1

    def test_summary_skips_empty_children(self):
        """Children with no usage are left out of the summary."""
        root = TokenTracker("main")
        root.child("think")
        root.child("shellStart").add(TokenUsage(output=2))
        summary = root.summary()
        assert "shellStart" in summary
        assert "think" not in summary
