"""Unit tests for AutoAcceptPolicy."""

import pytest
from conftest import make_part

from cutlist_intake.services.quality.auto_accept import AutoAcceptPolicy


class TestAutoAcceptPolicy:
    """Confidence-gated auto-accept decisions."""

    @pytest.fixture
    def policy(self) -> AutoAcceptPolicy:
        return AutoAcceptPolicy(threshold=0.95, part_floor=0.7, review_threshold=0.8)

    def test_confident_complete_parts_are_accepted(self, policy):
        decision = policy.evaluate([make_part(confidence=0.97) for _ in range(4)])

        assert decision.auto_accept is True
        assert decision.reasons == []

    def test_single_part_below_floor_blocks_high_average(self, policy):
        parts = [make_part(confidence=0.99) for _ in range(20)] + [make_part(confidence=0.5)]

        decision = policy.evaluate(parts, average_confidence=0.97)

        assert decision.auto_accept is False
        assert any("below confidence floor" in reason for reason in decision.reasons)
        assert decision.low_confidence_parts == 1

    def test_missing_required_field_blocks(self, policy):
        parts = [make_part(confidence=0.99), make_part(confidence=0.99, quantity=None)]

        decision = policy.evaluate(parts)

        assert decision.auto_accept is False
        assert any("missing" in reason for reason in decision.reasons)

    def test_low_average_blocks(self, policy):
        decision = policy.evaluate([make_part(confidence=0.9)])

        assert decision.auto_accept is False
        assert decision.reasons[0].startswith("Average confidence 0.90")

    def test_no_parts_is_never_accepted(self, policy):
        decision = policy.evaluate([])

        assert decision.auto_accept is False
        assert decision.reasons == ["No parts to evaluate"]
