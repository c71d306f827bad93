"""Unit tests for the extraction quality gate."""

import pytest

from cutlist_intake.models.extraction import ExtractionAttempt, Strategy
from cutlist_intake.services.quality.quality_gate import QualityGate, QualityThresholds

TABLE_TEXT = "\n".join(f"{i} | Carcass side | 720 | 560 | 18 | 2" for i in range(1, 9))

LOCAL = Strategy.LOCAL_TEXT.value
REMOTE = Strategy.REMOTE_OCR.value


def attempt(strategy: str, text: str = TABLE_TEXT, confidence: float = 0.9, page_count: int = 1, **kwargs):
    return ExtractionAttempt(strategy=strategy, text=text, confidence=confidence, page_count=page_count, **kwargs)


class TestQualityGateChoose:
    """Winner selection between local text and remote OCR."""

    @pytest.fixture
    def gate(self) -> QualityGate:
        return QualityGate(QualityThresholds())

    def test_local_wins_when_ocr_failed(self, gate):
        decision = gate.choose([attempt(LOCAL), ExtractionAttempt.failed(REMOTE, "service down")])

        assert decision.winner.strategy == LOCAL
        assert decision.verdict_for(REMOTE).accepted is False
        assert "service down" in decision.verdict_for(REMOTE).reason

    def test_confident_ocr_is_preferred_in_any_order(self, gate):
        local, remote = attempt(LOCAL), attempt(REMOTE, confidence=0.9)

        assert gate.choose([local, remote]).winner.strategy == REMOTE
        assert gate.choose([remote, local]).winner.strategy == REMOTE

    def test_low_confidence_ocr_loses_to_confident_local(self, gate):
        decision = gate.choose([attempt(REMOTE, confidence=0.4), attempt(LOCAL, confidence=0.8)])

        assert decision.winner.strategy == LOCAL

    def test_below_floor_fallback_prefers_non_ocr_strategy(self, gate):
        decision = gate.choose([attempt(REMOTE, confidence=0.4), attempt(LOCAL, confidence=0.5)])

        assert decision.winner.strategy == LOCAL
        assert "below confidence floor" in decision.reason

    def test_text_at_minimum_length_is_rejected(self, gate):
        decision = gate.choose([attempt(LOCAL, text="x" * 100), ExtractionAttempt.failed(REMOTE, "off")])

        assert decision.winner is None
        assert decision.verdict_for(LOCAL).reason.startswith("text too short")

    def test_sparse_low_confidence_ocr_signals_escalation(self, gate):
        sparse = attempt(REMOTE, text="y" * 100, confidence=0.4, page_count=3)

        decision = gate.choose([sparse, ExtractionAttempt.failed(LOCAL, "no text layer")])

        assert decision.winner.strategy == REMOTE
        assert decision.should_escalate is True

    def test_local_text_never_signals_escalation_before_parsing(self, gate):
        decision = gate.choose([attempt(LOCAL, confidence=0.3)])

        assert decision.should_escalate is False


class TestQualityGateEscalation:
    """Post-parse escalation decisions."""

    @pytest.fixture
    def gate(self) -> QualityGate:
        return QualityGate(QualityThresholds(min_expected_parts=2, sufficient_parts=15))

    def test_sufficient_parts_are_never_escalated(self, gate):
        decision = gate.choose([attempt(REMOTE, text="y" * 100, confidence=0.4, page_count=3)])

        assert decision.should_escalate is True
        assert gate.needs_escalation(decision, parts_count=15) is False

    def test_too_few_parts_escalate(self, gate):
        decision = gate.choose([attempt(LOCAL)])

        assert gate.needs_escalation(decision, parts_count=1) is True
        assert gate.needs_escalation(decision, parts_count=5) is False
