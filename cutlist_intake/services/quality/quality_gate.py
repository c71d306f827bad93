"""Quality gate for extraction attempts.

Decides which of the competing text extraction attempts to trust and whether
the orchestrator should spend a vision fallback on the document.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from cutlist_intake.core.config import ExtractionSettings
from cutlist_intake.models.extraction import OCR_CLASS_STRATEGIES, ExtractionAttempt, Strategy
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Lower rank wins when both attempts pass; OCR keeps table structure better
STRATEGY_PREFERENCE = {
    Strategy.REMOTE_OCR.value: 0,
    Strategy.LOCAL_TEXT.value: 1,
}


@dataclass
class QualityThresholds:
    """Thresholds the gate enforces."""
    min_text_length: Dict[str, int] = field(
        default_factory=lambda: {Strategy.LOCAL_TEXT.value: 100, Strategy.REMOTE_OCR.value: 50}
    )
    default_min_text_length: int = 50
    confidence_floor: float = 0.6
    min_chars_per_page: int = 80
    min_expected_parts: int = 2
    sufficient_parts: int = 15

    @classmethod
    def from_settings(cls, extraction: ExtractionSettings) -> "QualityThresholds":
        return cls(
            min_text_length=dict(extraction.min_text_length_by_strategy),
            confidence_floor=extraction.confidence_floor,
            min_chars_per_page=extraction.min_chars_per_page,
            min_expected_parts=extraction.min_expected_parts,
            sufficient_parts=extraction.sufficient_parts,
        )


@dataclass
class GateVerdict:
    """Accept/reject outcome for a single attempt."""
    strategy: str
    accepted: bool
    reason: str
    confidence: float = 0.0
    text_length: int = 0


@dataclass
class GateDecision:
    """Outcome of comparing competing attempts."""
    winner: Optional[ExtractionAttempt]
    verdicts: List[GateVerdict]
    should_escalate: bool = False
    reason: str = ""

    def verdict_for(self, strategy: str) -> Optional[GateVerdict]:
        return next((v for v in self.verdicts if v.strategy == strategy), None)


class QualityGate:
    """Scores extraction attempts and signals escalation.

    Attributes:
        thresholds: Quality thresholds to enforce
    """

    def __init__(self, thresholds: QualityThresholds = None):
        self.thresholds = thresholds or QualityThresholds()

    def min_text_length(self, strategy: str) -> int:
        return self.thresholds.min_text_length.get(strategy, self.thresholds.default_min_text_length)

    def evaluate(self, attempt: ExtractionAttempt) -> GateVerdict:
        """Accept or reject one attempt.

        Args:
            attempt: Attempt to score

        Returns:
            GateVerdict: Whether the attempt produced usable text
        """
        if not attempt.success:
            return GateVerdict(
                strategy=attempt.strategy,
                accepted=False,
                reason=f"strategy failed: {attempt.error or 'unknown error'}",
            )

        minimum = self.min_text_length(attempt.strategy)
        length = attempt.text_length
        if length <= minimum:
            return GateVerdict(
                strategy=attempt.strategy,
                accepted=False,
                reason=f"text too short ({length} <= {minimum} chars)",
                confidence=attempt.confidence,
                text_length=length,
            )

        return GateVerdict(
            strategy=attempt.strategy,
            accepted=True,
            reason="usable text",
            confidence=attempt.confidence,
            text_length=length,
        )

    def choose(
        self,
        attempts: Sequence[ExtractionAttempt],
        expected_pages: Optional[int] = None,
    ) -> GateDecision:
        """Pick the attempt to build on.

        The preferred strategy wins when it passed and clears the confidence
        floor. Otherwise any other passing attempt is used, and a passing but
        low-confidence preferred attempt is only used as a last resort. The
        result does not depend on the order the attempts are given in.

        Args:
            attempts: Completed attempts, in any order
            expected_pages: Page count, when known

        Returns:
            GateDecision: Winner (or None) plus the escalation signal
        """
        ranked = sorted(attempts, key=lambda a: (STRATEGY_PREFERENCE.get(a.strategy, 99), a.strategy))
        verdicts = [self.evaluate(attempt) for attempt in ranked]
        passing = [(a, v) for a, v in zip(ranked, verdicts) if v.accepted]

        winner = None
        reason = "no attempt produced usable text"
        confident = [(a, v) for a, v in passing if a.confidence >= self.thresholds.confidence_floor]
        if confident:
            winner = confident[0][0]
            reason = f"{winner.strategy} passed with confidence {winner.confidence:.2f}"
        elif passing:
            # nothing clears the floor: prefer a strategy that reports no OCR confidence
            fallback = sorted(passing, key=lambda av: av[0].strategy in OCR_CLASS_STRATEGIES)
            winner = fallback[0][0]
            reason = f"{winner.strategy} chosen below confidence floor"

        pages = expected_pages or max((a.page_count for a in attempts), default=0) or 1
        should_escalate = winner is not None and self.should_escalate(winner, pages)

        decision = GateDecision(winner=winner, verdicts=verdicts, should_escalate=should_escalate, reason=reason)
        if winner:
            LOGGER.info(
                "Quality gate check PASSED",
                extra={
                    "winner": winner.strategy,
                    "reason": reason,
                    "should_escalate": should_escalate,
                    "verdicts": [v.__dict__ for v in verdicts],
                },
            )
        else:
            LOGGER.warning(
                "Quality gate check FAILED",
                extra={"verdicts": [v.__dict__ for v in verdicts]},
            )
        return decision

    def should_escalate(self, attempt: ExtractionAttempt, expected_pages: int) -> bool:
        """Pre-parse escalation signal for OCR-class attempts.

        True when the attempt is below the confidence floor and its text is
        implausibly short for the number of pages.
        """
        if attempt.strategy not in OCR_CLASS_STRATEGIES:
            return False
        low_confidence = attempt.confidence < self.thresholds.confidence_floor
        sparse_text = attempt.text_length < max(1, expected_pages) * self.thresholds.min_chars_per_page
        return low_confidence and sparse_text

    def needs_escalation(self, decision: GateDecision, parts_count: int) -> bool:
        """Combine the pre-parse signal with the number of parts found.

        A result with at least ``sufficient_parts`` parts is never escalated.
        """
        if parts_count >= self.thresholds.sufficient_parts:
            return False
        if decision.should_escalate:
            return True
        return parts_count < self.thresholds.min_expected_parts
