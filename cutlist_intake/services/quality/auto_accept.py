"""Decides whether extracted parts may skip human review."""

from typing import Optional, Sequence

from cutlist_intake.models.parts import ExtractedPart
from cutlist_intake.models.sessions import AutoAcceptDecision
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class AutoAcceptPolicy:
    """Confidence-gated auto-accept.

    A high average is not enough: a single part below ``part_floor`` or a
    part missing a required field blocks auto-accept on its own.
    """

    def __init__(self, threshold: float = 0.95, part_floor: float = 0.7, review_threshold: float = 0.8):
        self.threshold = threshold
        self.part_floor = part_floor
        self.review_threshold = review_threshold

    def evaluate(
        self,
        parts: Sequence[ExtractedPart],
        average_confidence: Optional[float] = None,
    ) -> AutoAcceptDecision:
        """Evaluate a result set.

        Args:
            parts: Parts of a single document or a merged session
            average_confidence: Document-level confidence; defaults to the
                mean part confidence

        Returns:
            AutoAcceptDecision: Verdict with the reasons it was withheld
        """
        if not parts:
            return AutoAcceptDecision(
                auto_accept=False,
                confidence=0.0,
                threshold=self.threshold,
                reasons=["No parts to evaluate"],
            )

        if average_confidence is None:
            average_confidence = sum(p.confidence for p in parts) / len(parts)

        reasons = []
        if average_confidence < self.threshold:
            reasons.append(
                f"Average confidence {average_confidence:.2f} below threshold {self.threshold:.2f}"
            )

        below_floor = [p for p in parts if p.confidence < self.part_floor]
        if below_floor:
            reasons.append(f"{len(below_floor)} part(s) below confidence floor {self.part_floor:.2f}")

        low_confidence = [p for p in parts if p.confidence < self.review_threshold]
        if low_confidence and not below_floor:
            reasons.append(f"{len(low_confidence)} part(s) with confidence under {self.review_threshold:.2f}")

        incomplete = [p for p in parts if p.missing_required_fields()]
        if incomplete:
            reasons.append(f"{len(incomplete)} part(s) missing length, width or quantity")

        auto_accept = average_confidence >= self.threshold and not below_floor and not incomplete

        LOGGER.debug(
            "Auto-accept evaluated",
            extra={
                "auto_accept": auto_accept,
                "average_confidence": round(average_confidence, 3),
                "parts": len(parts),
            },
        )
        return AutoAcceptDecision(
            auto_accept=auto_accept,
            confidence=round(average_confidence, 4),
            threshold=self.threshold,
            reasons=reasons,
            low_confidence_parts=len(low_confidence),
        )
