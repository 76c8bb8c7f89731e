"""
Matching Policy

Thresholds and bounds shared by the confidence scorer, the candidate
generator and the auto-match runner.

Confidence bands:
- >= 0.95: auto-committed by the batch runner
- 0.60 - 0.95: suggested for human review
- < 0.60: not suggested
"""

from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, Optional


class MatchReason:
    """Reason tags recorded on audit entries."""
    MANUAL = "manual_match"
    AUTO_HIGH_CONFIDENCE = "auto_match_high_confidence"


@dataclass(frozen=True)
class MatchPolicy:
    """
    Configuration for a matching run.
    """
    suggest_floor: float = 0.60
    auto_match_threshold: float = 0.95
    confidence_cap: float = 0.99

    default_suggestion_limit: int = 8
    max_suggestion_limit: int = 20
    ledger_pool_limit: int = 500
    transaction_pool_limit: int = 50

    default_auto_match_limit: int = 25
    max_auto_match_limit: int = 100

    scoring_workers: int = 4
    commit_max_attempts: int = 3

    def clamp_suggestion_limit(self, limit: Optional[int]) -> int:
        """Missing or zero means the default; otherwise clamp into [1, max]."""
        if not limit:
            return self.default_suggestion_limit
        return max(1, min(self.max_suggestion_limit, int(limit)))

    def clamp_auto_match_limit(self, limit: Optional[int]) -> int:
        if not limit:
            return self.default_auto_match_limit
        return max(1, min(self.max_auto_match_limit, int(limit)))

    def is_suggestible(self, confidence: float) -> bool:
        return confidence >= self.suggest_floor

    def is_auto_committable(self, confidence: float) -> bool:
        return confidence >= self.auto_match_threshold

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def policy_from_settings(settings) -> MatchPolicy:
    """Build the policy from application settings, keeping defaults for the rest."""
    return replace(
        MatchPolicy(),
        suggest_floor=settings.MATCH_SUGGEST_FLOOR,
        auto_match_threshold=settings.MATCH_AUTO_THRESHOLD,
        ledger_pool_limit=settings.MATCH_LEDGER_POOL_LIMIT,
        transaction_pool_limit=settings.MATCH_TRANSACTION_POOL_LIMIT,
        scoring_workers=settings.MATCH_SCORING_WORKERS,
        commit_max_attempts=settings.MATCH_COMMIT_MAX_ATTEMPTS,
    )


# Global default policy
default_policy = MatchPolicy()
