"""
Seller Risk Gate - risk/control status of users and the bidding gate.

Conceptual Background:
---------------------
Every user may carry:
- a risk score (0-100) with a derived level (low / medium / high), and
- a control row: status (normal / limited / blocked / flagged), cumulative
  penalty points and an optional cooldown window.

A user may bid unless they are blocked, or limited while a cooldown is
running:

    allowed = not (status == blocked or (status == limited and cooldown_active))

Penalties escalate the control row:

    severity high   or points >= 10  -> blocked
    severity medium or points >= 5   -> limited
    otherwise                        -> status unchanged

and extend the cooldown by a severity-dependent number of days. Cooldowns
only ever move later, never earlier.

Summaries are cached for 30 seconds (eventually consistent); the gate's
own write paths invalidate the affected user.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from bidengine.core.cache import TTLCache
from bidengine.core.errors import RestrictionError, require
from bidengine.core.records import ControlStatus, SellerPenalty, UserControls, to_iso, utc_now
from bidengine.crypto import new_id
from bidengine.utils.logger import get_logger
from bidengine.utils.validation import (
    validate_id,
    validate_integer,
    validate_severity,
    validate_string,
)

logger = get_logger("risk")


# =============================================================================
# Constants
# =============================================================================

DEFAULT_RISK_CACHE_TTL = 30.0

# Base cooldown length per severity (days)
BASE_COOLDOWN_DAYS = {"low": 3, "medium": 7, "high": 14}

BLOCK_THRESHOLD = 10
LIMIT_THRESHOLD = 5

# Risk score -> level cut-offs
HIGH_RISK_SCORE = 70
MEDIUM_RISK_SCORE = 40

# Escalation order; a penalty never moves a user down this list
_STATUS_RANK = {
    ControlStatus.NORMAL.value: 0,
    ControlStatus.FLAGGED.value: 1,
    ControlStatus.LIMITED.value: 2,
    ControlStatus.BLOCKED.value: 3,
}


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class RiskSummary:
    """Derived view over a user's risk score and control row."""
    seller_id: str
    risk_score: Optional[float]
    risk_level: Optional[str]
    status: str
    penalty_points: int
    cooldown_until: Optional[datetime]
    cooldown_reason: Optional[str]
    cooldown_active: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sellerId": self.seller_id,
            "riskScore": self.risk_score,
            "riskLevel": self.risk_level,
            "status": self.status,
            "penaltyPoints": self.penalty_points,
            "cooldownUntil": to_iso(self.cooldown_until),
            "cooldownReason": self.cooldown_reason,
            "cooldownActive": self.cooldown_active,
        }


@dataclass(frozen=True)
class RestrictionStatus:
    """Outcome of the bidding gate."""
    allowed: bool
    status: str
    cooldown_active: bool = False
    cooldown_until: Optional[datetime] = None

    def to_error(self) -> RestrictionError:
        if self.status == ControlStatus.BLOCKED.value:
            message = "Your account is blocked from bidding"
        else:
            message = "Your account is restricted from bidding until the cooldown ends"
        return RestrictionError(
            message,
            status=self.status,
            cooldown_active=self.cooldown_active,
            cooldown_until=to_iso(self.cooldown_until),
        )


def risk_level_for(score: float) -> str:
    """Map a 0-100 risk score to its level."""
    if score >= HIGH_RISK_SCORE:
        return "high"
    if score >= MEDIUM_RISK_SCORE:
        return "medium"
    return "low"


def escalate_status(current: str, severity: str, next_points: int) -> str:
    """Status after a penalty; never less severe than `current`."""
    if severity == "high" or next_points >= BLOCK_THRESHOLD:
        target = ControlStatus.BLOCKED.value
    elif severity == "medium" or next_points >= LIMIT_THRESHOLD:
        target = ControlStatus.LIMITED.value
    else:
        return current

    if _STATUS_RANK.get(target, 0) >= _STATUS_RANK.get(current, 0):
        return target
    return current


# =============================================================================
# Gate
# =============================================================================


class SellerRiskGate:
    """
    Computes, caches and mutates user risk/control state.

    Args:
        storage: StorageManager
        cache: TTL cache for summaries (defaults to a private 30 s cache)
        clock: Returns the current UTC datetime
    """

    def __init__(
        self,
        storage,
        cache: Optional[TTLCache] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.cache = cache if cache is not None else TTLCache(ttl=DEFAULT_RISK_CACHE_TTL)
        self.clock = clock

    # =========================================================================
    # Reads
    # =========================================================================

    def get_seller_risk_summary(self, user_id: str) -> Optional[RiskSummary]:
        """
        Cached risk summary, or None when the user has no records at all.

        cooldown_active is evaluated when the summary is loaded.
        """
        if self.cache.contains(user_id):
            return self.cache.get(user_id)

        score = self.storage.get_risk_score(user_id)
        controls = self.storage.get_user_controls(user_id)

        if score is None and controls is None:
            summary = None
        else:
            now = self.clock()
            cooldown_until = controls.cooldown_until if controls else None
            summary = RiskSummary(
                seller_id=user_id,
                risk_score=score.risk_score if score else None,
                risk_level=score.risk_level if score else None,
                status=(controls.status if controls else ControlStatus.NORMAL.value),
                penalty_points=controls.penalty_points if controls else 0,
                cooldown_until=cooldown_until,
                cooldown_reason=controls.cooldown_reason if controls else None,
                cooldown_active=cooldown_until is not None and cooldown_until > now,
            )

        self.cache.set(user_id, summary)
        return summary

    def check_seller_restriction(self, user_id: str) -> RestrictionStatus:
        """Bidding gate: is this user currently allowed to bid?"""
        summary = self.get_seller_risk_summary(user_id)
        if summary is None:
            return RestrictionStatus(allowed=True, status=ControlStatus.NORMAL.value)

        blocked = summary.status == ControlStatus.BLOCKED.value
        limited = summary.status == ControlStatus.LIMITED.value
        allowed = not (blocked or (limited and summary.cooldown_active))
        return RestrictionStatus(
            allowed=allowed,
            status=summary.status,
            cooldown_active=summary.cooldown_active,
            cooldown_until=summary.cooldown_until,
        )

    def ensure_allowed(self, user_id: str) -> RestrictionStatus:
        """Raise RestrictionError when the gate denies the user."""
        restriction = self.check_seller_restriction(user_id)
        if not restriction.allowed:
            logger.warning(f"User {user_id} restricted (status={restriction.status})")
            raise restriction.to_error()
        return restriction

    def invalidate(self, user_id: Optional[str] = None):
        self.cache.invalidate(user_id)

    # =========================================================================
    # Writes
    # =========================================================================

    def apply_seller_penalty(
        self,
        seller_id: str,
        penalty_type: str,
        severity: str,
        points: Optional[int] = None,
        reason: Optional[str] = None,
        evidence: Optional[dict] = None,
        applied_by: Optional[str] = None,
        cooldown_days: Optional[int] = None,
    ) -> RiskSummary:
        """
        Record a penalty and escalate the user's control row.

        Args:
            seller_id: Penalized user
            penalty_type: Free-form category (e.g. "non_payment")
            severity: low / medium / high
            points: Penalty points to add (default 1)
            reason: Human-readable reason, also used as cooldown reason
            evidence: Arbitrary JSON-serializable evidence
            applied_by: Acting admin
            cooldown_days: Overrides the severity's base cooldown length

        Returns:
            Refreshed summary
        """
        require(validate_id(seller_id, "seller_id"))
        require(validate_string(penalty_type, "penalty_type", max_length=64))
        require(validate_severity(severity))
        if points is not None:
            require(validate_integer(points, "points", min_val=1))
        if cooldown_days is not None:
            require(validate_integer(cooldown_days, "cooldown_days", min_val=0))

        added_points = points if points is not None else 1
        days = cooldown_days if cooldown_days is not None else BASE_COOLDOWN_DAYS[severity]
        now = self.clock()

        with self.storage.transaction():
            self.storage.insert_penalty(
                SellerPenalty(
                    id=new_id(),
                    seller_id=seller_id,
                    penalty_type=penalty_type,
                    severity=severity,
                    points=added_points,
                    reason=reason,
                    evidence=evidence,
                    applied_by=applied_by,
                    created_at=now,
                )
            )

            current = self.storage.get_user_controls(seller_id) or UserControls(user_id=seller_id)
            next_points = current.penalty_points + added_points
            next_status = escalate_status(current.status, severity, next_points)

            candidate_until = now + timedelta(days=days)
            if current.cooldown_until is not None and current.cooldown_until > candidate_until:
                cooldown_until = current.cooldown_until
                cooldown_reason = current.cooldown_reason
            else:
                cooldown_until = candidate_until
                cooldown_reason = reason or penalty_type

            self.storage.upsert_user_controls(
                UserControls(
                    user_id=seller_id,
                    status=next_status,
                    penalty_points=next_points,
                    cooldown_until=cooldown_until,
                    cooldown_reason=cooldown_reason,
                )
            )

        logger.info(
            f"Penalty {penalty_type}/{severity} on {seller_id}: "
            f"points {current.penalty_points}->{next_points}, status {current.status}->{next_status}"
        )
        self.invalidate(seller_id)
        return self.get_seller_risk_summary(seller_id)

    def record_risk_score(self, seller_id: str, score: float) -> RiskSummary:
        """Store a 0-100 risk score and its derived level."""
        require(validate_id(seller_id, "seller_id"))
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 100:
            require((False, f"risk_score must be between 0 and 100, got {score!r}"))

        level = risk_level_for(score)
        self.storage.upsert_risk_score(seller_id, score, level)
        logger.info(f"Risk score for {seller_id}: {score} ({level})")
        self.invalidate(seller_id)
        return self.get_seller_risk_summary(seller_id)
