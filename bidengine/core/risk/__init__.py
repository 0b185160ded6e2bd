"""
Seller Risk Module.

Risk summaries, the bidding restriction gate and penalty escalation.
"""

from bidengine.core.risk.seller_risk import (
    SellerRiskGate,
    RiskSummary,
    RestrictionStatus,
    risk_level_for,
    escalate_status,
    BASE_COOLDOWN_DAYS,
)

__all__ = [
    "SellerRiskGate",
    "RiskSummary",
    "RestrictionStatus",
    "risk_level_for",
    "escalate_status",
    "BASE_COOLDOWN_DAYS",
]
