"""
HTTP routes. Handlers are plain `def` functions; FastAPI runs them on its
worker threadpool, and engine errors propagate to the handler registered
in bidengine.api.app.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from bidengine.api.deps import (
    Principal,
    enforce_bid_rate_limit,
    get_current_user,
    get_engine,
    require_admin,
)
from bidengine.core.engine import MarketEngine
from bidengine.core.errors import AuthError
from bidengine.core.records import ControlStatus

# =============================================================================
# Request Models
# =============================================================================


class PlaceBidRequest(BaseModel):
    # Checked by the engine, so strings and booleans surface as validation errors
    amount: Any = None


class CommissionSettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    buyer_commission_percent: float = Field(alias="buyerCommissionPercent")
    seller_commission_percent: float = Field(alias="sellerCommissionPercent")
    platform_flat_fee_cents: int = Field(default=0, alias="platformFlatFeeCents")
    category_overrides: Optional[Dict[str, Any]] = Field(default=None, alias="categoryOverrides")


class PenaltyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    penalty_type: str = Field(alias="type")
    severity: str
    points: Optional[int] = None
    reason: Optional[str] = None
    evidence: Optional[Dict[str, Any]] = None
    cooldown_days: Optional[int] = Field(default=None, alias="cooldownDays")


# =============================================================================
# Auctions
# =============================================================================

auctions_router = APIRouter(prefix="/auctions", tags=["auctions"])


@auctions_router.post("/{auction_id}/place-bid")
def place_bid(
    auction_id: str,
    payload: Optional[PlaceBidRequest] = None,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    principal: Optional[Principal] = Depends(enforce_bid_rate_limit),
    engine: MarketEngine = Depends(get_engine),
):
    result = engine.bidding.place_bid(
        auction_id,
        principal.user_id if principal else None,
        payload.amount if payload else None,
        idempotency_key=idempotency_key,
    )
    return JSONResponse(status_code=result.status_code, content=result.body)


@auctions_router.get("/{auction_id}/live-stats")
def live_stats(auction_id: str, engine: MarketEngine = Depends(get_engine)):
    stats = engine.live_stats(auction_id)
    return {"auctionId": auction_id, "bidding_stats": stats.to_dict()}


@auctions_router.get("/{auction_id}/ledger/verify")
def verify_ledger(
    auction_id: str,
    principal: Principal = Depends(get_current_user),
    engine: MarketEngine = Depends(get_engine),
):
    return engine.bid_ledger.verify_chain(auction_id).to_dict()


# =============================================================================
# Admin
# =============================================================================

admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.post("/auctions/{auction_id}/settle")
def settle_auction(
    auction_id: str,
    admin: Principal = Depends(require_admin),
    engine: MarketEngine = Depends(get_engine),
):
    return engine.settlement.settle_auction(auction_id, actor_id=admin.user_id).to_dict()


@admin_router.post("/payouts/{payout_id}/complete")
def complete_payout(
    payout_id: str,
    admin: Principal = Depends(require_admin),
    engine: MarketEngine = Depends(get_engine),
):
    return engine.settlement.complete_payout(payout_id)


@admin_router.get("/seller-payouts-summary")
def seller_payouts_summary(
    admin: Principal = Depends(require_admin),
    engine: MarketEngine = Depends(get_engine),
):
    return {"sellers": engine.settlement.seller_payouts_summary()}


@admin_router.get("/commission-settings")
def get_commission_settings(
    admin: Principal = Depends(require_admin),
    engine: MarketEngine = Depends(get_engine),
):
    return engine.commission.get_active().to_dict()


@admin_router.put("/commission-settings")
def update_commission_settings(
    payload: CommissionSettingsUpdate,
    admin: Principal = Depends(require_admin),
    engine: MarketEngine = Depends(get_engine),
):
    settings = engine.commission.update_settings(
        payload.buyer_commission_percent,
        payload.seller_commission_percent,
        payload.platform_flat_fee_cents,
        payload.category_overrides,
    )
    return settings.to_dict()


# =============================================================================
# Risk
# =============================================================================

risk_router = APIRouter(prefix="/risk", tags=["risk"])


def _summary_body(engine: MarketEngine, seller_id: str) -> Dict[str, Any]:
    summary = engine.risk.get_seller_risk_summary(seller_id)
    if summary is None:
        body = {
            "sellerId": seller_id,
            "riskScore": None,
            "riskLevel": None,
            "status": ControlStatus.NORMAL.value,
            "penaltyPoints": 0,
            "cooldownUntil": None,
            "cooldownReason": None,
            "cooldownActive": False,
        }
    else:
        body = summary.to_dict()
    body["allowed"] = engine.risk.check_seller_restriction(seller_id).allowed
    return body


@risk_router.get("/sellers/{seller_id}")
def get_seller_risk(
    seller_id: str,
    principal: Principal = Depends(get_current_user),
    engine: MarketEngine = Depends(get_engine),
):
    if not principal.is_admin and principal.user_id != seller_id:
        raise AuthError.forbidden("Admin access required")
    return _summary_body(engine, seller_id)


@risk_router.post("/sellers/{seller_id}/penalties")
def apply_penalty(
    seller_id: str,
    payload: PenaltyRequest,
    admin: Principal = Depends(require_admin),
    engine: MarketEngine = Depends(get_engine),
):
    engine.risk.apply_seller_penalty(
        seller_id,
        payload.penalty_type,
        payload.severity,
        points=payload.points,
        reason=payload.reason,
        evidence=payload.evidence,
        applied_by=admin.user_id,
        cooldown_days=payload.cooldown_days,
    )
    return _summary_body(engine, seller_id)
