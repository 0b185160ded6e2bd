"""
Request dependencies: engine access, bearer-token authentication, roles
and bid rate limiting.

Token issuance lives outside this service. A TokenResolver maps a bearer
token to a Principal; the default resolver reads the static table from
EngineConfig.api_tokens.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bidengine.core.engine import MarketEngine
from bidengine.core.errors import AuthError, RateLimitError
from bidengine.utils.logger import get_logger

logger = get_logger("api.auth")

ADMIN_ROLES = frozenset({"admin", "superadmin"})

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


class TokenResolver(Protocol):
    def resolve(self, token: str) -> Optional[Principal]:
        ...


class StaticTokenResolver:
    """Resolves tokens from a fixed {token: (user_id, role)} table."""

    def __init__(self, table: Dict[str, Tuple[str, str]]):
        self.table = dict(table)

    def resolve(self, token: str) -> Optional[Principal]:
        entry = self.table.get(token)
        if entry is None:
            return None
        user_id, role = entry
        return Principal(user_id=user_id, role=role)


# =============================================================================
# Dependencies
# =============================================================================


def get_engine(request: Request) -> MarketEngine:
    return request.app.state.engine


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Principal]:
    """Principal for a valid bearer token, None when no token was sent."""
    if credentials is None:
        return None
    principal = request.app.state.token_resolver.resolve(credentials.credentials)
    if principal is None:
        logger.warning("Rejected request with unknown bearer token")
        raise AuthError("Could not validate credentials")
    return principal


def get_current_user(principal: Optional[Principal] = Depends(get_optional_user)) -> Principal:
    if principal is None:
        raise AuthError("Authentication required")
    return principal


def require_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    if not principal.is_admin:
        logger.warning(f"Non-admin user {principal.user_id} attempted admin action")
        raise AuthError.forbidden("Admin access required")
    return principal


def enforce_bid_rate_limit(
    request: Request,
    principal: Optional[Principal] = Depends(get_optional_user),
) -> Optional[Principal]:
    """10 bids / 10 s per user (per client IP when anonymous)."""
    config = request.app.state.engine.config
    if principal is not None:
        subject = principal.user_id
    else:
        subject = f"ip:{request.client.host if request.client else 'unknown'}"

    limited, retry_after = request.app.state.rate_limiter.is_rate_limited(
        subject,
        "place_bid",
        max_requests=config.bid_rate_limit,
        window_seconds=config.bid_rate_window,
    )
    if limited:
        raise RateLimitError("Too many bid requests, please slow down", retry_after=retry_after)
    return principal
