"""
Escrow client - releases escrowed buyer funds at settlement.

Contract:
    POST {base_url}/escrows/{escrow_id}/release
    Authorization: Bearer {api_key}
    {"netToSellerCents": int, "feeToPlatformCents": int, "reference": str}

A 2xx response is a successful release. Any other status, or a transport
error or timeout, is a failed release; there are no retries. Callers pass
a stable reference (settle:{auction_id}) so a repeated release can be
recognized by the provider.
"""

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from bidengine.utils.logger import get_logger

logger = get_logger("escrow")


@dataclass(frozen=True)
class EscrowReleaseResult:
    ok: bool
    reference: Optional[str] = None
    status: Optional[int] = None
    body: Any = None

    def to_dict(self):
        return {"ok": self.ok, "reference": self.reference, "status": self.status, "body": self.body}


class EscrowClient:
    """
    Synchronous escrow provider client.

    Args:
        base_url: Provider root URL
        api_key: Bearer token
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.Client:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0)),
            transport=self.transport,
        )

    def release(
        self,
        escrow_id: str,
        net_to_seller_cents: int,
        fee_to_platform_cents: int,
        reference: str,
    ) -> EscrowReleaseResult:
        """Ask the provider to release an escrow. Never raises."""
        payload = {
            "netToSellerCents": int(net_to_seller_cents),
            "feeToPlatformCents": int(fee_to_platform_cents),
            "reference": reference,
        }

        try:
            with self._client() as client:
                resp = client.post(f"/escrows/{escrow_id}/release", json=payload)
        except httpx.HTTPError as exc:
            logger.error(f"Escrow release {escrow_id} ({reference}) transport error: {exc}")
            return EscrowReleaseResult(ok=False, body=str(exc))

        try:
            body = resp.json()
        except ValueError:
            body = resp.text

        if not resp.is_success:
            logger.error(f"Escrow release {escrow_id} ({reference}) failed: HTTP {resp.status_code}")
            return EscrowReleaseResult(ok=False, status=resp.status_code, body=body)

        returned_ref = body.get("reference", reference) if isinstance(body, dict) else reference
        logger.info(f"Escrow {escrow_id} released ({reference}): net={net_to_seller_cents} fee={fee_to_platform_cents}")
        return EscrowReleaseResult(ok=True, reference=returned_ref, status=resp.status_code, body=body)
