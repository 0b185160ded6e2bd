"""
Settlement Module.

End-of-auction settlement and the double-entry ledger it posts to.
"""

from bidengine.core.settlement.ledger import (
    SettlementLedger,
    SettlementPosting,
    TransactionBalance,
    ACCOUNT_PLATFORM_CLEARING,
    ACCOUNT_SELLER_WALLET,
)
from bidengine.core.settlement.coordinator import (
    SettlementCoordinator,
    SettlementOutcome,
    settlement_reference,
    AWAITING_FUNDS_MESSAGE,
)

__all__ = [
    # Ledger
    "SettlementLedger",
    "SettlementPosting",
    "TransactionBalance",
    "ACCOUNT_PLATFORM_CLEARING",
    "ACCOUNT_SELLER_WALLET",
    # Coordinator
    "SettlementCoordinator",
    "SettlementOutcome",
    "settlement_reference",
    "AWAITING_FUNDS_MESSAGE",
]
