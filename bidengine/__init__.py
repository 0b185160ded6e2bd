"""
Bidengine - Bidding, Commission & Settlement Engine

Core of a live competitive-bidding marketplace:
- Bid validation and acceptance with a hash-chained bid ledger
- Live bidding statistics
- Seller risk gating and penalties
- Commission computation and auction settlement
- Double-entry settlement ledger
"""

__version__ = "0.1.0"
