"""
Engine configuration parameters.

Defines storage locations, cache lifetimes, rate limits, escrow access
and auction timing rules.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

ENV_PREFIX = "BIDENGINE_"


@dataclass
class EngineConfig:
    """Engine-wide configuration parameters"""

    # Storage
    data_dir: Path = Path("data")
    db_name: str = "bidengine.db"

    # Logging
    log_dir: Path = Path("logs")
    log_level: str = "INFO"

    # Caches (seconds)
    commission_cache_ttl: float = 300.0  # Active commission settings
    risk_cache_ttl: float = 30.0  # Seller risk summaries

    # Bid rate limiting (per user, fallback per IP)
    bid_rate_limit: int = 10
    bid_rate_window: float = 10.0

    # Escrow provider
    escrow_base_url: str = "http://localhost:8081"
    escrow_api_key: str = ""
    escrow_timeout: float = 10.0

    # Settlement ledger
    currency: str = "INR"

    # Auction ticker
    extension_threshold_seconds: int = 60  # Extend when a bid lands this close to the end
    extension_seconds: int = 60  # Extension length
    tick_interval_seconds: float = 5.0

    # HTTP API
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    # Static bearer tokens: "token:user_id:role,token2:user_id2:role2"
    api_tokens: str = ""

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_name

    def token_table(self) -> Dict[str, tuple]:
        """Parse api_tokens into {token: (user_id, role)}."""
        table = {}
        for item in self.api_tokens.split(","):
            item = item.strip()
            if not item:
                continue
            parts = item.split(":")
            if len(parts) != 3:
                raise ValueError(f"Malformed api token entry: {item!r}")
            token, user_id, role = parts
            table[token] = (user_id, role)
        return table


def _coerce(raw: str, default):
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, Path):
        return Path(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def load_config(env_file: Optional[str] = None, **overrides) -> EngineConfig:
    """
    Load configuration from the environment.

    A .env file is read first (python-dotenv), then every field can be
    overridden by a BIDENGINE_<FIELD> variable, then by keyword overrides.

    Args:
        env_file: Optional path to a .env file (default: search upwards)
        **overrides: Explicit field values

    Returns:
        EngineConfig instance
    """
    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)

    config = EngineConfig()
    for f in fields(config):
        raw = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is not None:
            setattr(config, f.name, _coerce(raw, getattr(config, f.name)))

    for name, value in overrides.items():
        if not hasattr(config, name):
            raise TypeError(f"Unknown config field: {name}")
        setattr(config, name, value)

    return config
