"""
Unit tests for configuration loading.
"""

import os
from pathlib import Path

import pytest

from bidengine.core.config import EngineConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from the developer's environment and any .env upwards."""
    for key in list(os.environ):
        if key.startswith("BIDENGINE_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        config = load_config()
        assert config.bid_rate_limit == 10
        assert config.bid_rate_window == 10.0
        assert config.commission_cache_ttl == 300.0
        assert config.risk_cache_ttl == 30.0
        assert config.currency == "INR"
        assert config.db_path == Path("data") / "bidengine.db"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BIDENGINE_BID_RATE_LIMIT", "25")
        monkeypatch.setenv("BIDENGINE_ESCROW_TIMEOUT", "2.5")
        monkeypatch.setenv("BIDENGINE_DATA_DIR", "/tmp/bids")
        config = load_config()
        assert config.bid_rate_limit == 25
        assert config.escrow_timeout == 2.5
        assert config.data_dir == Path("/tmp/bids")

    def test_env_file(self, tmp_path):
        env = tmp_path / "test.env"
        env.write_text("BIDENGINE_CURRENCY=USD\nBIDENGINE_API_PORT=9001\n")
        try:
            config = load_config(str(env))
            assert config.currency == "USD"
            assert config.api_port == 9001
        finally:
            # load_dotenv writes straight into os.environ
            os.environ.pop("BIDENGINE_CURRENCY", None)
            os.environ.pop("BIDENGINE_API_PORT", None)

    def test_keyword_overrides(self):
        config = load_config(currency="EUR")
        assert config.currency == "EUR"
        with pytest.raises(TypeError):
            load_config(no_such_field=1)


class TestTokenTable:
    """Tests for EngineConfig.token_table."""

    def test_parse(self):
        config = EngineConfig(api_tokens="t1:alice:user, t2:root:admin")
        assert config.token_table() == {"t1": ("alice", "user"), "t2": ("root", "admin")}

    def test_empty(self):
        assert EngineConfig().token_table() == {}

    def test_malformed(self):
        with pytest.raises(ValueError):
            EngineConfig(api_tokens="broken").token_table()
