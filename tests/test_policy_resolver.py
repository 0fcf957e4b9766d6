"""Tests for the policy resolver — proves it loads and resolves all config correctly."""

import json
import os
import pytest
from pathlib import Path

from buyout.policy.resolver import (
    DEFAULT_CONFIG_DIR,
    AuctionDefaults,
    PolicyResolver,
)


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


class TestProtocolParameters:
    def test_fraction_bounds(self, resolver: PolicyResolver) -> None:
        assert resolver.fraction_bounds() == (10**18, 2**127)

    def test_auction_defaults(self, resolver: PolicyResolver) -> None:
        assert resolver.auction_defaults() == AuctionDefaults(
            duration=432000, unlock_threshold=5000, top_bid_lock_time=259200,
        )

    def test_bidding(self, resolver: PolicyResolver) -> None:
        assert resolver.minimal_bid_increment() == 1000
        assert resolver.auction_end_buffer() == 900

    def test_governance_bounds(self, resolver: PolicyResolver) -> None:
        bounds = resolver.governance_bounds()
        assert (bounds.min_quorum, bounds.max_quorum) == (2000, 10000)
        assert bounds.min_vote_duration == 86400
        assert bounds.max_vote_duration == 604800
        assert bounds.min_vote_duration <= bounds.default_vote_duration <= bounds.max_vote_duration

    def test_accounts(self, resolver: PolicyResolver) -> None:
        assert resolver.account("escrow") == "protocol:escrow"
        assert resolver.account("protocol") == "protocol:operator"
        assert resolver.account("custodian") == "custodian"

    def test_unknown_account_role(self, resolver: PolicyResolver) -> None:
        with pytest.raises(KeyError):
            resolver.account("treasury")


class TestFromEnv:
    def test_env_config_dir(self, tmp_path: Path, monkeypatch) -> None:
        params = json.loads((CONFIG_DIR / "protocol_params.json").read_text(encoding="utf-8"))
        params["bidding"]["minimal_bid_increment_bps"] = 500
        (tmp_path / "protocol_params.json").write_text(json.dumps(params), encoding="utf-8")
        monkeypatch.setenv("BUYOUT_CONFIG_DIR", str(tmp_path))
        assert PolicyResolver.from_env().minimal_bid_increment() == 500

    def test_env_file(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv("BUYOUT_CONFIG_DIR", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text(f"BUYOUT_CONFIG_DIR={CONFIG_DIR}\n", encoding="utf-8")
        resolver = PolicyResolver.from_env(env_file)
        assert resolver.auction_end_buffer() == 900
        os.environ.pop("BUYOUT_CONFIG_DIR", None)

    def test_default_config_dir(self) -> None:
        assert DEFAULT_CONFIG_DIR == CONFIG_DIR
