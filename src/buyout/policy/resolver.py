"""Policy resolver: typed access to protocol parameters.

Parameters live in ``config/protocol_params.json``. Engines never read the
JSON directly; they ask the resolver, so bounds and defaults have exactly
one source.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

PARAMS_FILE = "protocol_params.json"
DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[3] / "config"


@dataclass(frozen=True)
class AuctionDefaults:
    duration: int
    unlock_threshold: int
    top_bid_lock_time: int


@dataclass(frozen=True)
class GovernanceBounds:
    min_quorum: int
    max_quorum: int
    min_vote_duration: int
    max_vote_duration: int
    default_vote_duration: int


class PolicyResolver:
    """Resolves protocol parameters from a loaded parameter document.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        low, high = resolver.fraction_bounds()
    """

    def __init__(self, params: dict[str, Any]) -> None:
        self._params = params

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / PARAMS_FILE
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> PolicyResolver:
        """Load from BUYOUT_CONFIG_DIR (``.env`` honoured), else the repo config."""
        load_dotenv(env_file)
        config_dir = os.environ.get("BUYOUT_CONFIG_DIR")
        return cls.from_config_dir(Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR)

    @property
    def params(self) -> dict[str, Any]:
        return self._params

    def fraction_bounds(self) -> tuple[int, int]:
        section = self._params["fractions"]
        return int(section["min_fractions_per_item"]), int(section["max_fractions_per_item"])

    def auction_defaults(self) -> AuctionDefaults:
        section = self._params["auction_defaults"]
        return AuctionDefaults(
            duration=int(section["duration_seconds"]),
            unlock_threshold=int(section["unlock_threshold_bps"]),
            top_bid_lock_time=int(section["top_bid_lock_time_seconds"]),
        )

    def minimal_bid_increment(self) -> int:
        return int(self._params["bidding"]["minimal_bid_increment_bps"])

    def auction_end_buffer(self) -> int:
        return int(self._params["bidding"]["auction_end_buffer_seconds"])

    def governance_bounds(self) -> GovernanceBounds:
        section = self._params["governance"]
        return GovernanceBounds(
            min_quorum=int(section["min_quorum_bps"]),
            max_quorum=int(section["max_quorum_bps"]),
            min_vote_duration=int(section["min_vote_duration_seconds"]),
            max_vote_duration=int(section["max_vote_duration_seconds"]),
            default_vote_duration=int(section["default_vote_duration_seconds"]),
        )

    def account(self, role: str) -> str:
        """Account id for ``escrow``, ``protocol`` or ``custodian``."""
        return str(self._params["accounts"][f"{role}_account"])
