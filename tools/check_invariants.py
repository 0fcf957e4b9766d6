#!/usr/bin/env python3
"""Buyout protocol parameter checks against config/protocol_params.json."""

import json
import sys
from pathlib import Path
from typing import Optional


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "protocol_params.json"

HUNDRED_PERCENT = 10_000
REQUIRED_ACCOUNTS = ("escrow_account", "protocol_account", "custodian_account")


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_bps(value: int, label: str, errors: list[str]) -> None:
    if not isinstance(value, int) or not (0 <= value <= HUNDRED_PERCENT):
        errors.append(f"{label} must be an integer in [0, {HUNDRED_PERCENT}], got {value!r}")


def check_positive_seconds(value: int, label: str, errors: list[str]) -> None:
    if not isinstance(value, int) or value <= 0:
        errors.append(f"{label} must be a positive integer number of seconds, got {value!r}")


def collect_errors(params: dict) -> list[str]:
    errors: list[str] = []

    # --- Fraction bounds ---
    fractions = params["fractions"]
    low = fractions["min_fractions_per_item"]
    high = fractions["max_fractions_per_item"]
    if low <= 0:
        errors.append(f"min_fractions_per_item must be > 0, got {low}")
    if high < low:
        errors.append(f"max_fractions_per_item ({high}) must be >= min ({low})")

    # --- Auction defaults ---
    defaults = params["auction_defaults"]
    check_positive_seconds(defaults["duration_seconds"], "auction duration", errors)
    check_positive_seconds(defaults["top_bid_lock_time_seconds"], "top bid lock time", errors)
    check_bps(defaults["unlock_threshold_bps"], "unlock_threshold_bps", errors)
    if defaults["unlock_threshold_bps"] == 0:
        errors.append("unlock_threshold_bps default must be > 0")

    # --- Bidding ---
    bidding = params["bidding"]
    check_bps(bidding["minimal_bid_increment_bps"], "minimal_bid_increment_bps", errors)
    check_positive_seconds(bidding["auction_end_buffer_seconds"], "auction end buffer", errors)
    if bidding["auction_end_buffer_seconds"] >= defaults["duration_seconds"]:
        errors.append("auction end buffer must be shorter than the auction duration")

    # --- Governance ---
    gov = params["governance"]
    check_bps(gov["min_quorum_bps"], "min_quorum_bps", errors)
    check_bps(gov["max_quorum_bps"], "max_quorum_bps", errors)
    if gov["min_quorum_bps"] > gov["max_quorum_bps"]:
        errors.append("min_quorum_bps must be <= max_quorum_bps")
    low_d = gov["min_vote_duration_seconds"]
    high_d = gov["max_vote_duration_seconds"]
    default_d = gov["default_vote_duration_seconds"]
    check_positive_seconds(low_d, "min vote duration", errors)
    if not (low_d <= default_d <= high_d):
        errors.append(
            f"default vote duration {default_d} must lie in [{low_d}, {high_d}]"
        )

    # --- Accounts ---
    accounts = params["accounts"]
    names = []
    for key in REQUIRED_ACCOUNTS:
        name = accounts.get(key)
        if not name:
            errors.append(f"accounts.{key} must be a non-empty string")
        else:
            names.append(name)
    if len(set(names)) != len(names):
        errors.append("account names must be distinct")

    return errors


def check(params_path: Optional[Path] = None) -> int:
    errors = collect_errors(load_json(params_path or PARAMS_PATH))
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check(Path(sys.argv[1]) if len(sys.argv) > 1 else None))
