"""Buyout CLI — command-line interface for the buyout engine.

Usage:
    python -m buyout.cli show-config
    python -m buyout.cli check-invariants
    python -m buyout.cli run-script scenario.json --events events.jsonl

A script is either a list of operations or an object with ``operations``
and optional ``royalty_bps`` and ``vault_deltas``. Each operation is
``{"op": "<service method>", "args": {...}, "at": "<ISO timestamp>"}``.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from buyout.collaborators import FixedCustodyVault, PercentageRoyalty, StaticPriceOracle
from buyout.persistence.event_log import EventLog
from buyout.policy.resolver import DEFAULT_CONFIG_DIR, PolicyResolver
from buyout.service import BuyoutService

logger = logging.getLogger(__name__)

SCRIPT_OPERATIONS = frozenset({
    "register_item",
    "approve",
    "fund",
    "add_price_oracle",
    "remove_price_oracle",
    "mint_fractions",
    "mint_subsequent_fractions",
    "mint_additional_fractions",
    "transfer_fractions",
    "bid",
    "remove_bid",
    "start_auction",
    "vote_to_start_auction",
    "remove_vote_to_start_auction",
    "redeem",
    "finalize",
    "claim",
    "claim_from_epoch",
    "claim_with_locked_fractions",
    "finalize_and_claim",
    "update_exit_price",
    "vote_on_proposal",
    "remove_vote_on_proposal",
    "finalize_proposal",
})


def _resolver(args: argparse.Namespace) -> PolicyResolver:
    if args.config is not None:
        return PolicyResolver.from_config_dir(args.config)
    return PolicyResolver.from_env()


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def cmd_show_config(args: argparse.Namespace) -> int:
    print(json.dumps(_resolver(args).params, indent=2))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Validate the protocol parameter file."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    config_dir = args.config or Path(os.environ.get("BUYOUT_CONFIG_DIR", DEFAULT_CONFIG_DIR))
    return check(config_dir / "protocol_params.json")


def run_operation(service: BuyoutService, operation: dict[str, Any]) -> dict[str, Any]:
    """Apply one script operation and return its JSON-ready outcome."""
    op = operation.get("op")
    if op not in SCRIPT_OPERATIONS:
        raise ValueError(f"Unknown script operation: {op!r}")
    kwargs = dict(operation.get("args", {}))
    if op == "add_price_oracle":
        kwargs["oracle"] = StaticPriceOracle(kwargs.pop("price", None))
    if op not in ("approve", "fund"):
        kwargs["now"] = _parse_time(operation.get("at"))
    result = getattr(service, op)(**kwargs)
    return {
        "op": op,
        "success": result.success,
        "error_code": result.error_code,
        "errors": result.errors,
        "warnings": result.warnings,
        "data": result.data,
    }


def cmd_run_script(args: argparse.Namespace) -> int:
    with args.script.open("r", encoding="utf-8") as handle:
        script = json.load(handle)
    if isinstance(script, list):
        script = {"operations": script}

    royalty = None
    if script.get("royalty_bps"):
        royalty = PercentageRoyalty(int(script["royalty_bps"]))
    vault = None
    if script.get("vault_deltas"):
        vault = FixedCustodyVault({int(k): int(v) for k, v in script["vault_deltas"].items()})

    service = BuyoutService(
        _resolver(args),
        event_log=EventLog(storage_path=args.events) if args.events else EventLog(),
        custody_vault=vault,
        royalty_calculator=royalty,
    )

    failures = 0
    for number, operation in enumerate(script.get("operations", []), 1):
        try:
            outcome = run_operation(service, operation)
        except (TypeError, ValueError) as e:
            print(f"Operation {number} rejected: {e}", file=sys.stderr)
            return 2
        if not outcome["success"]:
            failures += 1
            logger.info("Operation %d (%s) failed: %s", number, outcome["op"], outcome["error_code"])
        print(json.dumps(outcome, default=str))

    print(json.dumps(service.status(), indent=2, default=str))
    return 1 if failures and args.strict else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="buyout",
        description="Fractional buyout engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config directory (default: BUYOUT_CONFIG_DIR or config/)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: BUYOUT_LOG_LEVEL or WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("show-config", help="Print the resolved protocol parameters")
    sub.add_parser("check-invariants", help="Validate the protocol parameter file")

    p_run = sub.add_parser("run-script", help="Apply a JSON operation script to a fresh engine")
    p_run.add_argument("script", type=Path, help="Path to the JSON script")
    p_run.add_argument("--events", type=Path, help="Append audit events to this JSONL file")
    p_run.add_argument(
        "--strict", action="store_true",
        help="Exit non-zero if any operation fails",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level or os.environ.get("BUYOUT_LOG_LEVEL", "WARNING"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "show-config": cmd_show_config,
        "check-invariants": cmd_check_invariants,
        "run-script": cmd_run_script,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
