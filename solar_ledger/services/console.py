"""
solar_ledger/services/console.py

Command-line access to a persisted ledger.

Each invocation restores the ledger from the configured store, performs
one operation and exits. The `pulse` command runs the autonomy timer in
the foreground with the ledger attached, so tension is damped on every
tick and persisted when the run ends.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from typing import List, Optional

from solar_ledger.core.autonomy import Autonomy, AutonomyConfig
from solar_ledger.core.ledger import Ledger, LedgerError

from .store import StoreConfig, store_from_config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    store_defaults = StoreConfig.from_env()
    autonomy_defaults = AutonomyConfig.from_env()

    parser = argparse.ArgumentParser(
        prog="solar-ledger",
        description="Four-account ledger with autonomy-damped tension",
    )
    # A one-shot command needs a store that outlives the process
    parser.add_argument(
        "--store",
        default=os.environ.get("SOLAR_LEDGER_STORE", "file"),
        choices=["memory", "file", "redis"],
    )
    parser.add_argument("--path", default=store_defaults.path)
    parser.add_argument("--redis-url", default=store_defaults.redis_url)
    parser.add_argument("--key", default=store_defaults.state_key)
    parser.add_argument("--beat", type=float, default=autonomy_defaults.beat)
    parser.add_argument("--log-level", default="WARNING")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("state", help="Print the full ledger state")

    balance = sub.add_parser("balance", help="Print one account")
    balance.add_argument("user")

    activate = sub.add_parser("activate", help="Set the active user")
    activate.add_argument("user")

    transfer = sub.add_parser("transfer", help="Move funds between accounts")
    transfer.add_argument("sender")
    transfer.add_argument("recipient")
    transfer.add_argument("amount", type=float)
    transfer.add_argument("currency")

    deposit = sub.add_parser("deposit", help="Credit an account from outside")
    deposit.add_argument("user")
    deposit.add_argument("amount", type=float)
    deposit.add_argument("currency")

    tension = sub.add_parser("tension", help="Add to tension")
    tension.add_argument("amount", type=float)

    sub.add_parser("reset", help="Erase the stored ledger")

    pulse = sub.add_parser("pulse", help="Run the autonomy timer")
    pulse.add_argument("--ticks", type=int, default=10)

    return parser


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2))


def _run_pulse(ledger: Ledger, ticks: int) -> None:
    if ticks <= 0:
        return

    autonomy = ledger.autonomy
    done = threading.Event()

    def report(power: float) -> None:
        print(
            f"tick {autonomy.phase:>4}  power={power:.6g}  "
            f"tension={ledger.get_tension().value:.6g}"
        )
        if autonomy.phase >= ticks:
            done.set()

    # Registered after the ledger so each line shows damped tension
    ledger.attach()
    autonomy.add_listener(report)

    def signal_handler(sig, frame):
        logger.info("Received shutdown signal")
        done.set()

    previous = {
        sig: signal.signal(sig, signal_handler)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }

    autonomy.start()
    try:
        done.wait()
    finally:
        autonomy.stop()
        autonomy.remove_listener(report)
        ledger.detach()
        ledger.update_state(ledger.get_current_state())
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)


def run_console(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for the solar-ledger script.

    Returns the process exit status.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING))

    store = store_from_config(
        StoreConfig(
            backend=args.store,
            path=args.path,
            redis_url=args.redis_url,
            state_key=args.key,
        )
    )
    autonomy_config = AutonomyConfig.from_env()
    autonomy_config.beat = args.beat
    autonomy = Autonomy(autonomy_config)
    ledger = Ledger(store=store, autonomy=autonomy, state_key=args.key)

    try:
        if args.command == "state":
            _print_json(ledger.get_current_state().to_dict())
        elif args.command == "balance":
            _print_json(ledger.get_active_user_balance(args.user))
        elif args.command == "activate":
            ledger.set_active_user(args.user)
            print(f"Active user: {args.user}")
        elif args.command == "transfer":
            state = ledger.act_transfer(
                args.sender, args.recipient, args.amount, args.currency
            )
            _print_json(state.to_dict())
        elif args.command == "deposit":
            _print_json(ledger.deposit(args.user, args.amount, args.currency))
        elif args.command == "tension":
            ledger.add_tension(args.amount)
            _print_json(ledger.get_tension().to_dict())
        elif args.command == "reset":
            ledger.delete_accounts()
            print("Ledger reset")
        elif args.command == "pulse":
            _run_pulse(ledger, args.ticks)
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


def main() -> None:
    sys.exit(run_console())


if __name__ == "__main__":
    main()
