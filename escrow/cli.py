"""
Escrow command line

Local-mode driver: the seed comes from --seed or WALLET_SEED.

    escrow --config escrow.json address
    escrow --config escrow.json balance
    escrow --config escrow.json state
    escrow --config escrow.json create <recipient> <amount>
    escrow --config escrow.json release <escrow-id>
"""

from __future__ import annotations
from pathlib import Path
from typing import List, Optional
import argparse
import asyncio
import logging
import os
import sys

from .config import EscrowConfig
from .connect import DEFAULT_SYNC_TIMEOUT_SECONDS, connect_local
from .errors import ConfigError, EscrowError
from .orchestrator import EscrowOrchestrator

SEED_ENV_VAR = "WALLET_SEED"


def _print_failure(error) -> None:
    retry = " (retryable)" if error.retryable else ""
    print(f"[FAIL] {error.code.value}: {error.message}{retry}")
    if error.reason:
        print(f"       node reason: {error.reason}")


async def cmd_address(orchestrator: EscrowOrchestrator, args) -> int:
    state = await orchestrator.session.read_state()
    print(state.address)
    return 0


async def cmd_balance(orchestrator: EscrowOrchestrator, args) -> int:
    balance = await orchestrator.balance()
    print(f"Address: {balance.address}")
    print(f"Balance: {balance.amount}")
    return 0


async def cmd_state(orchestrator: EscrowOrchestrator, args) -> int:
    view = await orchestrator.escrow_state()
    suffix = " (approximate)" if view.approximate else ""
    print(f"Contract: {view.contract_address}")
    print(f"Last escrow id: {view.last_escrow_id}{suffix}")
    return 0


async def cmd_create(orchestrator: EscrowOrchestrator, args) -> int:
    result = await orchestrator.create_escrow(args.recipient, args.amount)
    if not result.success:
        _print_failure(result.error)
        return 1
    suffix = " (approximate)" if result.approximate else ""
    print(f"[OK] Escrow {result.escrow_id}{suffix} created")
    print(f"     tx: {result.tx_id}")
    print(f"     proof: {result.proof_seconds:.1f}s, total: {result.elapsed_seconds:.1f}s")
    return 0


async def cmd_release(orchestrator: EscrowOrchestrator, args) -> int:
    result = await orchestrator.release_escrow(args.escrow_id)
    if not result.success:
        _print_failure(result.error)
        return 1
    print(f"[OK] Escrow {result.escrow_id} released")
    print(f"     tx: {result.tx_id}")
    print(f"     proof: {result.proof_seconds:.1f}s, total: {result.elapsed_seconds:.1f}s")
    return 0


COMMANDS = {
    'address': cmd_address,
    'balance': cmd_balance,
    'state': cmd_state,
    'create': cmd_create,
    'release': cmd_release,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="escrow", description="Shielded escrow driver")
    parser.add_argument("--config", default="escrow.json", help="Path to JSON config")
    parser.add_argument("--seed", default=None, help=f"Wallet seed (default: ${SEED_ENV_VAR})")
    parser.add_argument("--sync-timeout", type=float, default=DEFAULT_SYNC_TIMEOUT_SECONDS,
                        help="Seconds to wait for the wallet to sync")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("address", help="Show the wallet's shielded address")
    subparsers.add_parser("balance", help="Show the native balance")
    subparsers.add_parser("state", help="Show the contract's last escrow id")

    create_parser = subparsers.add_parser("create", help="Escrow funds for a recipient")
    create_parser.add_argument("recipient", help="Recipient shielded address")
    create_parser.add_argument("amount", type=int, help="Amount in base units")

    release_parser = subparsers.add_parser("release", help="Release an escrow")
    release_parser.add_argument("escrow_id", type=int, help="Escrow id")

    return parser


async def _run(config: EscrowConfig, seed: str, args) -> int:
    orchestrator = await connect_local(config, seed, sync_timeout=args.sync_timeout)
    try:
        return await COMMANDS[args.command](orchestrator, args)
    finally:
        await orchestrator.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command not in COMMANDS:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    seed = args.seed or os.environ.get(SEED_ENV_VAR)
    if not seed:
        print(f"[FAIL] No seed: pass --seed or set {SEED_ENV_VAR}")
        return 1

    try:
        config = EscrowConfig.load(Path(args.config))
    except (OSError, ValueError) as e:
        print(f"[FAIL] Cannot load config {args.config}: {e}")
        return 1

    try:
        return asyncio.run(_run(config, seed, args))
    except (EscrowError, ConfigError) as e:
        print(f"[FAIL] {getattr(e, 'message', e)}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
