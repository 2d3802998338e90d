"""Entry point for the rewards core"""
import argparse
import json
import logging
import os
import sys
import time
import traceback
from typing import Any, List, Optional

from pydantic_core import to_jsonable_python

from ucoin_rewards.config import settings
from ucoin_rewards.core import RewardsCore
from ucoin_rewards.db import db

logging.basicConfig(level=logging.INFO, format='%(message)s')
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ucoin_rewards', description='UCoin rewards reconciliation core')
    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('leaderboard', help='Build the XP leaderboard')

    register = commands.add_parser('register', help='Link a wallet to a GitHub handle')
    register.add_argument('--address', required=True)
    register.add_argument('--handle', required=True)

    status = commands.add_parser('status', help='Withdrawal status of a wallet')
    status.add_argument('--address', required=True)

    profile = commands.add_parser('profile', help='Score, entitlement and claim state of a wallet')
    profile.add_argument('--address', required=True)

    request = commands.add_parser('request', help='Request a withdrawal')
    request.add_argument('--address', required=True)
    request.add_argument('--amount', required=True)

    approve = commands.add_parser('approve', help='Approve a pending withdrawal')
    approve.add_argument('--caller', required=True)
    approve.add_argument('--address', required=True)

    pending = commands.add_parser('pending', help='List pending withdrawals (approver only)')
    pending.add_argument('--caller', required=True)

    history = commands.add_parser('history', help='Completed withdrawals, newest first')
    history.add_argument('--address')

    poll = commands.add_parser('poll', help='Poll status and balance of a wallet')
    poll.add_argument('--address', required=True)
    poll.add_argument('--duration', type=float, default=60.0, help='Seconds to poll for')

    return parser


def execute(core: RewardsCore, args: argparse.Namespace) -> Any:
    """Run one command and return its JSON-serializable result"""
    if args.command == 'leaderboard':
        return core.leaderboard.build_leaderboard()
    if args.command == 'register':
        return core.ledger.register_identity(args.address, args.handle)
    if args.command == 'status':
        return core.api.withdrawal_status(args.address)
    if args.command == 'profile':
        return core.profiles.get_profile(args.address)
    if args.command == 'request':
        return core.withdrawals.request_withdrawal(args.address, args.amount)
    if args.command == 'approve':
        return core.api.approve_withdrawal(args.caller, {'address': args.address})
    if args.command == 'pending':
        return core.api.pending_withdrawals(args.caller)
    if args.command == 'history':
        return core.withdrawals.withdrawal_history(args.address)
    if args.command == 'poll':
        with core.session_poller(args.address) as poller:
            time.sleep(args.duration)
        return {'status': poller.status, 'balance': poller.balance}
    raise ValueError(f"Unsupported command: {args.command}")


def run(argv: Optional[List[str]] = None) -> None:
    """Run a command and write its result to OUTPUT_DIR/results.json."""
    args = build_parser().parse_args(argv)
    try:
        db.init(settings.DATABASE_URL)

        # Log config (excluding sensitive data)
        safe_config = settings.model_dump(exclude={'GITHUB_TOKEN', 'GITHUB_ENCRYPTED_TOKEN', 'DATABASE_URL'})
        logger.info("Using configuration:")
        logger.info(json.dumps(safe_config, indent=2))

        # One-shot commands build the board on demand
        core = RewardsCore(settings, db, watch_leaderboard=False)
        try:
            # Dataclasses, Decimals and timestamps become plain JSON values
            result = to_jsonable_python(execute(core, args))
        finally:
            core.close()

        os.makedirs(settings.OUTPUT_DIR, exist_ok=True)
        output_path = os.path.join(settings.OUTPUT_DIR, "results.json")
        with open(output_path, 'w') as f:
            json.dump(result, f, indent=2)

        logger.info(f"{args.command} complete: {json.dumps(result)}")

    except Exception as e:
        logger.error(f"Error during {args.command}: {e}")
        traceback.print_exc()
        sys.exit(1)
    finally:
        db.dispose()

if __name__ == "__main__":
    run()
