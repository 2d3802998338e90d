from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import patch

import pytest

from conftest import ALICE, APPROVER, BOB, FakeTelemetry
from ucoin_rewards import __main__ as cli
from ucoin_rewards.config import Settings
from ucoin_rewards.core import RewardsCore
from ucoin_rewards.db import Database
from ucoin_rewards.errors import LimitExceeded


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "DATABASE_URL": f"sqlite:///{tmp_path / 'rewards.db'}",
        "APPROVER_ADDRESS": APPROVER,
        "GITHUB_TOKEN": None,
        "GITHUB_ENCRYPTED_TOKEN": None,
        "OUTPUT_DIR": str(tmp_path / "output"),
        "STATUS_POLL_INTERVAL": 0.01,
        "BALANCE_POLL_INTERVAL": 0.01,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def core(tmp_path, database):
    core = RewardsCore(make_settings(tmp_path), database, github=FakeTelemetry({"alice": 2, "bob": 6}))
    yield core
    core.close()


def test_requires_approver(tmp_path, database):
    with pytest.raises(ValueError):
        RewardsCore(make_settings(tmp_path, APPROVER_ADDRESS=None), database)


def test_builds_github_client_from_settings(tmp_path, database):
    core = RewardsCore(make_settings(tmp_path, GITHUB_TOKEN="ghp_token", TELEMETRY_MAX_RETRIES=3), database)

    assert core.github.token == "ghp_token"
    assert core.github.max_retries == 3
    assert core.fanout.telemetry is core.github


def test_end_to_end_flow(core):
    core.ledger.register_identity(ALICE, "alice")
    core.ledger.register_identity(BOB, "bob")

    board = core.leaderboard.build_leaderboard()
    assert [(entry.wallet, entry.xp) for entry in board] == [(BOB, 300), (ALICE, 100)]

    with pytest.raises(LimitExceeded):
        core.withdrawals.request_withdrawal(ALICE, 6)
    core.withdrawals.request_withdrawal(ALICE, 5)
    core.api.approve_withdrawal(APPROVER, {"address": ALICE})

    assert str(core.claims.remaining(ALICE)) == "0.4000"
    assert core.profiles.get_profile(ALICE).balance == 5


def test_leaderboard_follows_registrations(core):
    core.ledger.register_identity(ALICE, "alice")
    core.ledger.register_identity(BOB, "bob")
    core.close()

    assert [(entry.wallet, entry.xp) for entry in core.leaderboard.latest] == [(BOB, 300), (ALICE, 100)]


def test_direct_ledger_approval_refreshes_claims(core):
    assert core.claims.cumulative_claimed(ALICE) == 0

    core.ledger.request_withdrawal(ALICE, Decimal("2"))
    core.ledger.approve_withdrawal(APPROVER, ALICE)

    assert core.claims.cumulative_claimed(ALICE) == Decimal("2")


def test_one_shot_core_does_not_watch(tmp_path, database):
    core = RewardsCore(make_settings(tmp_path), database, github=FakeTelemetry(), watch_leaderboard=False)
    core.ledger.register_identity(ALICE, "alice")
    core.close()

    assert core.leaderboard.latest == []
    assert core.github.calls == []


def test_execute_commands(core):
    parser = cli.build_parser()

    identity = cli.execute(core, parser.parse_args(["register", "--address", ALICE, "--handle", "alice"]))
    assert identity.handle == "alice"

    cli.execute(core, parser.parse_args(["request", "--address", ALICE, "--amount", "2"]))
    pending = cli.execute(core, parser.parse_args(["pending", "--caller", APPROVER]))
    assert [item["address"] for item in pending["pendingRequests"]] == [ALICE]

    approved = cli.execute(core, parser.parse_args(["approve", "--caller", APPROVER, "--address", ALICE]))
    history = cli.execute(core, parser.parse_args(["history", "--address", ALICE]))
    assert [entry.tx_ref for entry in history] == [approved["txRef"]]

    polled = cli.execute(core, parser.parse_args(["poll", "--address", ALICE, "--duration", "0.05"]))
    assert polled["balance"] == 2


def test_run_writes_results(tmp_path):
    settings = make_settings(tmp_path)

    with patch.object(cli, "settings", settings), patch.object(cli, "db", Database()):
        cli.run(["register", "--address", ALICE, "--handle", "alice"])

    with open(tmp_path / "output" / "results.json") as f:
        result = json.load(f)
    assert result == {"wallet_address": ALICE, "handle": "alice"}


def test_run_exits_on_error(tmp_path):
    settings = make_settings(tmp_path)

    with patch.object(cli, "settings", settings), patch.object(cli, "db", Database()):
        with pytest.raises(SystemExit) as exc_info:
            cli.run(["request", "--address", "not-a-wallet", "--amount", "1"])

    assert exc_info.value.code == 1
