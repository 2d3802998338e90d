from __future__ import annotations

from datetime import datetime
from typing import Callable

import pytest

from ucoin_rewards.claims import ClaimTracker
from ucoin_rewards.db import Database
from ucoin_rewards.ledger import SqlLedger
from ucoin_rewards.scoring import ContributionScorer
from ucoin_rewards.withdrawals import WithdrawalRequestManager

APPROVER = "0x" + "a" * 40
ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40
CAROL = "0x" + "3" * 40


class FakeTelemetry:
    """In-memory stand-in for the GitHub client.

    Values are contribution counts, or exceptions to raise, or callables
    run before answering.
    """

    def __init__(self, counts: dict | None = None, activity: dict | None = None):
        self.counts = dict(counts or {})
        self.activity = dict(activity or {})
        self.calls: list[str] = []

    def get_total_contributions(self, handle, from_time=None, to_time=None) -> int:
        self.calls.append(handle)
        value = self.counts[handle]
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value()
        return value

    def get_recent_activity(self, handle) -> list[datetime]:
        value = self.activity.get(handle, [])
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def database(tmp_path):
    database = Database()
    database.init(f"sqlite:///{tmp_path / 'ledger.db'}")
    yield database
    database.dispose()


@pytest.fixture
def ledger(database) -> SqlLedger:
    return SqlLedger(database, APPROVER)


@pytest.fixture
def scorer() -> ContributionScorer:
    return ContributionScorer()


@pytest.fixture
def contributions() -> dict[str, int]:
    """Contribution counts by lower-case address, editable per test"""
    return {}


@pytest.fixture
def lookup(contributions) -> Callable[[str], int]:
    return lambda address: contributions.get(address, 0)


@pytest.fixture
def tracker(ledger, scorer, lookup) -> ClaimTracker:
    return ClaimTracker(ledger, scorer, lookup)


@pytest.fixture
def manager(ledger, tracker) -> WithdrawalRequestManager:
    return WithdrawalRequestManager(ledger, tracker)
