from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from conftest import ALICE, BOB, CAROL, FakeTelemetry
from ucoin_rewards.errors import (
    LedgerUnavailableError,
    MalformedTelemetryResponse,
    TelemetryNotFound,
    TelemetryTimeout,
    TransientNetworkError,
)
from ucoin_rewards.leaderboard import LeaderboardAggregator, TelemetryFanout
from ucoin_rewards.models.rewards import Identity, LeaderboardStatus, LedgerEvent, LedgerEventType

DAVE = "0x" + "4" * 40


def make_aggregator(ledger, scorer, telemetry, **fanout_kwargs) -> LeaderboardAggregator:
    fanout = TelemetryFanout(telemetry, scorer, **fanout_kwargs)
    return LeaderboardAggregator(ledger, fanout)


def test_one_timeout_does_not_suppress_the_batch(ledger, scorer):
    ledger.register_identity(ALICE, "alice")
    ledger.register_identity(BOB, "bob")
    ledger.register_identity(CAROL, "carol")
    telemetry = FakeTelemetry({"alice": 3, "bob": TelemetryTimeout("slow"), "carol": 10})

    board = make_aggregator(ledger, scorer, telemetry).build_leaderboard()

    assert len(board) == 3
    assert [(entry.handle, entry.xp) for entry in board] == [("carol", 500), ("alice", 150), ("bob", 0)]
    assert board[2].status == LeaderboardStatus.TIMEOUT
    xps = [entry.xp for entry in board]
    assert xps == sorted(xps, reverse=True)


def test_identity_without_handle_is_excluded(ledger, scorer):
    ledger.register_identity(ALICE, "alice")
    ledger.register_identity(BOB, None)
    telemetry = FakeTelemetry({"alice": 1})

    board = make_aggregator(ledger, scorer, telemetry).build_leaderboard()

    assert [entry.wallet for entry in board] == [ALICE]
    assert telemetry.calls == ["alice"]


def test_failures_and_unknown_handles_score_zero(ledger, scorer):
    ledger.register_identity(ALICE, "alice")
    ledger.register_identity(BOB, "ghost")
    ledger.register_identity(CAROL, "flaky")
    ledger.register_identity(DAVE, "buggy")
    telemetry = FakeTelemetry({
        "alice": 2,
        "ghost": TelemetryNotFound("no such user"),
        "flaky": TransientNetworkError("502"),
        "buggy": KeyError("totally unexpected"),
    })

    board = make_aggregator(ledger, scorer, telemetry).build_leaderboard()

    statuses = {entry.handle: entry.status for entry in board}
    assert statuses == {
        "alice": LeaderboardStatus.OK,
        "ghost": LeaderboardStatus.NOT_FOUND,
        "flaky": LeaderboardStatus.ERROR,
        "buggy": LeaderboardStatus.ERROR,
    }
    assert [entry.xp for entry in board] == [100, 0, 0, 0]


def test_ties_keep_registration_order(ledger, scorer):
    ledger.register_identity(CAROL, "carol")
    ledger.register_identity(ALICE, "alice")
    ledger.register_identity(BOB, "bob")
    telemetry = FakeTelemetry({"carol": 1, "alice": 4, "bob": 1})

    board = make_aggregator(ledger, scorer, telemetry).build_leaderboard()

    assert [entry.handle for entry in board] == ["alice", "carol", "bob"]


def test_ledger_outage_is_fatal(scorer):
    ledger = MagicMock()
    ledger.get_registered_identities.side_effect = LedgerUnavailableError("down")
    aggregator = LeaderboardAggregator(ledger, MagicMock())

    with pytest.raises(LedgerUnavailableError):
        aggregator.build_leaderboard()
    aggregator.xp_source.fetch_xp.assert_not_called()


def test_malformed_aggregate_response_is_fatal(ledger):
    ledger.register_identity(ALICE, "alice")
    xp_source = MagicMock()
    xp_source.fetch_xp.return_value = {"error": "oops"}

    with pytest.raises(MalformedTelemetryResponse):
        LeaderboardAggregator(ledger, xp_source).build_leaderboard()


def test_unmatched_and_malformed_results_score_zero(ledger):
    ledger.register_identity(ALICE, "alice")
    ledger.register_identity(BOB, "bob")
    xp_source = MagicMock()
    xp_source.fetch_xp.return_value = [
        {"wallet": ALICE.upper().replace("0X", "0x"), "xp": 250, "status": "ok"},
        {"wallet": BOB, "xp": "lots"},
        "garbage",
    ]

    board = LeaderboardAggregator(ledger, xp_source).build_leaderboard()

    assert [(entry.wallet, entry.xp, entry.status) for entry in board] == [
        (ALICE, 250, LeaderboardStatus.OK),
        (BOB, 0, LeaderboardStatus.MISSING),
    ]


def test_empty_ledger_builds_empty_board(ledger, scorer):
    assert make_aggregator(ledger, scorer, FakeTelemetry()).build_leaderboard() == []


def test_slow_fetch_resolves_to_timeout(ledger, scorer):
    ledger.register_identity(ALICE, "alice")
    ledger.register_identity(BOB, "bob")
    release = threading.Event()

    def stuck():
        release.wait(5)
        return 99

    telemetry = FakeTelemetry({"alice": 1, "bob": stuck})
    aggregator = make_aggregator(ledger, scorer, telemetry, timeout=0.2)

    started = time.monotonic()
    try:
        board = aggregator.build_leaderboard()
    finally:
        release.set()

    assert time.monotonic() - started < 2
    assert [(entry.handle, entry.xp, entry.status) for entry in board] == [
        ("alice", 50, LeaderboardStatus.OK),
        ("bob", 0, LeaderboardStatus.TIMEOUT),
    ]


def test_fanout_respects_concurrency_bound(scorer):
    lock = threading.Lock()
    active = {"now": 0, "peak": 0}

    def slow():
        with lock:
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
        time.sleep(0.05)
        with lock:
            active["now"] -= 1
        return 1

    handles = [f"user{i}" for i in range(6)]
    telemetry = FakeTelemetry({handle: slow for handle in handles})
    identities = [Identity(wallet_address="0x" + f"{i:040x}", handle=handle) for i, handle in enumerate(handles, 1)]
    fanout = TelemetryFanout(telemetry, scorer, max_concurrency=2)

    results = fanout.fetch_xp(identities)

    assert [result["xp"] for result in results] == [50] * 6
    assert [result["wallet"] for result in results] == [identity.wallet_address for identity in identities]
    assert active["peak"] <= 2


def test_slow_fetch_does_not_time_out_queued_fetches(ledger, scorer):
    ledger.register_identity(ALICE, "alice")
    ledger.register_identity(BOB, "bob")
    ledger.register_identity(CAROL, "carol")

    def slow():
        time.sleep(0.7)
        return 10

    telemetry = FakeTelemetry({"alice": slow, "bob": 4, "carol": 2})
    aggregator = make_aggregator(ledger, scorer, telemetry, max_concurrency=1, timeout=0.2)

    board = aggregator.build_leaderboard()

    assert [(entry.handle, entry.xp, entry.status) for entry in board] == [
        ("bob", 200, LeaderboardStatus.OK),
        ("carol", 100, LeaderboardStatus.OK),
        ("alice", 0, LeaderboardStatus.TIMEOUT),
    ]


def test_watch_rebuilds_on_score_change(ledger, scorer):
    telemetry = FakeTelemetry({"alice": 2, "bob": 5})
    aggregator = make_aggregator(ledger, scorer, telemetry)
    aggregator.watch()

    ledger.register_identity(ALICE, "alice")
    ledger.register_identity(BOB, "bob")
    aggregator.unwatch()

    assert [entry.handle for entry in aggregator.latest] == ["bob", "alice"]

    ledger.register_identity(CAROL, "carol")
    assert len(aggregator.latest) == 2


def test_registration_does_not_wait_for_rebuild(ledger, scorer):
    release = threading.Event()

    def stuck():
        release.wait(5)
        return 1

    telemetry = FakeTelemetry({"alice": stuck})
    aggregator = make_aggregator(ledger, scorer, telemetry)
    aggregator.watch()
    try:
        started = time.monotonic()
        ledger.register_identity(ALICE, "alice")
        assert time.monotonic() - started < 1
        assert aggregator.latest == []
    finally:
        release.set()
        aggregator.unwatch()

    assert [(entry.handle, entry.xp) for entry in aggregator.latest] == [("alice", 50)]


def test_failed_rebuild_keeps_previous_board(scorer):
    ledger = MagicMock()
    ledger.get_registered_identities.side_effect = LedgerUnavailableError("down")
    aggregator = LeaderboardAggregator(ledger, MagicMock())
    aggregator.latest = ["previous"]
    aggregator.watch()

    aggregator._on_ledger_event(LedgerEvent(type=LedgerEventType.SCORE_CHANGED, address=ALICE))
    aggregator.unwatch()

    assert aggregator.latest == ["previous"]
