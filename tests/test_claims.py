from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from conftest import ALICE, APPROVER, BOB
from ucoin_rewards.claims import ClaimTracker
from ucoin_rewards.errors import LedgerUnavailableError, TelemetryTimeout
from ucoin_rewards.models.rewards import LedgerEvent, LedgerEventType


def test_remaining_is_ceiling_without_claims(tracker, contributions):
    contributions[ALICE] = 2

    assert tracker.remaining(ALICE) == Decimal("5.4000")


def test_remaining_subtracts_ledger_completions(tracker, ledger, contributions):
    contributions[ALICE] = 2
    ledger.request_withdrawal(ALICE, Decimal("1.4"))
    ledger.approve_withdrawal(APPROVER, ALICE)

    assert tracker.cumulative_claimed(ALICE) == Decimal("1.4")
    assert tracker.remaining(ALICE) == Decimal("4.0000")


def test_remaining_never_negative(tracker, ledger, contributions):
    contributions[ALICE] = 6  # level 2, ceiling 11.2320
    ledger.request_withdrawal(ALICE, Decimal("11"))
    ledger.approve_withdrawal(APPROVER, ALICE)
    contributions[ALICE] = 2  # activity window moved, level dropped

    assert tracker.remaining(ALICE) == Decimal("0")


def test_record_claim_deduplicates_by_tx_ref(tracker):
    assert tracker.cumulative_claimed(ALICE) == Decimal("0")

    assert tracker.record_claim(ALICE, Decimal("1"), "0xabc") is True
    assert tracker.record_claim(ALICE, Decimal("1"), "0xabc") is False
    assert tracker.record_claim(ALICE, Decimal("2"), "0xdef") is True

    assert tracker.cumulative_claimed(ALICE) == Decimal("3")


def test_record_claim_without_cache_defers_to_ledger(tracker, ledger):
    ledger.request_withdrawal(ALICE, Decimal("2"))
    entry = ledger.approve_withdrawal(APPROVER, ALICE)

    assert tracker.record_claim(ALICE, entry.amount, entry.tx_ref) is True
    assert tracker.cumulative_claimed(ALICE) == Decimal("2")
    # Replay after the cache was built from the ledger
    assert tracker.record_claim(ALICE, entry.amount, entry.tx_ref) is False
    assert tracker.cumulative_claimed(ALICE) == Decimal("2")


def test_reconcile_prefers_ledger_over_cache(tracker, ledger):
    tracker.cumulative_claimed(ALICE)
    tracker.record_claim(ALICE, Decimal("5"), "0xnot-on-ledger")
    assert tracker.cumulative_claimed(ALICE) == Decimal("5")

    assert tracker.reconcile(ALICE) == Decimal("0")
    assert tracker.cumulative_claimed(ALICE) == Decimal("0")


def test_invalidate_drops_cached_totals(tracker, ledger):
    tracker.cumulative_claimed(ALICE)
    tracker.record_claim(ALICE, Decimal("5"), "0xlocal-only")

    tracker.invalidate(ALICE)

    assert tracker.cumulative_claimed(ALICE) == Decimal("0")


def test_invalidate_all(tracker):
    tracker.cumulative_claimed(ALICE)
    tracker.cumulative_claimed(BOB)
    tracker.record_claim(ALICE, Decimal("1"), "0x1")
    tracker.record_claim(BOB, Decimal("1"), "0x2")

    tracker.invalidate()

    assert tracker.cumulative_claimed(ALICE) == Decimal("0")
    assert tracker.cumulative_claimed(BOB) == Decimal("0")


def test_ledger_outage_leaves_cache_untouched(scorer):
    ledger = MagicMock()
    ledger.get_completed_withdrawals.return_value = []
    tracker = ClaimTracker(ledger, scorer, lambda address: 2)
    tracker.cumulative_claimed(ALICE)
    tracker.record_claim(ALICE, Decimal("1"), "0x1")

    ledger.get_completed_withdrawals.side_effect = LedgerUnavailableError("down")

    with pytest.raises(LedgerUnavailableError):
        tracker.remaining(ALICE)
    assert tracker.cumulative_claimed(ALICE) == Decimal("1")


def test_telemetry_failure_scores_zero(ledger, scorer):
    def lookup(address):
        raise TelemetryTimeout("slow")

    tracker = ClaimTracker(ledger, scorer, lookup)

    assert tracker.entitlement(ALICE).level == 0
    assert tracker.remaining(ALICE) == Decimal("0")


def test_pending_request_counts_against_remaining(tracker, ledger, contributions):
    contributions[ALICE] = 2
    ledger.request_withdrawal(ALICE, Decimal("1.4"))

    assert tracker.cumulative_claimed(ALICE) == Decimal("0")
    assert tracker.remaining(ALICE) == Decimal("4.0000")

    ledger.approve_withdrawal(APPROVER, ALICE)

    assert tracker.remaining(ALICE) == Decimal("4.0000")


def test_completion_events_drop_stale_cache(tracker, ledger):
    tracker.cumulative_claimed(ALICE)
    tracker.record_claim(ALICE, Decimal("5"), "0xlocal-only")
    ledger.subscribe(tracker.on_ledger_event)

    ledger.request_withdrawal(ALICE, Decimal("1.5"))
    ledger.approve_withdrawal(APPROVER, ALICE)

    assert tracker.cumulative_claimed(ALICE) == Decimal("1.5")


def test_other_events_keep_cache(tracker):
    tracker.cumulative_claimed(ALICE)
    tracker.record_claim(ALICE, Decimal("1"), "0xlocal-only")

    tracker.on_ledger_event(LedgerEvent(type=LedgerEventType.SCORE_CHANGED, address=ALICE))

    assert tracker.cumulative_claimed(ALICE) == Decimal("1")
