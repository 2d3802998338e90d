"""Tracks claimed UCoin per identity against the level-derived ceiling"""
import logging
import threading
from decimal import Decimal
from typing import Callable, Dict, Optional, Set

from ucoin_rewards.errors import TransientNetworkError
from ucoin_rewards.ledger import Ledger
from ucoin_rewards.models.rewards import LedgerEvent, LedgerEventType, ScoreResult
from ucoin_rewards.scoring import ContributionScorer
from ucoin_rewards.validation import normalize_address, parse_amount

logger = logging.getLogger(__name__)

ContributionLookup = Callable[[str], int]


class ClaimTracker:
    """
    Per-identity cache of the cumulative claimed amount.

    The ledger's completion log is authoritative. The cache only saves
    round trips and is rebuilt from the log whenever it is missing, when
    remaining() is computed, or after invalidate().
    """

    def __init__(self, ledger: Ledger, scorer: ContributionScorer, contributions: ContributionLookup):
        self.ledger = ledger
        self.scorer = scorer
        self.contributions = contributions
        self._claimed: Dict[str, Decimal] = {}
        self._seen_tx_refs: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def cumulative_claimed(self, address: str) -> Decimal:
        """Claimed total, from cache when present"""
        address = normalize_address(address)
        with self._lock:
            if address in self._claimed:
                return self._claimed[address]
        return self.reconcile(address)

    def reconcile(self, address: str) -> Decimal:
        """
        Rebuild the claimed total from the ledger's completion log.

        Raises:
            LedgerUnavailableError: The cache is left untouched
        """
        address = normalize_address(address)
        entries = self.ledger.get_completed_withdrawals(address)
        total = sum((entry.amount for entry in entries), Decimal(0))

        with self._lock:
            cached = self._claimed.get(address)
            if cached is not None and cached != total:
                logger.warning(f"Claimed amount cache for {address} diverged from ledger: "
                               f"cached {cached}, ledger {total}; using ledger")
            self._claimed[address] = total
            self._seen_tx_refs[address] = {entry.tx_ref for entry in entries}
        return total

    def entitlement(self, address: str) -> ScoreResult:
        """Score of an identity, zero when telemetry is unavailable"""
        address = normalize_address(address)
        try:
            contributions = self.contributions(address)
        except TransientNetworkError as e:
            logger.warning(f"Contribution lookup failed for {address}, treating as 0: {e}")
            contributions = 0
        return self.scorer.score(contributions)

    def remaining(self, address: str, score: Optional[ScoreResult] = None) -> Decimal:
        """
        What the identity may still request, reconciled against the ledger.

        The amount of a pending request is already spoken for and counts
        against the ceiling together with completed claims.
        """
        address = normalize_address(address)
        score = score or self.entitlement(address)
        claimed = self.reconcile(address)
        status = self.ledger.get_request_status(address)
        in_flight = status.amount if status.is_pending else Decimal(0)
        return max(Decimal(0), score.earnable_ceiling - claimed - in_flight)

    def record_claim(self, address: str, amount: Decimal, tx_ref: str) -> bool:
        """
        Apply a confirmed completion to the cache.

        Returns False when the completion was already applied.
        """
        address = normalize_address(address)
        amount = parse_amount(amount)

        with self._lock:
            if address not in self._claimed:
                # Nothing cached yet; the next read rebuilds from the ledger
                logger.debug(f"No cached claims for {address}, deferring {tx_ref} to reconciliation")
                return True

            seen = self._seen_tx_refs.setdefault(address, set())
            if tx_ref in seen:
                logger.info(f"Ignoring replayed claim {tx_ref} for {address}")
                return False

            seen.add(tx_ref)
            self._claimed[address] += amount
            logger.info(f"Recorded claim {tx_ref} for {address}: +{amount}, total {self._claimed[address]}")
            return True

    def invalidate(self, address: Optional[str] = None) -> None:
        """Drop cached totals, e.g. after a reconnect"""
        with self._lock:
            if address is None:
                self._claimed.clear()
                self._seen_tx_refs.clear()
            else:
                address = normalize_address(address)
                self._claimed.pop(address, None)
                self._seen_tx_refs.pop(address, None)

    def on_ledger_event(self, event: LedgerEvent) -> None:
        """
        Ledger listener for completions made outside this tracker's caller.

        The cached total is dropped and rebuilt from the log on the next
        read; applying claims stays with record_claim.
        """
        if event.type == LedgerEventType.REQUEST_COMPLETED:
            self.invalidate(event.address)
