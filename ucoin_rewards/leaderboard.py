"""Leaderboard: ledger identities ranked by GitHub XP"""
import logging
import threading
import time
from collections.abc import Mapping
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Tuple

from ucoin_rewards.errors import (
    MalformedTelemetryResponse,
    TelemetryNotFound,
    TelemetryTimeout,
    TransientNetworkError,
)
from ucoin_rewards.ledger import Ledger
from ucoin_rewards.models.rewards import (
    ContributionSnapshot,
    Identity,
    LeaderboardEntry,
    LeaderboardStatus,
    LedgerEvent,
    LedgerEventType,
)
from ucoin_rewards.scoring import ContributionScorer
from ucoin_rewards.validation import is_usable_address

logger = logging.getLogger(__name__)

TIMEOUT_CHECK_INTERVAL = 0.05


class ContributionSource(Protocol):
    def get_total_contributions(
            self,
            handle: str,
            from_time: Optional[datetime] = None,
            to_time: Optional[datetime] = None
    ) -> int:
        ...


class XpSource(Protocol):
    def fetch_xp(self, identities: List[Identity]) -> Any:
        """Return a list of {wallet, xp, status} mappings"""
        ...


class TelemetryFanout:
    """
    Fetches XP for many identities concurrently.

    A bounded worker pool caps how many telemetry requests are in flight.
    Every identity resolves to a result: failures, timeouts and unknown
    handles become xp 0 with a status explaining why.
    """

    def __init__(
            self,
            telemetry: ContributionSource,
            scorer: ContributionScorer,
            max_concurrency: int = 8,
            timeout: float = 15.0,
            window_days: int = 365
    ):
        self.telemetry = telemetry
        self.scorer = scorer
        self.max_concurrency = max(1, max_concurrency)
        self.timeout = timeout
        self.window_days = window_days

    def snapshot(self, identity: Identity, from_time: datetime, to_time: datetime) -> ContributionSnapshot:
        count = self.telemetry.get_total_contributions(identity.handle, from_time, to_time)
        return ContributionSnapshot(
            identity=identity,
            raw_contribution_count=max(int(count), 0),
            observed_at=datetime.utcnow()
        )

    def _fetch_one(self, identity: Identity, from_time: datetime, to_time: datetime) -> Tuple[int, LeaderboardStatus]:
        try:
            snapshot = self.snapshot(identity, from_time, to_time)
        except TelemetryNotFound as e:
            logger.info(f"No GitHub data for {identity.handle}: {e}")
            return 0, LeaderboardStatus.NOT_FOUND
        except TelemetryTimeout as e:
            logger.warning(f"GitHub fetch timed out for {identity.handle}: {e}")
            return 0, LeaderboardStatus.TIMEOUT
        except TransientNetworkError as e:
            logger.warning(f"GitHub fetch failed for {identity.handle}: {e}")
            return 0, LeaderboardStatus.ERROR
        except Exception:
            # One identity must never take the batch down with it
            logger.exception(f"Unexpected error fetching contributions for {identity.handle}")
            return 0, LeaderboardStatus.ERROR
        return self.scorer.xp(snapshot.raw_contribution_count), LeaderboardStatus.OK

    def _timed_fetch(
            self,
            started: Dict[int, float],
            index: int,
            identity: Identity,
            from_time: datetime,
            to_time: datetime
    ) -> Tuple[int, LeaderboardStatus]:
        started[index] = time.monotonic()
        return self._fetch_one(identity, from_time, to_time)

    def fetch_xp(self, identities: List[Identity]) -> List[Dict[str, Any]]:
        """
        Fetch XP for every identity; results keep the input order.

        Each fetch gets its own timeout, counted from the moment a worker
        picks it up, so a slow identity never eats into the time of those
        queued behind it. A timed-out fetch cannot be interrupted: its worker
        keeps running until the telemetry client's own request timeout ends
        it, and interpreter exit waits for it. Its late result is discarded.
        """
        if not identities:
            return []

        to_time = datetime.utcnow()
        from_time = to_time - timedelta(days=self.window_days)
        workers = min(self.max_concurrency, len(identities))
        started: Dict[int, float] = {}
        outcomes: Dict[int, Tuple[int, LeaderboardStatus]] = {}

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="telemetry")
        try:
            futures = {
                executor.submit(self._timed_fetch, started, index, identity, from_time, to_time): index
                for index, identity in enumerate(identities)
            }
            pending = set(futures)
            while pending:
                done, pending = wait(
                    pending,
                    timeout=min(self.timeout, TIMEOUT_CHECK_INTERVAL),
                    return_when=FIRST_COMPLETED
                )
                for future in done:
                    outcomes[futures[future]] = future.result()

                now = time.monotonic()
                for future in list(pending):
                    index = futures[future]
                    if future.done():
                        outcomes[index] = future.result()
                    elif index in started and now - started[index] >= self.timeout:
                        logger.warning(f"GitHub fetch for {identities[index].handle} exceeded "
                                       f"{self.timeout}s, scoring 0")
                        outcomes[index] = (0, LeaderboardStatus.TIMEOUT)
                    else:
                        continue
                    pending.discard(future)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        results = [
            {
                'wallet': identity.wallet_address,
                'xp': outcomes[index][0],
                'status': outcomes[index][1].value
            }
            for index, identity in enumerate(identities)
        ]
        failed = sum(1 for result in results if result['status'] != LeaderboardStatus.OK.value)
        logger.info(f"Fetched XP for {len(results)} identities ({failed} without telemetry)")
        return results


class LeaderboardAggregator:
    """
    Ranks registered identities by XP.

    Telemetry problems for single identities are absorbed as xp 0; only an
    unreachable ledger or a malformed aggregate response fail the build.
    """

    def __init__(self, ledger: Ledger, xp_source: XpSource):
        self.ledger = ledger
        self.xp_source = xp_source
        self.latest: List[LeaderboardEntry] = []
        self._rebuilds: Optional[ThreadPoolExecutor] = None
        self._rebuild_queued = False
        self._lock = threading.Lock()

    def build_leaderboard(self) -> List[LeaderboardEntry]:
        """
        Build the ranked leaderboard.

        Raises:
            LedgerUnavailableError: If registered identities cannot be read
            MalformedTelemetryResponse: If the XP source returns garbage
        """
        identities = self.ledger.get_registered_identities()
        scorable = [
            Identity(wallet_address=identity.wallet_address.lower(), handle=identity.handle)
            for identity in identities
            if is_usable_address(identity.wallet_address) and identity.handle
        ]
        skipped = len(identities) - len(scorable)
        if skipped:
            logger.info(f"Skipping {skipped} identities without a wallet or GitHub handle")

        if not scorable:
            self.latest = []
            return []

        xp_by_wallet = self._index_results(self.xp_source.fetch_xp(scorable))

        entries = []
        for identity in scorable:
            xp, status = xp_by_wallet.get(identity.wallet_address, (0, LeaderboardStatus.MISSING))
            entries.append(LeaderboardEntry(
                wallet=identity.wallet_address,
                handle=identity.handle,
                xp=xp,
                status=status
            ))

        # Stable sort: equal XP keeps ledger registration order
        entries.sort(key=lambda entry: entry.xp, reverse=True)
        self.latest = entries
        logger.info(f"Leaderboard built with {len(entries)} entries")
        return entries

    @staticmethod
    def _index_results(results: Any) -> Dict[str, Tuple[int, LeaderboardStatus]]:
        """Map wallet -> (xp, status), dropping entries that cannot be used"""
        if not isinstance(results, list):
            raise MalformedTelemetryResponse(
                f"Expected a list of XP results, got {type(results).__name__}"
            )

        indexed = {}
        for item in results:
            if not isinstance(item, Mapping):
                logger.warning(f"Ignoring malformed XP result: {item!r}")
                continue
            wallet = item.get('wallet')
            xp = item.get('xp')
            if not isinstance(wallet, str) or not isinstance(xp, int) or isinstance(xp, bool) or xp < 0:
                logger.warning(f"Ignoring malformed XP result: {item!r}")
                continue
            try:
                status = LeaderboardStatus(item.get('status', LeaderboardStatus.OK.value))
            except ValueError:
                status = LeaderboardStatus.ERROR
            indexed[wallet.lower()] = (xp, status)
        return indexed

    def _rebuild(self) -> None:
        with self._lock:
            self._rebuild_queued = False
        try:
            self.build_leaderboard()
        except Exception:
            logger.exception("Leaderboard rebuild failed, keeping the previous board")

    def _on_ledger_event(self, event: LedgerEvent) -> None:
        if event.type != LedgerEventType.SCORE_CHANGED:
            return
        with self._lock:
            # One queued rebuild covers every change that arrives before it starts
            if self._rebuilds is None or self._rebuild_queued:
                return
            self._rebuild_queued = True
            self._rebuilds.submit(self._rebuild)
        logger.info(f"Score changed for {event.address}, rebuilding leaderboard")

    def watch(self, ledger: Optional[Ledger] = None) -> None:
        """
        Rebuild whenever the ledger reports a score change.

        Rebuilds run on a background worker so the ledger call that emitted
        the change never waits for the telemetry fan-out.
        """
        with self._lock:
            if self._rebuilds is None:
                self._rebuilds = ThreadPoolExecutor(max_workers=1, thread_name_prefix="leaderboard")
        (ledger or self.ledger).subscribe(self._on_ledger_event)

    def unwatch(self, ledger: Optional[Ledger] = None) -> None:
        """Stop rebuilding and wait for a rebuild already underway"""
        (ledger or self.ledger).unsubscribe(self._on_ledger_event)
        with self._lock:
            rebuilds, self._rebuilds = self._rebuilds, None
            self._rebuild_queued = False
        if rebuilds is not None:
            rebuilds.shutdown(wait=True)
