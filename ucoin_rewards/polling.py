"""Periodic status and balance reads for an active session"""
import logging
import threading
from decimal import Decimal
from typing import Callable, List, Optional

from ucoin_rewards.errors import RewardsError
from ucoin_rewards.models.rewards import WithdrawalStatus
from ucoin_rewards.validation import normalize_address
from ucoin_rewards.withdrawals import WithdrawalRequestManager

logger = logging.getLogger(__name__)


class SessionPoller:
    """
    Polls withdrawal status and token balance on fixed intervals.

    Each reading goes straight to the ledger. stop() must be called when the
    session ends; using the poller as a context manager does that.
    """

    def __init__(
            self,
            withdrawals: WithdrawalRequestManager,
            address: str,
            status_interval: float = 15.0,
            balance_interval: float = 30.0,
            on_status: Optional[Callable[[WithdrawalStatus], None]] = None,
            on_balance: Optional[Callable[[Decimal], None]] = None
    ):
        self.withdrawals = withdrawals
        self.address = normalize_address(address)
        self.status_interval = status_interval
        self.balance_interval = balance_interval
        self.on_status = on_status
        self.on_balance = on_balance

        self.status: Optional[WithdrawalStatus] = None
        self.balance: Optional[Decimal] = None
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def poll_status(self) -> None:
        status = self.withdrawals.get_status(self.address)
        if status != self.status:
            logger.info(f"Withdrawal status for {self.address}: pending={status.is_pending} amount={status.amount}")
        self.status = status
        if self.on_status:
            self.on_status(status)

    def poll_balance(self) -> None:
        balance = self.withdrawals.balance_of(self.address)
        if balance != self.balance:
            logger.info(f"Balance for {self.address}: {balance}")
        self.balance = balance
        if self.on_balance:
            self.on_balance(balance)

    def _loop(self, name: str, poll: Callable[[], None], interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                poll()
            except RewardsError as e:
                logger.warning(f"{name} poll failed for {self.address}: {e}")
            if self._stop_event.wait(interval):
                break

    def start(self) -> 'SessionPoller':
        if self.running:
            return self
        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self._loop,
                args=("Status", self.poll_status, self.status_interval),
                name=f"status-poll-{self.address[:10]}",
                daemon=True
            ),
            threading.Thread(
                target=self._loop,
                args=("Balance", self.poll_balance, self.balance_interval),
                name=f"balance-poll-{self.address[:10]}",
                daemon=True
            ),
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Started polling for {self.address}")
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel both intervals and wait for the threads to exit"""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info(f"Stopped polling for {self.address}")

    def __enter__(self) -> 'SessionPoller':
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
