"""Authoritative ledger of identities, withdrawal requests and claims"""
import logging
import secrets
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Callable, Generator, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ucoin_rewards.db import Database
from ucoin_rewards.errors import (
    LedgerUnavailableError,
    NoPendingRequest,
    RequestAlreadyPending,
    Unauthorized,
)
from ucoin_rewards.models.db import (
    ClaimLedgerEntryRow,
    RegisteredIdentity,
    TokenBalance,
    WithdrawalRequestRow,
)
from ucoin_rewards.models.rewards import (
    ClaimLedgerEntry,
    Identity,
    LedgerEvent,
    LedgerEventType,
    WithdrawalRequest,
    WithdrawalStatus,
)
from ucoin_rewards.validation import normalize_address, parse_amount

logger = logging.getLogger(__name__)

LedgerListener = Callable[[LedgerEvent], None]


class Ledger(ABC):
    """
    Contract of the authoritative ledger.

    Every mutating call is atomic: it either commits fully and emits its
    event, or raises and leaves ledger state unchanged.
    """

    def __init__(self):
        self._listeners: List[LedgerListener] = []

    def subscribe(self, listener: LedgerListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: LedgerListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: LedgerEvent) -> None:
        """Notify listeners of a committed change"""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # The change is already committed; a failing listener must not undo it
                logger.exception(f"Ledger listener failed handling {event.type.value} for {event.address}")

    @property
    @abstractmethod
    def approver(self) -> str:
        """Address allowed to approve withdrawals"""

    @abstractmethod
    def register_identity(self, address: str, handle: Optional[str]) -> Identity:
        pass

    @abstractmethod
    def get_registered_identities(self) -> List[Identity]:
        pass

    @abstractmethod
    def get_identity(self, address: str) -> Optional[Identity]:
        """Registered identity of a wallet, None when unregistered"""

    @abstractmethod
    def get_request_status(self, address: str) -> WithdrawalStatus:
        pass

    @abstractmethod
    def get_pending_requests(self) -> List[WithdrawalRequest]:
        pass

    @abstractmethod
    def request_withdrawal(self, caller: str, amount: Decimal) -> WithdrawalRequest:
        pass

    @abstractmethod
    def approve_withdrawal(self, caller: str, address: str) -> ClaimLedgerEntry:
        pass

    @abstractmethod
    def get_completed_withdrawals(self, address: Optional[str] = None) -> List[ClaimLedgerEntry]:
        pass

    @abstractmethod
    def balance_of(self, address: str) -> Decimal:
        pass


class SqlLedger(Ledger):
    """Ledger backed by a SQL database, one transaction per operation"""

    def __init__(self, database: Database, approver_address: str):
        super().__init__()
        self.database = database
        self._approver = normalize_address(approver_address)

    @property
    def approver(self) -> str:
        return self._approver

    @contextmanager
    def _transaction(self, operation: str) -> Generator[Session, None, None]:
        """Run one ledger operation, mapping database failures to LedgerUnavailableError"""
        try:
            with self.database.session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Ledger error during {operation}: {e}")
            raise LedgerUnavailableError(f"Ledger unavailable during {operation}: {e}") from e
        except RuntimeError as e:
            logger.error(f"Ledger not ready for {operation}: {e}")
            raise LedgerUnavailableError(str(e)) from e

    def register_identity(self, address: str, handle: Optional[str]) -> Identity:
        """Link a wallet to a GitHub handle; an existing registration is left as is"""
        address = normalize_address(address)
        handle = handle.strip() if handle and handle.strip() else None

        with self._transaction("register_identity") as session:
            existing = session.query(RegisteredIdentity).filter_by(address=address).first()
            if existing:
                logger.info(f"Identity {address} already registered as {existing.handle}")
                return Identity(wallet_address=existing.address, handle=existing.handle)

            session.add(RegisteredIdentity(address=address, handle=handle))

        logger.info(f"Registered identity {address} with handle {handle}")
        self._emit(LedgerEvent(type=LedgerEventType.SCORE_CHANGED, address=address))
        return Identity(wallet_address=address, handle=handle)

    def get_registered_identities(self) -> List[Identity]:
        """All identities in registration order"""
        with self._transaction("get_registered_identities") as session:
            rows = session.query(RegisteredIdentity).order_by(RegisteredIdentity.id).all()
            return [Identity(wallet_address=row.address, handle=row.handle) for row in rows]

    def get_identity(self, address: str) -> Optional[Identity]:
        address = normalize_address(address)
        with self._transaction("get_identity") as session:
            row = session.query(RegisteredIdentity).filter_by(address=address).first()
            if row is None:
                return None
            return Identity(wallet_address=row.address, handle=row.handle)

    def get_request_status(self, address: str) -> WithdrawalStatus:
        address = normalize_address(address)
        with self._transaction("get_request_status") as session:
            row = session.get(WithdrawalRequestRow, address)
            if row is None or not row.is_pending:
                return WithdrawalStatus(is_pending=False, amount=Decimal(0))
            return WithdrawalStatus(is_pending=True, amount=row.amount)

    def get_pending_requests(self) -> List[WithdrawalRequest]:
        with self._transaction("get_pending_requests") as session:
            rows = session.query(WithdrawalRequestRow).filter_by(
                is_pending=True
            ).order_by(WithdrawalRequestRow.requested_at).all()
            return [self._to_request(row) for row in rows]

    def request_withdrawal(self, caller: str, amount: Decimal) -> WithdrawalRequest:
        """
        Open the caller's withdrawal slot.

        The slot only flips through a conditional write, so of two concurrent
        callers exactly one opens it and the other gets RequestAlreadyPending.

        Raises:
            InvalidAmount: If the amount is not positive
            RequestAlreadyPending: If the slot already holds a pending request
        """
        caller = normalize_address(caller)
        amount = parse_amount(amount)
        requested_at = datetime.utcnow()

        with self._transaction("request_withdrawal") as session:
            row = self._load_slot(session, caller)
            if row is not None and row.is_pending:
                raise RequestAlreadyPending(f"A withdrawal request is already pending for {caller}")

            if row is None:
                session.add(WithdrawalRequestRow(
                    address=caller,
                    amount=amount,
                    is_pending=True,
                    requested_at=requested_at
                ))
                try:
                    session.flush()
                except IntegrityError:
                    # Another caller created the slot between our read and write
                    raise RequestAlreadyPending(f"A withdrawal request is already pending for {caller}")
            else:
                result = session.execute(
                    update(WithdrawalRequestRow)
                    .where(
                        WithdrawalRequestRow.address == caller,
                        WithdrawalRequestRow.is_pending.is_(False)
                    )
                    .values(
                        amount=amount,
                        is_pending=True,
                        requested_at=requested_at,
                        tx_ref=None,
                        completed_at=None
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise RequestAlreadyPending(f"A withdrawal request is already pending for {caller}")

        request = WithdrawalRequest(address=caller, amount=amount, is_pending=True, requested_at=requested_at)
        logger.info(f"Withdrawal request created for {caller}: {amount}")
        self._emit(LedgerEvent(type=LedgerEventType.REQUEST_CREATED, address=caller, amount=amount))
        return request

    def approve_withdrawal(self, caller: str, address: str) -> ClaimLedgerEntry:
        """
        Complete a pending request: transfer funds and append the claim entry.

        Only the caller whose conditional write closes the slot credits the
        balance; a concurrent or repeated approval gets NoPendingRequest.

        Raises:
            Unauthorized: If caller is not the approver
            NoPendingRequest: If the identity has no pending request
        """
        caller = normalize_address(caller)
        address = normalize_address(address)
        if caller != self._approver:
            raise Unauthorized(f"{caller} is not allowed to approve withdrawals")

        with self._transaction("approve_withdrawal") as session:
            row = self._load_slot(session, address)
            if row is None or not row.is_pending:
                raise NoPendingRequest(f"No pending withdrawal request for {address}")
            amount = row.amount

            completed_at = datetime.utcnow()
            tx_ref = '0x' + secrets.token_hex(32)

            # requested_at pins the exact request that was read
            result = session.execute(
                update(WithdrawalRequestRow)
                .where(
                    WithdrawalRequestRow.address == address,
                    WithdrawalRequestRow.is_pending.is_(True),
                    WithdrawalRequestRow.requested_at == row.requested_at
                )
                .values(is_pending=False, tx_ref=tx_ref, completed_at=completed_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NoPendingRequest(f"No pending withdrawal request for {address}")

            balance = session.get(TokenBalance, address)
            if balance is None:
                balance = TokenBalance(address=address, balance=Decimal(0))
                session.add(balance)
            balance.balance = balance.balance + amount

            session.add(ClaimLedgerEntryRow(
                address=address,
                amount=amount,
                tx_ref=tx_ref,
                completed_at=completed_at
            ))
            entry = ClaimLedgerEntry(
                address=address,
                amount=amount,
                tx_ref=tx_ref,
                completed_at=completed_at
            )

        logger.info(f"Withdrawal of {entry.amount} completed for {address} ({tx_ref})")
        self._emit(LedgerEvent(
            type=LedgerEventType.REQUEST_COMPLETED,
            address=address,
            amount=entry.amount,
            tx_ref=tx_ref
        ))
        return entry

    def get_completed_withdrawals(self, address: Optional[str] = None) -> List[ClaimLedgerEntry]:
        """Completion log, oldest first, optionally for one identity"""
        with self._transaction("get_completed_withdrawals") as session:
            query = session.query(ClaimLedgerEntryRow)
            if address is not None:
                query = query.filter_by(address=normalize_address(address))
            rows = query.order_by(ClaimLedgerEntryRow.id).all()
            return [
                ClaimLedgerEntry(
                    address=row.address,
                    amount=row.amount,
                    tx_ref=row.tx_ref,
                    completed_at=row.completed_at
                )
                for row in rows
            ]

    def balance_of(self, address: str) -> Decimal:
        address = normalize_address(address)
        with self._transaction("balance_of") as session:
            row = session.get(TokenBalance, address)
            return row.balance if row else Decimal(0)

    def _load_slot(self, session: Session, address: str) -> Optional[WithdrawalRequestRow]:
        """Read the withdrawal slot; transitions re-check it in their conditional write"""
        return session.get(WithdrawalRequestRow, address)

    @staticmethod
    def _to_request(row: WithdrawalRequestRow) -> WithdrawalRequest:
        return WithdrawalRequest(
            address=row.address,
            amount=row.amount,
            is_pending=row.is_pending,
            requested_at=row.requested_at,
            tx_ref=row.tx_ref
        )
