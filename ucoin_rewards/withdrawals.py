"""Withdrawal request and approval state machine"""
import logging
from decimal import Decimal
from typing import List, Optional, Union

from ucoin_rewards.claims import ClaimTracker
from ucoin_rewards.errors import LimitExceeded, RequestAlreadyPending, Unauthorized
from ucoin_rewards.ledger import Ledger
from ucoin_rewards.models.rewards import ClaimLedgerEntry, WithdrawalRequest, WithdrawalStatus
from ucoin_rewards.validation import normalize_address, parse_amount

logger = logging.getLogger(__name__)


class WithdrawalRequestManager:
    """
    Single-slot withdrawal flow: None -> Pending -> Completed.

    A pending request can only leave its state through approval; there is
    no reject or cancel transition. Slot uniqueness is enforced by the
    ledger, the status read here only gives callers an early answer.
    """

    def __init__(self, ledger: Ledger, claims: ClaimTracker):
        self.ledger = ledger
        self.claims = claims

    def request_withdrawal(self, address: str, amount: Union[str, int, float, Decimal]) -> WithdrawalRequest:
        """
        Ask for part of the earned entitlement to be released.

        Raises:
            InvalidAmount: If amount is not a positive number
            InvalidAddress: If address is malformed
            RequestAlreadyPending: If the identity already has a live request
            LimitExceeded: If amount exceeds what the identity may still claim
            LedgerUnavailableError: If the ledger cannot be reached
        """
        amount = parse_amount(amount)
        address = normalize_address(address)

        if self.ledger.get_request_status(address).is_pending:
            raise RequestAlreadyPending(f"A withdrawal request is already pending for {address}")

        remaining = self.claims.remaining(address)
        if amount > remaining:
            raise LimitExceeded(f"Requested {amount} exceeds remaining entitlement {remaining} for {address}")

        try:
            request = self.ledger.request_withdrawal(address, amount)
        except RequestAlreadyPending:
            logger.info(f"Ledger rejected request for {address}: another request landed first")
            raise

        logger.info(f"Withdrawal of {amount} requested by {address}, {remaining - amount} left to claim")
        return request

    def approve_withdrawal(self, caller: str, address: str) -> ClaimLedgerEntry:
        """
        Release the funds of a pending request.

        Raises:
            Unauthorized: If caller is not the approver
            NoPendingRequest: If there is nothing pending for address
            LedgerUnavailableError: If the ledger cannot be reached
        """
        caller = normalize_address(caller)
        address = normalize_address(address)
        if not self.is_approver(caller):
            raise Unauthorized(f"{caller} is not allowed to approve withdrawals")

        entry = self.ledger.approve_withdrawal(caller, address)
        self.claims.record_claim(entry.address, entry.amount, entry.tx_ref)
        return entry

    def get_status(self, address: str) -> WithdrawalStatus:
        """Current slot state, always read from the ledger"""
        return self.ledger.get_request_status(normalize_address(address))

    def is_approver(self, address: str) -> bool:
        return normalize_address(address) == self.ledger.approver

    def pending_requests(self, caller: str) -> List[WithdrawalRequest]:
        """Pending requests across all identities, for the approver only"""
        if not self.is_approver(caller):
            raise Unauthorized(f"{caller} is not allowed to list pending withdrawals")
        return self.ledger.get_pending_requests()

    def withdrawal_history(self, address: Optional[str] = None) -> List[ClaimLedgerEntry]:
        """Completed withdrawals, newest first"""
        entries = self.ledger.get_completed_withdrawals(address)
        # Log order breaks timestamp ties
        return sorted(reversed(entries), key=lambda entry: entry.completed_at, reverse=True)

    def balance_of(self, address: str) -> Decimal:
        return self.ledger.balance_of(normalize_address(address))
