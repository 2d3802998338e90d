"""Backend boundary: thin handlers turning payloads into core calls"""
import logging
from typing import Any, Dict

from ucoin_rewards.errors import RewardsError
from ucoin_rewards.leaderboard import TelemetryFanout
from ucoin_rewards.models.api import (
    ApproveWithdrawalRequest,
    ApproveWithdrawalResponse,
    ErrorResponse,
    LeaderboardXpRequest,
    LeaderboardXpResponse,
    PendingRequestOut,
    PendingWithdrawalsResponse,
    WithdrawalStatusResponse,
    XpResult,
)
from ucoin_rewards.models.rewards import Identity
from ucoin_rewards.validation import is_usable_address
from ucoin_rewards.withdrawals import WithdrawalRequestManager

logger = logging.getLogger(__name__)


def error_response(error: RewardsError) -> Dict[str, Any]:
    """Serialize a core error with its stable code"""
    return ErrorResponse(code=error.code, error=str(error)).model_dump()


class RewardsApi:
    """Handlers behind /leaderboard-xp, /pending-withdrawals and /approve-withdrawal"""

    def __init__(self, fanout: TelemetryFanout, withdrawals: WithdrawalRequestManager):
        self.fanout = fanout
        self.withdrawals = withdrawals

    def leaderboard_xp(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST /leaderboard-xp {identities: [{wallet, handle}]} -> {results: [{wallet, xp, status}]}"""
        request = LeaderboardXpRequest.model_validate(payload)
        identities = [
            Identity(wallet_address=item.wallet.lower(), handle=item.handle)
            for item in request.identities
            if is_usable_address(item.wallet) and item.handle
        ]
        if len(identities) != len(request.identities):
            logger.info(f"Ignoring {len(request.identities) - len(identities)} identities without wallet or handle")

        results = self.fanout.fetch_xp(identities)
        response = LeaderboardXpResponse(results=[XpResult(**result) for result in results])
        return response.model_dump(mode="json")

    def pending_withdrawals(self, caller: str) -> Dict[str, Any]:
        """GET /pending-withdrawals -> {pendingRequests: [...]}"""
        pending = self.withdrawals.pending_requests(caller)
        response = PendingWithdrawalsResponse(pending_requests=[
            PendingRequestOut(
                address=request.address,
                amount=request.amount,
                requested_at=request.requested_at.isoformat()
            )
            for request in pending
        ])
        return response.model_dump(mode="json", by_alias=True)

    def approve_withdrawal(self, caller: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST /approve-withdrawal {address} -> {txRef}"""
        request = ApproveWithdrawalRequest.model_validate(payload)
        entry = self.withdrawals.approve_withdrawal(caller, request.address)
        return ApproveWithdrawalResponse(tx_ref=entry.tx_ref).model_dump(mode="json", by_alias=True)

    def withdrawal_status(self, address: str) -> Dict[str, Any]:
        status = self.withdrawals.get_status(address)
        response = WithdrawalStatusResponse(is_pending=status.is_pending, amount=status.amount)
        return response.model_dump(mode="json", by_alias=True)
