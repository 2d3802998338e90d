"""Request and response shapes of the backend boundary"""
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accepts and emits the camelCase field names the UI uses"""
    model_config = ConfigDict(populate_by_name=True)


class IdentityIn(BaseModel):
    wallet: Optional[str] = None
    handle: Optional[str] = None


class LeaderboardXpRequest(BaseModel):
    identities: List[IdentityIn] = Field(default_factory=list)


class XpResult(BaseModel):
    wallet: str
    xp: int
    status: str


class LeaderboardXpResponse(BaseModel):
    results: List[XpResult] = Field(default_factory=list)


class PendingRequestOut(CamelModel):
    address: str
    amount: Decimal
    requested_at: str = Field(alias="requestedAt")


class PendingWithdrawalsResponse(CamelModel):
    pending_requests: List[PendingRequestOut] = Field(default_factory=list, alias="pendingRequests")


class ApproveWithdrawalRequest(BaseModel):
    address: str


class ApproveWithdrawalResponse(CamelModel):
    tx_ref: str = Field(alias="txRef")


class WithdrawalStatusResponse(CamelModel):
    is_pending: bool = Field(alias="isPending")
    amount: Decimal


class ErrorResponse(BaseModel):
    """
    Error payload for the boundary.

    code is the stable error code of the raised RewardsError.
    """
    code: str
    error: str
