"""Domain models for identities, scores and withdrawals"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Identity:
    """Registered participant keyed by wallet address"""
    wallet_address: Optional[str]
    handle: Optional[str]


@dataclass
class ContributionSnapshot:
    """Contribution count observed from telemetry, never persisted"""
    identity: Identity
    raw_contribution_count: int
    observed_at: datetime


@dataclass(frozen=True)
class ScoreResult:
    """Derived score for a contribution count"""
    xp: int
    level: int
    title: str
    next_level_xp: int
    earnable_ceiling: Decimal


@dataclass
class WithdrawalRequest:
    """Single withdrawal slot for an identity"""
    address: str
    amount: Decimal
    is_pending: bool
    requested_at: datetime
    tx_ref: Optional[str] = None


@dataclass(frozen=True)
class WithdrawalStatus:
    is_pending: bool
    amount: Decimal


@dataclass(frozen=True)
class ClaimLedgerEntry:
    """Completed withdrawal, append-only"""
    address: str
    amount: Decimal
    tx_ref: str
    completed_at: datetime


class LeaderboardStatus(str, Enum):
    """Outcome of the telemetry fetch behind a leaderboard entry"""
    OK = "ok"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    ERROR = "error"
    MISSING = "missing"


@dataclass
class LeaderboardEntry:
    wallet: str
    handle: str
    xp: int
    status: LeaderboardStatus


class LedgerEventType(str, Enum):
    REQUEST_CREATED = "RequestCreated"
    REQUEST_COMPLETED = "RequestCompleted"
    SCORE_CHANGED = "ScoreChanged"


@dataclass(frozen=True)
class LedgerEvent:
    """Notification emitted by the ledger after a committed state change"""
    type: LedgerEventType
    address: str
    amount: Optional[Decimal] = None
    tx_ref: Optional[str] = None


@dataclass
class ContributionProfile:
    """Everything the dashboard shows for one identity"""
    identity: Identity
    total_contributions: int
    score: ScoreResult
    role: str
    streak: int
    cumulative_claimed: Decimal
    remaining: Decimal
    balance: Decimal
    status: WithdrawalStatus
