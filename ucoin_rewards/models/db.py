"""SQLAlchemy database models for the rewards ledger"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


class TokenAmount(TypeDecorator):
    """
    Stores token amounts as exact decimal strings.

    Not every backend has a native fixed-point type with 18 decimal places,
    so amounts round-trip through text to stay exact.
    """
    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class RegisteredIdentity(Base):
    """
    Wallet to GitHub handle link.
    Insertion order (id) is the registration order used for tie-breaks.
    """
    __tablename__ = 'registered_identities'

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(42), unique=True, nullable=False, index=True)
    handle = Column(String, nullable=True)
    registered_at = Column(DateTime, default=datetime.utcnow)


class WithdrawalRequestRow(Base):
    """
    The single withdrawal slot of an identity.
    A completed request keeps its row with is_pending = False until the
    identity requests again.
    """
    __tablename__ = 'withdrawal_requests'

    address = Column(String(42), primary_key=True)
    amount = Column(TokenAmount, nullable=False)
    is_pending = Column(Boolean, nullable=False, default=False)
    requested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    tx_ref = Column(String, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class ClaimLedgerEntryRow(Base):
    """
    Append-only log of completed withdrawals.
    The only authoritative source for the amount an identity has claimed.
    """
    __tablename__ = 'claim_ledger_entries'

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(42), nullable=False, index=True)
    amount = Column(TokenAmount, nullable=False)
    tx_ref = Column(String, unique=True, nullable=False)
    completed_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class TokenBalance(Base):
    __tablename__ = 'token_balances'

    address = Column(String(42), primary_key=True)
    balance = Column(TokenAmount, nullable=False, default=Decimal(0))
