from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import Boolean, DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.ext.mutable import MutableDict

from .core.database import Base


def now_utc_naive() -> datetime:
    """Return a naive UTC datetime for timestamp columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, onupdate=now_utc_naive, nullable=False)


class AccountKind(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    MORTGAGE = "mortgage"
    INVESTMENT = "investment"
    LOAN = "loan"


class AllocationKind(str, Enum):
    """How an envelope's income-allocation value is interpreted."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DistributionStrategy(str, Enum):
    """Algorithms for splitting an income amount across envelopes."""

    EQUAL = "equal"
    PROPORTIONAL = "proportional"
    CUSTOM_RULE = "custom_rule"
    # hand-entered per-envelope amounts (paycheck entry)
    MANUAL = "manual"


class UserState(Base, TimestampMixin):
    """One persisted document per user: accounts, envelopes, transactions, setup flag.

    The payload is opaque to the database; ``schemas.UserStateData`` owns its shape.
    """

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(MutableDict.as_mutable(JSON), default=dict, nullable=False)
    setup_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
