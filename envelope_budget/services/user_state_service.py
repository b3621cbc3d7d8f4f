from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from envelope_budget import models
from envelope_budget.core.config import settings
from envelope_budget.schemas import Account, Envelope, UserStateData


logger = logging.getLogger(__name__)


def default_user_state() -> UserStateData:
    """Starter accounts and envelopes handed to a user with nothing saved yet."""
    return UserStateData(
        accounts=[
            Account(
                id="checking-1",
                name="Main Checking",
                kind=models.AccountKind.CHECKING,
                balance=Decimal("2500.00"),
                institution="Bank of America",
                color="bg-blue-500",
                is_active=True,
            ),
            Account(
                id="savings-1",
                name="Emergency Savings",
                kind=models.AccountKind.SAVINGS,
                balance=Decimal("5000.00"),
                institution="Bank of America",
                color="bg-green-500",
                is_active=True,
            ),
        ],
        envelopes=[
            Envelope(id="1", name="Groceries", allocated=Decimal("500"), color="bg-green-500", account_id="checking-1"),
            Envelope(id="2", name="Transportation", allocated=Decimal("300"), color="bg-blue-500", account_id="checking-1"),
            Envelope(id="3", name="Entertainment", allocated=Decimal("200"), color="bg-purple-500", account_id="checking-1"),
            Envelope(id="4", name="Utilities", allocated=Decimal("250"), color="bg-orange-500", account_id="checking-1"),
        ],
        transactions=[],
        setup_completed=False,
    )


class UserStateStore:
    """Load/save the per-user state document keyed by user id."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _row(self, user_id: str) -> models.UserState | None:
        return self.db.query(models.UserState).filter(models.UserState.user_id == user_id).first()

    def load(self, user_id: str) -> UserStateData | None:
        row = self._row(user_id)
        if row is None:
            return None
        data = dict(row.payload or {})
        data["setup_completed"] = bool(row.setup_completed)
        return UserStateData.model_validate(data)

    def load_or_default(self, user_id: str) -> UserStateData:
        state = self.load(user_id)
        if state is not None:
            return state
        return default_user_state() if settings.SEED_DEFAULT_STATE else UserStateData()

    def save(self, user_id: str, state: UserStateData) -> bool:
        """Upsert the whole document in one commit. Returns False when the write failed."""
        payload = state.model_dump(mode="json", exclude={"setup_completed"})
        try:
            row = self._row(user_id)
            if row is None:
                row = models.UserState(user_id=user_id)
                self.db.add(row)
            row.payload = payload
            row.setup_completed = state.setup_completed
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to save state for user %s", user_id)
            return False
        return True

    def update(self, user_id: str, **changes: Any) -> UserStateData | None:
        """Merge top-level fields into the user's document and save it.

        A user with nothing stored starts from ``load_or_default``. Returns None
        when the write failed.
        """
        current = self.load_or_default(user_id)
        merged = UserStateData.model_validate({**current.model_dump(), **changes})
        if not self.save(user_id, merged):
            return None
        return merged

    def delete(self, user_id: str) -> bool:
        """Drop the user's document; deleting nothing succeeds. Returns False when the write failed."""
        try:
            row = self._row(user_id)
            if row is not None:
                self.db.delete(row)
                self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to delete state for user %s", user_id)
            return False
        return True
