from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .models import AccountKind, AllocationKind, DistributionStrategy


def _fold_legacy_allocation(data: Any) -> Any:
    """Map the flat ``income_allocation``/``income_allocation_type`` pair onto ``allocation_rule``.

    Older payloads stored the rule as two independently optional fields; a rule
    only existed when both were set and the value was non-zero.
    """
    if not isinstance(data, dict):
        return data
    if "income_allocation" not in data and "income_allocation_type" not in data:
        return data
    data = dict(data)
    value = data.pop("income_allocation", None)
    kind = data.pop("income_allocation_type", None)
    if data.get("allocation_rule") is None and value and kind:
        data["allocation_rule"] = {"value": value, "kind": kind}
    return data


class AllocationRule(BaseModel):
    value: Decimal = Field(ge=0)
    kind: AllocationKind

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def percentage_at_most_100(self) -> "AllocationRule":
        if self.kind is AllocationKind.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage allocation cannot exceed 100%")
        return self


# ===== Accounts =====

class AccountBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    kind: AccountKind = AccountKind.CHECKING
    balance: Decimal = Decimal("0")
    institution: Optional[str] = Field(default=None, max_length=120)
    account_number: Optional[str] = Field(default=None, max_length=32)
    color: str = "bg-blue-500"
    is_active: bool = True
    default_paycheck_amount: Optional[Decimal] = Field(default=None, gt=0)

    @field_validator("account_number")
    @classmethod
    def mask_account_number(cls, v: Optional[str]) -> Optional[str]:
        # keep only the last four characters of anything longer
        if v is None:
            return None
        raw = v.strip()
        if len(raw) <= 4:
            return raw or None
        return "*" * (len(raw) - 4) + raw[-4:]


class AccountCreate(AccountBase):
    id: Optional[str] = Field(default=None, min_length=1, max_length=128)


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    kind: Optional[AccountKind] = None
    balance: Optional[Decimal] = None
    institution: Optional[str] = Field(default=None, max_length=120)
    account_number: Optional[str] = Field(default=None, max_length=32)
    color: Optional[str] = None
    is_active: Optional[bool] = None
    default_paycheck_amount: Optional[Decimal] = Field(default=None, gt=0)


class Account(AccountBase):
    id: str


class DefaultPaycheckIn(BaseModel):
    amount: Decimal = Field(gt=0)


# ===== Envelopes =====

class EnvelopeBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    allocated: Decimal = Field(default=Decimal("0"), ge=0)
    spent: Decimal = Field(default=Decimal("0"), ge=0)
    color: str = "bg-green-500"
    account_id: str = Field(min_length=1)
    allocation_rule: Optional[AllocationRule] = None

    @model_validator(mode="before")
    @classmethod
    def fold_legacy_rule(cls, data: Any) -> Any:
        return _fold_legacy_allocation(data)


class EnvelopeCreate(EnvelopeBase):
    id: Optional[str] = Field(default=None, min_length=1, max_length=128)


class EnvelopeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    allocated: Optional[Decimal] = Field(default=None, ge=0)
    spent: Optional[Decimal] = Field(default=None, ge=0)
    color: Optional[str] = None
    account_id: Optional[str] = Field(default=None, min_length=1)
    # explicit null clears the rule; omit the field to leave it alone
    allocation_rule: Optional[AllocationRule] = None


class Envelope(EnvelopeBase):
    id: str

    @property
    def has_rule(self) -> bool:
        # a zero value carries no allocation, same as the legacy fields
        return self.allocation_rule is not None and self.allocation_rule.value > 0


# ===== Transactions =====

class TransactionBase(BaseModel):
    envelope_id: Optional[str] = None
    account_id: str = Field(min_length=1)
    amount: Decimal
    description: str = Field(min_length=1, max_length=500)
    date: dt.date
    category: Optional[str] = Field(default=None, max_length=100)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("description must not be blank")
        return stripped


class TransactionCreate(TransactionBase):
    id: Optional[str] = Field(default=None, min_length=1, max_length=200)


class TransactionUpdate(TransactionBase):
    """Full replacement of an existing transaction; the id comes from the path."""


class Transaction(TransactionBase):
    id: str


class ParsedTransaction(BaseModel):
    """A row handed over by the CSV/OFX/QFX/QBO importers."""

    date: dt.date
    amount: Decimal
    description: str = Field(min_length=1, max_length=500)
    category: Optional[str] = Field(default=None, max_length=100)


class TransactionsImportIn(BaseModel):
    account_id: str = Field(min_length=1)
    rows: list[ParsedTransaction] = Field(default_factory=list)


class TransactionsAddIn(BaseModel):
    transactions: list[TransactionCreate] = Field(min_length=1)


class TransactionsAddOut(BaseModel):
    created: list[Transaction]
    warnings: list[str] = Field(default_factory=list)


# ===== Persisted state =====

class UserStateData(BaseModel):
    accounts: list[Account] = Field(default_factory=list)
    envelopes: list[Envelope] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    setup_completed: bool = False

    def account(self, account_id: str) -> Account | None:
        return next((a for a in self.accounts if a.id == account_id), None)

    def envelope(self, envelope_id: str) -> Envelope | None:
        return next((e for e in self.envelopes if e.id == envelope_id), None)

    def envelopes_for(self, account_id: str) -> list[Envelope]:
        return [e for e in self.envelopes if e.account_id == account_id]


class UserStatePatch(BaseModel):
    """Top-level fields to replace; anything omitted is kept."""

    accounts: Optional[list[Account]] = None
    envelopes: Optional[list[Envelope]] = None
    transactions: Optional[list[Transaction]] = None
    setup_completed: Optional[bool] = None


class SetupCompleteIn(BaseModel):
    accounts: list[Account] = Field(default_factory=list)
    envelopes: list[Envelope] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)


# ===== Allocation =====

class EnvelopeRuleIn(BaseModel):
    envelope_id: Optional[str] = None
    rule: AllocationRule


class AllocationValidateIn(BaseModel):
    total_amount: Decimal
    rules: list[EnvelopeRuleIn] = Field(default_factory=list)


class AllocationValidateOut(BaseModel):
    valid: bool
    reason: str | None = None


class DistributionIn(BaseModel):
    total_amount: Decimal
    strategy: DistributionStrategy
    account_id: Optional[str] = None
    envelope_ids: Optional[list[str]] = None
    custom_amounts: Optional[dict[str, Decimal]] = None


class DistributionOut(BaseModel):
    strategy: DistributionStrategy
    distribution: dict[str, Decimal]
    total_distributed: Decimal
    remaining: Decimal


# ===== Paychecks =====

class PaycheckIn(BaseModel):
    account_id: str = Field(min_length=1)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: str = Field(default="Paycheck", max_length=500)
    method: DistributionStrategy = DistributionStrategy.PROPORTIONAL
    custom_amounts: Optional[dict[str, Decimal]] = None
    date: Optional[dt.date] = None

    @field_validator("method")
    @classmethod
    def paycheck_methods_only(cls, v: DistributionStrategy) -> DistributionStrategy:
        if v is DistributionStrategy.CUSTOM_RULE:
            raise ValueError("paychecks are split equal, proportional or manual")
        return v


class PaycheckOut(BaseModel):
    transactions: list[Transaction]
    total_distributed: Decimal
    remaining: Decimal


class ExportJsonOut(BaseModel):
    export_date: dt.datetime
    envelopes: list[Envelope]
    transactions: list[Transaction]
