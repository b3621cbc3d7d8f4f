from __future__ import annotations

import logging
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from .core.database import get_db
from .core.deps import get_current_user_id
from .schemas import (
    Account,
    AccountCreate,
    AccountUpdate,
    AllocationValidateIn,
    AllocationValidateOut,
    DefaultPaycheckIn,
    DistributionIn,
    DistributionOut,
    Envelope,
    EnvelopeCreate,
    EnvelopeUpdate,
    ExportJsonOut,
    PaycheckIn,
    PaycheckOut,
    SetupCompleteIn,
    Transaction,
    TransactionCreate,
    TransactionsAddIn,
    TransactionsAddOut,
    TransactionsImportIn,
    TransactionUpdate,
    UserStateData,
    UserStatePatch,
)
from .services.allocation_validator import validate_allocation_rules
from .services.distribution import compute_distribution, total_distributed
from .services.export_service import export_csv, export_json
from .services.income_service import IncomeAllocationService
from .services.ledger_service import TransactionLedger
from .services.paycheck_service import PaycheckService
from .services.user_state_service import UserStateStore
from .utils.ids import new_id


logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Helpers =====

def _load(db: Session, user_id: str) -> UserStateData:
    return UserStateStore(db).load_or_default(user_id)


def _save(db: Session, user_id: str, state: UserStateData) -> None:
    if not UserStateStore(db).save(user_id, state):
        raise HTTPException(status_code=503, detail="Failed to persist user state")


def _require_account(state: UserStateData, account_id: str) -> Account:
    account = state.account(account_id)
    if account is None:
        raise HTTPException(status_code=422, detail=f"Unknown account: {account_id}")
    return account


def _check_references(state: UserStateData, txn: TransactionCreate | TransactionUpdate) -> None:
    _require_account(state, txn.account_id)
    if txn.envelope_id is not None and state.envelope(txn.envelope_id) is None:
        raise HTTPException(status_code=422, detail=f"Unknown envelope: {txn.envelope_id}")


def _append_with_income(state: UserStateData, new_transactions: list[Transaction]) -> TransactionsAddOut:
    """Allocate any income among ``new_transactions`` and append everything in one step."""
    batch = IncomeAllocationService().expand_batch(new_transactions, state.envelopes)
    ledger = TransactionLedger(state.transactions)
    try:
        created = ledger.append_many(batch.transactions)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    state.transactions = ledger.all()
    return TransactionsAddOut(created=created, warnings=batch.warnings)


# ===== State =====

@router.get("/state", response_model=UserStateData)
def get_state(db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    return _load(db, user_id)


@router.put("/state", response_model=UserStateData)
def put_state(payload: UserStateData, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    _save(db, user_id, payload)
    return payload


@router.patch("/state", response_model=UserStateData)
def patch_state(payload: UserStatePatch, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    merged = UserStateStore(db).update(user_id, **changes)
    if merged is None:
        raise HTTPException(status_code=503, detail="Failed to persist user state")
    return merged


@router.delete("/state", status_code=204)
def reset_state(db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    if not UserStateStore(db).delete(user_id):
        raise HTTPException(status_code=503, detail="Failed to persist user state")
    return None


@router.post("/setup/complete", response_model=UserStateData)
def complete_setup(payload: SetupCompleteIn, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = UserStateData(
        accounts=payload.accounts,
        envelopes=payload.envelopes,
        transactions=payload.transactions,
        setup_completed=True,
    )
    _save(db, user_id, state)
    return state


# ===== Accounts =====

@router.get("/accounts", response_model=list[Account])
def list_accounts(
    is_active: Optional[bool] = Query(None, description="Filter by active flag when provided"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    accounts = _load(db, user_id).accounts
    if is_active is None:
        return accounts
    return [a for a in accounts if a.is_active == is_active]


@router.post("/accounts", response_model=Account, status_code=201)
def create_account(payload: AccountCreate, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = _load(db, user_id)
    data = payload.model_dump()
    data["id"] = payload.id or new_id(payload.kind.value)
    if state.account(data["id"]) is not None:
        raise HTTPException(status_code=409, detail="Account already exists")
    account = Account.model_validate(data)
    state.accounts.append(account)
    _save(db, user_id, state)
    return account


@router.patch("/accounts/{account_id}", response_model=Account)
def update_account(
    account_id: str,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    state = _load(db, user_id)
    current = state.account(account_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Account not found")
    updated = Account.model_validate({**current.model_dump(), **payload.model_dump(exclude_unset=True)})
    state.accounts = [updated if a.id == account_id else a for a in state.accounts]
    _save(db, user_id, state)
    return updated


@router.put("/accounts/{account_id}/default-paycheck", response_model=Account)
def set_default_paycheck(
    account_id: str,
    payload: DefaultPaycheckIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    state = _load(db, user_id)
    current = state.account(account_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Account not found")
    updated = PaycheckService().set_default_amount(current, payload.amount)
    state.accounts = [updated if a.id == account_id else a for a in state.accounts]
    _save(db, user_id, state)
    return updated


@router.delete("/accounts/{account_id}", status_code=204)
def delete_account(account_id: str, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = _load(db, user_id)
    if state.account(account_id) is None:
        raise HTTPException(status_code=404, detail="Account not found")
    in_use = any(e.account_id == account_id for e in state.envelopes) or any(
        t.account_id == account_id for t in state.transactions
    )
    if in_use:
        raise HTTPException(status_code=409, detail="Account still has envelopes or transactions")
    state.accounts = [a for a in state.accounts if a.id != account_id]
    _save(db, user_id, state)
    return None


# ===== Envelopes =====

@router.get("/envelopes", response_model=list[Envelope])
def list_envelopes(
    account_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    state = _load(db, user_id)
    return state.envelopes if account_id is None else state.envelopes_for(account_id)


@router.post("/envelopes", response_model=Envelope, status_code=201)
def create_envelope(payload: EnvelopeCreate, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = _load(db, user_id)
    _require_account(state, payload.account_id)
    data = payload.model_dump()
    data["id"] = payload.id or new_id("env")
    if state.envelope(data["id"]) is not None:
        raise HTTPException(status_code=409, detail="Envelope already exists")
    envelope = Envelope.model_validate(data)
    state.envelopes.append(envelope)
    _save(db, user_id, state)
    return envelope


@router.patch("/envelopes/{envelope_id}", response_model=Envelope)
def update_envelope(
    envelope_id: str,
    payload: EnvelopeUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    state = _load(db, user_id)
    current = state.envelope(envelope_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Envelope not found")
    patch = payload.model_dump(exclude_unset=True)
    if patch.get("account_id") is not None:
        _require_account(state, patch["account_id"])
    updated = Envelope.model_validate({**current.model_dump(), **patch})
    state.envelopes = [updated if e.id == envelope_id else e for e in state.envelopes]
    _save(db, user_id, state)
    return updated


@router.delete("/envelopes/{envelope_id}", status_code=204)
def delete_envelope(envelope_id: str, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = _load(db, user_id)
    if state.envelope(envelope_id) is None:
        raise HTTPException(status_code=404, detail="Envelope not found")
    state.envelopes = [e for e in state.envelopes if e.id != envelope_id]
    _save(db, user_id, state)
    return None


# ===== Transactions =====

@router.get("/transactions", response_model=list[Transaction])
def list_transactions(
    recent: bool = Query(False, description="Newest first when true"),
    limit: Optional[int] = Query(None, ge=1),
    account_id: Optional[str] = Query(None),
    envelope_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    ledger = TransactionLedger(_load(db, user_id).transactions)
    rows = ledger.recent() if recent else ledger.all()
    if account_id is not None:
        rows = [t for t in rows if t.account_id == account_id]
    if envelope_id is not None:
        rows = [t for t in rows if t.envelope_id == envelope_id]
    return rows if limit is None else rows[:limit]


@router.post("/transactions", response_model=TransactionsAddOut, status_code=201)
def add_transactions(payload: TransactionsAddIn, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = _load(db, user_id)
    new_transactions: list[Transaction] = []
    for item in payload.transactions:
        _check_references(state, item)
        data = item.model_dump()
        data["id"] = item.id or new_id("txn")
        new_transactions.append(Transaction.model_validate(data))
    result = _append_with_income(state, new_transactions)
    _save(db, user_id, state)
    return result


@router.post("/transactions/import", response_model=TransactionsAddOut, status_code=201)
def import_transactions(payload: TransactionsImportIn, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = _load(db, user_id)
    _require_account(state, payload.account_id)
    new_transactions = [
        Transaction(
            id=new_id("import"),
            account_id=payload.account_id,
            amount=row.amount,
            description=row.description,
            date=row.date,
            category=row.category,
        )
        for row in payload.rows
    ]
    result = _append_with_income(state, new_transactions)
    _save(db, user_id, state)
    logger.info("Imported %d rows for user %s (%d created)", len(payload.rows), user_id, len(result.created))
    return result


@router.put("/transactions/{txn_id}", response_model=Transaction)
def edit_transaction(
    txn_id: str,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    state = _load(db, user_id)
    _check_references(state, payload)
    ledger = TransactionLedger(state.transactions)
    updated = ledger.replace(Transaction(id=txn_id, **payload.model_dump()))
    if updated is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    state.transactions = ledger.all()
    _save(db, user_id, state)
    return updated


@router.delete("/transactions/{txn_id}", status_code=204)
def delete_transaction(txn_id: str, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = _load(db, user_id)
    ledger = TransactionLedger(state.transactions)
    if not ledger.remove(txn_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    state.transactions = ledger.all()
    _save(db, user_id, state)
    return None


# ===== Allocation =====

@router.post("/allocations/validate", response_model=AllocationValidateOut)
def validate_allocations(payload: AllocationValidateIn, user_id: str = Depends(get_current_user_id)):
    result = validate_allocation_rules([r.rule for r in payload.rules], payload.total_amount)
    return AllocationValidateOut(valid=result.valid, reason=result.reason)


@router.post("/allocations/distribute", response_model=DistributionOut)
def preview_distribution(payload: DistributionIn, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = _load(db, user_id)
    envelopes = state.envelopes
    if payload.account_id is not None:
        envelopes = state.envelopes_for(payload.account_id)
    if payload.envelope_ids is not None:
        wanted = set(payload.envelope_ids)
        envelopes = [e for e in envelopes if e.id in wanted]
    distribution = compute_distribution(payload.total_amount, envelopes, payload.strategy, payload.custom_amounts)
    distributed = total_distributed(distribution)
    return DistributionOut(
        strategy=payload.strategy,
        distribution=distribution,
        total_distributed=distributed,
        remaining=payload.total_amount - distributed,
    )


# ===== Paychecks =====

def _paycheck_account(state: UserStateData, account_id: str) -> Account:
    account = state.account(account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.post("/paychecks/preview", response_model=DistributionOut)
def preview_paycheck(payload: PaycheckIn, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = _load(db, user_id)
    account = _paycheck_account(state, payload.account_id)
    try:
        preview = PaycheckService().preview(account, state.envelopes, payload.amount, payload.method, payload.custom_amounts)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return DistributionOut(
        strategy=payload.method,
        distribution=preview.distribution,
        total_distributed=preview.total_distributed,
        remaining=preview.remaining,
    )


@router.post("/paychecks", response_model=PaycheckOut, status_code=201)
def record_paycheck(payload: PaycheckIn, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    state = _load(db, user_id)
    account = _paycheck_account(state, payload.account_id)
    svc = PaycheckService()
    try:
        created = svc.record(
            account,
            state.envelopes,
            amount=payload.amount,
            description=payload.description,
            method=payload.method,
            custom_amounts=payload.custom_amounts,
            on=payload.date,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    ledger = TransactionLedger(state.transactions)
    ledger.append_many(created)
    state.transactions = ledger.all()
    _save(db, user_id, state)
    paycheck, allocations = created[0], created[1:]
    distributed = sum((t.amount for t in allocations), Decimal("0"))
    return PaycheckOut(transactions=created, total_distributed=distributed, remaining=paycheck.amount - distributed)


# ===== Export =====

@router.get("/export", response_model=None)
def export_data(
    fmt: Literal["csv", "json"] = Query("csv", alias="format"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> Response | ExportJsonOut:
    state = _load(db, user_id)
    if fmt == "json":
        return export_json(state)
    return Response(
        content=export_csv(state),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="budget-data.csv"'},
    )
