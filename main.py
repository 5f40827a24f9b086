import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from accounts import AccountService, ReferenceDataService
from database import SessionLocal
from exceptions import (
    Conflict,
    InsufficientBalance,
    LedgerError,
    NotFound,
    StorageError,
    Unauthorized,
    ValidationError,
)
from future_payments import FuturePaymentService, describe_frequency
from ledger import ExpenseService, TransactionService
from models import (
    Account,
    AccountType,
    AssetProvider,
    Currency,
    Expense,
    FuturePayment,
    Transaction,
)
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdate,
    ExpenseIn,
    FuturePaymentIn,
    TransactionIn,
    TransferIn,
)
from transfers import TransferOrchestrator


logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_client_id(x_client_id: Optional[int] = Header(default=None)) -> int:
    # Authentication lives in front of this service; it forwards the client id.
    if not x_client_id:
        raise Unauthorized("Missing client identity.")
    return x_client_id


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"success": False, "error": message}
    )


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors and errors[0].get("loc"):
        return _error(400, f"Invalid field {errors[0]['loc'][-1]}")
    return _error(400, "Invalid field")


@app.exception_handler(Unauthorized)
def unauthorized_handler(request: Request, exc: Unauthorized):
    return _error(401, str(exc))


@app.exception_handler(ValidationError)
def validation_handler(request: Request, exc: ValidationError):
    return _error(400, str(exc))


@app.exception_handler(InsufficientBalance)
def insufficient_balance_handler(request: Request, exc: InsufficientBalance):
    return _error(400, "Insufficient account balance.")


@app.exception_handler(NotFound)
def not_found_handler(request: Request, exc: NotFound):
    return _error(404, str(exc))


@app.exception_handler(Conflict)
def conflict_handler(request: Request, exc: Conflict):
    return _error(409, str(exc))


@app.exception_handler(StorageError)
def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"request_failed: path={request.url.path} error={exc}")
    return _error(500, "Internal server error.")


@app.exception_handler(LedgerError)
def ledger_error_handler(request: Request, exc: LedgerError):
    logger.error(f"request_failed: path={request.url.path} error={exc}")
    return _error(500, "Internal server error.")


def _epoch(value: datetime) -> int:
    # Stored datetimes are naive UTC, not host local time.
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def currency_payload(currency: Currency) -> dict[str, object]:
    return {
        "id": currency.id,
        "ticker": currency.ticker,
        "symbol": currency.symbol,
        "name": currency.name,
    }


def provider_payload(provider: AssetProvider) -> dict[str, object]:
    return {
        "id": provider.id,
        "name": provider.name,
        "icon": provider.icon,
        "type": provider.type.value,
    }


def account_payload(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "balance": str(account.balance),
        "currencyId": account.currency_id,
        "assetProviderId": account.asset_provider_id,
    }


def transaction_payload(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "name": txn.name,
        "income": txn.income,
        "amount": str(txn.amount),
        "postedAmount": _balance(txn.posted_amount),
        "category": txn.category,
        "accountId": txn.account_id,
        "currencyId": txn.currency_id,
        "remarks": txn.remarks,
        "executedAt": _epoch(txn.executed_at),
    }


def expense_payload(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "amount": str(expense.amount),
        "postedAmount": _balance(expense.posted_amount),
        "category": expense.category,
        "accountId": expense.account_id,
        "currencyId": expense.currency_id,
        "remarks": expense.remarks,
        "executedAt": _epoch(expense.executed_at),
    }


def future_payment_payload(payment: FuturePayment) -> dict[str, object]:
    frequency = None
    if payment.frequency_secs:
        described = describe_frequency(payment.frequency_secs)
        frequency = {
            "seconds": payment.frequency_secs,
            "days": described.days,
            "months": described.months,
            "years": described.years,
        }
    return {
        "id": payment.id,
        "name": payment.name,
        "amount": str(payment.amount),
        "income": payment.income,
        "rolling": payment.rolling,
        "frequency": frequency,
        "remarks": payment.remarks,
        "accountId": payment.account_id,
        "currencyId": payment.currency_id,
        "scheduledAt": _epoch(payment.scheduled_at),
    }


def _balance(value) -> Optional[str]:
    return None if value is None else str(value)


@app.get("/api/currencies")
def list_currencies(db: Session = Depends(get_db)):
    currencies = ReferenceDataService(db).currencies()
    return {"success": True, "data": [currency_payload(c) for c in currencies]}


@app.get("/api/providers")
def list_providers(type: Optional[AccountType] = None, db: Session = Depends(get_db)):
    providers = ReferenceDataService(db).providers(type)
    return {"success": True, "data": [provider_payload(p) for p in providers]}


@app.get("/api/accounts")
def list_accounts(
    type: Optional[AccountType] = None,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    accounts = AccountService(db, client_id).list(type)
    return {"success": True, "data": [account_payload(a) for a in accounts]}


@app.post("/api/accounts")
def create_account(
    data: AccountIn,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    account = AccountService(db, client_id).create(data)
    return {"success": True, "data": account_payload(account)}


@app.put("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    data: AccountUpdate,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    account = AccountService(db, client_id).update(account_id, data)
    return {"success": True, "data": account_payload(account)}


@app.delete("/api/accounts/{account_id}")
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    AccountService(db, client_id).delete(account_id)
    return {"success": True}


@app.post("/api/accounts/transfer")
def transfer_between_accounts(
    data: TransferIn,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    result = TransferOrchestrator(db, client_id).transfer(data)
    return {
        "success": True,
        "data": {
            "sourceBalance": str(result.source_balance),
            "targetBalance": str(result.target_balance),
        },
    }


@app.get("/api/transactions")
def list_transactions(
    db: Session = Depends(get_db), client_id: int = Depends(get_client_id)
):
    items = TransactionService(db, client_id).list()
    return {"success": True, "data": [transaction_payload(t) for t in items]}


@app.post("/api/transactions")
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    posted = TransactionService(db, client_id).create(data)
    return {
        "success": True,
        "data": {
            "transaction": transaction_payload(posted.entry),
            "balance": _balance(posted.balance),
        },
    }


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    revert_balance: bool = False,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    balance = TransactionService(db, client_id).delete(transaction_id, revert_balance)
    return {"success": True, "data": {"balance": _balance(balance)}}


@app.get("/api/expenses")
def list_expenses(db: Session = Depends(get_db), client_id: int = Depends(get_client_id)):
    items = ExpenseService(db, client_id).list()
    return {"success": True, "data": [expense_payload(e) for e in items]}


@app.post("/api/expenses")
def create_expense(
    data: ExpenseIn,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    posted = ExpenseService(db, client_id).create(data)
    return {
        "success": True,
        "data": {
            "expense": expense_payload(posted.entry),
            "balance": _balance(posted.balance),
        },
    }


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    revert_balance: bool = False,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    balance = ExpenseService(db, client_id).delete(expense_id, revert_balance)
    return {"success": True, "data": {"balance": _balance(balance)}}


@app.get("/api/future-payments")
def list_future_payments(
    db: Session = Depends(get_db), client_id: int = Depends(get_client_id)
):
    items = FuturePaymentService(db, client_id).list()
    return {"success": True, "data": [future_payment_payload(p) for p in items]}


@app.post("/api/future-payments")
def create_future_payment(
    data: FuturePaymentIn,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    payment = FuturePaymentService(db, client_id).create(data)
    return {"success": True, "data": future_payment_payload(payment)}


@app.put("/api/future-payments/{payment_id}")
def update_future_payment(
    payment_id: int,
    data: FuturePaymentIn,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    payment = FuturePaymentService(db, client_id).update(payment_id, data)
    return {"success": True, "data": future_payment_payload(payment)}


@app.delete("/api/future-payments/{payment_id}")
def delete_future_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    client_id: int = Depends(get_client_id),
):
    FuturePaymentService(db, client_id).delete(payment_id)
    return {"success": True}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
