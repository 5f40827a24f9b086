import copy
import logging
from datetime import datetime
from decimal import ROUND_DOWN, Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from accounts import AccountService
from config import get_settings
from database import Base
from exceptions import (
    ConcurrencyConflict,
    CurrencyMismatch,
    InsufficientBalance,
    NotFound,
    StorageError,
)
from ledger import BalanceMutator, ExpenseService, TransactionService
from models import Account, AccountType, Currency, ExchangeRate, Expense, Transaction
from money import Money
from schemas import AccountUpdate, ExpenseIn, TransactionIn
from store import LedgerStore


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_settings(**overrides):
    settings = copy.copy(get_settings())
    settings.currency_policy = "reject"
    settings.fx_markup_bps = 0
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


def seed(session, balance="100.00"):
    eur = Currency(ticker="EUR", symbol="€", name="Euro")
    usd = Currency(ticker="USD", symbol="$", name="US Dollar")
    session.add_all([eur, usd])
    session.flush()
    account = Account(
        client_id=1,
        name="Checking",
        type=AccountType.bank,
        currency_id=eur.id,
        balance=Money(balance),
    )
    session.add(account)
    session.commit()
    return eur, usd, account


def stored_balance(session, account_id):
    session.expire_all()
    return session.get(Account, account_id).balance


def expense_in(account_id, currency_id, amount="30.00"):
    return ExpenseIn(
        account_id=account_id,
        amount=amount,
        currency_id=currency_id,
        category="groceries",
        executed_at=datetime(2026, 1, 5, 12, 0),
    )


def transaction_in(account_id, currency_id, amount, income):
    return TransactionIn(
        name="Salary" if income else "Rent",
        account_id=account_id,
        amount=amount,
        income=income,
        currency_id=currency_id,
        category="salary" if income else "housing",
        executed_at=datetime(2026, 1, 1, 9, 0),
    )


def test_expense_then_reverted_delete_restores_balance():
    session = make_session()
    eur, _, account = seed(session)
    expenses = ExpenseService(session, client_id=1, settings=make_settings())

    posted = expenses.create(expense_in(account.id, eur.id))
    assert posted.balance == Money("70.00")
    assert stored_balance(session, account.id).to_string() == "70.00"
    assert [e.id for e in expenses.list()] == [posted.entry.id]

    balance = expenses.delete(posted.entry.id, revert_balance=True)
    assert balance == Money("100.00")
    assert stored_balance(session, account.id) == Money("100.00")
    assert expenses.list() == []


def test_delete_without_revert_keeps_balance():
    session = make_session()
    eur, _, account = seed(session)
    txns = TransactionService(session, client_id=1, settings=make_settings())

    posted = txns.create(transaction_in(account.id, eur.id, "40.00", income=True))
    assert posted.balance == Money("140.00")

    assert txns.delete(posted.entry.id) is None
    assert stored_balance(session, account.id) == Money("140.00")
    assert session.get(Transaction, posted.entry.id) is None


def test_insufficient_balance_leaves_everything_untouched():
    session = make_session()
    eur, _, account = seed(session)
    txns = TransactionService(session, client_id=1, settings=make_settings())

    with pytest.raises(InsufficientBalance) as excinfo:
        txns.create(transaction_in(account.id, eur.id, "150.00", income=False))

    assert excinfo.value.account_id == account.id
    assert str(excinfo.value) == "Insufficient account balance."
    assert stored_balance(session, account.id) == Money("100.00")
    assert txns.list() == []


def test_gate_compares_unrounded_amounts():
    session = make_session()
    eur, _, account = seed(session)
    txns = TransactionService(session, client_id=1, settings=make_settings())

    with pytest.raises(InsufficientBalance):
        txns.create(transaction_in(account.id, eur.id, "100.001", income=False))


def test_balance_is_truncated_to_two_places():
    session = make_session()
    eur, _, account = seed(session)
    txns = TransactionService(session, client_id=1, settings=make_settings())

    posted = txns.create(transaction_in(account.id, eur.id, "0.019", income=True))

    assert posted.balance.to_string() == "100.01"
    assert posted.entry.amount == Money("0.019")


def test_cash_entry_without_account_does_not_touch_balances():
    session = make_session()
    eur, _, account = seed(session)
    txns = TransactionService(session, client_id=1, settings=make_settings())

    posted = txns.create(transaction_in(None, eur.id, "12.00", income=False))

    assert posted.balance is None
    assert posted.entry.account_id is None
    assert stored_balance(session, account.id) == Money("100.00")
    assert txns.delete(posted.entry.id, revert_balance=True) is None
    assert txns.list() == []


def test_reversal_may_drive_balance_negative():
    session = make_session()
    eur, _, account = seed(session)
    settings = make_settings()
    txns = TransactionService(session, client_id=1, settings=settings)

    posted = txns.create(transaction_in(account.id, eur.id, "50.00", income=True))
    AccountService(session, client_id=1, settings=settings).update(
        account.id, AccountUpdate(currency_id=eur.id, balance="20.00")
    )

    balance = txns.delete(posted.entry.id, revert_balance=True)

    assert balance == Money("-30.00")
    assert stored_balance(session, account.id) == Money("-30.00")


def test_other_client_cannot_delete_or_post():
    session = make_session()
    eur, _, account = seed(session)
    owner = ExpenseService(session, client_id=1, settings=make_settings())
    posted = owner.create(expense_in(account.id, eur.id))

    intruder = ExpenseService(session, client_id=2, settings=make_settings())
    with pytest.raises(NotFound):
        intruder.delete(posted.entry.id, revert_balance=True)
    with pytest.raises(NotFound):
        intruder.create(expense_in(account.id, eur.id, "1.00"))

    assert stored_balance(session, account.id) == Money("70.00")
    assert session.get(Expense, posted.entry.id) is not None


def test_failed_entry_insert_rolls_back_the_balance(monkeypatch):
    session = make_session()
    eur, _, account = seed(session)
    expenses = ExpenseService(session, client_id=1, settings=make_settings())

    def broken_insert(self, entry):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(LedgerStore, "insert_ledger_entry", broken_insert)

    with pytest.raises(StorageError):
        expenses.create(expense_in(account.id, eur.id))

    monkeypatch.undo()
    assert stored_balance(session, account.id) == Money("100.00")
    assert expenses.list() == []


def test_currency_mismatch_is_rejected_by_default():
    session = make_session()
    _, usd, account = seed(session)
    expenses = ExpenseService(session, client_id=1, settings=make_settings())

    with pytest.raises(CurrencyMismatch):
        expenses.create(expense_in(account.id, usd.id, "10.00"))

    assert stored_balance(session, account.id) == Money("100.00")


def test_convert_policy_uses_the_rate_feed():
    session = make_session()
    eur, usd, account = seed(session)
    session.add(
        ExchangeRate(
            base_currency_id=usd.id, target_currency_id=eur.id, rate=Money("0.9")
        )
    )
    session.commit()
    expenses = ExpenseService(
        session, client_id=1, settings=make_settings(currency_policy="convert")
    )

    posted = expenses.create(expense_in(account.id, usd.id, "10.00"))

    assert posted.balance == Money("91.00")


def test_convert_policy_falls_back_to_inverse_rate():
    session = make_session()
    eur, usd, account = seed(session)
    session.add(
        ExchangeRate(
            base_currency_id=eur.id, target_currency_id=usd.id, rate=Money("1.25")
        )
    )
    session.commit()
    txns = TransactionService(
        session, client_id=1, settings=make_settings(currency_policy="convert")
    )

    posted = txns.create(transaction_in(account.id, usd.id, "10.00", income=True))

    assert posted.balance == Money("108.00")


def test_convert_policy_without_rate_is_not_found():
    session = make_session()
    _, usd, account = seed(session)
    expenses = ExpenseService(
        session, client_id=1, settings=make_settings(currency_policy="convert")
    )

    with pytest.raises(NotFound):
        expenses.create(expense_in(account.id, usd.id, "10.00"))
    assert stored_balance(session, account.id) == Money("100.00")


def test_passthrough_policy_applies_raw_amount():
    session = make_session()
    _, usd, account = seed(session)
    expenses = ExpenseService(
        session, client_id=1, settings=make_settings(currency_policy="passthrough")
    )

    posted = expenses.create(expense_in(account.id, usd.id, "10.00"))

    assert posted.balance == Money("90.00")


def test_reversal_restores_balance_after_rate_change():
    session = make_session()
    eur, usd, account = seed(session)
    rate = ExchangeRate(
        base_currency_id=usd.id, target_currency_id=eur.id, rate=Money("0.9")
    )
    session.add(rate)
    session.commit()
    expenses = ExpenseService(
        session, client_id=1, settings=make_settings(currency_policy="convert")
    )

    posted = expenses.create(expense_in(account.id, usd.id, "10.00"))
    assert posted.balance == Money("91.00")
    assert posted.entry.posted_amount == Money("9.00")

    rate.rate = Money("0.5")
    session.commit()

    assert expenses.delete(posted.entry.id, revert_balance=True) == Money("100.00")
    assert stored_balance(session, account.id) == Money("100.00")


def test_conversion_logs_the_quote_used(caplog):
    session = make_session()
    eur, usd, account = seed(session)
    session.add(
        ExchangeRate(
            base_currency_id=usd.id, target_currency_id=eur.id, rate=Money("0.9")
        )
    )
    session.commit()
    expenses = ExpenseService(
        session, client_id=1, settings=make_settings(currency_policy="convert")
    )

    with caplog.at_level(logging.INFO, logger="fx_rates"):
        expenses.create(expense_in(account.id, usd.id, "10.00"))

    messages = [r.getMessage() for r in caplog.records if r.name == "fx_rates"]
    assert len(messages) == 1
    assert "rate=0.9" in messages[0]
    assert "fetched_at=" in messages[0]
    assert "result=9.00" in messages[0]


def test_reversal_locks_the_account_row(monkeypatch):
    session = make_session()
    eur, _, account = seed(session)
    expenses = ExpenseService(session, client_id=1, settings=make_settings())
    posted = expenses.create(expense_in(account.id, eur.id))

    locks = []
    real_get_account = LedgerStore.get_account

    def recording_get_account(self, account_id, client_id=None, *, for_update=False):
        locks.append((account_id, for_update))
        return real_get_account(self, account_id, client_id, for_update=for_update)

    monkeypatch.setattr(LedgerStore, "get_account", recording_get_account)

    expenses.delete(posted.entry.id, revert_balance=True)

    assert locks == [(account.id, True)]


def test_balance_follows_signed_sum_truncated_each_step():
    session = make_session()
    eur, _, account = seed(session)
    txns = TransactionService(session, client_id=1, settings=make_settings())
    operations = [
        ("10.555", True),
        ("3.333", False),
        ("0.019", True),
        ("20", False),
        ("7.777", True),
        ("0.001", False),
    ]

    expected = Decimal("100.00")
    for amount, income in operations:
        delta = Decimal(amount) if income else -Decimal(amount)
        expected = (expected + delta).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
        posted = txns.create(transaction_in(account.id, eur.id, amount, income))
        assert posted.balance.value == expected

    assert stored_balance(session, account.id).value == expected
    assert expected == Decimal("94.98")


def test_lost_update_raises_conflict_and_rolls_back():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    settings = make_settings()
    with SessionLocal() as setup:
        eur, _, account = seed(setup)

    first, second = SessionLocal(), SessionLocal()
    first_store = LedgerStore(first, settings)
    stale = first_store.get_account(account.id)

    BalanceMutator(LedgerStore(second, settings)).apply_entry(
        account.id, Money("10.00"), False, currency_id=eur.id
    )

    with pytest.raises(ConcurrencyConflict):
        BalanceMutator(first_store).apply_to_account(
            stale, Money("10.00"), False, currency_id=eur.id
        )

    first.close()
    second.close()
    with SessionLocal() as check:
        assert check.get(Account, account.id).balance == Money("90.00")
