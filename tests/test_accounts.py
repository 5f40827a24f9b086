from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from accounts import AccountService
from database import Base
from exceptions import Conflict, NotFound
from ledger import ExpenseService
from models import AccountType, Currency, Expense, FuturePayment
from money import Money
from schemas import AccountIn, AccountUpdate, ExpenseIn


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed_currencies(session):
    eur = Currency(ticker="EUR", name="Euro")
    usd = Currency(ticker="USD", name="US Dollar")
    session.add_all([eur, usd])
    session.commit()
    return eur, usd


def test_new_account_starts_at_zero():
    session = make_session()
    eur, _ = seed_currencies(session)

    account = AccountService(session, client_id=1).create(
        AccountIn(name="Checking", type=AccountType.bank, currency_id=eur.id)
    )

    assert account.balance == Money("0")
    assert account.balance.to_string() == "0"
    assert account.version == 1


def test_account_names_are_unique_per_client():
    session = make_session()
    eur, _ = seed_currencies(session)
    service = AccountService(session, client_id=1)
    service.create(AccountIn(name="Checking", type=AccountType.bank, currency_id=eur.id))

    with pytest.raises(Conflict):
        service.create(
            AccountIn(name="Checking", type=AccountType.cash, currency_id=eur.id)
        )

    other = AccountService(session, client_id=2).create(
        AccountIn(name="Checking", type=AccountType.bank, currency_id=eur.id)
    )
    assert other.client_id == 2


def test_list_filters_by_type_and_client():
    session = make_session()
    eur, _ = seed_currencies(session)
    mine = AccountService(session, client_id=1)
    mine.create(AccountIn(name="Wallet", type=AccountType.cash, currency_id=eur.id))
    mine.create(AccountIn(name="Checking", type=AccountType.bank, currency_id=eur.id))
    AccountService(session, client_id=2).create(
        AccountIn(name="Theirs", type=AccountType.bank, currency_id=eur.id)
    )

    assert [a.name for a in mine.list()] == ["Checking", "Wallet"]
    assert [a.name for a in mine.list(AccountType.cash)] == ["Wallet"]


def test_update_changes_currency_type_and_reconciles_balance():
    session = make_session()
    eur, usd = seed_currencies(session)
    service = AccountService(session, client_id=1)
    account = service.create(
        AccountIn(name="Broker", type=AccountType.bank, currency_id=eur.id)
    )

    updated = service.update(
        account.id,
        AccountUpdate(currency_id=usd.id, type=AccountType.broker, balance="1234.567"),
    )

    assert updated.currency_id == usd.id
    assert updated.type == AccountType.broker
    assert updated.balance.to_string() == "1234.56"
    assert updated.version > 1


def test_delete_clears_entry_links_and_drops_future_payments():
    session = make_session()
    eur, _ = seed_currencies(session)
    service = AccountService(session, client_id=1)
    account = service.create(
        AccountIn(name="Old", type=AccountType.bank, currency_id=eur.id)
    )
    service.update(account.id, AccountUpdate(currency_id=eur.id, balance="50"))
    posted = ExpenseService(session, client_id=1).create(
        ExpenseIn(
            account_id=account.id,
            amount="5.00",
            currency_id=eur.id,
            category="fees",
            executed_at=datetime(2026, 1, 1),
        )
    )
    session.add(
        FuturePayment(
            client_id=1,
            account_id=account.id,
            currency_id=eur.id,
            name="Fee",
            amount=Money("1.00"),
            income=False,
            scheduled_at=datetime(2026, 1, 1) + timedelta(days=30),
        )
    )
    session.commit()

    service.delete(account.id)

    session.expire_all()
    with pytest.raises(NotFound):
        service.get(account.id)
    assert session.get(Expense, posted.entry.id).account_id is None
    assert session.scalars(select(FuturePayment)).all() == []


def test_other_client_cannot_touch_account():
    session = make_session()
    eur, _ = seed_currencies(session)
    account = AccountService(session, client_id=1).create(
        AccountIn(name="Mine", type=AccountType.bank, currency_id=eur.id)
    )
    intruder = AccountService(session, client_id=2)

    with pytest.raises(NotFound):
        intruder.update(account.id, AccountUpdate(currency_id=eur.id, balance="9"))
    with pytest.raises(NotFound):
        intruder.delete(account.id)
