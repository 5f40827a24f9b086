"""Persistence for accounts, ledger entries and future payments.

``LedgerStore`` only loads and saves rows. It does not decide what a
balance should be; that is the job of ``ledger.BalanceMutator``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, Optional, Sequence, TypeVar, Union

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config import Settings, get_settings
from exceptions import ConcurrencyConflict, NotFound, StorageError
from models import (
    Account,
    AccountType,
    AssetProvider,
    Currency,
    Expense,
    FuturePayment,
    Transaction,
)
from money import Money


logger = logging.getLogger(__name__)

LedgerEntry = Union[Transaction, Expense]
T = TypeVar("T")

_UOW_DEPTH = "ledger_uow_depth"


class LedgerStore:
    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    # -- units of work -----------------------------------------------------

    def in_unit_of_work(self) -> bool:
        return self.session.info.get(_UOW_DEPTH, 0) > 0

    @contextmanager
    def unit_of_work(self, operation: str, **context: object) -> Iterator[None]:
        """Group writes so they commit together or not at all.

        Nested units join the outermost one; only the outermost commits or
        rolls back. Storage failures surface as ``StorageError``.
        """
        depth = self.session.info.get(_UOW_DEPTH, 0)
        self.session.info[_UOW_DEPTH] = depth + 1
        outermost = depth == 0
        details = " ".join(f"{key}={value}" for key, value in context.items())
        try:
            yield
            if outermost:
                self.session.commit()
        except StaleDataError as exc:
            if outermost:
                self.session.rollback()
            logger.warning(f"storage_conflict: operation={operation} {details}")
            raise ConcurrencyConflict(
                f"Concurrent modification during {operation}"
            ) from exc
        except SQLAlchemyError as exc:
            if outermost:
                self.session.rollback()
            logger.error(f"storage_error: operation={operation} {details} error={exc}")
            raise StorageError(f"Storage failure during {operation}") from exc
        except Exception:
            if outermost:
                self.session.rollback()
            raise
        finally:
            self.session.info[_UOW_DEPTH] = depth

    def _read(self, operation: str, fn: Callable[[], T]) -> T:
        attempts = max(self.settings.storage_read_retries, 0) + 1
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except OperationalError as exc:
                # Inside a unit the transaction is already poisoned.
                if self.in_unit_of_work() or attempt == attempts:
                    logger.error(
                        f"storage_error: operation={operation} attempt={attempt} error={exc}"
                    )
                    raise StorageError(f"Storage failure during {operation}") from exc
                logger.warning(
                    f"storage_read_retry: operation={operation} attempt={attempt}"
                )
                self.session.rollback()
            except SQLAlchemyError as exc:
                logger.error(f"storage_error: operation={operation} error={exc}")
                raise StorageError(f"Storage failure during {operation}") from exc
        raise StorageError(f"Storage failure during {operation}")

    # -- reference data ----------------------------------------------------

    def list_currencies(self) -> list[Currency]:
        stmt = select(Currency).order_by(Currency.ticker)
        return list(self._read("list_currencies", lambda: self.session.scalars(stmt).all()))

    def list_asset_providers(
        self, account_type: Optional[AccountType] = None
    ) -> list[AssetProvider]:
        stmt = select(AssetProvider)
        if account_type is not None:
            stmt = stmt.where(AssetProvider.type == account_type)
        stmt = stmt.order_by(AssetProvider.name, AssetProvider.id)
        return list(
            self._read("list_asset_providers", lambda: self.session.scalars(stmt).all())
        )

    # -- accounts ----------------------------------------------------------

    def get_account(
        self,
        account_id: int,
        client_id: Optional[int] = None,
        *,
        for_update: bool = False,
    ) -> Account:
        stmt = select(Account).where(Account.id == account_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
            account = self.session.scalar(stmt)
        else:
            account = self._read("get_account", lambda: self.session.scalar(stmt))
        if not account or (client_id is not None and account.client_id != client_id):
            raise NotFound("Account not found")
        return account

    def lock_accounts(
        self, account_ids: Sequence[int], client_id: Optional[int] = None
    ) -> dict[int, Account]:
        # Fixed lock order keeps two opposite transfers from deadlocking.
        locked: dict[int, Account] = {}
        for account_id in sorted(set(account_ids)):
            locked[account_id] = self.get_account(
                account_id, client_id, for_update=True
            )
        return locked

    def get_balance(self, account_id: int) -> Money:
        return self.get_account(account_id).balance

    def set_balance(self, account: Account, new_balance: Money) -> None:
        account.balance = new_balance
        self.session.flush()

    def list_accounts(
        self, client_id: int, account_type: Optional[AccountType] = None
    ) -> list[Account]:
        stmt = select(Account).where(Account.client_id == client_id)
        if account_type is not None:
            stmt = stmt.where(Account.type == account_type)
        stmt = stmt.order_by(Account.name, Account.id)
        return list(self._read("list_accounts", lambda: self.session.scalars(stmt).all()))

    def find_account_by_name(
        self, client_id: int, name: str, asset_provider_id: Optional[int]
    ) -> Optional[Account]:
        stmt = select(Account).where(
            Account.client_id == client_id,
            Account.name == name,
        )
        if asset_provider_id is None:
            stmt = stmt.where(Account.asset_provider_id.is_(None))
        else:
            stmt = stmt.where(Account.asset_provider_id == asset_provider_id)
        return self._read("find_account_by_name", lambda: self.session.scalar(stmt))

    def insert_account(self, account: Account) -> int:
        self.session.add(account)
        self.session.flush()
        return account.id

    def delete_account(self, account: Account) -> None:
        for model in (Transaction, Expense):
            self.session.execute(
                update(model)
                .where(model.account_id == account.id)
                .values(account_id=None)
            )
        for payment in self.session.scalars(
            select(FuturePayment).where(FuturePayment.account_id == account.id)
        ).all():
            self.session.delete(payment)
        self.session.delete(account)
        self.session.flush()

    # -- ledger entries ----------------------------------------------------

    def insert_ledger_entry(self, entry: LedgerEntry) -> int:
        self.session.add(entry)
        self.session.flush()
        return entry.id

    def get_entry(
        self, model: type[LedgerEntry], entry_id: int, client_id: int
    ) -> LedgerEntry:
        entry = self._read(
            "get_entry", lambda: self.session.get(model, entry_id)
        )
        if not entry or entry.client_id != client_id:
            raise NotFound(f"{model.__name__} not found")
        return entry

    def get_entry_with_account_balance(
        self, model: type[LedgerEntry], entry_id: int, client_id: int
    ) -> tuple[LedgerEntry, Optional[Account]]:
        """Lock an entry and the account it posted to before reversing it.

        Both rows are selected ``FOR UPDATE``. The account is versioned as
        well, so a write from it still fails with ``ConcurrencyConflict`` on
        backends without row locks.
        """
        stmt = (
            select(model)
            .where(model.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        entry = self.session.scalar(stmt)
        if entry is None or entry.client_id != client_id:
            raise NotFound(f"{model.__name__} not found")
        if entry.account_id is None:
            return entry, None
        return entry, self.get_account(entry.account_id, for_update=True)

    def delete_ledger_entry(
        self, model: type[LedgerEntry], entry_id: int, owner_client_id: int
    ) -> None:
        entry = self.session.get(model, entry_id)
        if not entry or entry.client_id != owner_client_id:
            raise NotFound(f"{model.__name__} not found")
        self.session.delete(entry)
        self.session.flush()

    def list_entries(
        self, model: type[LedgerEntry], client_id: int
    ) -> list[LedgerEntry]:
        stmt = (
            select(model)
            .where(model.client_id == client_id)
            .order_by(model.executed_at.desc(), model.id.desc())
        )
        return list(self._read("list_entries", lambda: self.session.scalars(stmt).all()))

    # -- future payments ---------------------------------------------------

    def insert_future_payment(self, payment: FuturePayment) -> int:
        self.session.add(payment)
        self.session.flush()
        return payment.id

    def get_future_payment(
        self,
        payment_id: int,
        client_id: Optional[int] = None,
        *,
        for_update: bool = False,
    ) -> FuturePayment:
        stmt = select(FuturePayment).where(FuturePayment.id == payment_id)
        if for_update:
            payment = self.session.scalar(
                stmt.with_for_update().execution_options(populate_existing=True)
            )
        else:
            payment = self._read(
                "get_future_payment", lambda: self.session.scalar(stmt)
            )
        if not payment or (client_id is not None and payment.client_id != client_id):
            raise NotFound("Future payment not found")
        return payment

    def list_future_payments(self, client_id: int) -> list[FuturePayment]:
        stmt = (
            select(FuturePayment)
            .where(FuturePayment.client_id == client_id)
            .order_by(FuturePayment.scheduled_at, FuturePayment.id)
        )
        return list(
            self._read("list_future_payments", lambda: self.session.scalars(stmt).all())
        )

    def list_due_payments(self, as_of: datetime) -> list[FuturePayment]:
        stmt = (
            select(FuturePayment)
            .where(FuturePayment.scheduled_at <= as_of)
            .order_by(FuturePayment.scheduled_at, FuturePayment.id)
        )
        return list(
            self._read("list_due_payments", lambda: self.session.scalars(stmt).all())
        )

    def advance_schedule(self, payment: FuturePayment, next_scheduled_at: datetime) -> None:
        payment.scheduled_at = next_scheduled_at
        self.session.flush()

    def delete_future_payment(self, payment_id: int, owner_client_id: int) -> None:
        payment = self.session.get(FuturePayment, payment_id)
        if not payment or payment.client_id != owner_client_id:
            raise NotFound("Future payment not found")
        self.session.delete(payment)
        self.session.flush()
