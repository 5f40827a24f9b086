from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from config import Settings, get_settings
from exceptions import InsufficientBalance, ValidationError
from fx_rates import CurrencyPolicy
from models import Account, Expense, Transaction
from money import Money
from schemas import ExpenseIn, TransactionIn
from store import LedgerEntry, LedgerStore


logger = logging.getLogger(__name__)


def get_current_client_id() -> int:
    return 1


def ensure_sufficient_balance(
    account_id: int, balance: Money, amount: Money, is_income: bool
) -> None:
    """Refuse an outgoing amount larger than the balance.

    Compares unrounded values so an amount that only exceeds the balance
    past the second decimal is still caught.
    """
    if not is_income and amount > balance:
        raise InsufficientBalance(account_id, balance, amount)


@dataclass
class PostedEntry:
    entry: LedgerEntry
    balance: Optional[Money]


class BalanceMutator:
    """The only component that writes account balances."""

    def __init__(
        self, store: LedgerStore, policy: Optional[CurrencyPolicy] = None
    ) -> None:
        self.store = store
        self.policy = policy or CurrencyPolicy(store.session, store.settings)

    def apply_entry(
        self,
        account_id: Optional[int],
        amount: Money,
        is_income: bool,
        *,
        entry: Optional[LedgerEntry] = None,
        client_id: Optional[int] = None,
        currency_id: Optional[int] = None,
        enforce_balance: bool = True,
    ) -> Optional[Money]:
        if amount.is_negative():
            raise ValidationError("Amount must not be negative")
        with self.store.unit_of_work("apply_entry", account=account_id):
            if account_id is None:
                # Cash entries exist without touching any balance.
                if entry is not None:
                    self.store.insert_ledger_entry(entry)
                return None
            account = self.store.get_account(account_id, client_id, for_update=True)
            return self.apply_to_account(
                account,
                amount,
                is_income,
                entry=entry,
                currency_id=currency_id,
                enforce_balance=enforce_balance,
            )

    def apply_to_account(
        self,
        account: Account,
        amount: Money,
        is_income: bool,
        *,
        entry: Optional[LedgerEntry] = None,
        currency_id: Optional[int] = None,
        enforce_balance: bool = True,
    ) -> Money:
        """Apply a delta to an already loaded account row."""
        with self.store.unit_of_work("apply_to_account", account=account.id):
            effective = self.policy.amount_for_account(amount, currency_id, account)
            current = account.balance
            if enforce_balance:
                ensure_sufficient_balance(account.id, current, effective, is_income)
            new_balance = current.add(effective.signed(is_income)).truncate()
            logger.debug(
                f"balance_change: account={account.id} from={current} to={new_balance}"
            )
            self.store.set_balance(account, new_balance)
            if entry is not None:
                entry.posted_amount = effective
                self.store.insert_ledger_entry(entry)
            return new_balance

    def reconcile(self, account: Account, new_balance: Money) -> Money:
        """Overwrite a balance with a user supplied figure."""
        with self.store.unit_of_work("reconcile", account=account.id):
            balance = Money(new_balance).truncate()
            logger.info(
                f"balance_reconcile: account={account.id} from={account.balance} to={balance}"
            )
            self.store.set_balance(account, balance)
            return balance


class ReversalEngine:
    def __init__(
        self, store: LedgerStore, mutator: Optional[BalanceMutator] = None
    ) -> None:
        self.store = store
        self.mutator = mutator or BalanceMutator(store)

    def reverse_and_delete(
        self,
        model: type[LedgerEntry],
        entry_id: int,
        owner_client_id: int,
        revert_balance: bool = False,
    ) -> Optional[Money]:
        """Delete an entry, optionally undoing its balance effect first.

        Returns the account's new balance when one was reverted.
        """
        with self.store.unit_of_work(
            "reverse_and_delete", kind=model.__tablename__, entry=entry_id
        ):
            if not revert_balance:
                self.store.delete_ledger_entry(model, entry_id, owner_client_id)
                return None

            entry, account = self.store.get_entry_with_account_balance(
                model, entry_id, owner_client_id
            )
            new_balance = None
            if account is not None:
                # Reverse the recorded delta, not a fresh conversion at today's rate.
                if entry.posted_amount is not None:
                    amount, currency_id = entry.posted_amount, account.currency_id
                else:
                    amount, currency_id = entry.amount, entry.currency_id
                # Undoing a posted entry is always allowed, even into negative.
                new_balance = self.mutator.apply_to_account(
                    account,
                    amount,
                    not entry.income,
                    currency_id=currency_id,
                    enforce_balance=False,
                )
            self.store.delete_ledger_entry(model, entry_id, owner_client_id)
            logger.info(
                f"entry_reverted: kind={model.__tablename__} id={entry_id} account={entry.account_id} balance={new_balance}"
            )
            return new_balance


class TransactionService:
    def __init__(
        self,
        session: Session,
        client_id: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.client_id = client_id or get_current_client_id()
        self.store = LedgerStore(session, settings or get_settings())
        self.mutator = BalanceMutator(self.store)

    def create(self, data: TransactionIn) -> PostedEntry:
        amount = Money.parse(data.amount)
        txn = Transaction(
            client_id=self.client_id,
            account_id=data.account_id,
            currency_id=data.currency_id,
            name=data.name,
            category=data.category,
            amount=amount,
            income=data.income,
            remarks=data.remarks or None,
            executed_at=data.executed_at,
        )
        balance = self.mutator.apply_entry(
            data.account_id,
            amount,
            data.income,
            entry=txn,
            client_id=self.client_id,
            currency_id=data.currency_id,
        )
        return PostedEntry(entry=txn, balance=balance)

    def get(self, transaction_id: int) -> Transaction:
        return self.store.get_entry(Transaction, transaction_id, self.client_id)

    def list(self) -> list[Transaction]:
        return self.store.list_entries(Transaction, self.client_id)

    def delete(self, transaction_id: int, revert_balance: bool = False) -> Optional[Money]:
        return ReversalEngine(self.store, self.mutator).reverse_and_delete(
            Transaction, transaction_id, self.client_id, revert_balance
        )


class ExpenseService:
    def __init__(
        self,
        session: Session,
        client_id: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.client_id = client_id or get_current_client_id()
        self.store = LedgerStore(session, settings or get_settings())
        self.mutator = BalanceMutator(self.store)

    def create(self, data: ExpenseIn) -> PostedEntry:
        amount = Money.parse(data.amount)
        expense = Expense(
            client_id=self.client_id,
            account_id=data.account_id,
            currency_id=data.currency_id,
            category=data.category,
            amount=amount,
            remarks=data.remarks or None,
            executed_at=data.executed_at,
        )
        balance = self.mutator.apply_entry(
            data.account_id,
            amount,
            False,
            entry=expense,
            client_id=self.client_id,
            currency_id=data.currency_id,
        )
        return PostedEntry(entry=expense, balance=balance)

    def get(self, expense_id: int) -> Expense:
        return self.store.get_entry(Expense, expense_id, self.client_id)

    def list(self) -> list[Expense]:
        return self.store.list_entries(Expense, self.client_id)

    def delete(self, expense_id: int, revert_balance: bool = False) -> Optional[Money]:
        return ReversalEngine(self.store, self.mutator).reverse_and_delete(
            Expense, expense_id, self.client_id, revert_balance
        )
