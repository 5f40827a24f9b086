from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from config import Settings, get_settings
from exceptions import Conflict
from ledger import BalanceMutator, get_current_client_id
from models import Account, AccountType, AssetProvider, Currency
from money import Money
from schemas import AccountIn, AccountUpdate
from store import LedgerStore


logger = logging.getLogger(__name__)


class AccountService:
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

    def get(self, account_id: int) -> Account:
        return self.store.get_account(account_id, self.client_id)

    def list(self, account_type: Optional[AccountType] = None) -> list[Account]:
        return self.store.list_accounts(self.client_id, account_type)

    def create(self, data: AccountIn) -> Account:
        with self.store.unit_of_work("create_account", client=self.client_id):
            existing = self.store.find_account_by_name(
                self.client_id, data.name, data.asset_provider_id
            )
            if existing:
                raise Conflict("Account name already in use.")
            account = Account(
                client_id=self.client_id,
                asset_provider_id=data.asset_provider_id,
                name=data.name,
                type=data.type,
                currency_id=data.currency_id,
                balance=Money("0"),
            )
            self.store.insert_account(account)
        logger.info(f"account_created: id={account.id} client={self.client_id}")
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        with self.store.unit_of_work("update_account", account=account_id):
            account = self.store.get_account(account_id, self.client_id, for_update=True)
            account.currency_id = data.currency_id
            if data.type is not None:
                account.type = data.type
            if data.balance is not None:
                self.mutator.reconcile(account, Money.parse(data.balance))
            self.session.flush()
        return account

    def delete(self, account_id: int) -> None:
        with self.store.unit_of_work("delete_account", account=account_id):
            account = self.store.get_account(account_id, self.client_id, for_update=True)
            self.store.delete_account(account)
        logger.info(f"account_deleted: id={account_id} client={self.client_id}")


class ReferenceDataService:
    """Read-only catalog of currencies and asset providers shared by all clients."""

    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.store = LedgerStore(session, settings or get_settings())

    def currencies(self) -> list[Currency]:
        return self.store.list_currencies()

    def providers(self, account_type: Optional[AccountType] = None) -> list[AssetProvider]:
        return self.store.list_asset_providers(account_type)
