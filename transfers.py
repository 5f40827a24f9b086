from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from config import Settings, get_settings
from exceptions import ValidationError
from ledger import BalanceMutator, ensure_sufficient_balance, get_current_client_id
from models import Transaction, utcnow
from money import Money
from schemas import TransferIn
from store import LedgerStore


logger = logging.getLogger(__name__)

TRANSFER_CATEGORY = "bank-transfer"


@dataclass
class TransferResult:
    source_balance: Money
    target_balance: Money
    outgoing: Transaction
    incoming: Transaction


class TransferOrchestrator:
    """Moves money between two accounts of the same client.

    Both balance writes and both ledger entries share one unit of work, so a
    failure on either leg leaves both accounts untouched.
    """

    def __init__(
        self,
        session: Session,
        client_id: Optional[int] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.client_id = client_id or get_current_client_id()
        self.store = LedgerStore(session, settings or get_settings())
        self.mutator = BalanceMutator(self.store)
        self.clock = clock

    def transfer(self, data: TransferIn) -> TransferResult:
        if data.source_account_id == data.target_account_id:
            raise ValidationError("Source and target accounts must differ")
        amount = Money.parse(data.amount)
        if amount.is_zero() or amount.is_negative():
            raise ValidationError("Amount must be greater than zero")
        executed_at = self.clock().replace(hour=0, minute=0, second=0, microsecond=0)

        with self.store.unit_of_work(
            "transfer",
            source=data.source_account_id,
            target=data.target_account_id,
        ):
            locked = self.store.lock_accounts(
                [data.source_account_id, data.target_account_id], self.client_id
            )
            source = locked[data.source_account_id]
            target = locked[data.target_account_id]
            ensure_sufficient_balance(source.id, source.balance, amount, False)
            # The incoming leg is expressed in the source currency; the policy
            # decides whether the target accepts it as is.
            target_amount = self.mutator.policy.amount_for_account(
                amount, source.currency_id, target
            )

            outgoing = Transaction(
                client_id=self.client_id,
                account_id=source.id,
                currency_id=source.currency_id,
                name=f"Transfer to {target.name}",
                category=TRANSFER_CATEGORY,
                amount=amount,
                income=False,
                executed_at=executed_at,
            )
            source_balance = self.mutator.apply_to_account(
                source, amount, False, entry=outgoing, currency_id=source.currency_id
            )

            incoming = Transaction(
                client_id=self.client_id,
                account_id=target.id,
                currency_id=target.currency_id,
                name=f"Received from {source.name}",
                category=TRANSFER_CATEGORY,
                amount=target_amount,
                income=True,
                executed_at=executed_at,
            )
            target_balance = self.mutator.apply_to_account(
                target,
                target_amount,
                True,
                entry=incoming,
                currency_id=target.currency_id,
            )

        logger.info(
            f"transfer_done: source={source.id} target={target.id} amount={amount} "
            f"source_balance={source_balance} target_balance={target_balance}"
        )
        return TransferResult(
            source_balance=source_balance,
            target_balance=target_balance,
            outgoing=outgoing,
            incoming=incoming,
        )
