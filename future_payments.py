from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from config import Settings, get_settings
from exceptions import LedgerError, NotFound, ValidationError
from ledger import BalanceMutator, get_current_client_id
from models import FuturePayment, Transaction, utcnow
from money import Money
from schemas import FuturePaymentIn
from store import LedgerStore


logger = logging.getLogger(__name__)

FUTURE_PAYMENT_CATEGORY = "future-payment"


@dataclass(frozen=True)
class PaymentFrequency:
    days: int = 0
    months: int = 0
    years: int = 0


def describe_frequency(seconds: int) -> PaymentFrequency:
    """Present a frequency the way users enter it: days below a month, else months."""
    days = seconds // 86400
    if days < 29:
        return PaymentFrequency(days=days)
    months = days // 30
    if months == 0:
        months = 1
    return PaymentFrequency(months=months)


def next_scheduled_at(payment: FuturePayment) -> datetime:
    # Advance from the occurrence, not from now, so the cadence never drifts.
    return payment.scheduled_at + timedelta(seconds=payment.frequency_secs)


def _validate_schedule(data: FuturePaymentIn) -> Money:
    amount = Money.parse(data.amount)
    if amount.is_zero() or amount.is_negative():
        raise ValidationError("Amount must be greater than zero")
    if data.rolling and (not data.frequency_secs or data.frequency_secs <= 0):
        raise ValidationError("Missing required field frequency")
    return amount


class FuturePaymentService:
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
        self.clock = clock

    def get(self, payment_id: int) -> FuturePayment:
        return self.store.get_future_payment(payment_id, self.client_id)

    def list(self) -> list[FuturePayment]:
        return self.store.list_future_payments(self.client_id)

    def create(self, data: FuturePaymentIn) -> FuturePayment:
        amount = _validate_schedule(data)
        if data.scheduled_at <= self.clock():
            raise ValidationError("Invalid payment schedule time")
        with self.store.unit_of_work("create_future_payment", client=self.client_id):
            self.store.get_account(data.account_id, self.client_id)
            payment = FuturePayment(
                client_id=self.client_id,
                account_id=data.account_id,
                currency_id=data.currency_id,
                name=data.name,
                amount=amount,
                income=data.income,
                rolling=data.rolling,
                frequency_secs=data.frequency_secs if data.rolling else None,
                remarks=data.remarks or None,
                scheduled_at=data.scheduled_at,
            )
            self.store.insert_future_payment(payment)
        logger.info(
            f"future_payment_created: id={payment.id} account={payment.account_id} scheduled_at={payment.scheduled_at.isoformat()}"
        )
        return payment

    def update(self, payment_id: int, data: FuturePaymentIn) -> FuturePayment:
        amount = _validate_schedule(data)
        with self.store.unit_of_work("update_future_payment", payment=payment_id):
            payment = self.store.get_future_payment(
                payment_id, self.client_id, for_update=True
            )
            if data.account_id != payment.account_id:
                self.store.get_account(data.account_id, self.client_id)
            payment.account_id = data.account_id
            payment.currency_id = data.currency_id
            payment.name = data.name
            payment.amount = amount
            payment.income = data.income
            payment.rolling = data.rolling
            payment.frequency_secs = data.frequency_secs if data.rolling else None
            payment.remarks = data.remarks or None
            payment.scheduled_at = data.scheduled_at
            self.session.flush()
        return payment

    def delete(self, payment_id: int) -> None:
        with self.store.unit_of_work("delete_future_payment", payment=payment_id):
            self.store.delete_future_payment(payment_id, self.client_id)


@dataclass
class PaymentFailure:
    payment_id: int
    account_id: int
    error: str


@dataclass
class SchedulerRunReport:
    as_of: datetime
    applied: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failures: list[PaymentFailure] = field(default_factory=list)
    stopped_early: bool = False


class FuturePaymentEngine:
    """Applies every future payment that has come due.

    Each payment runs in its own unit of work: the balance change, the posted
    ledger entry and the schedule advance (or deletion) commit together. With
    ``scheduler_fail_fast`` off, one failing payment does not hold back the
    rest of the pass.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock

    def run_due(self, as_of: Optional[datetime] = None) -> SchedulerRunReport:
        as_of = as_of or self.clock()
        report = SchedulerRunReport(as_of=as_of)

        session = self.session_factory()
        try:
            due = [
                (payment.id, payment.account_id)
                for payment in LedgerStore(session, self.settings).list_due_payments(as_of)
            ]
        finally:
            session.close()

        for payment_id, account_id in due:
            try:
                applied = self._apply_one(payment_id, as_of)
            except LedgerError as exc:
                logger.error(
                    f"future_payment_failed: id={payment_id} account={account_id} error={exc}"
                )
                report.failures.append(PaymentFailure(payment_id, account_id, str(exc)))
                if self.settings.scheduler_fail_fast:
                    report.stopped_early = True
                    break
                continue
            if applied:
                report.applied.append(payment_id)
            else:
                report.skipped.append(payment_id)

        logger.info(
            f"future_payments_run: as_of={as_of.isoformat()} due={len(due)} applied={len(report.applied)} "
            f"skipped={len(report.skipped)} failed={len(report.failures)} stopped_early={report.stopped_early}"
        )
        return report

    def _apply_one(self, payment_id: int, as_of: datetime) -> bool:
        session = self.session_factory()
        try:
            store = LedgerStore(session, self.settings)
            mutator = BalanceMutator(store)
            with store.unit_of_work("execute_future_payment", payment=payment_id):
                try:
                    payment = store.get_future_payment(payment_id, for_update=True)
                except NotFound:
                    return False
                if payment.scheduled_at > as_of:
                    # Another pass got here first.
                    return False

                occurrence = payment.scheduled_at
                account = store.get_account(
                    payment.account_id, payment.client_id, for_update=True
                )
                entry = Transaction(
                    client_id=payment.client_id,
                    account_id=payment.account_id,
                    currency_id=payment.currency_id,
                    name=payment.name,
                    category=FUTURE_PAYMENT_CATEGORY,
                    amount=payment.amount,
                    income=payment.income,
                    remarks=payment.remarks,
                    executed_at=occurrence,
                )
                balance = mutator.apply_to_account(
                    account,
                    payment.amount,
                    payment.income,
                    entry=entry,
                    currency_id=payment.currency_id,
                    enforce_balance=self.settings.enforce_balance_on_future_payments,
                )
                rolling = payment.rolling
                summary = (
                    f"future_payment_applied: id={payment_id} account={account.id} "
                    f"amount={payment.amount} income={payment.income} balance={balance} rolling={rolling}"
                )
                if rolling:
                    store.advance_schedule(payment, next_scheduled_at(payment))
                else:
                    store.delete_future_payment(payment.id, payment.client_id)

            logger.info(summary)
            return True
        finally:
            session.close()
