from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import Settings, get_settings
from exceptions import CurrencyMismatch, NotFound
from models import Account, ExchangeRate
from money import Money


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FxQuote:
    base_currency_id: int
    target_currency_id: int
    rate: Decimal  # target per 1 base
    fetched_at: datetime


class ExchangeRateFeed:
    """Reads rates published by the external feed. Never writes them."""

    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    def quote(self, base_currency_id: int, target_currency_id: int) -> FxQuote:
        if base_currency_id == target_currency_id:
            return FxQuote(base_currency_id, target_currency_id, Decimal("1"), datetime.min)

        row = self.session.scalar(
            select(ExchangeRate).where(
                ExchangeRate.base_currency_id == base_currency_id,
                ExchangeRate.target_currency_id == target_currency_id,
            )
        )
        if row is not None:
            rate = row.rate.value
            fetched_at = row.updated_at
        else:
            inverse = self.session.scalar(
                select(ExchangeRate).where(
                    ExchangeRate.base_currency_id == target_currency_id,
                    ExchangeRate.target_currency_id == base_currency_id,
                )
            )
            if inverse is None or inverse.rate.is_zero():
                raise NotFound(
                    f"No exchange rate from currency {base_currency_id} to {target_currency_id}"
                )
            rate = Decimal("1") / inverse.rate.value
            fetched_at = inverse.updated_at

        markup_bps = self.settings.fx_markup_bps
        if markup_bps:
            factor = Decimal("1") - (Decimal(markup_bps) / Decimal("10000"))
            rate = rate * factor
        return FxQuote(base_currency_id, target_currency_id, rate, fetched_at)

    def convert(
        self, amount: Money, base_currency_id: int, target_currency_id: int
    ) -> Money:
        quote = self.quote(base_currency_id, target_currency_id)
        converted = Money(amount.value * quote.rate).truncate()
        logger.info(
            f"fx_convert: base={base_currency_id} target={target_currency_id} amount={amount} "
            f"rate={quote.rate} fetched_at={quote.fetched_at.isoformat()} result={converted}"
        )
        return converted


class CurrencyPolicy:
    """Decides what happens when a mutation's currency differs from the account's.

    ``reject`` refuses the mutation, ``passthrough`` applies the raw amount as
    if both sides shared a currency, ``convert`` uses the exchange-rate feed.
    """

    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.mode = self.settings.currency_policy
        self.feed = ExchangeRateFeed(session, self.settings)

    def amount_for_account(
        self, amount: Money, currency_id: Optional[int], account: Account
    ) -> Money:
        if currency_id is None or currency_id == account.currency_id:
            return amount
        if self.mode == "passthrough":
            logger.info(
                f"currency_passthrough: account={account.id} from={currency_id} to={account.currency_id}"
            )
            return amount
        if self.mode == "convert":
            return self.feed.convert(amount, currency_id, account.currency_id)
        raise CurrencyMismatch(
            f"Currency {currency_id} does not match account {account.id} currency {account.currency_id}"
        )
