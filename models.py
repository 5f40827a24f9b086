from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from money import Money, MoneyType


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AccountType(str, Enum):
    bank = "bank"
    broker = "broker"
    credit = "credit"
    cash = "cash"
    stock = "stock"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Currency(Base, TimestampMixin):
    __tablename__ = "currencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticker: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)
    symbol: Mapped[Optional[str]] = mapped_column(String(10))
    name: Mapped[Optional[str]] = mapped_column(String(100))


class ExchangeRate(Base, TimestampMixin):
    """Rates written by an external feed; the ledger only reads them."""

    __tablename__ = "exchange_rates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    base_currency_id: Mapped[int] = mapped_column(
        ForeignKey("currencies.id"), nullable=False
    )
    target_currency_id: Mapped[int] = mapped_column(
        ForeignKey("currencies.id"), nullable=False
    )
    rate: Mapped[Money] = mapped_column(MoneyType, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "base_currency_id", "target_currency_id", name="uq_exchange_rate_pair"
        ),
    )


class AssetProvider(Base, TimestampMixin):
    __tablename__ = "asset_providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(200))
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)

    accounts: Mapped[list["Account"]] = relationship(
        "Account", back_populates="asset_provider"
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False)
    asset_provider_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("asset_providers.id")
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    currency_id: Mapped[int] = mapped_column(
        ForeignKey("currencies.id"), nullable=False
    )
    balance: Mapped[Money] = mapped_column(
        MoneyType, nullable=False, default=lambda: Money("0")
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    asset_provider: Mapped[Optional["AssetProvider"]] = relationship(
        "AssetProvider", back_populates="accounts"
    )
    currency: Mapped["Currency"] = relationship("Currency")

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        UniqueConstraint(
            "client_id", "asset_provider_id", "name", name="uq_account_client_name"
        ),
        Index("ix_accounts_client_type", "client_id", "type"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    currency_id: Mapped[int] = mapped_column(
        ForeignKey("currencies.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    amount: Mapped[Money] = mapped_column(MoneyType, nullable=False)
    # Delta applied to the account balance, in the account currency.
    posted_amount: Mapped[Optional[Money]] = mapped_column(MoneyType)
    income: Mapped[bool] = mapped_column(Boolean, nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    executed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    account: Mapped[Optional["Account"]] = relationship("Account")

    __table_args__ = (
        Index("ix_transactions_client_executed", "client_id", "executed_at"),
        Index("ix_transactions_account", "account_id"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    # Expenses are always outgoing.
    income = False

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    currency_id: Mapped[int] = mapped_column(
        ForeignKey("currencies.id"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    amount: Mapped[Money] = mapped_column(MoneyType, nullable=False)
    posted_amount: Mapped[Optional[Money]] = mapped_column(MoneyType)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    executed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    account: Mapped[Optional["Account"]] = relationship("Account")

    __table_args__ = (
        Index("ix_expenses_client_executed", "client_id", "executed_at"),
        Index("ix_expenses_account", "account_id"),
    )


class FuturePayment(Base, TimestampMixin):
    __tablename__ = "future_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    currency_id: Mapped[int] = mapped_column(
        ForeignKey("currencies.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount: Mapped[Money] = mapped_column(MoneyType, nullable=False)
    income: Mapped[bool] = mapped_column(Boolean, nullable=False)
    rolling: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frequency_secs: Mapped[Optional[int]] = mapped_column(Integer)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    account: Mapped["Account"] = relationship("Account")

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint(
            "NOT rolling OR (frequency_secs IS NOT NULL AND frequency_secs > 0)",
            name="ck_future_payment_rolling_frequency",
        ),
        Index("ix_future_payments_scheduled", "scheduled_at"),
        Index("ix_future_payments_client", "client_id"),
    )

    @property
    def frequency(self) -> Optional[timedelta]:
        if self.frequency_secs is None:
            return None
        return timedelta(seconds=self.frequency_secs)
