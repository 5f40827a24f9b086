from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models import AccountType
from money import Money


def _positive_amount(value: str) -> str:
    amount = Money.parse(value)
    if amount.is_negative() or amount.is_zero():
        raise ValueError("Amount must be greater than zero")
    return amount.to_string()


def _naive_utc(value: datetime) -> datetime:
    # Stored datetimes are naive UTC; Unix ints and "Z" strings arrive aware.
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: AccountType
    currency_id: int
    asset_provider_id: Optional[int] = None


class AccountUpdate(BaseModel):
    currency_id: int
    type: Optional[AccountType] = None
    balance: Optional[str] = None

    @field_validator("balance")
    @classmethod
    def check_balance(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return Money.parse(value).to_string()


class TransactionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    account_id: Optional[int] = None
    amount: str
    income: bool
    currency_id: int
    category: str = Field(..., min_length=1, max_length=60)
    remarks: Optional[str] = Field(default=None, max_length=500)
    executed_at: datetime

    @field_validator("amount")
    @classmethod
    def check_amount(cls, value: str) -> str:
        return _positive_amount(value)

    @field_validator("executed_at")
    @classmethod
    def check_executed_at(cls, value: datetime) -> datetime:
        return _naive_utc(value)


class ExpenseIn(BaseModel):
    account_id: Optional[int] = None
    amount: str
    currency_id: int
    category: str = Field(..., min_length=1, max_length=60)
    remarks: Optional[str] = Field(default=None, max_length=500)
    executed_at: datetime

    @field_validator("amount")
    @classmethod
    def check_amount(cls, value: str) -> str:
        return _positive_amount(value)

    @field_validator("executed_at")
    @classmethod
    def check_executed_at(cls, value: datetime) -> datetime:
        return _naive_utc(value)


class TransferIn(BaseModel):
    source_account_id: int
    target_account_id: int
    amount: str

    @field_validator("amount")
    @classmethod
    def check_amount(cls, value: str) -> str:
        return _positive_amount(value)

    @model_validator(mode="after")
    def distinct_accounts(self) -> "TransferIn":
        if self.source_account_id == self.target_account_id:
            raise ValueError("Source and target accounts must differ")
        return self


class FuturePaymentIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    account_id: int
    currency_id: int
    amount: str
    income: bool
    rolling: bool = False
    frequency_secs: Optional[int] = Field(default=None, gt=0)
    remarks: Optional[str] = Field(default=None, max_length=500)
    scheduled_at: datetime

    @field_validator("amount")
    @classmethod
    def check_amount(cls, value: str) -> str:
        return _positive_amount(value)

    @field_validator("scheduled_at")
    @classmethod
    def check_scheduled_at(cls, value: datetime) -> datetime:
        return _naive_utc(value)

    @model_validator(mode="after")
    def rolling_needs_frequency(self) -> "FuturePaymentIn":
        if self.rolling and not self.frequency_secs:
            raise ValueError("Missing required field frequency")
        return self
