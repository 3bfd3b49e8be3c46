"""
Request and response models

Requests are validated here before they reach the engine. Responses are built
from domain objects through the ``from_*`` classmethods and serialized with
camelCase keys; None fields are dropped at the route (response_model_exclude_none).
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..accounts import Account
from ..currency import MAX_AMOUNT, MAX_PRECISION, Money, fits_precision, to_number
from ..customers import Customer
from ..engine import DepositResult, TransferLeg, TransferResult, WithdrawResult
from ..logging_config import mask_sensitive
from ..pagination import PageInfo
from ..references import ACCOUNT_NUMBER_LENGTH
from ..security import password_problems, strip_markup
from ..transactions import Transaction

Number = Union[int, float]

_EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


class CamelModel(BaseModel):
    """Base model exposing camelCase field names on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_account_number(value: str, label: str = "Account number") -> str:
    if len(value) != ACCOUNT_NUMBER_LENGTH:
        raise ValueError(f"{label} must be exactly {ACCOUNT_NUMBER_LENGTH} characters long.")
    return value


def _check_amount(value: Decimal, message: str = "Amount must be a positive number.") -> Decimal:
    if not value.is_finite() or value <= 0:
        raise ValueError(message)
    if value >= MAX_AMOUNT:
        raise ValueError("Amount is too large.")
    if not fits_precision(value, MAX_PRECISION):
        raise ValueError(f"Amount cannot have more than {MAX_PRECISION} decimal places.")
    return value


def _clean_text(value):
    if isinstance(value, str):
        return strip_markup(value)
    return value


def _money(value: Money) -> Number:
    return to_number(value.amount)


# Requests

class DepositRequest(CamelModel):
    account_number: str
    amount: Decimal
    narration: Optional[str] = Field(None, max_length=255)

    @field_validator("account_number")
    @classmethod
    def validate_account_number(cls, v: str) -> str:
        return _check_account_number(v)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        return _check_amount(v)

    @field_validator("narration", mode="before")
    @classmethod
    def clean_narration(cls, v):
        return _clean_text(v)


class WithdrawRequest(DepositRequest):
    pass


class TransferRequest(CamelModel):
    from_account_number: str
    to_account_number: str
    amount: Decimal
    narration: Optional[str] = Field(None, max_length=255)

    @field_validator("from_account_number")
    @classmethod
    def validate_from(cls, v: str) -> str:
        return _check_account_number(v, "Sender account number")

    @field_validator("to_account_number")
    @classmethod
    def validate_to(cls, v: str) -> str:
        return _check_account_number(v, "Recipient account number")

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        return _check_amount(v, "Transfer amount must be greater than zero")

    @field_validator("narration", mode="before")
    @classmethod
    def clean_narration(cls, v):
        return _clean_text(v)


class RegisterRequest(CamelModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=_EMAIL_PATTERN)
    password: str
    confirm_password: str

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def clean_names(cls, v):
        return _clean_text(v)

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("password", "confirm_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        problems = password_problems(v)
        if problems:
            raise ValueError(problems[0])
        return v

    @model_validator(mode="after")
    def passwords_match(self) -> 'RegisterRequest':
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(CamelModel):
    email: str = Field(..., pattern=_EMAIL_PATTERN)
    password: str = Field(..., min_length=8)

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.strip().lower()


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class UpdateAccountRequest(CamelModel):
    account_type: Optional[Literal["HIDA", "CURRENT"]] = None
    status: Optional[Literal["ACTIVE", "FROZEN", "CLOSED"]] = None

    @model_validator(mode="after")
    def at_least_one(self) -> 'UpdateAccountRequest':
        if self.account_type is None and self.status is None:
            raise ValueError("At least one field (accountType or status) must be provided.")
        return self


class CreateAccountRequest(CamelModel):
    account_type: Literal["SAVINGS", "HIDA", "CURRENT"]
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


# Responses

class CustomerOut(CamelModel):
    id: str
    first_name: str
    last_name: str
    email: str
    is_active: Optional[bool] = None
    is_verified: Optional[bool] = None

    @classmethod
    def from_customer(cls, customer: Customer, masked: bool = False,
                      with_flags: bool = False) -> 'CustomerOut':
        return cls(
            id=customer.id,
            first_name=customer.first_name,
            last_name=customer.last_name,
            email=mask_sensitive(customer.email) if masked else customer.email,
            is_active=customer.is_active if with_flags else None,
            is_verified=customer.is_verified if with_flags else None
        )


class AccountOut(CamelModel):
    id: Optional[str] = None
    account_number: str
    account_type: str
    status: Optional[str] = None
    balance: Number
    currency: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: Account, full: bool = False) -> 'AccountOut':
        return cls(
            id=account.id if full else None,
            account_number=account.account_number,
            account_type=account.account_type.value,
            status=account.status.value,
            balance=_money(account.balance),
            currency=account.currency.code,
            created_at=account.created_at if full else None,
            updated_at=account.updated_at if full else None
        )


class TransactionOut(CamelModel):
    id: Optional[str] = None
    reference: str
    transfer_reference: Optional[str] = None
    type: str
    category: str
    amount: Number
    balance_after: Optional[Number] = None
    status: str
    narration: Optional[str] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionOut':
        """Full representation"""
        return cls(
            id=transaction.id,
            reference=transaction.reference,
            transfer_reference=transaction.transfer_reference,
            type=transaction.transaction_type.value,
            category=transaction.category.value,
            amount=_money(transaction.amount),
            balance_after=_money(transaction.balance_after),
            status=transaction.status.value,
            narration=transaction.narration,
            from_account_id=transaction.from_account_id,
            to_account_id=transaction.to_account_id,
            created_at=transaction.created_at,
            updated_at=transaction.updated_at
        )

    @classmethod
    def summary(cls, transaction: Transaction) -> 'TransactionOut':
        """Short representation used in the deposit receipt"""
        return cls(
            reference=transaction.reference,
            type=transaction.transaction_type.value,
            category=transaction.category.value,
            amount=_money(transaction.amount),
            status=transaction.status.value,
            narration=transaction.narration
        )


class BalanceChangeOut(CamelModel):
    id: Optional[str] = None
    account_number: str
    account_type: Optional[str] = None
    status: Optional[str] = None
    balance_before: Number
    balance_after: Number
    currency: str
    customer: Optional[CustomerOut] = None


class DepositResponse(CamelModel):
    success: bool = True
    message: str = "Deposit successful"
    account: BalanceChangeOut
    transaction: TransactionOut

    @classmethod
    def from_result(cls, result: DepositResult) -> 'DepositResponse':
        return cls(
            account=BalanceChangeOut(
                account_number=result.account.account_number,
                balance_before=_money(result.balance_before),
                balance_after=_money(result.balance_after),
                currency=result.account.currency.code
            ),
            transaction=TransactionOut.summary(result.transaction)
        )


class WithdrawResponse(CamelModel):
    success: bool = True
    message: str = "Withdrawal successful"
    account: BalanceChangeOut
    transaction: TransactionOut

    @classmethod
    def from_result(cls, result: WithdrawResult) -> 'WithdrawResponse':
        account = result.account
        return cls(
            account=BalanceChangeOut(
                id=account.id,
                account_number=account.account_number,
                account_type=account.account_type.value,
                status=account.status.value,
                balance_before=_money(result.balance_before),
                balance_after=_money(result.balance_after),
                currency=account.currency.code,
                customer=(CustomerOut.from_customer(result.customer, masked=True)
                          if result.customer else None)
            ),
            transaction=TransactionOut.from_transaction(result.transaction)
        )


class TransferPartyOut(CamelModel):
    account_number: str
    customer_name: Optional[str] = None
    email: Optional[str] = None
    balance_before: Number
    balance_after: Number

    @classmethod
    def from_leg(cls, leg: TransferLeg) -> 'TransferPartyOut':
        return cls(
            account_number=leg.account.account_number,
            customer_name=leg.customer.full_name if leg.customer else None,
            email=mask_sensitive(leg.customer.email) if leg.customer else None,
            balance_before=_money(leg.balance_before),
            balance_after=_money(leg.balance_after)
        )


class TransferTransactionsOut(CamelModel):
    sender: TransactionOut
    receiver: TransactionOut


class TransferOut(CamelModel):
    transfer_ref: str
    amount: Number
    sender: TransferPartyOut
    receiver: TransferPartyOut
    transactions: TransferTransactionsOut


class TransferResponse(CamelModel):
    success: bool = True
    message: str = "Transfer successful"
    transfer: TransferOut

    @classmethod
    def from_result(cls, result: TransferResult) -> 'TransferResponse':
        return cls(
            transfer=TransferOut(
                transfer_ref=result.transfer_reference,
                amount=_money(result.amount),
                sender=TransferPartyOut.from_leg(result.sender),
                receiver=TransferPartyOut.from_leg(result.receiver),
                transactions=TransferTransactionsOut(
                    sender=TransactionOut.from_transaction(result.sender.transaction),
                    receiver=TransactionOut.from_transaction(result.receiver.transaction)
                )
            )
        )


class PaginationOut(CamelModel):
    current_page: int
    total_pages: int
    total_items: int
    limit: int
    has_more: bool

    @classmethod
    def from_page_info(cls, info: PageInfo) -> 'PaginationOut':
        return cls(
            current_page=info.current_page,
            total_pages=info.total_pages,
            total_items=info.total_items,
            limit=info.limit,
            has_more=info.has_more
        )


class TransactionListResponse(CamelModel):
    success: bool = True
    results: List[TransactionOut]
    pagination: PaginationOut


class TransactionResponse(CamelModel):
    success: bool = True
    message: str = "Returned transaction with id successfully"
    transaction: TransactionOut


class RegisterResponse(CamelModel):
    success: bool = True
    message: str = "User registered successfully. Kindly login to continue."
    user: CustomerOut
    account: AccountOut


class LoginResponse(CamelModel):
    success: bool = True
    message: str = "User logged in successfully"
    user: CustomerOut
    access_token: str
    refresh_token: str


class RefreshResponse(CamelModel):
    success: bool = True
    message: str = "Token refreshed successfully"
    access_token: str


class AccountResponse(CamelModel):
    success: bool = True
    message: str
    account: AccountOut
