"""
Account Management Module

Manages customer accounts, account states and balances. Balances change only
through apply_delta(), which the ledger engine calls inside a unit of work after
locking the row with lock_for_update().
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .currency import Money, Currency
from .errors import BadRequestError
from .references import generate_account_number
from .storage import StorageInterface, StorageRecord, StorageConflictError
from .logging_config import get_logger, log_action


class AccountType(Enum):
    """Banking product types"""
    SAVINGS = "SAVINGS"
    CURRENT = "CURRENT"
    HIDA = "HIDA"


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "ACTIVE"        # Normal operation
    FROZEN = "FROZEN"        # Temporarily suspended by the owner
    CLOSED = "CLOSED"        # Permanently closed, terminal
    SUSPENDED = "SUSPENDED"  # Suspended by the institution


@dataclass
class Account(StorageRecord):
    """
    Customer account holding a single-currency balance
    """
    account_number: str
    customer_id: str
    account_type: AccountType
    currency: Currency
    balance: Money
    status: AccountStatus = AccountStatus.ACTIVE

    def __post_init__(self):
        if self.balance.currency != self.currency:
            raise ValueError("Balance currency must match account currency")

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.status == AccountStatus.CLOSED


class AccountStore:
    """
    Persists accounts and applies balance changes
    """

    # Attempts at drawing a free random account number
    ACCOUNT_NUMBER_ATTEMPTS = 5

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.accounts_table = "accounts"
        self.logger = get_logger("ledger.accounts")
        self.storage.register_table(self.accounts_table, unique_fields=("account_number",))

    def create_account(
        self,
        customer_id: str,
        account_type: AccountType,
        currency: Currency,
        account_number: Optional[str] = None
    ) -> Account:
        """
        Create a new zero-balance account

        Args:
            customer_id: ID of account owner
            account_type: Product type
            currency: Account currency
            account_number: Specific account number (generated if not provided)

        Returns:
            Created Account object
        """
        if not account_number:
            account_number = self._free_account_number()

        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_number=account_number,
            customer_id=customer_id,
            account_type=account_type,
            currency=currency,
            balance=Money.zero(currency)
        )
        # The unique index still rejects a number taken concurrently
        self.storage.insert(self.accounts_table, account.id, self._account_to_dict(account))

        log_action(
            self.logger, "info", f"Account {account.account_number} created",
            user_id=customer_id, action="create_account", resource="account",
            extra={"account_type": account_type.value, "currency": currency.code}
        )
        return account

    def get(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return self._account_from_dict(account_dict)
        return None

    def get_by_number(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        accounts = self.storage.find(self.accounts_table, {"account_number": account_number})
        if accounts:
            return self._account_from_dict(accounts[0])
        return None

    def lock_for_update(self, account_id: str) -> Optional[Account]:
        """Re-read an account and hold it until the current unit of work ends"""
        account_dict = self.storage.load_for_update(self.accounts_table, account_id)
        if account_dict:
            return self._account_from_dict(account_dict)
        return None

    def accounts_for_customer(self, customer_id: str) -> List[Account]:
        """Get all accounts for a customer"""
        accounts_data = self.storage.find(self.accounts_table, {"customer_id": customer_id})
        return [self._account_from_dict(data) for data in accounts_data]

    def apply_delta(self, account: Account, delta: Money) -> Account:
        """
        Add a signed amount to a locked account's balance and persist it

        Raises:
            BadRequestError: If the balance would go negative or overflow
            ValueError: On currency mismatch
        """
        if delta.currency != account.currency:
            raise ValueError(f"Currency mismatch: {account.currency.code} and {delta.currency.code}")
        try:
            new_balance = account.balance + delta
        except ValueError:
            raise BadRequestError("Amount exceeds the supported balance range")
        if new_balance.is_negative():
            raise BadRequestError("Insufficient balance")

        account.balance = new_balance
        account.updated_at = datetime.now(timezone.utc)
        self._save_account(account)
        return account

    def update_account(
        self,
        account_id: str,
        account_type: Optional[AccountType] = None,
        status: Optional[AccountStatus] = None
    ) -> Account:
        """
        Change product type and/or status of an account

        Raises:
            BadRequestError: If the account is CLOSED (terminal state)
        """
        with self.storage.atomic():
            account = self.lock_for_update(account_id)
            if account is None:
                raise ValueError(f"Account {account_id} not found")

            if account.is_closed and (status is not None or account_type is not None):
                raise BadRequestError("Cannot update a closed account")

            old_status = account.status
            if account_type is not None:
                account.account_type = account_type
            if status is not None:
                account.status = status
            account.updated_at = datetime.now(timezone.utc)
            self._save_account(account)

        log_action(
            self.logger, "info", f"Account {account.account_number} updated",
            user_id=account.customer_id, action="update_account", resource="account",
            extra={"old_status": old_status.value, "new_status": account.status.value,
                   "account_type": account.account_type.value}
        )
        return account

    def close_account(self, account_id: str) -> Account:
        """
        Close an account

        Raises:
            BadRequestError: If the account is already closed
        """
        with self.storage.atomic():
            account = self.lock_for_update(account_id)
            if account is None:
                raise ValueError(f"Account {account_id} not found")
            if account.is_closed:
                raise BadRequestError("Account is already closed")

            account.status = AccountStatus.CLOSED
            account.updated_at = datetime.now(timezone.utc)
            self._save_account(account)

        log_action(
            self.logger, "info", f"Account {account.account_number} closed",
            user_id=account.customer_id, action="close_account", resource="account"
        )
        return account

    def _free_account_number(self) -> str:
        """Draw random account numbers until one is not taken"""
        for _ in range(self.ACCOUNT_NUMBER_ATTEMPTS):
            candidate = generate_account_number()
            if self.get_by_number(candidate) is None:
                return candidate
            self.logger.warning("Account number collision, drawing another")
        raise StorageConflictError("No free account number found", field="account_number")

    def _save_account(self, account: Account) -> None:
        """Save account to storage"""
        self.storage.save(self.accounts_table, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        result = account.to_dict()
        result['account_type'] = account.account_type.value
        result['currency'] = account.currency.code
        result['balance'] = str(account.balance.amount)
        result['status'] = account.status.value
        return result

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        currency = Currency[data['currency']]
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_number=data['account_number'],
            customer_id=data['customer_id'],
            account_type=AccountType(data['account_type']),
            currency=currency,
            balance=Money(data['balance'], currency),
            status=AccountStatus(data['status'])
        )
