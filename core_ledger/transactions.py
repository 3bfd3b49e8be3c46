"""
Transaction Ledger Module

Append-only record of every balance change. Rows are inserted by the ledger
engine inside the same unit of work as the balance update and are never
modified or deleted afterwards.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from enum import Enum
import uuid

from .currency import Money, Currency
from .references import generate_transaction_reference
from .storage import StorageInterface, StorageRecord


class TransactionType(Enum):
    """Kinds of ledger entries"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"


class TransactionCategory(Enum):
    """Direction of the entry relative to the account it describes"""
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class TransactionStatus(Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class Transaction(StorageRecord):
    """
    Ledger entry, written once by TransactionLedger.append and never updated

    DEPOSIT carries only to_account_id, WITHDRAWAL only from_account_id; both
    transfer legs carry the same from/to pair.
    """
    reference: str
    transaction_type: TransactionType
    category: TransactionCategory
    amount: Money
    balance_after: Money
    status: TransactionStatus = TransactionStatus.SUCCESS
    transfer_reference: Optional[str] = None
    narration: Optional[str] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None

    def __post_init__(self):
        if not self.amount.is_positive():
            raise ValueError("Transaction amount must be positive")
        if self.narration is not None and len(self.narration) > 255:
            raise ValueError("Narration cannot exceed 255 characters")


class TransactionLedger:
    """
    Insert-only store of Transaction rows
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.transactions_table = "transactions"
        self.storage.register_table(self.transactions_table, unique_fields=("reference",))

    def append(
        self,
        transaction_type: TransactionType,
        category: TransactionCategory,
        amount: Money,
        balance_after: Money,
        from_account_id: Optional[str] = None,
        to_account_id: Optional[str] = None,
        narration: Optional[str] = None,
        transfer_reference: Optional[str] = None,
        reference: Optional[str] = None
    ) -> Transaction:
        """
        Record a new SUCCESS entry

        Raises:
            StorageConflictError: If the reference is already used
        """
        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            reference=reference or generate_transaction_reference(),
            transaction_type=transaction_type,
            category=category,
            amount=amount,
            balance_after=balance_after,
            transfer_reference=transfer_reference,
            narration=narration,
            from_account_id=from_account_id,
            to_account_id=to_account_id
        )
        self.storage.insert(
            self.transactions_table, transaction.id, self._transaction_to_dict(transaction)
        )
        return transaction

    def get(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        data = self.storage.load(self.transactions_table, transaction_id)
        if data:
            return self._transaction_from_dict(data)
        return None

    def page_for_account(self, account_id: str, offset: int, limit: int) -> Tuple[List[Transaction], int]:
        """
        One page of entries touching the account, newest first

        Returns:
            (transactions, total number of entries touching the account)
        """
        filters = {"from_account_id": account_id, "to_account_id": account_id}
        rows = self.storage.find_any(
            self.transactions_table, filters, offset=offset, limit=limit, newest_first=True
        )
        total = self.storage.count_any(self.transactions_table, filters)
        return [self._transaction_from_dict(row) for row in rows], total

    def entries_for_account(self, account_id: str) -> List[Transaction]:
        """All entries touching the account, oldest first"""
        rows = self.storage.find_any(
            self.transactions_table,
            {"from_account_id": account_id, "to_account_id": account_id}
        )
        return [self._transaction_from_dict(row) for row in rows]

    def derived_balance(self, account_id: str, currency: Currency) -> Money:
        """
        Balance implied by the ledger: credits received minus debits taken

        A CREDIT counts for its to_account_id and a DEBIT for its
        from_account_id, so each transfer leg is counted once.
        """
        balance = Money.zero(currency)
        for entry in self.entries_for_account(account_id):
            if entry.category == TransactionCategory.CREDIT and entry.to_account_id == account_id:
                balance = balance + entry.amount
            elif entry.category == TransactionCategory.DEBIT and entry.from_account_id == account_id:
                balance = balance - entry.amount
        return balance

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        result = transaction.to_dict()
        result['transaction_type'] = transaction.transaction_type.value
        result['category'] = transaction.category.value
        result['status'] = transaction.status.value
        result['amount'] = str(transaction.amount.amount)
        result['balance_after'] = str(transaction.balance_after.amount)
        result['currency'] = transaction.amount.currency.code
        return result

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        currency = Currency[data['currency']]
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            reference=data['reference'],
            transaction_type=TransactionType(data['transaction_type']),
            category=TransactionCategory(data['category']),
            amount=Money(data['amount'], currency),
            balance_after=Money(data['balance_after'], currency),
            status=TransactionStatus(data['status']),
            transfer_reference=data.get('transfer_reference'),
            narration=data.get('narration'),
            from_account_id=data.get('from_account_id'),
            to_account_id=data.get('to_account_id')
        )
