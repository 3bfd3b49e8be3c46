"""
Ledger Engine Module

The transactional balance-mutation engine. Every deposit, withdrawal and
transfer runs as one unit of work: the involved account rows are re-read under
lock, preconditions are checked against those locked snapshots, and the balance
updates plus their Transaction rows commit or roll back together.

Precondition checks run in a fixed order and the first failure wins. Nothing is
retried; a failure rolls the unit back and propagates to the caller.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from .accounts import Account, AccountStore
from .currency import MAX_AMOUNT, Money, Currency, fits_precision, to_decimal
from .customers import Customer, CustomerManager
from .errors import BadRequestError, ForbiddenError, LedgerError, NotFoundError
from .guard import require_owner, require_transaction_visible
from .logging_config import get_logger, log_action
from .pagination import PageInfo, page_offset, parse_page_params
from .references import generate_transfer_reference
from .storage import StorageInterface
from .transactions import (
    Transaction, TransactionCategory, TransactionLedger, TransactionType
)

AmountLike = Union[Decimal, int, float, str]

MAX_NARRATION_LENGTH = 255


@dataclass
class DepositResult:
    account: Account
    balance_before: Money
    balance_after: Money
    transaction: Transaction


@dataclass
class WithdrawResult:
    account: Account
    customer: Optional[Customer]
    balance_before: Money
    balance_after: Money
    transaction: Transaction


@dataclass
class TransferLeg:
    """One side of a completed transfer"""
    account: Account
    customer: Optional[Customer]
    balance_before: Money
    balance_after: Money
    transaction: Transaction


@dataclass
class TransferResult:
    transfer_reference: str
    amount: Money
    sender: TransferLeg
    receiver: TransferLeg


@dataclass
class TransactionPage:
    transactions: List[Transaction]
    page_info: PageInfo


@dataclass
class ReconciliationReport:
    """Stored balance next to the balance implied by the ledger"""
    account_number: str
    stored_balance: Money
    derived_balance: Money
    entry_count: int

    @property
    def is_balanced(self) -> bool:
        return self.stored_balance == self.derived_balance

    @property
    def difference(self) -> Money:
        return self.stored_balance - self.derived_balance


class LedgerEngine:
    """
    Moves money between accounts

    Holds no mutable state of its own; all coordination goes through the
    storage unit of work, so one engine can serve concurrent requests.
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        transactions: TransactionLedger,
        customers: CustomerManager
    ):
        self.storage = storage
        self.accounts = accounts
        self.transactions = transactions
        self.customers = customers
        self.logger = get_logger("ledger.engine")

    def deposit(
        self,
        actor_customer_id: str,
        account_number: str,
        amount: AmountLike,
        narration: Optional[str] = None
    ) -> DepositResult:
        """
        Credit an account owned by the actor

        Raises:
            NotFoundError: Account does not exist
            ForbiddenError: Actor is not the owner, or the account is not ACTIVE
            BadRequestError: Amount is not positive or narration too long
        """
        self._log("info", "Deposit requested", actor_customer_id, "deposit",
                  {"account_number": account_number, "amount": str(amount)})

        with self.storage.atomic():
            account = self._lock_by_number(account_number)
            if account is None:
                raise self._reject(NotFoundError("Account not found"),
                                   actor_customer_id, "deposit", account_number)

            self._guard_owner(actor_customer_id, account,
                              "You don't have permission to deposit to this account", "deposit")

            if not account.is_active:
                raise self._reject(
                    ForbiddenError(f"Cannot deposit to {account.status.value} account"),
                    actor_customer_id, "deposit", account_number
                )

            money = self._to_money(amount, account.currency)
            self._check_narration(narration)

            balance_before = account.balance
            account = self.accounts.apply_delta(account, money)
            transaction = self.transactions.append(
                TransactionType.DEPOSIT,
                TransactionCategory.CREDIT,
                amount=money,
                balance_after=account.balance,
                to_account_id=account.id,
                narration=narration
            )

        self._log("info", "Deposit completed", actor_customer_id, "deposit",
                  {"account_number": account_number, "reference": transaction.reference,
                   "balance_after": account.balance.to_string()})

        return DepositResult(
            account=account,
            balance_before=balance_before,
            balance_after=account.balance,
            transaction=transaction
        )

    def withdraw(
        self,
        actor_customer_id: str,
        account_number: str,
        amount: AmountLike,
        narration: Optional[str] = None
    ) -> WithdrawResult:
        """
        Debit an account owned by the actor

        Raises:
            NotFoundError: Account does not exist
            ForbiddenError: Actor is not the owner, or the account is not ACTIVE
            BadRequestError: Amount is not positive, or exceeds the balance
        """
        self._log("info", "Withdrawal requested", actor_customer_id, "withdraw",
                  {"account_number": account_number, "amount": str(amount)})

        with self.storage.atomic():
            account = self._lock_by_number(account_number)
            if account is None:
                raise self._reject(NotFoundError("Account not found"),
                                   actor_customer_id, "withdraw", account_number)

            self._guard_owner(actor_customer_id, account,
                              "You don't have permission to withdraw from this account", "withdraw")

            if not account.is_active:
                raise self._reject(
                    ForbiddenError(f"Cannot withdraw from {account.status.value} account"),
                    actor_customer_id, "withdraw", account_number
                )

            money = self._to_money(amount, account.currency)
            self._check_narration(narration)

            if account.balance < money:
                raise self._reject(BadRequestError("Insufficient balance"),
                                   actor_customer_id, "withdraw", account_number)

            balance_before = account.balance
            account = self.accounts.apply_delta(account, -money)
            transaction = self.transactions.append(
                TransactionType.WITHDRAWAL,
                TransactionCategory.DEBIT,
                amount=money,
                balance_after=account.balance,
                from_account_id=account.id,
                narration=narration
            )
            customer = self.customers.get_customer(account.customer_id)

        self._log("info", "Withdrawal completed", actor_customer_id, "withdraw",
                  {"account_number": account_number, "reference": transaction.reference,
                   "balance_after": account.balance.to_string()})

        return WithdrawResult(
            account=account,
            customer=customer,
            balance_before=balance_before,
            balance_after=account.balance,
            transaction=transaction
        )

    def transfer(
        self,
        actor_customer_id: str,
        from_account_number: str,
        to_account_number: str,
        amount: AmountLike,
        narration: Optional[str] = None
    ) -> TransferResult:
        """
        Move money from an account owned by the actor to any active account

        Both legs share one transfer reference and commit together. Rows are
        locked in ascending account-id order.

        Raises:
            NotFoundError: Sender or recipient does not exist
            ForbiddenError: Actor does not own the sender, or either side is not ACTIVE
            BadRequestError: Insufficient balance, same account, currency mismatch,
                or a non-positive amount
        """
        extra = {"from_account_number": from_account_number,
                 "to_account_number": to_account_number, "amount": str(amount)}
        self._log("info", "Transfer requested", actor_customer_id, "transfer", extra)

        with self.storage.atomic():
            sender_row = self.accounts.get_by_number(from_account_number)
            if sender_row is None:
                raise self._reject(NotFoundError("Sender account not found"),
                                   actor_customer_id, "transfer", from_account_number)
            receiver_row = self.accounts.get_by_number(to_account_number)
            if receiver_row is None:
                raise self._reject(NotFoundError("Recipient account not found"),
                                   actor_customer_id, "transfer", to_account_number)

            locked: Dict[str, Account] = {}
            for account_id in sorted({sender_row.id, receiver_row.id}):
                locked[account_id] = self.accounts.lock_for_update(account_id)
            sender = locked[sender_row.id]
            receiver = locked[receiver_row.id]

            self._guard_owner(actor_customer_id, sender,
                              "You don't have permission to transfer from this account", "transfer")

            if not (sender.is_active and receiver.is_active):
                raise self._reject(ForbiddenError("One of the accounts is not active"),
                                   actor_customer_id, "transfer", from_account_number)

            money = self._to_money(amount, sender.currency)
            self._check_narration(narration)

            if sender.balance < money:
                raise self._reject(BadRequestError("Insufficient balance"),
                                   actor_customer_id, "transfer", from_account_number)

            if sender.account_number == receiver.account_number:
                raise self._reject(BadRequestError("Cannot transfer to the same account"),
                                   actor_customer_id, "transfer", from_account_number)

            if sender.currency != receiver.currency:
                raise self._reject(
                    BadRequestError("Cannot transfer between accounts with different currencies"),
                    actor_customer_id, "transfer", from_account_number
                )

            sender_before = sender.balance
            receiver_before = receiver.balance
            sender = self.accounts.apply_delta(sender, -money)
            receiver = self.accounts.apply_delta(receiver, money)

            transfer_reference = generate_transfer_reference()
            sender_transaction = self.transactions.append(
                TransactionType.TRANSFER_OUT,
                TransactionCategory.DEBIT,
                amount=money,
                balance_after=sender.balance,
                from_account_id=sender.id,
                to_account_id=receiver.id,
                narration=narration,
                transfer_reference=transfer_reference
            )
            receiver_transaction = self.transactions.append(
                TransactionType.TRANSFER_IN,
                TransactionCategory.CREDIT,
                amount=money,
                balance_after=receiver.balance,
                from_account_id=sender.id,
                to_account_id=receiver.id,
                narration=narration,
                transfer_reference=transfer_reference
            )
            sender_customer = self.customers.get_customer(sender.customer_id)
            receiver_customer = self.customers.get_customer(receiver.customer_id)

        self._log("info", "Transfer completed", actor_customer_id, "transfer",
                  dict(extra, transfer_reference=transfer_reference, amount=money.to_string()))

        return TransferResult(
            transfer_reference=transfer_reference,
            amount=money,
            sender=TransferLeg(
                account=sender,
                customer=sender_customer,
                balance_before=sender_before,
                balance_after=sender.balance,
                transaction=sender_transaction
            ),
            receiver=TransferLeg(
                account=receiver,
                customer=receiver_customer,
                balance_before=receiver_before,
                balance_after=receiver.balance,
                transaction=receiver_transaction
            )
        )

    def get_transaction_by_id(self, actor_customer_id: str, transaction_id: str) -> Transaction:
        """
        Fetch one transaction visible to the actor

        A transaction the actor cannot see is reported as not found, never as
        forbidden.
        """
        if not transaction_id:
            raise BadRequestError("id is required")

        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            raise self._reject(NotFoundError("transaction not found"),
                               actor_customer_id, "get_transaction", transaction_id)

        try:
            require_transaction_visible(
                actor_customer_id,
                self._owner_of(transaction.from_account_id),
                self._owner_of(transaction.to_account_id)
            )
        except NotFoundError as e:
            raise self._reject(e, actor_customer_id, "get_transaction", transaction_id)
        return transaction

    def list_transactions(
        self,
        actor_customer_id: str,
        account_number: str,
        page: Any = None,
        limit: Any = None
    ) -> TransactionPage:
        """Page through the transactions touching an account, newest first"""
        page, limit = parse_page_params(page, limit)

        account = self.accounts.get_by_number(account_number)
        if account is None:
            raise self._reject(NotFoundError("Account not found"),
                               actor_customer_id, "list_transactions", account_number)

        self._guard_owner(actor_customer_id, account,
                          "You don't have access to this account", "list_transactions")

        transactions, total = self.transactions.page_for_account(
            account.id, page_offset(page, limit), limit
        )
        return TransactionPage(
            transactions=transactions,
            page_info=PageInfo.build(page, limit, total)
        )

    def reconcile(self, account_number: str) -> ReconciliationReport:
        """Compare an account's stored balance with the sum of its ledger entries"""
        with self.storage.atomic():
            account = self._lock_by_number(account_number)
            if account is None:
                raise NotFoundError("Account not found")
            entries = self.transactions.entries_for_account(account.id)
            derived = self.transactions.derived_balance(account.id, account.currency)

        report = ReconciliationReport(
            account_number=account.account_number,
            stored_balance=account.balance,
            derived_balance=derived,
            entry_count=len(entries)
        )
        if not report.is_balanced:
            self._log("error", "Ledger out of balance", None, "reconcile",
                      {"account_number": account_number,
                       "stored": report.stored_balance.to_string(),
                       "derived": report.derived_balance.to_string()})
        return report

    def _lock_by_number(self, account_number: str) -> Optional[Account]:
        found = self.accounts.get_by_number(account_number)
        if found is None:
            return None
        return self.accounts.lock_for_update(found.id)

    def _owner_of(self, account_id: Optional[str]) -> Optional[str]:
        if not account_id:
            return None
        account = self.accounts.get(account_id)
        return account.customer_id if account else None

    def _guard_owner(self, actor_id: str, account: Account, message: str, action: str) -> None:
        try:
            require_owner(actor_id, account.customer_id, message)
        except ForbiddenError as e:
            raise self._reject(e, actor_id, action, account.account_number)

    def _to_money(self, amount: AmountLike, currency: Currency) -> Money:
        try:
            value = to_decimal(amount)
        except (ValueError, TypeError):
            raise BadRequestError("Amount must be a valid number")
        if value <= 0:
            raise BadRequestError("Amount must be greater than zero")
        if value >= MAX_AMOUNT:
            raise BadRequestError("Amount is too large")
        if not fits_precision(value, currency.precision):
            raise BadRequestError(
                f"Amount cannot have more than {currency.precision} decimal places "
                f"for {currency.code}"
            )
        return Money(value, currency)


    @staticmethod
    def _check_narration(narration: Optional[str]) -> None:
        if narration is not None and len(narration) > MAX_NARRATION_LENGTH:
            raise BadRequestError("Narration cannot exceed 255 characters")

    def _reject(self, error: LedgerError, actor_id: str, action: str, resource: str) -> LedgerError:
        """Log a failed precondition and hand the error back for raising"""
        self._log("warning", error.message, actor_id, action, {"resource": resource})
        return error

    def _log(self, level: str, message: str, actor_id: Optional[str], action: str,
             extra: Optional[dict] = None) -> None:
        log_action(self.logger, level, message, user_id=actor_id, action=action,
                   resource="ledger", extra=extra)
