"""
Authentication Module

Customer registration, login and token refresh. Registration creates the
customer together with a zero-balance SAVINGS account in one unit of work.
"""

from dataclasses import dataclass
from typing import Dict

from .accounts import Account, AccountStore, AccountType
from .currency import Currency
from .customers import Customer, CustomerManager
from .errors import (
    BadRequestError, ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
)
from .logging_config import get_logger, log_action
from .security import (
    TokenService, generate_salt, hash_password, password_problems, verify_password
)
from .storage import StorageInterface


@dataclass
class Registration:
    customer: Customer
    account: Account


@dataclass
class LoginResult:
    customer: Customer
    access_token: str
    refresh_token: str


class AuthService:
    """Registers and authenticates customers"""

    def __init__(
        self,
        storage: StorageInterface,
        customers: CustomerManager,
        accounts: AccountStore,
        tokens: TokenService,
        default_currency: Currency = Currency.NGN
    ):
        self.storage = storage
        self.customers = customers
        self.accounts = accounts
        self.tokens = tokens
        self.default_currency = default_currency
        self.logger = get_logger("ledger.auth")

    def register(self, first_name: str, last_name: str, email: str, password: str) -> Registration:
        """
        Create a customer and their first SAVINGS account

        Raises:
            ConflictError: Email registered but not verified
            BadRequestError: Email already registered, or weak password
        """
        problems = password_problems(password)
        if problems:
            raise BadRequestError(problems[0], field="password")

        existing = self.customers.get_customer_by_email(email)
        if existing:
            if not existing.is_verified:
                raise ConflictError("Account not verified, kindly login to verify")
            raise BadRequestError("Customer with this email already exists")

        salt = generate_salt()
        password_hash = hash_password(password, salt)

        with self.storage.atomic():
            customer = self.customers.create_customer(
                first_name=first_name,
                last_name=last_name,
                email=email,
                password_hash=password_hash,
                password_salt=salt
            )
            account = self.accounts.create_account(
                customer_id=customer.id,
                account_type=AccountType.SAVINGS,
                currency=self.default_currency
            )

        return Registration(customer=customer, account=account)

    def login(self, email: str, password: str) -> LoginResult:
        """
        Verify credentials and issue access and refresh tokens

        Raises:
            NotFoundError: Unknown email
            ForbiddenError: Blocked, unverified, or wrong password
        """
        customer = self.customers.get_customer_by_email(email)
        if not customer:
            raise NotFoundError("Customer not found")

        if not customer.is_active:
            raise ForbiddenError("Account is blocked, please contact support")

        if not customer.is_verified:
            raise ForbiddenError("Account not verified, kindly complete verification")

        if not verify_password(password, customer.password_hash, customer.password_salt):
            log_action(
                self.logger, "warning", "Failed login attempt",
                user_id=customer.id, action="login", resource="auth"
            )
            raise ForbiddenError("Invalid email or password")

        payload = self._token_payload(customer)
        log_action(
            self.logger, "info", "Customer logged in successfully",
            user_id=customer.id, action="login", resource="auth"
        )
        return LoginResult(
            customer=customer,
            access_token=self.tokens.issue_access_token(payload),
            refresh_token=self.tokens.issue_refresh_token(payload)
        )

    def refresh(self, refresh_token: str) -> str:
        """Exchange a refresh token for a new access token"""
        payload = self.tokens.verify_refresh_token(refresh_token)
        customer = self._active_customer(payload["id"])
        return self.tokens.issue_access_token(self._token_payload(customer))

    def authenticate(self, access_token: str) -> Customer:
        """
        Resolve a bearer token to an active customer

        Raises:
            UnauthorizedError: Invalid or expired token, unknown or inactive customer
        """
        payload = self.tokens.verify_access_token(access_token)
        return self._active_customer(payload["id"])

    def _active_customer(self, customer_id: str) -> Customer:
        customer = self.customers.get_customer(customer_id)
        if not customer:
            raise UnauthorizedError("User not found")
        if not customer.is_active:
            raise UnauthorizedError("User account is deactivated. Please contact support.")
        return customer

    @staticmethod
    def _token_payload(customer: Customer) -> Dict[str, str]:
        return {"id": customer.id, "email": customer.email, "name": customer.full_name}
