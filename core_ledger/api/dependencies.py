"""
System container and request dependencies
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..accounts import Account, AccountStore
from ..auth import AuthService
from ..config import LedgerConfig
from ..currency import Currency
from ..customers import Customer, CustomerManager
from ..engine import LedgerEngine
from ..errors import NotFoundError, UnauthorizedError
from ..guard import owns
from ..security import TokenService
from ..storage import StorageInterface, create_storage
from ..transactions import TransactionLedger


class LedgerSystem:
    """Ledger components wired to one storage backend"""

    def __init__(self, config: LedgerConfig, storage: Optional[StorageInterface] = None):
        self.config = config

        # Initialize storage
        self.storage = storage or create_storage(
            config.database_url, config.database_pool_min, config.database_pool_max
        )

        # Initialize core components
        self.customers = CustomerManager(self.storage)
        self.accounts = AccountStore(self.storage)
        self.transactions = TransactionLedger(self.storage)
        self.engine = LedgerEngine(
            self.storage, self.accounts, self.transactions, self.customers
        )
        self.default_currency = Currency.from_code(config.default_currency)
        self.tokens = TokenService(
            access_secret=config.jwt_access_secret,
            refresh_secret=config.jwt_refresh_secret,
            algorithm=config.jwt_algorithm,
            access_expires_hours=config.access_token_expires_hours,
            refresh_expires_hours=config.refresh_token_expires_hours
        )
        self.auth = AuthService(
            self.storage, self.customers, self.accounts, self.tokens,
            default_currency=self.default_currency
        )

    def close(self) -> None:
        self.storage.close()


# JWT Security
security = HTTPBearer(auto_error=False)


# Dependency to get the ledger system
def get_system(request: Request) -> LedgerSystem:
    return request.app.state.system


def get_current_customer(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: LedgerSystem = Depends(get_system)
) -> Customer:
    """Dependency that validates the bearer token and returns the customer"""
    if not credentials:
        raise UnauthorizedError("Token required")
    return system.auth.authenticate(credentials.credentials)


def get_owned_account(
    account_number: str,
    customer: Customer = Depends(get_current_customer),
    system: LedgerSystem = Depends(get_system)
) -> Account:
    """Account from the path, reported missing unless the caller owns it"""
    account = system.accounts.get_by_number(account_number)
    if account is None or not owns(customer.id, account.customer_id):
        raise NotFoundError("Account not found or unauthorized.")
    return account
