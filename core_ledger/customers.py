"""
Customer Management Module

Stores customer profiles and credentials. Customers own accounts; the ledger
only needs them to establish who may act on which account.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Optional
import re
import uuid

from .storage import StorageInterface, StorageRecord
from .logging_config import get_logger, log_action


_EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


@dataclass
class Customer(StorageRecord):
    """
    Customer profile and credentials
    """
    first_name: str
    last_name: str
    email: str
    password_hash: str
    password_salt: str
    is_active: bool = True
    is_verified: bool = True

    def __post_init__(self):
        self.email = self.email.strip().lower()
        if not _EMAIL_PATTERN.match(self.email):
            raise ValueError("Invalid email format")

    @property
    def full_name(self) -> str:
        """Get customer's full name"""
        return f"{self.first_name} {self.last_name}"


class CustomerManager:
    """
    Manages customer records
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "customers"
        self.logger = get_logger("ledger.customers")
        self.storage.register_table(self.table_name, unique_fields=("email",))

    def create_customer(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password_hash: str,
        password_salt: str
    ) -> Customer:
        """
        Create a new customer

        Args:
            first_name: Customer's first name
            last_name: Customer's last name
            email: Customer's email address (stored lower-case)
            password_hash: Hashed password
            password_salt: Salt used for the hash

        Returns:
            Created Customer object

        Raises:
            StorageConflictError: If the email is already registered
        """
        now = datetime.now(timezone.utc)

        customer = Customer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            first_name=first_name,
            last_name=last_name,
            email=email,
            password_hash=password_hash,
            password_salt=password_salt
        )

        self.storage.insert(self.table_name, customer.id, customer.to_dict())

        log_action(
            self.logger, "info", f"Customer registered: {customer.email}",
            user_id=customer.id, action="register", resource="customer"
        )
        return customer

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID"""
        customer_dict = self.storage.load(self.table_name, customer_id)
        if customer_dict:
            return self._customer_from_dict(customer_dict)
        return None

    def get_customer_by_email(self, email: str) -> Optional[Customer]:
        """Get customer by email address"""
        customers = self.storage.find(self.table_name, {"email": email.strip().lower()})
        if customers:
            return self._customer_from_dict(customers[0])
        return None

    def _customer_from_dict(self, data: Dict) -> Customer:
        """Convert dictionary to Customer"""
        return Customer(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            first_name=data['first_name'],
            last_name=data['last_name'],
            email=data['email'],
            password_hash=data['password_hash'],
            password_salt=data['password_salt'],
            is_active=data.get('is_active', True),
            is_verified=data.get('is_verified', True)
        )
