"""
Integration tests for the Core Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from core_ledger.api import create_app
from core_ledger.config import LedgerConfig
from core_ledger.storage import InMemoryStorage, StorageConflictError, StorageUnavailableError


PASSWORD = "Passw0rd!"


def make_config(**overrides):
    settings = dict(
        environment="test",
        database_url="memory://",
        enable_rate_limiting=False,
        jwt_access_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        log_level="WARNING",
    )
    settings.update(overrides)
    return LedgerConfig(**settings)


@pytest.fixture
def app():
    return create_app(make_config(), storage=InMemoryStorage())


@pytest.fixture
def client(app):
    """Test client with the app lifespan running"""
    with TestClient(app) as client:
        yield client


def register(client, first_name, email):
    r = client.post("/api/v1/auth/register", json={
        "firstName": first_name,
        "lastName": "Tester",
        "email": email,
        "password": PASSWORD,
        "confirmPassword": PASSWORD
    })
    assert r.status_code == 201, r.text
    return r.json()


def login(client, email):
    r = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert r.status_code == 200, r.text
    return r.json()


def auth_headers(client, first_name, email):
    """Register and log in, returning (headers, account number)"""
    registration = register(client, first_name, email)
    tokens = login(client, email)
    headers = {"Authorization": f"Bearer {tokens['accessToken']}"}
    return headers, registration["account"]["accountNumber"]


class TestServiceEndpoints:
    """Root, ping, health and fallback handlers"""

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "Core Ledger API"
        assert data["endpoints"]["transactions"] == "/api/v1/transaction"

    def test_ping(self, client):
        r = client.get("/ping")
        assert r.status_code == 200
        assert r.text == "PONG"

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {
            "status": "healthy",
            "service": "core_ledger_api",
            "environment": "test",
            "version": "1.0.0"
        }

    def test_unknown_path(self, client):
        r = client.get("/api/v1/nowhere")
        assert r.status_code == 404
        assert r.json() == {"success": False, "message": "Can't find /api/v1/nowhere on this server!"}

    def test_security_headers(self, client):
        r = client.get("/health")
        assert r.headers["X-Content-Type-Options"] == "nosniff"
        assert r.headers["X-Frame-Options"] == "DENY"


class TestAuthFlow:

    def test_register(self, client):
        data = register(client, "Alice", "Alice@Example.com")

        assert data["success"] is True
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["isActive"] is True
        assert data["user"]["isVerified"] is True
        account = data["account"]
        assert len(account["accountNumber"]) == 10
        assert account["accountType"] == "SAVINGS"
        assert account["status"] == "ACTIVE"
        assert account["balance"] == 0
        assert account["currency"] == "NGN"

    def test_register_duplicate(self, client):
        register(client, "Alice", "alice@example.com")
        r = client.post("/api/v1/auth/register", json={
            "firstName": "Alice", "lastName": "Again", "email": "alice@example.com",
            "password": PASSWORD, "confirmPassword": PASSWORD
        })
        assert r.status_code == 400
        assert r.json()["message"] == "Customer with this email already exists"

    def test_register_validation(self, client):
        r = client.post("/api/v1/auth/register", json={
            "firstName": "Alice", "lastName": "Smith", "email": "alice@example.com",
            "password": PASSWORD, "confirmPassword": "Passw0rd?"
        })
        assert r.status_code == 400
        body = r.json()
        assert body["success"] is False
        assert body["validation"] is True
        assert body["message"] == "Passwords do not match"

    def test_register_strips_markup_from_names(self, client):
        r = client.post("/api/v1/auth/register", json={
            "firstName": "<i>Alice</i>", "lastName": "Smith<script>steal()</script>",
            "email": "alice@example.com", "password": PASSWORD, "confirmPassword": PASSWORD
        })
        assert r.status_code == 201
        assert r.json()["user"]["firstName"] == "Alice"
        assert r.json()["user"]["lastName"] == "Smith"

        r = client.post("/api/v1/auth/register", json={
            "firstName": "<b></b>", "lastName": "Smith",
            "email": "bob@example.com", "password": PASSWORD, "confirmPassword": PASSWORD
        })
        assert r.status_code == 400
        assert r.json()["field"] == "firstName"


    def test_register_weak_password(self, client):
        r = client.post("/api/v1/auth/register", json={
            "firstName": "Alice", "lastName": "Smith", "email": "alice@example.com",
            "password": "password1", "confirmPassword": "password1"
        })
        assert r.status_code == 400
        assert r.json()["message"] == "Password must contain at least one uppercase letter"
        assert r.json()["field"] == "password"

    def test_login_and_refresh(self, client):
        account_number = register(client, "Alice", "alice@example.com")["account"]["accountNumber"]
        tokens = login(client, "alice@example.com")
        assert tokens["message"] == "User logged in successfully"
        assert tokens["user"]["email"] == "alice@example.com"

        r = client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert r.status_code == 200
        access = r.json()["accessToken"]

        r = client.get(f"/api/v1/customers/{account_number}",
                       headers={"Authorization": f"Bearer {access}"})
        assert r.status_code == 200

        r = client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["accessToken"]})
        assert r.status_code == 401

    def test_login_failures(self, client):
        register(client, "Alice", "alice@example.com")

        r = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "Wr0ngPass!"})
        assert r.status_code == 403
        assert r.json()["message"] == "Invalid email or password"

        r = client.post("/api/v1/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
        assert r.status_code == 404

    def test_missing_token(self, client):
        r = client.post("/api/v1/transaction/deposit", json={"accountNumber": "1234567890", "amount": 10})
        assert r.status_code == 401
        assert r.json() == {"success": False, "message": "Token required"}

    def test_invalid_token(self, client):
        r = client.post("/api/v1/transaction/deposit",
                        json={"accountNumber": "1234567890", "amount": 10},
                        headers={"Authorization": "Bearer garbage"})
        assert r.status_code == 401
        assert r.json()["message"] == "Invalid token"


class TestMoneyMovement:
    """Deposit, withdraw and transfer over HTTP"""

    @pytest.fixture(autouse=True)
    def customers(self, client):
        self.client = client
        self.alice, self.alice_account = auth_headers(client, "Alice", "alice@example.com")
        self.bob, self.bob_account = auth_headers(client, "Bob", "bob@example.com")

    def deposit(self, amount, headers=None, account=None):
        return self.client.post("/api/v1/transaction/deposit", json={
            "accountNumber": account or self.alice_account,
            "amount": amount,
            "narration": "Top up"
        }, headers=headers or self.alice)

    def test_deposit(self):
        r = self.deposit(500)
        assert r.status_code == 200
        data = r.json()
        assert data["message"] == "Deposit successful"
        assert data["account"] == {
            "accountNumber": self.alice_account,
            "balanceBefore": 0,
            "balanceAfter": 500,
            "currency": "NGN"
        }
        assert data["transaction"]["type"] == "DEPOSIT"
        assert data["transaction"]["category"] == "CREDIT"
        assert data["transaction"]["amount"] == 500
        assert data["transaction"]["status"] == "SUCCESS"
        assert data["transaction"]["reference"].startswith("TRF|")

    def test_fractional_amounts(self):
        self.deposit(0.1)
        r = self.deposit(0.2)
        assert r.json()["account"]["balanceAfter"] == 0.3

    def test_deposit_validation(self):
        r = self.client.post("/api/v1/transaction/deposit",
                             json={"accountNumber": "123", "amount": 10}, headers=self.alice)
        assert r.status_code == 400
        assert r.json()["message"] == "Account number must be exactly 10 characters long."
        assert r.json()["field"] == "accountNumber"

        r = self.deposit(-5)
        assert r.status_code == 400
        assert r.json()["message"] == "Amount must be a positive number."

    def test_huge_amount_is_rejected(self):
        r = self.deposit(1e30)
        assert r.status_code == 400
        assert r.json()["message"] == "Amount is too large."
        assert r.json()["field"] == "amount"

        r = self.client.post("/api/v1/transaction/transfer", json={
            "fromAccountNumber": self.alice_account,
            "toAccountNumber": self.bob_account,
            "amount": "1E+30"
        }, headers=self.alice)
        assert r.status_code == 400
        assert r.json()["message"] == "Amount is too large."

    def test_sub_unit_amount_is_rejected(self):
        r = self.deposit(100.505)
        assert r.status_code == 400
        assert r.json()["message"] == "Amount cannot have more than 2 decimal places."

        r = self.deposit(0.004)
        assert r.status_code == 400
        assert r.json()["message"] == "Amount cannot have more than 2 decimal places."

        r = self.client.get(f"/api/v1/customers/{self.alice_account}", headers=self.alice)
        assert r.json()["account"]["balance"] == 0

    def test_narration_markup_is_stripped(self):
        r = self.client.post("/api/v1/transaction/deposit", json={
            "accountNumber": self.alice_account,
            "amount": 25,
            "narration": "<b>Rent</b><script>alert(1)</script> javascript:void(0)"
        }, headers=self.alice)
        assert r.status_code == 200
        transaction = r.json()["transaction"]
        assert transaction["narration"] == "Rent void(0)"

        r = self.client.get(f"/api/v1/transaction/{transaction['id']}", headers=self.alice)
        assert r.json()["transaction"]["narration"] == "Rent void(0)"


    def test_deposit_to_foreign_account(self):
        r = self.deposit(10, account=self.bob_account)
        assert r.status_code == 403
        assert r.json()["message"] == "You don't have permission to deposit to this account"

    def test_deposit_to_missing_account(self):
        r = self.deposit(10, account="9999999999")
        assert r.status_code == 404
        assert r.json()["message"] == "Account not found"

    def test_withdraw(self):
        self.deposit(100)
        r = self.client.post("/api/v1/transaction/withdraw", json={
            "accountNumber": self.alice_account, "amount": 40
        }, headers=self.alice)
        assert r.status_code == 200
        data = r.json()
        assert data["message"] == "Withdrawal successful"
        assert data["account"]["balanceBefore"] == 100
        assert data["account"]["balanceAfter"] == 60
        assert data["account"]["customer"]["email"] == "al***@example.com"
        assert data["transaction"]["type"] == "WITHDRAWAL"
        assert data["transaction"]["balanceAfter"] == 60

    def test_withdraw_insufficient(self):
        self.deposit(10)
        r = self.client.post("/api/v1/transaction/withdraw", json={
            "accountNumber": self.alice_account, "amount": 11
        }, headers=self.alice)
        assert r.status_code == 400
        assert r.json() == {"success": False, "message": "Insufficient balance"}

    def test_transfer(self):
        self.deposit(1000)
        r = self.client.post("/api/v1/transaction/transfer", json={
            "fromAccountNumber": self.alice_account,
            "toAccountNumber": self.bob_account,
            "amount": 250,
            "narration": "Dinner"
        }, headers=self.alice)
        assert r.status_code == 200
        transfer = r.json()["transfer"]

        assert transfer["transferRef"].startswith("Trx|")
        assert transfer["amount"] == 250
        assert transfer["sender"]["balanceBefore"] == 1000
        assert transfer["sender"]["balanceAfter"] == 750
        assert transfer["sender"]["email"] == "al***@example.com"
        assert transfer["receiver"]["balanceAfter"] == 250
        assert transfer["receiver"]["customerName"] == "Bob Tester"
        assert transfer["receiver"]["email"] == "bo***@example.com"
        assert transfer["transactions"]["sender"]["type"] == "TRANSFER_OUT"
        assert transfer["transactions"]["receiver"]["type"] == "TRANSFER_IN"
        assert transfer["transactions"]["receiver"]["transferReference"] == transfer["transferRef"]

    def test_transfer_to_self(self):
        self.deposit(100)
        r = self.client.post("/api/v1/transaction/transfer", json={
            "fromAccountNumber": self.alice_account,
            "toAccountNumber": self.alice_account,
            "amount": 10
        }, headers=self.alice)
        assert r.status_code == 400
        assert r.json()["message"] == "Cannot transfer to the same account"

    def test_transfer_validation(self):
        r = self.client.post("/api/v1/transaction/transfer", json={
            "fromAccountNumber": self.alice_account,
            "toAccountNumber": self.bob_account,
            "amount": 0
        }, headers=self.alice)
        assert r.status_code == 400
        assert r.json()["message"] == "Transfer amount must be greater than zero"


class TestTransactionQueries:

    @pytest.fixture(autouse=True)
    def history(self, client):
        self.client = client
        self.alice, self.alice_account = auth_headers(client, "Alice", "alice@example.com")
        self.bob, self.bob_account = auth_headers(client, "Bob", "bob@example.com")
        self.carol, _ = auth_headers(client, "Carol", "carol@example.com")

        for amount in (100, 200, 300):
            client.post("/api/v1/transaction/deposit",
                        json={"accountNumber": self.alice_account, "amount": amount},
                        headers=self.alice)
        r = client.post("/api/v1/transaction/transfer", json={
            "fromAccountNumber": self.alice_account,
            "toAccountNumber": self.bob_account,
            "amount": 50
        }, headers=self.alice)
        self.transfer_leg = r.json()["transfer"]["transactions"]["sender"]

    def test_list_paginated(self):
        r = self.client.get(f"/api/v1/transaction/account/{self.alice_account}?page=1&limit=2",
                            headers=self.alice)
        assert r.status_code == 200
        data = r.json()
        assert [t["type"] for t in data["results"]] == ["TRANSFER_IN", "TRANSFER_OUT"]
        assert data["pagination"] == {
            "currentPage": 1, "totalPages": 3, "totalItems": 5, "limit": 2, "hasMore": True
        }

        r = self.client.get(f"/api/v1/transaction/account/{self.alice_account}?page=3&limit=2",
                            headers=self.alice)
        data = r.json()
        assert [t["amount"] for t in data["results"]] == [100]
        assert data["pagination"]["hasMore"] is False

    def test_list_bad_params_use_defaults(self):
        r = self.client.get(f"/api/v1/transaction/account/{self.alice_account}?page=abc&limit=0",
                            headers=self.alice)
        assert r.status_code == 200
        assert r.json()["pagination"]["limit"] == 20

    def test_list_huge_params_are_clamped(self):
        r = self.client.get(
            f"/api/v1/transaction/account/{self.alice_account}"
            "?page=99999999999999999999&limit=5000",
            headers=self.alice
        )
        assert r.status_code == 200
        data = r.json()
        assert data["results"] == []
        assert data["pagination"]["currentPage"] == 1000000
        assert data["pagination"]["limit"] == 100


    def test_list_foreign_account(self):
        r = self.client.get(f"/api/v1/transaction/account/{self.alice_account}", headers=self.carol)
        assert r.status_code == 403
        assert r.json()["message"] == "You don't have access to this account"

    def test_get_by_id(self):
        r = self.client.get(f"/api/v1/transaction/{self.transfer_leg['id']}", headers=self.bob)
        assert r.status_code == 200
        data = r.json()
        assert data["message"] == "Returned transaction with id successfully"
        assert data["transaction"]["reference"] == self.transfer_leg["reference"]

    def test_get_by_id_hidden_from_stranger(self):
        r = self.client.get(f"/api/v1/transaction/{self.transfer_leg['id']}", headers=self.carol)
        assert r.status_code == 404
        assert r.json()["message"] == "transaction with requested id not found"

    def test_get_missing(self):
        r = self.client.get("/api/v1/transaction/does-not-exist", headers=self.alice)
        assert r.status_code == 404
        assert r.json()["message"] == "transaction not found"


class TestCustomerAccounts:

    @pytest.fixture(autouse=True)
    def owner(self, client):
        self.client = client
        self.alice, self.alice_account = auth_headers(client, "Alice", "alice@example.com")
        self.bob, _ = auth_headers(client, "Bob", "bob@example.com")

    def test_account_details(self):
        r = self.client.get(f"/api/v1/customers/{self.alice_account}", headers=self.alice)
        assert r.status_code == 200
        assert r.json()["message"] == "Account details retrieved successfully"
        assert r.json()["account"]["accountNumber"] == self.alice_account

    def test_foreign_account_is_not_found(self):
        r = self.client.get(f"/api/v1/customers/{self.alice_account}", headers=self.bob)
        assert r.status_code == 404
        assert r.json()["message"] == "Account not found or unauthorized."

    def test_freeze_blocks_deposit(self):
        r = self.client.put(f"/api/v1/customers/{self.alice_account}",
                            json={"status": "FROZEN", "accountType": "HIDA"}, headers=self.alice)
        assert r.status_code == 200
        account = r.json()["account"]
        assert account["status"] == "FROZEN"
        assert account["accountType"] == "HIDA"
        assert "id" in account and "createdAt" in account

        r = self.client.post("/api/v1/transaction/deposit",
                             json={"accountNumber": self.alice_account, "amount": 10},
                             headers=self.alice)
        assert r.status_code == 403
        assert r.json()["message"] == "Cannot deposit to FROZEN account"

    def test_update_requires_a_field(self):
        r = self.client.put(f"/api/v1/customers/{self.alice_account}", json={}, headers=self.alice)
        assert r.status_code == 400
        assert r.json()["message"] == "At least one field (accountType or status) must be provided."

    def test_close_twice(self):
        r = self.client.delete(f"/api/v1/customers/{self.alice_account}", headers=self.alice)
        assert r.status_code == 200
        assert r.json()["account"]["status"] == "CLOSED"

        r = self.client.delete(f"/api/v1/customers/{self.alice_account}", headers=self.alice)
        assert r.status_code == 400
        assert r.json()["message"] == "Account is already closed"

        r = self.client.put(f"/api/v1/customers/{self.alice_account}",
                            json={"status": "ACTIVE"}, headers=self.alice)
        assert r.status_code == 400
        assert r.json()["message"] == "Cannot update a closed account"

    def test_sub_account(self):
        r = self.client.post("/api/v1/customers/sub-account",
                             json={"accountType": "CURRENT", "currency": "usd"}, headers=self.alice)
        assert r.status_code == 201
        data = r.json()
        assert data["message"] == "New account created successfully"
        assert data["account"]["currency"] == "USD"
        assert data["account"]["accountNumber"] != self.alice_account

    def test_sub_account_unknown_currency(self):
        r = self.client.post("/api/v1/customers/sub-account",
                             json={"accountType": "CURRENT", "currency": "XYZ"}, headers=self.alice)
        assert r.status_code == 400
        assert r.json()["field"] == "currency"
        assert r.json()["message"] == "Unsupported currency: XYZ"


class TestErrorHandling:
    """Storage failures and unexpected errors reach clients in a safe shape"""

    def run_failing_deposit(self, environment, error, monkeypatch):
        app = create_app(make_config(environment=environment), storage=InMemoryStorage())
        with TestClient(app, raise_server_exceptions=False) as client:
            headers, account_number = auth_headers(client, "Alice", "alice@example.com")

            def failing_deposit(**kwargs):
                raise error

            monkeypatch.setattr(app.state.system.engine, "deposit", failing_deposit)
            return client.post("/api/v1/transaction/deposit",
                               json={"accountNumber": account_number, "amount": 10},
                               headers=headers)

    def test_lost_connection_in_production(self, monkeypatch):
        r = self.run_failing_deposit(
            "production", StorageUnavailableError("server closed the connection"), monkeypatch
        )
        assert r.status_code == 500
        assert r.json() == {"success": False, "message": "Connection was lost. Please try again later."}

    def test_lost_connection_in_development(self, monkeypatch):
        r = self.run_failing_deposit(
            "development", StorageUnavailableError("server closed the connection"), monkeypatch
        )
        assert r.status_code == 500
        body = r.json()
        assert body["message"] == "server closed the connection"
        assert body["details"] == {"original_error": "server closed the connection"}
        assert "StorageUnavailableError" in body["stack"]

    def test_conflict(self, monkeypatch):
        r = self.run_failing_deposit(
            "production", StorageConflictError("duplicate key", field="email"), monkeypatch
        )
        assert r.status_code == 409
        assert r.json()["message"] == "A record with this email already exists."

    def test_unexpected_error(self, monkeypatch):
        r = self.run_failing_deposit("production", RuntimeError("kaboom"), monkeypatch)
        assert r.status_code == 500
        assert r.json() == {"success": False, "message": "Something went wrong. Please try again later."}


class TestRateLimiting:

    def test_auth_bucket(self):
        app = create_app(make_config(enable_rate_limiting=True, auth_rate_limit=2),
                         storage=InMemoryStorage())
        with TestClient(app) as client:
            payload = {"email": "nobody@example.com", "password": PASSWORD}
            statuses = [client.post("/api/v1/auth/login", json=payload).status_code for _ in range(3)]

            assert statuses == [404, 404, 429]
            r = client.post("/api/v1/auth/login", json=payload)
            assert r.json() == {
                "success": False,
                "message": "Too many attempts from this IP, please try again later."
            }
            # Other routes use their own bucket
            assert client.get("/health").status_code == 200
