"""
Tests for the account access dependency

Covers the token, validity and account-number checks that gate
/account/{account_id}, and the responses produced when they fail.
"""

import pytest
from datetime import datetime, timezone, timedelta

import jwt
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from bank_api.accounts import Account
from bank_api.api import create_app, register_exception_handlers
from bank_api.auth import BankSystem, JWT_HEADER, require_account_access, parse_account_id
from bank_api.config import BankAPIConfig
from bank_api.errors import InvalidAccountID, StorageError
from bank_api.storage import InMemoryAccountStore
from bank_api.tokens import TokenValidator


SECRET = "s3cr3t"
DENIED = {"error": "permission denied"}


def _future() -> int:
    return int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp())


def _token(account_number, secret=SECRET, algorithm="HS256", expires_at=None) -> str:
    payload = {"AccountNumber": account_number, "ExpiresAt": expires_at or _future()}
    return jwt.encode(payload, secret, algorithm=algorithm)


class UnavailableStore(InMemoryAccountStore):
    """Store whose lookups fail as if the database were down"""

    def get_account_by_id(self, account_id):
        raise StorageError("connection refused")


def _seed_store(store, account_id=7, number=403138):
    """Insert accounts so that the target lands on ``account_id``"""
    for i in range(1, account_id):
        store.create_account(Account(first_name="Filler", last_name=str(i), number=i))
    return store.create_account(Account(first_name="Ada", last_name="Byron", number=number))


@pytest.fixture
def store():
    store = InMemoryAccountStore()
    _seed_store(store)
    return store


@pytest.fixture
def system(store):
    return BankSystem(
        config=BankAPIConfig(jwt_secret=SECRET, database_url="memory://"),
        store=store,
        tokens=TokenValidator(SECRET),
    )


@pytest.fixture
def calls():
    return []


@pytest.fixture
def client(system, calls):
    """App with a single protected route that records its invocations"""
    app = FastAPI()
    app.state.bank_system = system
    register_exception_handlers(app)

    @app.get("/account/{account_id}")
    def protected(account_id: str, account: Account = Depends(require_account_access)):
        calls.append((account_id, account.number))
        return {"ok": True}

    return TestClient(app)


class TestScenarios:
    """Request scenarios against account id 7 with number 403138"""

    def test_matching_token_invokes_handler(self, client, calls):
        """Test a valid token for the addressed account reaches the handler once"""
        r = client.get("/account/7", headers={JWT_HEADER: _token(403138)})

        assert r.status_code == 200
        assert r.json() == {"ok": True}
        assert calls == [("7", 403138)]

    def test_other_account_number_denied(self, client, calls):
        """Test a valid token for another account number is denied"""
        r = client.get("/account/7", headers={JWT_HEADER: _token(999999)})

        assert r.status_code == 403
        assert r.json() == DENIED
        assert calls == []

    def test_missing_header_denied(self, client, calls):
        """Test a request without the token header is denied"""
        r = client.get("/account/7")

        assert r.status_code == 403
        assert r.json() == DENIED
        assert calls == []

    def test_empty_header_denied(self, client, calls):
        """Test an empty token header is denied"""
        r = client.get("/account/7", headers={JWT_HEADER: ""})

        assert r.status_code == 403
        assert r.json() == DENIED
        assert calls == []

    def test_unknown_account_id_denied(self, client, calls):
        """Test a path id with no stored account gets an explicit 403"""
        r = client.get("/account/4242", headers={JWT_HEADER: _token(403138)})

        assert r.status_code == 403
        assert r.json() == DENIED
        assert calls == []

    def test_non_numeric_account_id_denied(self, client, calls):
        """Test a non-numeric path id is denied"""
        r = client.get("/account/seven", headers={JWT_HEADER: _token(403138)})

        assert r.status_code == 403
        assert r.json() == DENIED
        assert calls == []


class TestTokenFailures:
    """Token problems all collapse to the same 403"""

    @pytest.mark.parametrize("secret", ["wrong", "S3CR3T", "s3cr3t "])
    def test_foreign_secret_denied(self, client, calls, secret):
        """Test tokens signed with another key are denied"""
        r = client.get("/account/7", headers={JWT_HEADER: _token(403138, secret=secret)})

        assert r.status_code == 403
        assert r.json() == DENIED
        assert calls == []

    @pytest.mark.parametrize("header", [
        "eyJhbGciOiJub25lIiwidHlwIjoiSldUIn0",       # {"alg":"none","typ":"JWT"}
        "eyJhbGciOiJSUzI1NiIsInR5cCI6IkpXVCJ9",      # {"alg":"RS256","typ":"JWT"}
    ])
    def test_non_hmac_algorithm_denied(self, client, calls, header):
        """Test tokens declaring a non-HMAC algorithm are denied"""
        payload = _token(403138).split(".")[1]
        r = client.get("/account/7", headers={JWT_HEADER: f"{header}.{payload}.c2ln"})

        assert r.status_code == 403
        assert r.json() == DENIED
        assert calls == []

    def test_expired_token_denied(self, client, calls):
        """Test a token past its ExpiresAt is denied"""
        past = int((datetime.now(timezone.utc) - timedelta(seconds=5)).timestamp())
        r = client.get("/account/7", headers={JWT_HEADER: _token(403138, expires_at=past)})

        assert r.status_code == 403
        assert calls == []

    @pytest.mark.parametrize("value", ["403138", True, 403138.25])
    def test_claim_type_mismatch_denied(self, client, calls, value):
        """Test a non-integral AccountNumber claim is denied rather than crashing"""
        r = client.get("/account/7", headers={JWT_HEADER: _token(value)})

        assert r.status_code == 403
        assert r.json() == DENIED
        assert calls == []

    def test_garbage_token_denied(self, client, calls):
        """Test an undecodable token is denied"""
        r = client.get("/account/7", headers={JWT_HEADER: "garbage"})

        assert r.status_code == 403
        assert r.json() == DENIED

    def test_decision_is_repeatable(self, client, calls):
        """Test sending the same tokens twice gives the same outcome"""
        good = {JWT_HEADER: _token(403138)}
        bad = {JWT_HEADER: _token(403138, secret="other")}

        assert [client.get("/account/7", headers=good).status_code for _ in range(2)] == [200, 200]
        assert [client.get("/account/7", headers=bad).status_code for _ in range(2)] == [403, 403]
        assert len(calls) == 2


class TestStoreFailure:
    """A store outage must produce a response, never a dropped request"""

    def test_storage_error_returns_503(self, calls):
        """Test a failing store lookup yields 503 with an error body"""
        system = BankSystem(
            config=BankAPIConfig(jwt_secret=SECRET, database_url="memory://"),
            store=UnavailableStore(),
            tokens=TokenValidator(SECRET),
        )
        client = TestClient(create_app(system))

        r = client.get("/account/7", headers={JWT_HEADER: _token(403138)})

        assert r.status_code == 503
        assert r.json() == {"error": "storage unavailable"}


class TestParseAccountID:
    """Test path id conversion"""

    def test_numeric(self):
        assert parse_account_id("7") == 7

    def test_signed(self):
        assert parse_account_id("+7") == 7
        assert parse_account_id("-7") == -7

    def test_int64_bounds(self):
        assert parse_account_id(str(2 ** 63 - 1)) == 2 ** 63 - 1
        assert parse_account_id(str(-(2 ** 63))) == -(2 ** 63)

    @pytest.mark.parametrize("raw", [
        "", "7a", "seven", "1.5", "7_0", " 7 ", "7\n", "+", "٧",
        str(2 ** 63), "99999999999999999999",
    ])
    def test_invalid(self, raw):
        with pytest.raises(InvalidAccountID):
            parse_account_id(raw)


class TestStrictPathIDs:
    """Path ids that int() would accept but are not plain numbers"""

    @pytest.fixture
    def store(self):
        store = InMemoryAccountStore()
        _seed_store(store, account_id=70, number=403138)
        return store

    @pytest.mark.parametrize("path_id", ["7_0", "%2070%20", "٧٠"])
    def test_loose_integer_forms_denied(self, client, calls, path_id):
        """Test underscores, padding and non-ASCII digits never resolve to id 70"""
        r = client.get(f"/account/{path_id}", headers={JWT_HEADER: _token(403138)})

        assert r.status_code == 403
        assert r.json() == DENIED
        assert calls == []

    def test_plain_id_allowed(self, client, calls):
        r = client.get("/account/70", headers={JWT_HEADER: _token(403138)})

        assert r.status_code == 200
        assert calls == [("70", 403138)]

    def test_out_of_range_id_denied(self, client, calls):
        """Test an id beyond the 64-bit range is denied, not a server error"""
        r = client.get("/account/99999999999999999999", headers={JWT_HEADER: _token(403138)})

        assert r.status_code == 403
        assert r.json() == DENIED
        assert calls == []
