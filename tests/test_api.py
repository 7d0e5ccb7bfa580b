"""Tests for the FastAPI endpoints."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from goldenarrow.api.app import create_app
from goldenarrow.config import Settings
from goldenarrow.errors import ScannerError
from goldenarrow.scanner import TransferInfo, TransferScanner

ADMIN_TOKEN = "test-admin-token"
ADMIN_HEADERS = {"X-Admin-Token": ADMIN_TOKEN}
GATEWAY_TOKEN = "test-gateway-token"
GATEWAY_HEADERS = {"X-Gateway-Token": GATEWAY_TOKEN}
USDT = "0x55d398326f99059fF775485246999027B3197955"
GOLDEN_INDEX_0 = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"


@pytest.fixture
def scanner():
    scanner = AsyncMock(spec=TransferScanner)
    scanner.get_current_block_height.return_value = 1000
    scanner.get_incoming_transfers.return_value = []
    return scanner


def make_settings(**overrides) -> Settings:
    values = {
        "admin_token": ADMIN_TOKEN,
        "usdt_contract_address": USDT,
        "min_confirmations": 1,
        "_env_file": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_app(account_xpub, session_factory, scanner, users):
    """Create test application over the per-test database."""
    return create_app(
        make_settings(xpub_key=account_xpub),
        session_factory=session_factory,
        scanner=scanner,
    )


@pytest.fixture
async def client(test_app):
    """Create async test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def unconfigured_client(session_factory, scanner, users):
    """Client for an app started without XPUB_KEY."""
    app = create_app(make_settings(xpub_key=None), session_factory=session_factory, scanner=scanner)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        """Test basic health check."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "goldenarrow"

    @pytest.mark.asyncio
    async def test_detailed_health(self, client, account_xpub):
        """Test detailed health check."""
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["wallet_configured"] is True
        assert "environment" in data["config"]
        assert account_xpub not in response.text

    @pytest.mark.asyncio
    async def test_detailed_health_without_xpub(self, unconfigured_client):
        response = await unconfigured_client.get("/health/detailed")

        assert response.json()["status"] == "degraded"


class TestGetOrCreateWallet:
    """Tests for wallet provisioning endpoint."""

    @pytest.mark.asyncio
    async def test_create_wallet(self, client, users):
        """Test first wallet creation."""
        response = await client.post("/api/wallet/get-or-create", json={"userId": users[0]})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        wallet = data["wallet"]
        assert wallet["deposit_address"] == GOLDEN_INDEX_0
        assert wallet["derivation_index"] == 0
        assert wallet["derivation_path"] == "m/0/0"
        assert Decimal(wallet["balance"]) == Decimal("0")

    @pytest.mark.asyncio
    async def test_idempotent(self, client, users):
        first = await client.post("/api/wallet/get-or-create", json={"userId": users[0]})
        second = await client.post("/api/wallet/get-or-create", json={"userId": users[0]})
        other = await client.post("/api/wallet/get-or-create", json={"userId": users[1]})

        assert first.json()["wallet"] == second.json()["wallet"]
        assert other.json()["wallet"]["derivation_index"] == 1

    @pytest.mark.asyncio
    async def test_unknown_user(self, client):
        response = await client.post("/api/wallet/get-or-create", json={"userId": "nobody"})

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "user_not_found",
            "message": "User nobody not found",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"userId": ""}, {"user": "x"}])
    async def test_invalid_body(self, client, body):
        response = await client.post("/api/wallet/get-or-create", json=body)

        assert response.status_code == 422
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_without_xpub(self, unconfigured_client, users):
        response = await unconfigured_client.post(
            "/api/wallet/get-or-create", json={"userId": users[0]}
        )

        assert response.status_code == 503
        data = response.json()
        assert data["error"] == "master_key_unavailable"
        assert "XPUB_KEY" in data["message"]


class TestBalanceEndpoint:
    """Tests for balance endpoint."""

    @pytest.mark.asyncio
    async def test_balance(self, client, users):
        await client.post("/api/wallet/get-or-create", json={"userId": users[0]})

        response = await client.get("/api/wallet/balance", params={"user_id": users[0]})

        assert response.status_code == 200
        data = response.json()["data"]
        assert Decimal(data["deposit_balance"]) == Decimal("0")
        assert Decimal(data["total_withdrawn"]) == Decimal("0")

    @pytest.mark.asyncio
    async def test_missing_user_id(self, client):
        response = await client.get("/api/wallet/balance")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_user(self, client):
        response = await client.get("/api/wallet/balance", params={"user_id": "nobody"})
        assert response.status_code == 404


class TestGatewayToken:
    """Tests for user routes behind a gateway token."""

    @pytest.fixture
    async def gateway_client(self, account_xpub, session_factory, scanner, users):
        app = create_app(
            make_settings(xpub_key=account_xpub, gateway_token=GATEWAY_TOKEN),
            session_factory=session_factory,
            scanner=scanner,
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    @pytest.mark.asyncio
    async def test_balance_requires_token(self, gateway_client, users):
        response = await gateway_client.get("/api/wallet/balance", params={"user_id": users[0]})

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_wrong_token(self, gateway_client, users):
        response = await gateway_client.get(
            "/api/wallet/balance",
            params={"user_id": users[0]},
            headers={"X-Gateway-Token": "wrong"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_user_routes_with_token(self, gateway_client, users):
        created = await gateway_client.post(
            "/api/wallet/get-or-create", json={"userId": users[0]}, headers=GATEWAY_HEADERS
        )
        balance = await gateway_client.get(
            "/api/wallet/balance", params={"user_id": users[0]}, headers=GATEWAY_HEADERS
        )
        sync = await gateway_client.post(
            "/api/wallet/sync-deposit", json={"userId": users[0]}, headers=GATEWAY_HEADERS
        )

        assert created.status_code == 200
        assert balance.status_code == 200
        assert sync.status_code == 200

    @pytest.mark.asyncio
    async def test_create_and_sync_require_token(self, gateway_client, users):
        created = await gateway_client.post("/api/wallet/get-or-create", json={"userId": users[0]})
        sync = await gateway_client.post("/api/wallet/sync-deposit", json={"userId": users[0]})

        assert created.status_code == 401
        assert sync.status_code == 401


class TestSyncDepositEndpoint:
    """Tests for deposit sync endpoint."""

    @pytest.mark.asyncio
    async def test_sync_credits_deposit(self, client, scanner, users):
        created = await client.post("/api/wallet/get-or-create", json={"userId": users[0]})
        address = created.json()["wallet"]["deposit_address"]
        scanner.get_incoming_transfers.return_value = [
            TransferInfo(
                tx_hash="0xfeed",
                to_address=address.lower(),
                contract_address=USDT.lower(),
                raw_value=15 * 10**18,
                block_number=900,
            )
        ]

        response = await client.post("/api/wallet/sync-deposit", json={"userId": users[0]})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["synced_count"] == 1
        assert Decimal(data["total_amount"]) == Decimal("15")
        assert data["last_synced_block"] == 1000

        balance = await client.get("/api/wallet/balance", params={"user_id": users[0]})
        assert Decimal(balance.json()["data"]["deposit_balance"]) == Decimal("15")

        again = await client.post("/api/wallet/sync-deposit", json={"userId": users[0]})
        assert again.json()["synced_count"] == 0
        assert again.json()["message"] == "No new deposits"

    @pytest.mark.asyncio
    async def test_sync_without_wallet(self, client, users):
        response = await client.post("/api/wallet/sync-deposit", json={"userId": users[0]})

        assert response.status_code == 404
        assert response.json()["error"] == "wallet_not_found"

    @pytest.mark.asyncio
    async def test_scanner_failure(self, client, scanner, users):
        await client.post("/api/wallet/get-or-create", json={"userId": users[0]})
        scanner.get_current_block_height.side_effect = ScannerError("upstream down")

        response = await client.post("/api/wallet/sync-deposit", json={"userId": users[0]})

        assert response.status_code == 502
        assert response.json()["error"] == "scanner_error"

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_structured(self, test_app, scanner, users):
        scanner.get_current_block_height.side_effect = RuntimeError("boom")
        transport = ASGITransport(app=test_app, raise_app_exceptions=False)

        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            await ac.post("/api/wallet/get-or-create", json={"userId": users[0]})
            response = await ac.post("/api/wallet/sync-deposit", json={"userId": users[0]})

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "internal_error",
            "message": "Internal server error",
        }


class TestAdminEndpoints:
    """Tests for admin-only endpoints."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path",
        [
            f"/api/wallet/owner/{GOLDEN_INDEX_0}",
            f"/api/wallet/reconcile/{GOLDEN_INDEX_0}",
            "/api/wallet/derive?index=0",
            "/api/wallet/info",
        ],
    )
    async def test_requires_token(self, client, path):
        missing = await client.get(path)
        wrong = await client.get(path, headers={"X-Admin-Token": "wrong"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert missing.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_owner(self, client, users):
        await client.post("/api/wallet/get-or-create", json={"userId": users[0]})

        response = await client.get(
            f"/api/wallet/owner/{GOLDEN_INDEX_0.lower()}", headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["data"]["user_id"] == users[0]

    @pytest.mark.asyncio
    async def test_owner_unknown(self, client):
        response = await client.get(f"/api/wallet/owner/{GOLDEN_INDEX_0}", headers=ADMIN_HEADERS)

        assert response.status_code == 404
        assert response.json()["error"] == "address_not_found"

    @pytest.mark.asyncio
    async def test_reconcile_is_read_only(self, client, scanner, users):
        await client.post("/api/wallet/get-or-create", json={"userId": users[0]})
        scanner.get_incoming_transfers.return_value = [
            TransferInfo(
                tx_hash="0xbeef",
                to_address=GOLDEN_INDEX_0,
                contract_address=USDT,
                raw_value=10**18,
                block_number=500,
            )
        ]

        response = await client.get(f"/api/wallet/reconcile/{GOLDEN_INDEX_0}", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert [t["tx_hash"] for t in response.json()["data"]] == ["0xbeef"]
        balance = await client.get("/api/wallet/balance", params={"user_id": users[0]})
        assert Decimal(balance.json()["data"]["deposit_balance"]) == Decimal("0")

    @pytest.mark.asyncio
    async def test_derive(self, client):
        response = await client.get("/api/wallet/derive?index=0", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["address"] == GOLDEN_INDEX_0
        assert data["derivation_path"] == "m/0/0"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", ["-1", str(2**31), "abc"])
    async def test_derive_invalid_index(self, client, index):
        response = await client.get(f"/api/wallet/derive?index={index}", headers=ADMIN_HEADERS)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_info(self, client, users, master_key):
        await client.post("/api/wallet/get-or-create", json={"userId": users[0]})

        response = await client.get("/api/wallet/info", headers=ADMIN_HEADERS)

        data = response.json()["data"]
        assert data["configured"] is True
        assert data["key_fingerprint"] == master_key.fingerprint
        assert data["last_index"] == 0
