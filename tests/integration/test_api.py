"""
Integration tests for the HTTP surfaces.

Tests the simulated ledger's REST and WebSocket API and the coordinator's
status API.
"""

import pytest
import random
from fastapi.testclient import TestClient

from coordinator import server as status_api
from coordinator.registry import Oracle, OracleRegistry
from coordinator.stats import ServiceStats
from sim import server as sim_server
from sim.ledger import SimulatedLedger


@pytest.fixture
def ledger_client():
    """Create test client for the simulated ledger."""
    sim_server.ledger = SimulatedLedger(num_accounts=20, rng=random.Random(11))

    test_client = TestClient(sim_server.app)

    yield test_client

    sim_server.ledger = None


@pytest.fixture
def status_client():
    """Create test client for the status API with a small sealed pool."""
    registry = OracleRegistry()
    registry.add(Oracle(identity="0x1", keys=frozenset({1, 4, 7}), answer=10))
    registry.add(Oracle(identity="0x2", keys=frozenset({2, 4, 8}), answer=20))
    registry.add(Oracle(identity="0x3", keys=frozenset({1, 5, 9}), answer=30))
    registry.seal()

    stats = ServiceStats(candidates=4, oracles_registered=3, registration_failures=1)

    status_api.registry = registry
    status_api.stats = stats

    yield TestClient(status_api.app)

    status_api.registry = None
    status_api.stats = None


class TestLedgerOracleEndpoints:
    """Test oracle registration endpoints."""

    def test_accounts(self, ledger_client):
        """Test account listing."""
        response = ledger_client.get("/accounts")
        assert response.status_code == 200

        data = response.json()
        assert data['count'] == 20
        assert data['accounts'][0].startswith("0x")

    def test_register_oracle(self, ledger_client):
        """Test oracle registration."""
        response = ledger_client.post("/oracles/register", json={
            "identity": "0xaa",
            "stake": 1.0
        })

        assert response.status_code == 201
        data = response.json()
        assert data['identity'] == "0xaa"
        assert len(data['keys']) == 3

    def test_register_duplicate(self, ledger_client):
        """Test registering the same oracle twice."""
        ledger_client.post("/oracles/register", json={"identity": "0xaa", "stake": 1.0})
        response = ledger_client.post("/oracles/register", json={"identity": "0xaa", "stake": 1.0})

        assert response.status_code == 409

    def test_register_low_stake(self, ledger_client):
        """Test registering below the fee."""
        response = ledger_client.post("/oracles/register", json={"identity": "0xaa", "stake": 0.1})
        assert response.status_code == 402

    def test_get_keys(self, ledger_client):
        """Test key lookup matches the registration response."""
        registered = ledger_client.post(
            "/oracles/register", json={"identity": "0xaa", "stake": 1.0}
        ).json()

        response = ledger_client.get("/oracles/0xaa/keys")
        assert response.status_code == 200
        assert response.json()['keys'] == registered['keys']

    def test_get_keys_unknown(self, ledger_client):
        """Test key lookup for an unregistered identity."""
        response = ledger_client.get("/oracles/0xbb/keys")
        assert response.status_code == 404


class TestLedgerRequestEndpoints:
    """Test request and response endpoints."""

    def _register(self, client, identity="0xaa"):
        return client.post(
            "/oracles/register", json={"identity": identity, "stake": 1.0}
        ).json()['keys']

    def test_open_and_respond(self, ledger_client):
        """Test an eligible oracle answers an open request once."""
        keys = self._register(ledger_client)
        opened = ledger_client.post("/requests", json={
            "subject_id": "AA:ND1309",
            "timestamp": 1700000000,
            "request_key": keys[0]
        })
        assert opened.status_code == 201

        payload = {
            "subject_id": "AA:ND1309",
            "timestamp": 1700000000,
            "identity": "0xaa",
            "answer": 20
        }
        response = ledger_client.post(f"/requests/{keys[0]}/responses", json=payload)
        assert response.status_code == 200
        assert response.json() == {"accepted": True, "responses": 1}

        duplicate = ledger_client.post(f"/requests/{keys[0]}/responses", json=payload)
        assert duplicate.status_code == 409

        listed = ledger_client.get("/requests").json()
        assert listed['requests'][0]['responses'] == {"0xaa": 20}

    def test_random_key(self, ledger_client):
        """Test requests without a key get one from 0-9."""
        response = ledger_client.post("/requests", json={"subject_id": "AA:1", "timestamp": 1})

        assert 0 <= response.json()['request_key'] < 10

    def test_close_request(self, ledger_client):
        """Test closing stops further responses."""
        keys = self._register(ledger_client)
        ledger_client.post("/requests", json={
            "subject_id": "AA:1", "timestamp": 1, "request_key": keys[0]
        })

        response = ledger_client.post(f"/requests/{keys[0]}/close", json={
            "subject_id": "AA:1", "timestamp": 1, "answer": 10
        })
        assert response.status_code == 200
        assert response.json()['is_open'] is False

        response = ledger_client.post(f"/requests/{keys[0]}/responses", json={
            "subject_id": "AA:1", "timestamp": 1, "identity": "0xaa", "answer": 10
        })
        assert response.status_code == 404


class TestLedgerEventStream:
    """Test the WebSocket event stream."""

    def test_replays_history(self, ledger_client):
        """Test a subscriber from the start receives past events in order."""
        sim_server.ledger.open_request("AA:1", 1, request_key=3)
        sim_server.ledger.open_request("AA:2", 2, request_key=5)

        with ledger_client.websocket_connect("/ws/events?from_start=true") as websocket:
            first = websocket.receive_json()
            second = websocket.receive_json()

        assert first == {
            "event": "request_opened",
            "request_key": 3,
            "subject_id": "AA:1",
            "timestamp": 1
        }
        assert second['subject_id'] == "AA:2"


class TestStatusEndpoints:
    """Test the coordinator status API."""

    def test_root(self, status_client):
        """Test root endpoint."""
        response = status_client.get("/")
        assert response.status_code == 200
        assert response.json()['service'] == "Oracle Coordinator"

    def test_health(self, status_client):
        """Test health reports the registered pool."""
        data = status_client.get("/health").json()

        assert data['status'] == "healthy"
        assert data['registration_complete'] is True
        assert data['oracles'] == 3

    def test_list_oracles(self, status_client):
        """Test listing all oracles and oracles for one key."""
        data = status_client.get("/oracles").json()
        assert data['count'] == 3

        data = status_client.get("/oracles?key=4").json()
        assert [o['identity'] for o in data['oracles']] == ["0x1", "0x2"]

    def test_get_oracle(self, status_client):
        """Test getting one oracle."""
        response = status_client.get("/oracles/0x3")
        assert response.status_code == 200
        assert response.json()['keys'] == [1, 5, 9]

        assert status_client.get("/oracles/0x9").status_code == 404

    def test_stats(self, status_client):
        """Test counter snapshot."""
        data = status_client.get("/stats").json()

        assert data['stats']['oracles_registered'] == 3
        assert data['stats']['registration_failures'] == 1
        assert data['key_coverage']['4'] == 2

    def test_not_started(self):
        """Test endpoints report unavailable before the service starts."""
        status_api.registry = None
        status_api.stats = None

        response = TestClient(status_api.app).get("/health")
        assert response.status_code == 503
