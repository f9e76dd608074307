"""
Integration tests for the full oracle flow.

Runs the coordinator service against the simulated ledger app in-process:
registration over HTTP, requests through the ledger's event feed, answers
recorded by the ledger.
"""

import pytest
import asyncio
import random

import httpx

from coordinator.config import ServiceConfig
from coordinator.service import OracleService, EXIT_CLEAN
from ledger.client import LedgerClient
from ledger.events import decode_event
from sim import server as sim_server
from sim.ledger import SimulatedLedger


class InProcessLedgerClient(LedgerClient):
    """Ledger client wired to the simulated ledger without sockets."""

    def __init__(self, sim: SimulatedLedger):
        super().__init__(
            ledger_url="http://ledger.test",
            transport=httpx.ASGITransport(app=sim_server.app),
            retry_attempts=1,
            retry_delay=0.0
        )
        self.sim = sim

    async def subscribe_events(self, from_start: bool = True):
        queue = self.sim.subscribe(from_start=from_start)
        try:
            while True:
                yield decode_event(await queue.get())
        finally:
            self.sim.unsubscribe(queue)


async def wait_for(condition, timeout: float = 5.0):
    """Poll until condition() is true."""
    elapsed = 0.0
    while not condition():
        if elapsed >= timeout:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)
        elapsed += 0.01


@pytest.fixture
def sim():
    sim_server.ledger = SimulatedLedger(num_accounts=40, rng=random.Random(5))
    yield sim_server.ledger
    sim_server.ledger = None


@pytest.fixture
def config():
    return ServiceConfig(pool_size=20, identity_offset=10, seed=3)


class TestOracleFlow:
    """Test registration, dispatch and shutdown end to end."""

    @pytest.mark.asyncio
    async def test_registers_pool(self, sim, config):
        """Test the pool registers every candidate with valid keys and answers."""
        service = OracleService(config, ledger=InProcessLedgerClient(sim))

        summary = await service.start()

        assert summary.registered == 20
        assert [o.identity for o in service.registry] == sim.accounts[10:30]
        for oracle in service.registry:
            assert oracle.keys == sim.oracles[oracle.identity]
            assert oracle.answer in config.answers

        await service.stop()

    @pytest.mark.asyncio
    async def test_preregistered_identity_excluded(self, sim, config):
        """Test an identity the ledger already knows is left out of the pool."""
        sim.register_oracle(sim.accounts[12], 1.0)
        service = OracleService(config, ledger=InProcessLedgerClient(sim))

        summary = await service.start()

        assert summary.registered == 19
        assert sim.accounts[12] not in service.registry
        assert service.stats.registration_failures == 1

        await service.stop()

    @pytest.mark.asyncio
    async def test_request_answered_by_matching_oracles(self, sim, config):
        """Test every oracle holding the key answers once with its own answer."""
        service = OracleService(config, ledger=InProcessLedgerClient(sim))
        await service.start()
        run_task = asyncio.create_task(service.run())

        opened = sim.open_request("AA:ND1309", 1700000000, request_key=4)
        await wait_for(lambda: service.stats.dispatches_completed == 1)

        expected = {o.identity: o.answer for o in service.registry if 4 in o.keys}
        assert expected
        assert opened.responses == expected

        await service.stop()
        assert await asyncio.wait_for(run_task, timeout=5) == EXIT_CLEAN

    @pytest.mark.asyncio
    async def test_replayed_history_answered_after_start(self, sim, config):
        """Test requests opened before the listener started are still answered."""
        service = OracleService(config, ledger=InProcessLedgerClient(sim))
        await service.start()

        early = sim.open_request("AA:1", 1, request_key=2)
        run_task = asyncio.create_task(service.run())
        late = sim.open_request("AA:2", 2, request_key=7)

        await wait_for(lambda: service.stats.dispatches_completed == 2)

        assert len(early.responses) == len(service.registry.match(2))
        assert len(late.responses) == len(service.registry.match(7))
        assert service.stats.submissions_rejected == 0

        await service.stop()
        await asyncio.wait_for(run_task, timeout=5)

    @pytest.mark.asyncio
    async def test_closed_request_rejections_tolerated(self, sim, config):
        """Test answers for a request closed before dispatch are rejected without harm."""
        service = OracleService(config, ledger=InProcessLedgerClient(sim))
        await service.start()

        closed = sim.open_request("AA:1", 1, request_key=6)
        sim.close_request(6, "AA:1", 1, answer=10)
        run_task = asyncio.create_task(service.run())
        sim.open_request("AA:2", 2, request_key=6)

        await wait_for(lambda: service.stats.dispatches_completed == 2)

        matching = len(service.registry.match(6))
        assert closed.responses == {}
        assert service.stats.requests_resolved == 1
        assert service.stats.submissions_rejected == matching
        assert service.stats.submissions_accepted == matching

        await service.stop()
        await asyncio.wait_for(run_task, timeout=5)
