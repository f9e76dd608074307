"""
Main service for the oracle coordinator.

Orchestrates the registration phase, the request listener and the status
API, and manages the process lifecycle.
"""

import argparse
import asyncio
import logging
import random
import signal
import sys
from typing import Optional, List

from coordinator.config import ServiceConfig
from coordinator.dispatcher import Dispatcher
from coordinator.listener import RequestListener
from coordinator.registrar import Registrar, RegistrationSummary
from coordinator.registry import OracleRegistry
from coordinator.stats import ServiceStats
from coordinator import server as status_api
from ledger.client import LedgerClient
from ledger.errors import TransportLost


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


EXIT_CLEAN = 0
EXIT_TRANSPORT_LOST = 1
EXIT_CONFIG_ERROR = 2


class OracleService:
    """
    Oracle coordination service.

    Registers the oracle pool, then listens for ledger requests and
    dispatches answers until shut down or the event stream is lost for good.
    """

    def __init__(self, config: ServiceConfig, ledger: Optional[LedgerClient] = None):
        """
        Initialize service.

        Args:
            config: Service configuration
            ledger: Ledger client (built from config if None)
        """
        self.config = config

        # Set logging level
        logging.getLogger().setLevel(config.log_level)

        self.ledger = ledger or LedgerClient(
            ledger_url=config.ledger_url,
            events_url=config.events_url,
            timeout=config.ledger_timeout,
            retry_attempts=config.ledger_retry_attempts,
            retry_delay=config.ledger_retry_delay
        )
        self.stats = ServiceStats()
        self.registry = OracleRegistry()
        self.dispatcher = Dispatcher(self.ledger, self.registry, stats=self.stats)
        self.listener = RequestListener(
            self.ledger,
            self.dispatcher,
            stats=self.stats,
            max_reconnect_attempts=config.reconnect_max_attempts,
            initial_backoff=config.reconnect_initial_backoff,
            max_backoff=config.reconnect_max_backoff
        )

        self.summary: Optional[RegistrationSummary] = None

        # State
        self._started = False
        self._stopping = False
        self._stopped = asyncio.Event()
        self._registration_task: Optional[asyncio.Task] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._status_server = None
        self._status_task: Optional[asyncio.Task] = None

    async def resolve_identities(self) -> List[str]:
        """Candidate identities from config, or from the ledger's accounts."""
        if self.config.identities:
            return self.config.select_identities([])

        accounts = await self.ledger.get_accounts()
        identities = self.config.select_identities(accounts)
        if len(identities) < self.config.pool_size:
            logger.warning(
                f"Ledger has {len(accounts)} accounts; only {len(identities)} available "
                f"after offset {self.config.identity_offset}"
            )
        return identities

    async def _register(self) -> RegistrationSummary:
        """Resolve candidates and register them."""
        identities = await self.resolve_identities()

        logger.info(f"Registering {len(identities)} oracles...")
        registrar = Registrar(
            self.ledger,
            self.registry,
            stake=self.config.stake,
            answers=self.config.answers,
            rng=random.Random(self.config.seed),
            stats=self.stats
        )
        return await registrar.register_all(identities)

    async def start(self) -> Optional[RegistrationSummary]:
        """
        Run the registration phase and start the status API.

        The registry is sealed when this returns; only then may the
        listener start. Returns None if stop() interrupted registration.
        """
        if self._started:
            logger.warning("Service already started")
            return self.summary
        if self._stopping:
            return None

        logger.info("=" * 60)
        logger.info("Starting Oracle Coordinator")
        logger.info("=" * 60)
        logger.info(f"Ledger: {self.config.ledger_url}")
        logger.info(f"Events: {self.config.events_url}")
        logger.info(f"Pool size: {self.config.pool_size}")
        logger.info(f"Stake: {self.config.stake}")
        logger.info(f"Answers: {self.config.answers}")
        logger.info("=" * 60)

        self._registration_task = asyncio.create_task(self._register())
        try:
            self.summary = await self._registration_task
        except asyncio.CancelledError:
            if not self._stopping:
                raise
            logger.info("Registration cancelled by shutdown")
            return None

        logger.info(f"✓ Registration complete: {self.summary.registered} registered, "
                    f"{self.summary.failed} failed")

        if self.summary.registered == 0:
            logger.warning("No oracles registered; requests will not be answered")

        if self._stopping:
            return self.summary

        status_api.registry = self.registry
        status_api.stats = self.stats

        if self.config.status_port is not None:
            self._status_server = status_api.create_server(
                host=self.config.status_host,
                port=self.config.status_port
            )
            self._status_task = asyncio.create_task(self._status_server.serve())
            logger.info(f"✓ Status API on {self.config.status_host}:{self.config.status_port}")

        self._started = True
        return self.summary

    async def run(self) -> int:
        """
        Listen and dispatch until stopped.

        Returns:
            Exit code: EXIT_CLEAN on shutdown, EXIT_TRANSPORT_LOST if the
            event stream could not be recovered
        """
        if self._stopping:
            return EXIT_CLEAN
        if not self._started:
            raise RuntimeError("Service not started. Call start() first.")

        self._listener_task = asyncio.create_task(self.listener.run())

        try:
            await self._listener_task
        except asyncio.CancelledError:
            if not self._stopping:
                raise
        except TransportLost as e:
            logger.error(f"Event subscription lost: {e}")
            return EXIT_TRANSPORT_LOST

        return EXIT_CLEAN

    async def stop(self):
        """
        Stop the service.

        Stops listening, waits for in-flight dispatches, stops the status API
        and closes the ledger connection.
        """
        if self._stopping:
            await self._stopped.wait()
            return
        self._stopping = True

        logger.info("=" * 60)
        logger.info("Shutting down oracle coordinator...")
        logger.info("=" * 60)

        if self._registration_task and not self._registration_task.done():
            self._registration_task.cancel()
            await asyncio.wait([self._registration_task])
            logger.info("✓ Registration cancelled")

        self.listener.stop()
        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()

        if self.dispatcher.pending():
            logger.info(f"Waiting for {self.dispatcher.pending()} in-flight dispatches...")
        await self.dispatcher.drain()
        logger.info("✓ Dispatches drained")

        if self._status_server is not None:
            self._status_server.should_exit = True
            if self._status_task:
                await self._status_task
            logger.info("✓ Status API stopped")

        await self.ledger.close()
        logger.info("✓ Ledger connection closed")

        logger.info(f"Final stats: {self.stats.to_dict()}")
        logger.info("=" * 60)
        logger.info("Oracle coordinator shutdown complete")
        logger.info("=" * 60)
        self._stopped.set()

    def get_status(self) -> dict:
        """
        Get service status.

        Returns:
            Status dictionary with component information
        """
        return {
            'ledger_url': self.config.ledger_url,
            'started': self._started,
            'listening': self.listener.is_running(),
            'oracles': len(self.registry),
            'pending_dispatches': self.dispatcher.pending(),
            'stats': self.stats.to_dict()
        }


def setup_signal_handlers(service: OracleService):
    """
    Set up signal handlers for graceful shutdown.

    Args:
        service: Service instance
    """
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        asyncio.create_task(service.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)


async def run_service(config: ServiceConfig) -> int:
    """
    Run the service until shutdown.

    Args:
        config: Service configuration

    Returns:
        Process exit code
    """
    service = OracleService(config)
    setup_signal_handlers(service)

    try:
        await service.start()
        return await service.run()
    except TransportLost as e:
        logger.error(f"Ledger unreachable during startup: {e}")
        return EXIT_TRANSPORT_LOST
    finally:
        await service.stop()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Oracle Coordinator")
    parser.add_argument("--config", type=str, help="JSON config file")
    parser.add_argument("--ledger-url", type=str, help="HTTP URL of the ledger")
    parser.add_argument("--pool-size", type=int, help="Number of oracles to register")
    parser.add_argument("--stake", type=float, help="Stake per oracle registration")
    parser.add_argument(
        "--answers",
        type=int,
        nargs="+",
        help="Possible answer values (default: 10 20 30 40 50)"
    )
    parser.add_argument("--identity-offset", type=int, help="First ledger account to use")
    parser.add_argument("--seed", type=int, help="Seed for answer draws")
    parser.add_argument(
        "--reconnect-max-attempts",
        type=int,
        help="Consecutive event stream failures tolerated (default: unlimited)"
    )
    parser.add_argument("--status-port", type=int, help="Serve the status API on this port")
    parser.add_argument("--log-level", type=str, choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ServiceConfig:
    """Merge the optional JSON config file with CLI overrides."""
    base = ServiceConfig.from_json_file(args.config).to_dict() if args.config else {}

    overrides = {
        'ledger_url': args.ledger_url,
        'pool_size': args.pool_size,
        'stake': args.stake,
        'answers': args.answers,
        'identity_offset': args.identity_offset,
        'seed': args.seed,
        'reconnect_max_attempts': args.reconnect_max_attempts,
        'status_port': args.status_port,
        'log_level': args.log_level
    }
    for name, value in overrides.items():
        if value is not None:
            base[name] = value

    # Re-derive the event stream URL when the ledger URL was overridden
    if args.ledger_url is not None:
        base['events_url'] = None

    return ServiceConfig.from_dict(base)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Process exit code
    """
    args = parse_args(argv)

    try:
        config = build_config(args)
    except (ValueError, OSError) as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG_ERROR

    return asyncio.run(run_service(config))


if __name__ == "__main__":
    sys.exit(main())
