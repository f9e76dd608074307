"""
Request listener: turns the ledger's event stream into dispatches.

Subscribes from the beginning of the ledger's history, hands every opened
request to the dispatcher without waiting for it, and reconnects with
exponential backoff when the stream is lost.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from coordinator.dispatcher import Dispatcher
from coordinator.stats import ServiceStats
from ledger.client import LedgerClient
from ledger.errors import TransportLost
from ledger.events import Request, RequestResolved


logger = logging.getLogger(__name__)


class RequestListener:
    """
    Listens for request events and schedules dispatches.

    Performs no deduplication: a redelivered event is dispatched again.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        dispatcher: Dispatcher,
        stats: Optional[ServiceStats] = None,
        max_reconnect_attempts: Optional[int] = None,
        initial_backoff: float = 1.0,
        max_backoff: float = 60.0
    ):
        """
        Initialize request listener.

        Args:
            ledger: Ledger client providing the event stream
            dispatcher: Dispatcher receiving observed requests
            stats: Counters to update
            max_reconnect_attempts: Consecutive failed subscriptions tolerated
                before giving up (None retries forever)
            initial_backoff: First reconnect delay in seconds
            max_backoff: Reconnect delay cap in seconds
        """
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.stats = stats or dispatcher.stats
        self.max_reconnect_attempts = max_reconnect_attempts
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff

        self._running = False
        self._consecutive_failures = 0

    async def run(self):
        """
        Consume the event stream until stopped.

        Raises:
            TransportLost: If reconnect attempts are exhausted
        """
        self._running = True
        backoff = self.initial_backoff

        logger.info("Listening for ledger requests...")

        while self._running:
            try:
                async for event in self.ledger.subscribe_events(from_start=True):
                    self._consecutive_failures = 0
                    backoff = self.initial_backoff
                    self.handle_event(event)

                    if not self._running:
                        break

            except TransportLost as e:
                if not self._running:
                    break

                self._consecutive_failures += 1
                if (
                    self.max_reconnect_attempts is not None
                    and self._consecutive_failures > self.max_reconnect_attempts
                ):
                    logger.error(
                        f"Event stream lost and {self.max_reconnect_attempts} "
                        f"reconnect attempts exhausted: {e}"
                    )
                    self._running = False
                    raise

                self.stats.reconnects += 1
                logger.warning(f"{e}, reconnecting in {backoff}s...")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self.max_backoff)

        logger.info("Request listener stopped")

    def handle_event(self, event):
        """Route one decoded ledger event."""
        self.stats.last_event_at = datetime.now()

        if isinstance(event, Request):
            self.stats.requests_observed += 1
            logger.info(
                f"Request opened: {event.subject_id} key={event.request_key} "
                f"timestamp={event.timestamp}"
            )
            self.dispatcher.schedule(event)

        elif isinstance(event, RequestResolved):
            self.stats.requests_resolved += 1
            logger.info(
                f"Request resolved: {event.subject_id} key={event.request_key} "
                f"answer={event.answer}"
            )

        else:
            logger.debug(f"Ignoring event: {event!r}")

    def stop(self):
        """Stop after the current event."""
        self._running = False

    def is_running(self) -> bool:
        return self._running

    def get_consecutive_failures(self) -> int:
        return self._consecutive_failures
