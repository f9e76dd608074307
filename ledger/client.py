"""
Ledger client for oracle registration, submission and event streaming.

Handles all HTTP and WebSocket communication with the ledger.
"""

import asyncio
import json
import logging
from typing import Optional, List, Dict, Any, FrozenSet, AsyncIterator

import httpx
import websockets

from ledger.errors import (
    LedgerError,
    RegistrationRejected,
    KeyQueryFailed,
    SubmissionRejected,
    TransportLost,
)
from ledger.events import LedgerEvent, decode_event


logger = logging.getLogger(__name__)

KEYS_PER_ORACLE = 3


def events_url_for(ledger_url: str) -> str:
    """Derive the WebSocket event stream URL from the ledger's HTTP URL."""
    base = ledger_url.rstrip('/')
    if base.startswith('https://'):
        base = 'wss://' + base[len('https://'):]
    elif base.startswith('http://'):
        base = 'ws://' + base[len('http://'):]
    return f"{base}/ws/events"


def _detail(response: httpx.Response) -> str:
    """Extract the ledger's reason for an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and 'detail' in body:
        return str(body['detail'])
    return str(body)


class LedgerClient:
    """
    Client for the external ledger.

    Provides registration, key lookup, answer submission and a subscription
    to the ledger's request event stream.
    """

    def __init__(
        self,
        ledger_url: str,
        events_url: Optional[str] = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize ledger client.

        Args:
            ledger_url: HTTP URL of the ledger
            events_url: WebSocket URL of the event stream (derived if None)
            timeout: Request timeout in seconds
            retry_attempts: Number of attempts for transport failures
            retry_delay: Base delay between retries (exponential backoff)
            transport: Optional httpx transport (used to run against an in-process app)
        """
        self.ledger_url = ledger_url.rstrip('/')
        self.events_url = events_url or events_url_for(self.ledger_url)
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.ledger_url,
                timeout=self.timeout,
                transport=self._transport
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> httpx.Response:
        """
        Make HTTP request, retrying transport failures and 5xx responses.

        Client errors (4xx) are the ledger's verdict and are returned as-is
        for the caller to interpret.

        Raises:
            TransportLost: If all retry attempts fail
        """
        client = await self._get_client()

        last_error = None
        for attempt in range(self.retry_attempts):
            try:
                response = await client.request(method, endpoint, **kwargs)
                if response.status_code < 500:
                    return response
                last_error = f"HTTP {response.status_code}: {_detail(response)}"

            except httpx.TransportError as e:
                last_error = str(e) or type(e).__name__

            if attempt < self.retry_attempts - 1:
                delay = self.retry_delay * (2 ** attempt)
                logger.warning(
                    f"Request to {endpoint} failed (attempt {attempt + 1}/{self.retry_attempts}): "
                    f"{last_error}. Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)

        logger.error(
            f"Request to {endpoint} failed after {self.retry_attempts} attempts: {last_error}"
        )
        raise TransportLost(f"Request to {endpoint} failed: {last_error}")

    async def get_accounts(self) -> List[str]:
        """
        List the ledger's known accounts.

        Returns:
            Account identities in ledger order
        """
        response = await self._request_with_retry("GET", "/accounts")
        if response.is_error:
            raise LedgerError(f"Account listing failed: {_detail(response)}", response.status_code)
        return list(response.json().get('accounts', []))

    async def register(self, identity: str, stake: float) -> FrozenSet[int]:
        """
        Register an oracle identity with the ledger.

        Args:
            identity: Account to register
            stake: Registration stake

        Returns:
            Keys assigned by the ledger

        Raises:
            RegistrationRejected: Stake insufficient or identity already registered
            TransportLost: Ledger unreachable
        """
        response = await self._request_with_retry(
            "POST",
            "/oracles/register",
            json={"identity": identity, "stake": stake}
        )

        if response.is_error:
            raise RegistrationRejected(identity, _detail(response), response.status_code)

        try:
            keys = frozenset(int(k) for k in response.json().get('keys', []))
        except (ValueError, AttributeError, TypeError) as e:
            raise RegistrationRejected(
                identity, f"malformed registration response: {e}", response.status_code
            ) from e
        logger.debug(f"Ledger accepted registration of {identity}")
        return keys

    async def get_assigned_keys(self, identity: str) -> FrozenSet[int]:
        """
        Read back the keys the ledger assigned to an identity.

        Raises:
            KeyQueryFailed: Lookup failed or returned a malformed key set
        """
        try:
            response = await self._request_with_retry("GET", f"/oracles/{identity}/keys")
        except TransportLost as e:
            raise KeyQueryFailed(identity, str(e)) from e

        if response.is_error:
            raise KeyQueryFailed(identity, _detail(response), response.status_code)

        try:
            keys = frozenset(int(k) for k in response.json()['keys'])
        except (ValueError, KeyError, TypeError) as e:
            raise KeyQueryFailed(identity, f"malformed key set: {e}") from e

        if len(keys) != KEYS_PER_ORACLE:
            raise KeyQueryFailed(
                identity,
                f"expected {KEYS_PER_ORACLE} distinct keys, got {sorted(keys)}"
            )

        return keys

    async def submit(
        self,
        request_key: int,
        subject_id: str,
        timestamp: int,
        identity: str,
        answer: int
    ) -> Dict[str, Any]:
        """
        Submit one oracle's answer for one request.

        Returns:
            Ledger acknowledgement

        Raises:
            SubmissionRejected: Unknown oracle, duplicate answer, or request not open
            TransportLost: Ledger unreachable
        """
        response = await self._request_with_retry(
            "POST",
            f"/requests/{request_key}/responses",
            json={
                "subject_id": subject_id,
                "timestamp": timestamp,
                "identity": identity,
                "answer": answer
            }
        )

        if response.is_error:
            raise SubmissionRejected(identity, request_key, _detail(response), response.status_code)

        # Any 2xx is an ack; the body is informational
        try:
            ack = response.json()
        except ValueError:
            ack = None
        if not isinstance(ack, dict):
            ack = {"accepted": True}
        return ack

    async def subscribe_events(self, from_start: bool = True) -> AsyncIterator[LedgerEvent]:
        """
        Subscribe to the ledger's event stream.

        Yields decoded events until the connection fails. Undecodable
        messages are skipped. Delivery is at-least-once; replaying from the
        start redelivers every event in the ledger's history.

        Args:
            from_start: Replay history before streaming live events

        Raises:
            TransportLost: Connection failed or the ledger closed the stream
        """
        url = f"{self.events_url}?from_start={'true' if from_start else 'false'}"

        try:
            async with websockets.connect(url) as websocket:
                logger.info(f"Subscribed to ledger events at {self.events_url}")

                async for message in websocket:
                    try:
                        event = decode_event(json.loads(message))
                    except ValueError as e:
                        logger.warning(f"Skipping undecodable event: {e}")
                        continue

                    yield event

        except (websockets.exceptions.WebSocketException, OSError, asyncio.TimeoutError) as e:
            raise TransportLost(f"Event stream failed: {e}") from e

        raise TransportLost("Event stream closed by ledger")
