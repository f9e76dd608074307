"""
HTTP and WebSocket front end for the simulated ledger.

Speaks the wire format the coordinator's LedgerClient expects:
- Account listing
- Oracle registration and key lookup
- Opening requests and recording responses
- Event stream with replay from the start of history
"""

import asyncio
import logging
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from sim.ledger import SimulatedLedger, LedgerRejection


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Pydantic models for API

class OracleRegistration(BaseModel):
    """Oracle registration request."""
    identity: str = Field(..., description="Account registering as an oracle")
    stake: float = Field(..., description="Registration stake", ge=0)


class RequestOpen(BaseModel):
    """Request for oracle answers about a subject."""
    subject_id: str = Field(..., description="What the request is about")
    timestamp: int = Field(..., description="Request timestamp", ge=0)
    request_key: Optional[int] = Field(None, description="Fixed key (random if omitted)", ge=0, lt=10)


class OracleResponse(BaseModel):
    """One oracle's answer for one request."""
    subject_id: str = Field(..., description="Request subject")
    timestamp: int = Field(..., description="Request timestamp")
    identity: str = Field(..., description="Answering oracle")
    answer: int = Field(..., description="Oracle's answer")


class RequestClose(BaseModel):
    """Resolution of a request."""
    subject_id: str = Field(..., description="Request subject")
    timestamp: int = Field(..., description="Request timestamp")
    answer: int = Field(..., description="Agreed answer")


# Global state
ledger: Optional[SimulatedLedger] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the simulated ledger on startup unless one was injected."""
    global ledger

    if ledger is None:
        ledger = SimulatedLedger()
    logger.info(f"Simulated ledger ready with {len(ledger.accounts)} accounts")

    yield

    logger.info("Simulated ledger shut down")


app = FastAPI(
    title="Simulated Ledger",
    description="In-memory ledger for oracle coordinator development",
    version="0.1.0",
    lifespan=lifespan
)


def _rejected(e: LedgerRejection) -> HTTPException:
    logger.info(f"Rejected ({e.status}): {e.detail}")
    return HTTPException(status_code=e.status, detail=e.detail)


@app.get("/accounts")
async def list_accounts():
    """List ledger accounts."""
    return {"accounts": ledger.accounts, "count": len(ledger.accounts)}


@app.post("/oracles/register")
async def register_oracle(registration: OracleRegistration):
    """
    Register an oracle.

    Returns 201 with the assigned keys, 402 if the stake is too low,
    409 if already registered.
    """
    try:
        keys = ledger.register_oracle(registration.identity, registration.stake)
    except LedgerRejection as e:
        raise _rejected(e)

    return JSONResponse(
        status_code=201,
        content={"identity": registration.identity, "keys": sorted(keys)}
    )


@app.get("/oracles/{identity}/keys")
async def get_oracle_keys(identity: str):
    """Returns 404 if the identity is not a registered oracle."""
    try:
        keys = ledger.get_keys(identity)
    except LedgerRejection as e:
        raise _rejected(e)

    return {"identity": identity, "keys": sorted(keys)}


@app.post("/requests")
async def open_request(request: RequestOpen):
    """Open a request and publish it to subscribers."""
    opened = ledger.open_request(
        subject_id=request.subject_id,
        timestamp=request.timestamp,
        request_key=request.request_key
    )
    logger.info(f"Request opened: {opened.subject_id} key={opened.request_key}")
    return JSONResponse(status_code=201, content=opened.to_dict())


@app.get("/requests")
async def list_requests():
    """List all requests with their recorded responses."""
    requests = [r.to_dict() for r in ledger.requests.values()]
    return {"requests": requests, "count": len(requests)}


@app.post("/requests/{request_key}/responses")
async def submit_response(request_key: int, response: OracleResponse):
    """
    Record an oracle's answer.

    Returns 403 for unknown oracles or keys they do not hold, 404 if the
    request is not open, 409 for a second answer from the same oracle.
    """
    try:
        request = ledger.submit_response(
            request_key=request_key,
            subject_id=response.subject_id,
            timestamp=response.timestamp,
            identity=response.identity,
            answer=response.answer
        )
    except LedgerRejection as e:
        raise _rejected(e)

    return {"accepted": True, "responses": len(request.responses)}


@app.post("/requests/{request_key}/close")
async def close_request(request_key: int, close: RequestClose):
    """Resolve a request and publish the result."""
    try:
        request = ledger.close_request(
            request_key=request_key,
            subject_id=close.subject_id,
            timestamp=close.timestamp,
            answer=close.answer
        )
    except LedgerRejection as e:
        raise _rejected(e)

    return request.to_dict()


@app.websocket("/ws/events")
async def websocket_endpoint(websocket: WebSocket, from_start: bool = True):
    """
    WebSocket event stream.

    Events:
    - request_opened: A request needs oracle answers
    - request_resolved: A request was closed with an agreed answer
    """
    await websocket.accept()
    queue = ledger.subscribe(from_start=from_start)

    async def forward():
        while True:
            event = await queue.get()
            await websocket.send_json(event)

    forward_task = asyncio.create_task(forward())

    try:
        while True:
            # Client messages are ignored; receiving detects disconnects
            await websocket.receive_text()

    except WebSocketDisconnect:
        pass

    finally:
        forward_task.cancel()
        ledger.unsubscribe(queue)


def run_server(host: str = "0.0.0.0", port: int = 8545):
    """
    Run the simulated ledger.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to bind to (default: 8545)
    """
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_server()
