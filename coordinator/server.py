"""
Status API for the oracle coordinator.

Read-only REST endpoints so operators can see the oracle pool and the
service counters:
- Service info and health
- Registered oracles
- Counter snapshot
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
import uvicorn

from coordinator.registry import OracleRegistry
from coordinator.stats import ServiceStats


logger = logging.getLogger(__name__)


# Global state, set by the service before the API starts
registry: Optional[OracleRegistry] = None
stats: Optional[ServiceStats] = None


app = FastAPI(
    title="Oracle Coordinator",
    description="Status API for the oracle coordination service",
    version="0.1.0"
)


def _require_state():
    if registry is None or stats is None:
        raise HTTPException(status_code=503, detail="Service not started")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Oracle Coordinator",
        "version": "0.1.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    _require_state()
    return {
        "status": "healthy" if registry.sealed and len(registry) > 0 else "degraded",
        "registration_complete": registry.sealed,
        "oracles": len(registry)
    }


@app.get("/oracles")
async def list_oracles(key: Optional[int] = None):
    """
    List registered oracles.

    Query params:
    - key: Only oracles eligible for this request key
    """
    _require_state()
    oracles = registry.match(key) if key is not None else registry.all()

    return {
        "oracles": [o.to_dict() for o in oracles],
        "count": len(oracles)
    }


@app.get("/oracles/{identity}")
async def get_oracle(identity: str):
    """
    Get one oracle.

    Returns 404 if the identity is not in the pool.
    """
    _require_state()
    oracle = registry.get(identity)

    if oracle is None:
        raise HTTPException(status_code=404, detail="Oracle not found")

    return oracle.to_dict()


@app.get("/stats")
async def get_stats():
    """Counter snapshot."""
    _require_state()
    return {
        "stats": stats.to_dict(),
        "key_coverage": registry.key_coverage()
    }


def create_server(host: str = "0.0.0.0", port: int = 8080) -> uvicorn.Server:
    """
    Build a uvicorn server for the status API.

    The caller runs it with ``await server.serve()`` inside its own event loop.
    """
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    return uvicorn.Server(config)
