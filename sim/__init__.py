"""
Simulated ledger for the oracle coordinator.

An in-memory stand-in for the external ledger, with an HTTP/WebSocket front
end, for running the coordinator locally and in tests.
"""

__version__ = "0.1.0"
