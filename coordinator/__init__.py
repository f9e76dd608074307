"""
Coordinator module for the oracle coordination service.

The coordinator is responsible for:
- Oracle registration against the ledger
- Key-indexed matching of ledger requests to oracles
- Fan-out submission of oracle answers
- Reconnecting to the ledger event stream
"""

__version__ = "0.1.0"
