"""
audit package - Append-only ledger of decisions, executions and exits.
"""

from audit.ledger import InMemoryLedger, JsonlLedger, Ledger

__all__ = [
    'Ledger',
    'InMemoryLedger',
    'JsonlLedger',
]
