"""
contracts package - Fragment, market snapshot, decision and trade record contracts.
"""

from contracts.decision import DecisionContext, DecisionPacket, GateResult, NotReady
from contracts.fragments import ContextFragment
from contracts.market import CategoryResult, MarketSnapshot
from contracts.records import ExecutionRecord, ExitRecord, Greeks

__all__ = [
    'ContextFragment',
    'CategoryResult',
    'MarketSnapshot',
    'DecisionContext',
    'NotReady',
    'GateResult',
    'DecisionPacket',
    'Greeks',
    'ExecutionRecord',
    'ExitRecord',
]
