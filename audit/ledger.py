"""
audit/ledger.py

Append-only trade ledger.

Records every decision packet, every paper execution and every exit. Nothing
is updated in place: a duplicate id or a second exit for the same execution
raises LedgerError. The only read-back is the set of open positions.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from contracts.decision import DecisionPacket
from contracts.records import ExecutionRecord, ExitRecord
from utils.errors import LedgerError

logger = logging.getLogger("TRADE_LEDGER")

KIND_DECISION = "decision"
KIND_EXECUTION = "execution"
KIND_EXIT = "exit"


class Ledger(ABC):

    @abstractmethod
    def append_decision(self, packet: DecisionPacket) -> None:
        ...

    @abstractmethod
    def append_execution(self, record: ExecutionRecord) -> None:
        ...

    @abstractmethod
    def append_exit(self, record: ExitRecord) -> None:
        ...

    @abstractmethod
    def open_positions(self) -> List[ExecutionRecord]:
        ...


class InMemoryLedger(Ledger):
    """Thread-safe in-process ledger."""

    def __init__(self):
        self._lock = threading.Lock()
        self._decisions: Dict[str, Dict[str, Any]] = {}
        self._executions: Dict[str, ExecutionRecord] = {}
        self._exits: Dict[str, ExitRecord] = {}

    # -- validation, called with the lock held --------------------------------

    def _check_decision(self, decision_id: str):
        if decision_id in self._decisions:
            raise LedgerError(f"decision {decision_id} already recorded")

    def _check_execution(self, record: ExecutionRecord):
        if record.execution_id in self._executions:
            raise LedgerError(f"execution {record.execution_id} already recorded")

    def _check_exit(self, record: ExitRecord):
        if record.execution_id not in self._executions:
            raise LedgerError(f"exit for unknown execution {record.execution_id}")
        if record.execution_id in self._exits:
            raise LedgerError(f"execution {record.execution_id} already has an exit")

    # -- hooks for persistent subclasses ---------------------------------------

    def _persist(self, kind: str, payload: Dict[str, Any]) -> None:
        pass

    # -- Ledger -----------------------------------------------------------------

    def append_decision(self, packet: DecisionPacket) -> None:
        payload = packet.to_dict()
        with self._lock:
            self._check_decision(packet.decision_id)
            self._persist(KIND_DECISION, payload)
            self._decisions[packet.decision_id] = payload
        logger.debug(f"Recorded decision {packet.decision_id[:12]} ({packet.action.value})")

    def append_execution(self, record: ExecutionRecord) -> None:
        with self._lock:
            self._check_execution(record)
            self._persist(KIND_EXECUTION, record.to_dict())
            self._executions[record.execution_id] = record
        logger.info(f"Recorded execution {record.execution_id[:12]} for {record.symbol}")

    def append_exit(self, record: ExitRecord) -> None:
        with self._lock:
            self._check_exit(record)
            self._persist(KIND_EXIT, record.to_dict())
            self._exits[record.execution_id] = record
        logger.info(
            f"Recorded exit {record.execution_id[:12]} {record.exit_reason.value} "
            f"net={record.pnl_net:.2f}"
        )

    def open_positions(self) -> List[ExecutionRecord]:
        with self._lock:
            return [r for eid, r in self._executions.items() if eid not in self._exits]

    def decision(self, decision_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._decisions.get(decision_id)

    def exits(self) -> List[ExitRecord]:
        with self._lock:
            return list(self._exits.values())

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "decisions": len(self._decisions),
                "executions": len(self._executions),
                "exits": len(self._exits),
                "open_positions": len(self._executions) - len(self._exits),
            }


class JsonlLedger(InMemoryLedger):
    """
    Ledger backed by a JSON-lines file, one {"kind", "record"} object per line.

    The file is replayed on construction so open positions survive restarts.
    A line is written before the in-memory state changes.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._replay()

    def _replay(self):
        if not os.path.exists(self.path):
            return

        with open(self.path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                    kind, data = entry["kind"], entry["record"]
                except (json.JSONDecodeError, KeyError, TypeError) as e:
                    raise LedgerError(f"{self.path}:{line_no}: unreadable ledger line: {e}") from e

                if kind == KIND_DECISION:
                    self._check_decision(data["decision_id"])
                    self._decisions[data["decision_id"]] = data
                elif kind == KIND_EXECUTION:
                    record = ExecutionRecord.from_dict(data)
                    self._check_execution(record)
                    self._executions[record.execution_id] = record
                elif kind == KIND_EXIT:
                    record = ExitRecord.from_dict(data)
                    self._check_exit(record)
                    self._exits[record.execution_id] = record
                else:
                    raise LedgerError(f"{self.path}:{line_no}: unknown ledger entry kind {kind!r}")

        stats = self.get_stats()
        logger.info(
            f"Replayed ledger {self.path}: {stats['decisions']} decisions, "
            f"{stats['executions']} executions, {stats['open_positions']} open"
        )

    def _persist(self, kind: str, payload: Dict[str, Any]) -> None:
        line = json.dumps({"kind": kind, "record": payload}, sort_keys=True, default=str)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()
