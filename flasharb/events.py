# flasharb/events.py
"""
Emitted records
Every rejection, halt and execution is observable through an EventLog
"""

import time
import logging
import threading
from collections import deque
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from flasharb.config import EVENT_LOG_MAX_RECORDS

logger = logging.getLogger(__name__)


class EventKind(Enum):
    ARBITRAGE_EXECUTED = "arbitrage_executed"
    NETWORK_SKIPPED = "network_skipped"
    TRADING_HALTED = "trading_halted"
    PRICE_CHECKED = "price_checked"
    CONFIG_SET = "config_set"


@dataclass
class EventRecord:
    """A single emitted record"""
    kind: EventKind
    fields: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0

    def __str__(self) -> str:
        body = ", ".join(f"{k}={v}" for k, v in self.fields.items())
        return f"{self.kind.value}({body})"


class EventLog:
    """
    In-process record sink.
    Records are kept in order and forwarded to subscribers; transport is
    left to whoever subscribes. Only the newest max_records are retained.
    """

    def __init__(self, clock: Callable[[], float] = time.time, max_records: int = EVENT_LOG_MAX_RECORDS):
        if max_records <= 0:
            raise ValueError(f"max_records must be positive, got {max_records}")
        self._clock = clock
        self._records: Deque[EventRecord] = deque(maxlen=max_records)
        self._subscribers: List[Callable[[EventRecord], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[EventRecord], None]) -> None:
        self._subscribers.append(callback)

    def emit(self, kind: EventKind, **fields) -> EventRecord:
        record = EventRecord(kind=kind, fields=fields, timestamp=self._clock())
        with self._lock:
            self._records.append(record)

        if kind in (EventKind.TRADING_HALTED, EventKind.NETWORK_SKIPPED):
            logger.warning(f"[event] {record}")
        else:
            logger.info(f"[event] {record}")

        for callback in self._subscribers:
            callback(record)
        return record

    def records(self, kind: Optional[EventKind] = None) -> List[EventRecord]:
        with self._lock:
            if kind is None:
                return list(self._records)
            return [r for r in self._records if r.kind == kind]

    def count(self, kind: EventKind) -> int:
        return len(self.records(kind))

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
