"""Probe outcomes and the progress channel between node workers and the aggregator."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Union


class OutcomeStatus(Enum):
    """Classification of one probe step on one node."""

    PENDING = "pending"
    OK = "ok"
    ERR = "err"


@dataclass(frozen=True)
class Outcome:
    """Result of one probe step, with a short failure detail for ERR."""

    status: OutcomeStatus
    detail: str = ""

    @classmethod
    def ok(cls) -> Outcome:
        return cls(OutcomeStatus.OK)

    @classmethod
    def err(cls, detail: str = "") -> Outcome:
        return cls(OutcomeStatus.ERR, detail)

    @property
    def is_pending(self) -> bool:
        return self.status is OutcomeStatus.PENDING

    def to_dict(self) -> dict:
        return {"status": self.status.value, "detail": self.detail}


PENDING = Outcome(OutcomeStatus.PENDING)


@dataclass(frozen=True)
class SetEvent:
    """A probe step finished on a node. `seq` equals the step index."""

    node_index: int
    step_index: int
    seq: int
    outcome: Outcome


@dataclass(frozen=True)
class DoneEvent:
    """A node finished its probe set. `seq` equals the number of steps."""

    node_index: int
    seq: int


ProgressEvent = Union[SetEvent, DoneEvent]


class ProgressChannel:
    """Unbounded many-producer, single-consumer queue of progress events.

    Senders never block. Once the consumer closes the channel, sends are
    dropped and report False so workers can stop early.
    """

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[ProgressEvent] = queue.SimpleQueue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, event: ProgressEvent) -> bool:
        """Queue an event. Returns False if the channel has been closed."""
        if self._closed.is_set():
            return False
        self._queue.put_nowait(event)
        return True

    def drain(self) -> list[ProgressEvent]:
        """Return every event queued so far without waiting."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        """Stop accepting events and discard anything still queued."""
        self._closed.set()
        self.drain()
