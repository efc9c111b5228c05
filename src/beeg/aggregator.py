"""Result matrix and run state owned by the single aggregator loop."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterator, Sequence

from .config import NodeConfig
from .probes import ProbeStep
from .progress import (
    PENDING,
    DoneEvent,
    Outcome,
    OutcomeStatus,
    ProgressChannel,
    ProgressEvent,
    SetEvent,
)

logger = logging.getLogger(__name__)

CELL_TEXT = {
    OutcomeStatus.PENDING: "...",
    OutcomeStatus.OK: "OK",
    OutcomeStatus.ERR: "ERR",
}


class RunState(Enum):
    """Lifecycle of one check run."""

    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"
    RESTORED = "restored"


class ResultMatrix:
    """N x K grid of outcomes; a cell only ever moves away from PENDING."""

    def __init__(self, rows: int, cols: int):
        self.rows = rows
        self.cols = cols
        self._cells = [[PENDING] * cols for _ in range(rows)]

    def __getitem__(self, index: tuple[int, int]) -> Outcome:
        row, col = index
        return self._cells[row][col]

    def set(self, row: int, col: int, outcome: Outcome) -> None:
        """Record a final outcome for one cell."""
        if outcome.is_pending:
            raise ValueError("a cell cannot be reset to pending")
        self._cells[row][col] = outcome

    def row(self, row: int) -> list[Outcome]:
        """Copy of one node's outcomes, in step order."""
        return list(self._cells[row])

    def is_complete(self) -> bool:
        return all(not cell.is_pending for row in self._cells for cell in row)


class Aggregator:
    """Applies progress events to the result matrix and tracks completion.

    Each node's events carry a sequence number: Set for step j is j, Done is
    K. Anything out of order, duplicated, or arriving after the node's Done
    is rejected and counted.
    """

    def __init__(self, nodes: Sequence[NodeConfig], steps: Sequence[ProbeStep]):
        self.nodes = list(nodes)
        self.steps = list(steps)
        self.matrix = ResultMatrix(len(self.nodes), len(self.steps))
        self.completed = 0
        self.rejected = 0
        self.state = RunState.RUNNING
        self.exit_state: RunState | None = None  # DONE or CANCELLED, kept after restore
        self._next_seq = [0] * len(self.nodes)
        self._done = [False] * len(self.nodes)

    @property
    def total(self) -> int:
        return len(self.nodes)

    @property
    def finished(self) -> bool:
        return self.state is not RunState.RUNNING

    def is_node_done(self, index: int) -> bool:
        return self._done[index]

    def _reject(self, event: ProgressEvent, reason: str) -> bool:
        self.rejected += 1
        logger.warning("Dropping %s: %s", event, reason)
        return False

    def apply(self, event: ProgressEvent) -> bool:
        """Apply one event. Returns False if it was rejected."""
        index = event.node_index
        if not 0 <= index < self.total:
            return self._reject(event, "unknown node index")
        if self._done[index]:
            return self._reject(event, "node already done")
        if event.seq != self._next_seq[index]:
            return self._reject(
                event, f"expected sequence {self._next_seq[index]}, got {event.seq}"
            )

        if isinstance(event, SetEvent):
            if not 0 <= event.step_index < len(self.steps):
                return self._reject(event, "unknown step index")
            if event.step_index != event.seq:
                return self._reject(event, "step index does not match sequence")
            if event.outcome.is_pending:
                return self._reject(event, "pending outcome")
            self.matrix.set(index, event.step_index, event.outcome)
        elif isinstance(event, DoneEvent):
            if event.seq != len(self.steps):
                return self._reject(event, "done before every step reported")
            self._done[index] = True
            self.completed += 1
        else:
            return self._reject(event, "unknown event type")

        self._next_seq[index] += 1
        return True

    def drain(self, channel: ProgressChannel) -> int:
        """Apply every event currently queued. Returns how many were applied."""
        applied = 0
        for event in channel.drain():
            if self.apply(event):
                applied += 1
        return applied

    def poll(self) -> RunState:
        """Move to DONE once every node has reported Done."""
        if self.state is RunState.RUNNING and self.completed == self.total:
            self.state = RunState.DONE
            logger.info("All %d node(s) completed", self.total)
        return self.state

    def cancel(self) -> None:
        """Operator quit: RUNNING becomes CANCELLED, any other state is kept."""
        if self.state is RunState.RUNNING:
            self.state = RunState.CANCELLED
            logger.info("Cancelled with %d/%d node(s) completed", self.completed, self.total)

    def restore(self) -> bool:
        """Enter the terminal RESTORED state. Returns False if already there."""
        if self.state is RunState.RESTORED:
            return False
        if self.state is not RunState.RUNNING:
            self.exit_state = self.state
        self.state = RunState.RESTORED
        return True

    def rows(self) -> Iterator[tuple[NodeConfig, list[str]]]:
        """Node identity plus formatted cells, one row per node."""
        for index, node in enumerate(self.nodes):
            yield node, [CELL_TEXT[cell.status] for cell in self.matrix.row(index)]

    def footer(self) -> str:
        """Progress line shown under the table."""
        return f"Completed: {self.completed}/{self.total}"

    def to_dict(self) -> list[dict]:
        """Machine-readable snapshot of the matrix."""
        return [
            {
                "node": node.name,
                "host": node.host,
                "done": self._done[index],
                "steps": {
                    step.key: self.matrix[index, col].to_dict()
                    for col, step in enumerate(self.steps)
                },
            }
            for index, node in enumerate(self.nodes)
        ]
