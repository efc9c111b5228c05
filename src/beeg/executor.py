"""Concurrent probe execution: one worker per node, results sent as progress events."""

from __future__ import annotations

import asyncio
import logging
import shutil
import threading
from datetime import datetime
from pathlib import Path
from typing import Sequence

from .config import Config, NodeConfig
from .probes import ProbeParams, ProbeStep
from .progress import DoneEvent, Outcome, ProgressChannel, SetEvent
from .transport import ExecOutput, Transport, TransportError, from_config, wrap_timeout

logger = logging.getLogger(__name__)


class NodeWorker:
    """Runs a probe set against one node, in order, and reports each step."""

    def __init__(
        self,
        index: int,
        node: NodeConfig,
        probes: Sequence[ProbeStep],
        params: ProbeParams,
        transport: Transport,
        channel: ProgressChannel,
        timeout: int,
        cancelled: threading.Event,
        limiter: asyncio.Semaphore | None = None,
        log_file: Path | None = None,
    ):
        self.index = index
        self.node = node
        self.probes = list(probes)
        self.params = params
        self.transport = transport
        self.channel = channel
        self.timeout = timeout
        self.cancelled = cancelled
        self.limiter = limiter
        self.log_file = log_file
        self.seq = 0

    def _log(self, line: str) -> None:
        """Append a line to this node's transcript."""
        if self.log_file:
            with open(self.log_file, "a") as f:
                f.write(line + "\n")

    def _emit_set(self, step_index: int, outcome: Outcome) -> None:
        self.channel.send(SetEvent(self.index, step_index, self.seq, outcome))
        self.seq += 1

    def _emit_done(self) -> None:
        self.channel.send(DoneEvent(self.index, self.seq))

    async def _execute(self, command: str) -> ExecOutput:
        if self.limiter is None:
            return await self.transport.execute(self.node.host, command, self.timeout)
        async with self.limiter:
            return await self.transport.execute(self.node.host, command, self.timeout)

    async def run_step(self, step: ProbeStep) -> Outcome:
        """Execute and classify a single step. Transport failures become Err."""
        command = wrap_timeout(step.render(self.params), self.timeout)
        self._log(f"$ {command}")
        try:
            output = await self._execute(command)
        except TransportError as e:
            self._log(f"ERROR: {e}")
            return Outcome.err(str(e))

        for line in output.stdout.splitlines():
            self._log(line)
        for line in output.stderr.splitlines():
            self._log(f"STDERR: {line}")
        if output.exit_status:
            self._log(f"Command exited with status {output.exit_status}")
        return step.classify(output)

    async def run(self) -> bool:
        """Run every step, then report Done. Returns False if stopped by cancel."""
        self._log(f"Probing {self.node.name} ({self.node.host}), mount {self.params.mount}")
        for step_index in range(self.seq, len(self.probes)):
            if self.cancelled.is_set():
                self._log("Cancelled")
                return False
            step = self.probes[step_index]
            outcome = await self.run_step(step)
            self._log(f"[{step.key}] {outcome.status.value} {outcome.detail}".rstrip())
            self._emit_set(step_index, outcome)
        self._emit_done()
        self._log("All steps completed")
        return True

    def fail_remaining(self, detail: str) -> None:
        """Mark every unreported step as Err and report Done."""
        for step_index in range(self.seq, len(self.probes)):
            self._emit_set(step_index, Outcome.err(detail))
        self._emit_done()


class Executor:
    """Spawns and owns one NodeWorker task per node."""

    def __init__(
        self,
        config: Config,
        nodes: Sequence[NodeConfig],
        probes: Sequence[ProbeStep],
        params: ProbeParams,
        transport: Transport | None = None,
        channel: ProgressChannel | None = None,
        timeout: int | None = None,
        max_in_flight: int | None = None,
        enable_logging: bool = True,
    ):
        self.config = config
        self.nodes = list(nodes)
        self.probes = list(probes)
        self.params = params
        self.transport = transport or from_config(config)
        self.channel = channel or ProgressChannel()
        self.timeout = timeout if timeout is not None else config.defaults.timeout
        self.max_in_flight = max_in_flight or config.defaults.max_in_flight
        self.enable_logging = enable_logging
        self.cancelled = threading.Event()
        self.workers: list[NodeWorker] = []
        self.tasks: list[asyncio.Task] = []
        self.log_dir: Path | None = None

    def setup_logging(self) -> Path | None:
        """Create the timestamped transcript directory, if transcripts are enabled.

        Raises OSError when the directory cannot be created. Safe to call twice.
        """
        if self.log_dir is not None:
            return self.log_dir
        if not self.enable_logging or self.config.log_dir is None:
            return None
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_dir = self.config.log_dir / timestamp
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir = log_dir

        # Copy the source config file to the log directory
        if self.config.source_path and self.config.source_path.exists():
            shutil.copy(self.config.source_path, self.log_dir / "config.yaml")
        logger.info("Writing transcripts to %s", self.log_dir)
        return self.log_dir

    def _create_workers(self) -> None:
        limiter = asyncio.Semaphore(self.max_in_flight)
        self.workers = [
            NodeWorker(
                index,
                node,
                self.probes,
                self.params,
                self.transport,
                self.channel,
                self.timeout,
                self.cancelled,
                limiter=limiter,
                log_file=self.log_dir / f"{node.name}.log" if self.log_dir else None,
            )
            for index, node in enumerate(self.nodes)
        ]

    async def _run_worker(self, worker: NodeWorker) -> None:
        try:
            await worker.run()
        except Exception as e:
            logger.exception("Worker for %s failed", worker.node.name)
            worker.fail_remaining(f"internal error: {e}")

    def start(self) -> list[asyncio.Task]:
        """Spawn one task per node. Must be called inside a running event loop."""
        self.setup_logging()
        self._create_workers()
        self.tasks = [
            asyncio.create_task(self._run_worker(worker), name=f"probe-{worker.node.name}")
            for worker in self.workers
        ]
        logger.info(
            "Probing %d node(s) over %s, %d step(s) each, at most %d in flight",
            len(self.nodes),
            self.transport.name,
            len(self.probes),
            self.max_in_flight,
        )
        return self.tasks

    async def run_all(self) -> None:
        """Run all nodes in parallel and wait for every worker."""
        tasks = self.start()
        await asyncio.gather(*tasks, return_exceptions=True)

    def cancel(self) -> None:
        """Stop workers between steps and drop any further events.

        Steps already issued are not interrupted; their remote side effects
        stand.
        """
        self.cancelled.set()
        self.channel.close()
