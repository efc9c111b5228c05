"""
Shared pytest fixtures.

The fake transport never touches the network: each test scripts what a host
answers for a given command.
"""

import sys
from pathlib import Path

# Add src/ to sys.path so tests run without an install
src_root = Path(__file__).parent.parent / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

import asyncio
from typing import Callable, Optional

import pytest

from beeg.config import Config, Defaults, NodeConfig
from beeg.transport import ExecOutput, Transport, TransportError


class FakeTransport(Transport):
    """Scripted transport.

    `handler(host, command)` returns an ExecOutput or raises. Hosts listed in
    `gates` wait for their asyncio.Event before answering.
    """

    name = "fake"

    def __init__(self, handler: Optional[Callable[[str, str], ExecOutput]] = None):
        self.handler = handler or (lambda host, command: ExecOutput("OK\n", ""))
        self.calls: list[tuple[str, str, int]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.in_flight = 0
        self.max_in_flight_seen = 0

    async def execute(self, host: str, command: str, timeout: int) -> ExecOutput:
        self.calls.append((host, command, timeout))
        self.in_flight += 1
        self.max_in_flight_seen = max(self.max_in_flight_seen, self.in_flight)
        try:
            await asyncio.sleep(0)
            if host in self.gates:
                await self.gates[host].wait()
            return self.handler(host, command)
        finally:
            self.in_flight -= 1


def answer_by_step(answers: dict) -> Callable[[str, str], ExecOutput]:
    """Build a handler from {(host, marker): response}.

    `marker` is a substring of the probe command (e.g. "ls -la"); response is
    stdout text or an exception instance to raise. Unmatched commands answer OK.
    """

    def handler(host: str, command: str) -> ExecOutput:
        for (answer_host, marker), response in answers.items():
            if answer_host == host and marker in command:
                if isinstance(response, Exception):
                    raise response
                return ExecOutput(response, "")
        return ExecOutput("OK\n", "")

    return handler


@pytest.fixture
def nodes() -> list[NodeConfig]:
    return [
        NodeConfig(name="node-a", host="10.0.0.1", labels=["client"]),
        NodeConfig(name="node-b", host="10.0.0.2", labels=["client"]),
        NodeConfig(name="node-c", host="10.0.0.3", labels=["client", "storage"]),
    ]


@pytest.fixture
def config(nodes) -> Config:
    return Config(nodes=nodes, defaults=Defaults(timeout=7, max_in_flight=8))


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def transport_error() -> TransportError:
    return TransportError("SSH error: connection refused")
