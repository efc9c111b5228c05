"""Remote command execution for beeg."""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass

import asyncssh

from .config import Config, NodeConfig

logger = logging.getLogger(__name__)

# Extra time the local side waits beyond the remote `timeout` guard
DEADLINE_GRACE = 5
CONNECT_TIMEOUT = 5


@dataclass
class ExecOutput:
    """Captured result of one remote command."""

    stdout: str
    stderr: str
    exit_status: int | None = 0


class TransportError(Exception):
    """Connection, authentication, timeout or spawn failure."""


def wrap_timeout(command: str, seconds: int) -> str:
    """Guard a command with coreutils `timeout` inside the remote shell."""
    return f"timeout {seconds}s sh -lc {shlex.quote(command)}"


class Transport:
    """Runs one command on one host and returns its output.

    A non-zero exit status is not a failure; callers classify the output.
    Every other failure is raised as TransportError.
    """

    name = "base"

    async def execute(self, host: str, command: str, timeout: int) -> ExecOutput:
        raise NotImplementedError


class SshTransport(Transport):
    """Runs commands over SSH, one connection per call."""

    name = "ssh"

    def __init__(self, config: Config):
        self.config = config
        self._nodes: dict[str, NodeConfig] = {node.host: node for node in config.nodes}

    def _connect_options(self, host: str) -> dict:
        node = self._nodes.get(host)
        defaults = self.config.defaults
        user = node.user if node else defaults.user
        port = node.port if node else defaults.port
        ssh_key = node.ssh_key if node else defaults.ssh_key

        options = {
            "port": port,
            "username": user,
            "known_hosts": str(defaults.known_hosts) if defaults.known_hosts else None,
            "connect_timeout": CONNECT_TIMEOUT,
        }
        # Fall back to the agent and default keys when the configured key is absent
        if ssh_key.exists():
            options["client_keys"] = [str(ssh_key)]
        return options

    async def _run(self, host: str, command: str) -> ExecOutput:
        async with asyncssh.connect(host, **self._connect_options(host)) as conn:
            result = await conn.run(command, check=False)
            return ExecOutput(
                stdout=_as_text(result.stdout),
                stderr=_as_text(result.stderr),
                exit_status=result.exit_status,
            )

    async def execute(self, host: str, command: str, timeout: int) -> ExecOutput:
        logger.debug("ssh %s: %s", host, command)
        try:
            return await asyncio.wait_for(
                self._run(host, command), timeout + DEADLINE_GRACE
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"timed out after {timeout + DEADLINE_GRACE}s") from e
        except asyncssh.Error as e:
            raise TransportError(f"SSH error: {e}") from e
        except OSError as e:
            raise TransportError(f"Connection error: {e}") from e


class LocalTransport(Transport):
    """Runs commands in a local login shell; the host is ignored."""

    name = "local"

    async def execute(self, host: str, command: str, timeout: int) -> ExecOutput:
        logger.debug("local (%s): %s", host, command)
        try:
            proc = await asyncio.create_subprocess_exec(
                "sh",
                "-lc",
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError(f"Cannot spawn shell: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout + DEADLINE_GRACE
            )
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise TransportError(f"timed out after {timeout + DEADLINE_GRACE}s") from e

        return ExecOutput(
            stdout=_as_text(stdout),
            stderr=_as_text(stderr),
            exit_status=proc.returncode,
        )


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def from_config(config: Config) -> Transport:
    """Build the transport named in the configuration."""
    if config.transport == "local":
        return LocalTransport()
    return SshTransport(config)
