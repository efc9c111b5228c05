"""
Tests for the local and SSH transports.

The local transport runs real shell commands; the SSH tests only dial a
loopback port that nothing listens on.
"""

import socket

import asyncssh
import pytest

from beeg import transport
from beeg.config import Config, Defaults, NodeConfig
from beeg.transport import (
    LocalTransport,
    SshTransport,
    TransportError,
    from_config,
    wrap_timeout,
)


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# =============================================================================
# LOCAL
# =============================================================================

class TestLocalTransport:
    @pytest.mark.asyncio
    async def test_captures_output_and_status(self):
        output = await LocalTransport().execute("ignored", "echo OK; echo oops >&2; exit 3", 5)
        assert output.stdout == "OK\n"
        assert output.stderr == "oops\n"
        assert output.exit_status == 3

    @pytest.mark.asyncio
    async def test_timeout_guard_kills_slow_command(self):
        output = await LocalTransport().execute("ignored", wrap_timeout("sleep 5", 1), 1)
        assert output.exit_status == 124
        assert output.stdout == ""

    @pytest.mark.asyncio
    async def test_hang_trips_local_deadline(self, monkeypatch):
        monkeypatch.setattr(transport, "DEADLINE_GRACE", 1)
        with pytest.raises(TransportError, match="timed out after 1s"):
            await LocalTransport().execute("ignored", "sleep 5", 0)

    @pytest.mark.asyncio
    async def test_spawn_failure(self, monkeypatch):
        async def no_shell(*args, **kwargs):
            raise FileNotFoundError("sh")

        monkeypatch.setattr(transport.asyncio, "create_subprocess_exec", no_shell)
        with pytest.raises(TransportError, match="Cannot spawn shell"):
            await LocalTransport().execute("ignored", "true", 5)


# =============================================================================
# SSH
# =============================================================================

class TestSshTransport:
    @pytest.mark.asyncio
    async def test_refused_connection(self):
        port = unused_port()
        config = Config(nodes=[NodeConfig(name="lo", host="127.0.0.1", port=port)])
        with pytest.raises(TransportError, match="Connection error"):
            await SshTransport(config).execute("127.0.0.1", "true", 2)

    @pytest.mark.asyncio
    async def test_ssh_errors_are_wrapped(self, monkeypatch):
        def denied(host, **options):
            raise asyncssh.PermissionDenied("auth failed")

        monkeypatch.setattr(transport.asyncssh, "connect", denied)
        with pytest.raises(TransportError, match="SSH error: auth failed"):
            await SshTransport(Config()).execute("10.0.0.1", "true", 2)

    def test_connect_options_prefer_node_settings(self, tmp_path):
        key = tmp_path / "id_ed25519"
        key.write_text("")
        config = Config(
            nodes=[NodeConfig(name="a", host="10.0.0.1", user="beegfs", port=2222, ssh_key=key)],
            defaults=Defaults(known_hosts=tmp_path / "known_hosts"),
        )
        options = SshTransport(config)._connect_options("10.0.0.1")
        assert options["port"] == 2222
        assert options["username"] == "beegfs"
        assert options["client_keys"] == [str(key)]
        assert options["known_hosts"] == str(tmp_path / "known_hosts")

    def test_missing_key_falls_back_to_agent(self, tmp_path):
        config = Config(defaults=Defaults(ssh_key=tmp_path / "absent", user="ops"))
        options = SshTransport(config)._connect_options("10.9.9.9")
        assert "client_keys" not in options
        assert options["username"] == "ops"
        assert options["known_hosts"] is None


# =============================================================================
# SELECTION
# =============================================================================

@pytest.mark.parametrize(
    "name, cls", [("local", LocalTransport), ("ssh", SshTransport)]
)
def test_from_config(name, cls):
    selected = from_config(Config(transport=name))
    assert isinstance(selected, cls)
    assert selected.name == name
