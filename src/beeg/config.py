"""Configuration loader for beeg."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

TRANSPORTS = ("ssh", "local")


@dataclass
class Defaults:
    """Default values that can be overridden per node."""

    user: str = "root"
    port: int = 22
    ssh_key: Path = field(default_factory=lambda: Path("~/.ssh/id_rsa").expanduser())
    timeout: int = 10
    max_in_flight: int = 32
    known_hosts: Path | None = None


@dataclass
class NodeConfig:
    """Configuration for a single node."""

    name: str
    host: str
    labels: list[str] = field(default_factory=list)
    user: str = "root"
    port: int = 22
    ssh_key: Path = field(default_factory=lambda: Path("~/.ssh/id_rsa").expanduser())


@dataclass
class Config:
    """Main configuration: node inventory plus transport settings."""

    nodes: list[NodeConfig] = field(default_factory=list)
    defaults: Defaults = field(default_factory=Defaults)
    transport: str = "ssh"
    log_dir: Path | None = None
    source_path: Path | None = None  # Path to the original config file


def default_config_path() -> Path:
    """Return the config path used when none is given on the command line."""
    env_path = os.environ.get("BEEG_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return Path("~/.config/beeg/config.yaml").expanduser()


def load_config(config_path: str | Path | None = None) -> Config:
    """Load and validate configuration.

    An explicit path must exist. Without one, the default path is tried and,
    if it is missing too, the inventory is built from ``$BEEG_NODES``.
    """
    if config_path is None:
        path = default_config_path()
        if not path.exists():
            return _config_from_env()
    else:
        path = Path(config_path).expanduser().resolve()
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Cannot parse {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    config = _parse_config(raw)
    config.source_path = path
    return config


def _config_from_env() -> Config:
    """Build a bare inventory from the comma-separated ``$BEEG_NODES``."""
    defaults = Defaults()
    hosts = [h.strip() for h in os.environ.get("BEEG_NODES", "").split(",") if h.strip()]
    nodes = [
        NodeConfig(
            name=f"node-{i}",
            host=host,
            user=defaults.user,
            port=defaults.port,
            ssh_key=defaults.ssh_key,
        )
        for i, host in enumerate(hosts, start=1)
    ]
    return Config(nodes=nodes, defaults=defaults)


def _parse_defaults(raw: dict[str, Any]) -> Defaults:
    """Parse the defaults section."""
    defaults_raw = raw.get("defaults") or {}
    ssh_key_str = defaults_raw.get("ssh_key", "~/.ssh/id_rsa")
    known_hosts = defaults_raw.get("known_hosts")
    max_in_flight = int(defaults_raw.get("max_in_flight", 32))
    if max_in_flight < 1:
        raise ValueError("defaults.max_in_flight must be at least 1")
    return Defaults(
        user=defaults_raw.get("user", "root"),
        port=int(defaults_raw.get("port", 22)),
        ssh_key=Path(ssh_key_str).expanduser(),
        timeout=int(defaults_raw.get("timeout", 10)),
        max_in_flight=max_in_flight,
        known_hosts=Path(known_hosts).expanduser() if known_hosts else None,
    )


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw YAML data into Config object."""
    defaults = _parse_defaults(raw)

    transport = raw.get("transport", "ssh")
    if transport not in TRANSPORTS:
        raise ValueError(
            f"Unknown transport '{transport}' (expected one of: {', '.join(TRANSPORTS)})"
        )

    log_dir = None
    if raw.get("log_dir"):
        log_dir = Path(raw["log_dir"]).expanduser().resolve()

    # Root-level ssh_user is accepted for configs written for older releases
    if "ssh_user" in raw and "user" not in (raw.get("defaults") or {}):
        defaults.user = raw["ssh_user"]

    nodes = []
    seen: set[str] = set()
    for node_raw in raw.get("nodes") or []:
        node = _parse_node(node_raw, defaults)
        if node.name in seen:
            raise ValueError(f"Duplicate node name '{node.name}'")
        seen.add(node.name)
        nodes.append(node)

    return Config(
        nodes=nodes,
        defaults=defaults,
        transport=transport,
        log_dir=log_dir,
    )


def _parse_node(node_raw: dict[str, Any], defaults: Defaults) -> NodeConfig:
    """Parse a single node configuration."""
    name = node_raw.get("name")
    if not name:
        raise ValueError("Node must have a 'name' field")

    host = node_raw.get("host")
    if not host:
        raise ValueError(f"Node '{name}' must have a 'host' field")

    labels = node_raw.get("labels") or []
    if isinstance(labels, str):
        labels = [labels]

    ssh_key = defaults.ssh_key
    if "ssh_key" in node_raw:
        ssh_key = Path(node_raw["ssh_key"]).expanduser()

    return NodeConfig(
        name=str(name),
        host=str(host),
        labels=[str(label) for label in labels],
        user=node_raw.get("user", defaults.user),
        port=int(node_raw.get("port", defaults.port)),
        ssh_key=ssh_key,
    )


def select_nodes(config: Config, selector: str) -> list[NodeConfig]:
    """Resolve a selector (name, host, label, or 'all') in inventory order."""
    if selector.lower() == "all":
        return list(config.nodes)
    return [
        node
        for node in config.nodes
        if node.name == selector or node.host == selector or selector in node.labels
    ]
