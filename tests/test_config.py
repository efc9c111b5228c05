"""
Tests for configuration loading and node selection.
"""

from pathlib import Path

import pytest

from beeg.config import Config, NodeConfig, load_config, select_nodes


# =============================================================================
# FIXTURES
# =============================================================================

SAMPLE_CONFIG = """
transport: ssh
log_dir: {log_dir}
defaults:
  user: admin
  port: 2222
  timeout: 15
  max_in_flight: 4
nodes:
  - name: client01
    host: 10.1.0.1
    labels: [client, gpu]
  - name: client02
    host: 10.1.0.2
    labels: client
    port: 22
  - name: storage01
    host: 10.1.0.10
    labels: [storage]
    user: beegfs
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(SAMPLE_CONFIG.format(log_dir=tmp_path / "logs"))
    return path


# =============================================================================
# LOADING
# =============================================================================

class TestLoadConfig:
    def test_parses_nodes_and_defaults(self, config_file, tmp_path):
        config = load_config(config_file)

        assert config.transport == "ssh"
        assert config.source_path == config_file.resolve()
        assert config.log_dir == (tmp_path / "logs").resolve()
        assert config.defaults.user == "admin"
        assert config.defaults.timeout == 15
        assert config.defaults.max_in_flight == 4
        assert [n.name for n in config.nodes] == ["client01", "client02", "storage01"]

    def test_nodes_inherit_defaults(self, config_file):
        config = load_config(config_file)
        client01, client02, storage01 = config.nodes

        assert client01.user == "admin"
        assert client01.port == 2222
        assert client02.port == 22
        assert storage01.user == "beegfs"

    def test_single_label_string_becomes_list(self, config_file):
        config = load_config(config_file)
        assert config.nodes[1].labels == ["client"]

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_json_is_accepted(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"transport": "local", "nodes": [{"name": "n1", "host": "h1"}]}')

        config = load_config(path)

        assert config.transport == "local"
        assert config.nodes[0].host == "h1"

    @pytest.mark.parametrize(
        "body, message",
        [
            ("nodes:\n  - host: h1\n", "name"),
            ("nodes:\n  - name: n1\n", "host"),
            ("transport: telnet\n", "Unknown transport"),
            ("nodes:\n  - {name: n1, host: h1}\n  - {name: n1, host: h2}\n", "Duplicate"),
            ("defaults:\n  max_in_flight: 0\n", "max_in_flight"),
            ("- just\n- a list\n", "mapping"),
        ],
    )
    def test_invalid_content(self, tmp_path, body, message):
        path = tmp_path / "bad.yaml"
        path.write_text(body)
        with pytest.raises(ValueError, match=message):
            load_config(path)

    def test_env_fallback_when_default_missing(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BEEG_CONFIG", str(tmp_path / "absent.yaml"))
        monkeypatch.setenv("BEEG_NODES", "10.2.0.1, 10.2.0.2,,")

        config = load_config()

        assert [(n.name, n.host) for n in config.nodes] == [
            ("node-1", "10.2.0.1"),
            ("node-2", "10.2.0.2"),
        ]

    def test_env_config_path(self, config_file, monkeypatch):
        monkeypatch.setenv("BEEG_CONFIG", str(config_file))
        assert len(load_config().nodes) == 3

    def test_empty_inventory(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BEEG_CONFIG", str(tmp_path / "absent.yaml"))
        monkeypatch.delenv("BEEG_NODES", raising=False)
        assert load_config().nodes == []


# =============================================================================
# SELECTION
# =============================================================================

class TestSelectNodes:
    @pytest.fixture
    def inventory(self) -> Config:
        return Config(
            nodes=[
                NodeConfig(name="c1", host="10.0.0.1", labels=["client"]),
                NodeConfig(name="s1", host="10.0.0.2", labels=["storage"]),
                NodeConfig(name="c2", host="10.0.0.3", labels=["client"]),
            ]
        )

    def test_all_keeps_inventory_order(self, inventory):
        assert [n.name for n in select_nodes(inventory, "ALL")] == ["c1", "s1", "c2"]

    def test_by_name(self, inventory):
        assert [n.name for n in select_nodes(inventory, "s1")] == ["s1"]

    def test_by_host(self, inventory):
        assert [n.name for n in select_nodes(inventory, "10.0.0.3")] == ["c2"]

    def test_by_label(self, inventory):
        assert [n.name for n in select_nodes(inventory, "client")] == ["c1", "c2"]

    def test_no_match(self, inventory):
        assert select_nodes(inventory, "gpu") == []
