#!/usr/bin/env python3
"""Main entry point for beeg."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from textual.logging import TextualHandler

from . import checks
from .aggregator import Aggregator, RunState
from .config import Config, load_config, select_nodes
from .dashboard import MountDashboard, run_dashboard
from .executor import Executor
from .probes import CLIENT_MOUNT_PROBES, ProbeParams
from .transport import TransportError, from_config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all subcommands."""
    parser = argparse.ArgumentParser(prog="beeg", description="BeeGFS CLI assistant")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (-v, -vv)",
    )
    parser.add_argument(
        "--output",
        choices=("human", "json"),
        default="human",
        help="Output format",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="Config file to use (node inventory, transport, defaults)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    # node
    node = commands.add_parser("node", help="Node-oriented actions")
    node_commands = node.add_subparsers(dest="node_command", required=True)
    node_commands.add_parser("list", help="List known nodes")
    exec_parser = node_commands.add_parser(
        "exec", help="Execute a read-only command on nodes"
    )
    _add_selector(exec_parser)
    _add_timeout(exec_parser)
    exec_parser.add_argument(
        "cmd", nargs=argparse.REMAINDER, help="Command to run, after '--'"
    )

    # check
    check = commands.add_parser("check", help="Cluster checks")
    check_commands = check.add_subparsers(dest="check_command", required=True)

    mount = check_commands.add_parser(
        "client-mount", help="Client mount checks with live TUI"
    )
    mount.add_argument("--mount", required=True, help="Target mountpoint (e.g. /mnt/beegfs)")
    _add_selector(mount)
    _add_timeout(mount)
    mount.add_argument(
        "--max-in-flight",
        type=int,
        help="Maximum number of probes running at once (default: from config)",
    )
    mount.add_argument(
        "--tick", type=float, default=0.1, help="Redraw interval in seconds"
    )
    mount.add_argument("--quit-key", default="q", help="Key that cancels the run")
    mount.add_argument(
        "--no-tui",
        action="store_true",
        help="Run without the live view and print the final table",
    )
    mount.add_argument("--no-logs", action="store_true", help="Disable transcript files")
    mount.add_argument("--log-dir", type=Path, help="Override the transcript directory")

    targets = check_commands.add_parser(
        "storage-target", help="Storage target health check from a single node"
    )
    targets.add_argument(
        "--selector",
        "--node",
        required=True,
        help="Node to run the check on (name/host/label); must resolve to one node",
    )
    targets.add_argument(
        "--targets", default="all", help="Target IDs: comma-separated or 'all'"
    )
    _add_timeout(targets)

    for name, version_check in checks.VERSION_CHECKS.items():
        sub = check_commands.add_parser(name, help=f"Check {version_check.label} version on nodes")
        _add_selector(sub)
        _add_timeout(sub)

    return parser


def _add_selector(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-s",
        "--selector",
        default="all",
        help="Node selector: name/host/label, or 'all'",
    )


def _add_timeout(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--timeout", type=int, help="Timeout seconds per operation (default: from config)"
    )


def setup_logging(verbose: int) -> None:
    """Route log records through Textual, which falls back to stderr outside the app."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, handlers=[TextualHandler()], force=True)
    logging.getLogger("asyncssh").setLevel(max(level, logging.WARNING))


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    # Load configuration
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if args.command == "node":
        if args.node_command == "list":
            checks.print_node_list(config.nodes, args.output)
            return 0
        return _node_exec(config, args)

    if args.check_command == "client-mount":
        return _client_mount(config, args)
    if args.check_command == "storage-target":
        return _storage_target(config, args)
    return _version_check(config, args)


def _timeout(config: Config, args: argparse.Namespace) -> int:
    return args.timeout if args.timeout is not None else config.defaults.timeout


def _node_exec(config: Config, args: argparse.Namespace) -> int:
    cmd = args.cmd[1:] if args.cmd[:1] == ["--"] else args.cmd
    if not cmd:
        print("Error: no command given (use: beeg node exec -- CMD...)", file=sys.stderr)
        return 2
    nodes = select_nodes(config, args.selector)
    if args.output == "human":
        print(f"Exec: selector='{args.selector}' cmd='{' '.join(cmd)}' on {len(nodes)} node(s)")
    failures = asyncio.run(
        checks.run_node_exec(
            nodes, " ".join(cmd), from_config(config), _timeout(config, args), args.output
        )
    )
    return 1 if failures else 0


def _version_check(config: Config, args: argparse.Namespace) -> int:
    version_check = checks.VERSION_CHECKS[args.check_command]
    nodes = select_nodes(config, args.selector)
    results = asyncio.run(
        checks.run_version_check(
            version_check, nodes, from_config(config), _timeout(config, args)
        )
    )
    checks.print_version_results(version_check, results, args.output)
    return 0


def _storage_target(config: Config, args: argparse.Namespace) -> int:
    nodes = select_nodes(config, args.selector)
    if len(nodes) != 1:
        print(
            f"Error: selector must resolve to exactly one node (got {len(nodes)})",
            file=sys.stderr,
        )
        return 1
    node = nodes[0]
    try:
        service_active, rows = asyncio.run(
            checks.run_storage_target_check(
                node, args.targets, from_config(config), _timeout(config, args)
            )
        )
    except TransportError as e:
        print(f"Error: {node.name}: {e}", file=sys.stderr)
        return 1
    checks.print_target_results(node, rows, service_active, args.output)
    return 0


def _client_mount(config: Config, args: argparse.Namespace) -> int:
    nodes = select_nodes(config, args.selector)
    if not nodes:
        print(f"Error: no nodes match selector '{args.selector}'", file=sys.stderr)
        return 1
    if args.max_in_flight is not None and args.max_in_flight < 1:
        print("Error: --max-in-flight must be at least 1", file=sys.stderr)
        return 2
    if args.log_dir:
        config.log_dir = args.log_dir.expanduser().resolve()

    aggregator = Aggregator(nodes, CLIENT_MOUNT_PROBES)
    executor = Executor(
        config,
        nodes,
        CLIENT_MOUNT_PROBES,
        ProbeParams(mount=args.mount),
        timeout=_timeout(config, args),
        max_in_flight=args.max_in_flight,
        enable_logging=not args.no_logs,
    )
    try:
        executor.setup_logging()
    except OSError as e:
        print(f"Error: cannot create log directory {config.log_dir}: {e}", file=sys.stderr)
        return 1

    # The live view has no machine-readable form, so JSON implies headless
    if args.no_tui or args.output == "json":
        return _client_mount_headless(executor, aggregator, args)

    app = MountDashboard(executor, aggregator, tick=args.tick, quit_key=args.quit_key)
    state = run_dashboard(app)
    if state is None or app.return_code:
        print("Error: live view stopped unexpectedly", file=sys.stderr)
        return 1
    if state is RunState.CANCELLED:
        print(f"Cancelled: {aggregator.footer()}", file=sys.stderr)
    checks.print_mount_results(aggregator, args.mount, args.output)
    return 0


def _client_mount_headless(
    executor: Executor, aggregator: Aggregator, args: argparse.Namespace
) -> int:
    try:
        asyncio.run(checks.run_headless(executor, aggregator, tick=args.tick))
    except KeyboardInterrupt:
        aggregator.cancel()
        executor.cancel()
        print(f"Cancelled: {aggregator.footer()}", file=sys.stderr)
    finally:
        aggregator.restore()
    checks.print_mount_results(aggregator, args.mount, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
