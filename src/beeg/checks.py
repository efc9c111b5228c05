"""One-shot checks: a sequential loop over nodes and a static table or JSON."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from .aggregator import Aggregator, RunState
from .config import NodeConfig
from .executor import Executor
from .transport import Transport, TransportError, wrap_timeout

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

UNKNOWN = "unknown"


@dataclass(frozen=True)
class VersionCheck:
    """A single remote query whose first output line is a version string."""

    name: str
    label: str
    column: str
    json_key: str
    query: str
    ignore_versions: tuple[str, ...] = (UNKNOWN,)

    def is_ok(self, version: str) -> bool:
        return version != UNKNOWN


VERSION_CHECKS: dict[str, VersionCheck] = {
    "nvidia-driver": VersionCheck(
        name="nvidia-driver",
        label="NVIDIA driver",
        column="Driver",
        json_key="driver",
        query=(
            "nvidia-smi --query-gpu=driver_version --format=csv,noheader 2>/dev/null | head -n1 "
            "|| modinfo -F version nvidia 2>/dev/null | head -n1 || echo unknown"
        ),
    ),
    "cuda": VersionCheck(
        name="cuda",
        label="CUDA",
        column="CUDA",
        json_key="cuda",
        query=(
            "nvidia-smi --query-gpu=cuda_version --format=csv,noheader 2>/dev/null | head -n1 "
            "|| nvcc --version 2>/dev/null | awk '/release/ {print $NF}' | sed 's/^V//' | head -n1 "
            "|| awk '{print $3}' /usr/local/cuda/version.txt 2>/dev/null | head -n1 || echo unknown"
        ),
    ),
    "nvidia-fs": VersionCheck(
        name="nvidia-fs",
        label="nvidia-fs",
        column="nvidia-fs",
        json_key="nvidia_fs",
        query=(
            "modinfo -F version nvidia_fs 2>/dev/null | head -n1 "
            "|| modinfo -F version nvidia-fs 2>/dev/null | head -n1 "
            "|| lsmod | awk '$1 ~ /^(nvidia_fs|nvidia-fs)$/ {print \"loaded\"}' | head -n1 "
            "|| echo unknown"
        ),
        ignore_versions=(UNKNOWN, "loaded"),
    ),
    "ofed": VersionCheck(
        name="ofed",
        label="OFED/RDMA",
        column="OFED/RDMA",
        json_key="ofed",
        query=(
            "ofed_info -s 2>/dev/null | head -n1 "
            "|| modinfo -F version mlx5_core 2>/dev/null | head -n1 "
            "|| modinfo -F version mlx5_ib 2>/dev/null | head -n1 "
            "|| ibv_devinfo --version 2>/dev/null | head -n1 || echo unknown"
        ),
    ),
}


@dataclass
class VersionResult:
    node: str
    host: str
    version: str
    ok: bool
    stderr: str


async def run_version_check(
    check: VersionCheck,
    nodes: Sequence[NodeConfig],
    transport: Transport,
    timeout: int,
) -> list[VersionResult]:
    """Query every node in turn."""
    results = []
    for node in nodes:
        try:
            out = await transport.execute(node.host, wrap_timeout(check.query, timeout), timeout)
        except TransportError as e:
            results.append(VersionResult(node.name, node.host, "error", False, str(e)))
            continue
        lines = out.stdout.strip().splitlines()
        version = lines[0].strip() if lines else UNKNOWN
        results.append(
            VersionResult(node.name, node.host, version, check.is_ok(version), out.stderr)
        )
    return results


def version_warnings(check: VersionCheck, results: Sequence[VersionResult]) -> list[str]:
    """Missing versions and version mismatches across nodes."""
    warnings = []
    missing = [r.node for r in results if not r.ok]
    if missing:
        warnings.append(
            f"WARNING: {check.label} missing on {len(missing)} node(s): {', '.join(missing)}"
        )

    versions: dict[str, list[str]] = defaultdict(list)
    ignored = {v.lower() for v in check.ignore_versions}
    for r in results:
        if r.ok and r.version and r.version.lower() not in ignored:
            versions[r.version].append(r.node)
    if len(versions) > 1:
        warnings.append(f"WARNING: {check.label} version mismatch across nodes:")
        for version in sorted(versions):
            warnings.append(f"  {version}: {', '.join(versions[version])}")
    return warnings


def print_version_results(
    check: VersionCheck, results: Sequence[VersionResult], output: str
) -> None:
    """Print one row per node, then any version warnings on stderr."""
    if output == "json":
        rows = [
            {
                "node": r.node,
                "host": r.host,
                check.json_key: r.version,
                "ok": r.ok,
                "stderr": r.stderr,
            }
            for r in results
        ]
        console.print_json(json.dumps(rows))
    else:
        table = Table(show_lines=True)
        for column in ("Node", "Host", check.column, "Status"):
            table.add_column(column)
        for r in results:
            status = Text("OK", style="green") if r.ok else Text("MISSING", style="red")
            table.add_row(Text(r.node), Text(r.host), Text(r.version), status)
        console.print(table)

    # Warnings go to stderr so JSON consumers are unaffected
    for line in version_warnings(check, results):
        err_console.print(line, style="yellow", markup=False, highlight=False)


# Storage targets

SERVICE_QUERY = "systemctl is-active beegfs-storage >/dev/null 2>&1 && echo active || echo inactive"
TARGETS_QUERY = (
    "beegfs-ctl --listtargets --state --storage 2>/dev/null "
    "|| beegfs-ctl --listtargets --storage 2>/dev/null"
)
TARGET_LINE = re.compile(r"^\s*(\d+)\b(.*)$", re.MULTILINE)
TARGET_STATE = re.compile(r"\(([^)]+)\)")


@dataclass
class TargetResult:
    target: str
    present: bool
    state: str
    service_active: bool


def parse_targets(text: str) -> dict[str, str]:
    """Map target id to its state.

    The state is the last parenthesised word on the line (`101 @ node (Good)`).
    Tabular `--state` output has no parentheses; its non-numeric columns are
    joined instead (`101  Online  Good  1` gives `Online/Good`).
    """
    found = {}
    for match in TARGET_LINE.finditer(text):
        rest = match.group(2)
        states = TARGET_STATE.findall(rest)
        if states:
            found[match.group(1)] = states[-1].strip()
            continue
        words = [w for w in rest.split() if not w.isdigit()]
        found[match.group(1)] = "/".join(words) if words else UNKNOWN
    return found


async def run_storage_target_check(
    node: NodeConfig, targets: str, transport: Transport, timeout: int
) -> tuple[bool, list[TargetResult]]:
    """Check the storage service and the listed targets from one node.

    Transport failures propagate; a single-node check has nothing to show
    without them.
    """
    svc = await transport.execute(node.host, wrap_timeout(SERVICE_QUERY, timeout), timeout)
    service_active = svc.stdout.strip().startswith("active")

    out = await transport.execute(node.host, wrap_timeout(TARGETS_QUERY, timeout), timeout)
    found = parse_targets(out.stdout)

    if targets.lower() == "all":
        wanted = sorted(found, key=int)
    else:
        wanted = [t.strip() for t in targets.split(",") if t.strip()]

    return service_active, [
        TargetResult(tid, tid in found, found.get(tid, "missing"), service_active)
        for tid in wanted
    ]


def target_warnings(node: NodeConfig, rows: Sequence[TargetResult], service_active: bool) -> list[str]:
    warnings = []
    missing = [r.target for r in rows if not r.present]
    if missing:
        warnings.append(f"WARNING: missing targets: {', '.join(missing)}")
    states: dict[str, list[str]] = defaultdict(list)
    for r in rows:
        if r.present:
            states[r.state].append(r.target)
    if len(states) > 1:
        warnings.append("WARNING: target state mismatch:")
        for state in sorted(states):
            warnings.append(f"  {state}: {', '.join(states[state])}")
    if not service_active:
        warnings.append(f"WARNING: beegfs-storage service is inactive on {node.name}")
    return warnings


def print_target_results(
    node: NodeConfig, rows: Sequence[TargetResult], service_active: bool, output: str
) -> None:
    """Print the target table, then any target warnings on stderr."""
    if output == "json":
        console.print_json(json.dumps([asdict(r) for r in rows]))
    else:
        table = Table(show_lines=True)
        for column in ("TargetID", "Present", "State", "Service"):
            table.add_column(column)
        for r in rows:
            table.add_row(
                Text(r.target),
                "YES" if r.present else "NO",
                Text(r.state),
                "active" if r.service_active else "inactive",
            )
        console.print(table)

    for line in target_warnings(node, rows, service_active):
        err_console.print(line, style="yellow", markup=False, highlight=False)


# Node inventory and ad-hoc commands

def print_node_list(nodes: Sequence[NodeConfig], output: str) -> None:
    """Print the inventory as a table, or node names as JSON."""
    if output == "json":
        console.print_json(json.dumps([node.name for node in nodes]))
        return
    table = Table(title="Known nodes")
    for column in ("Node", "Host", "Labels"):
        table.add_column(column)
    for node in nodes:
        table.add_row(Text(node.name), Text(node.host), Text(", ".join(node.labels)))
    console.print(table)


async def run_node_exec(
    nodes: Sequence[NodeConfig], command: str, transport: Transport, timeout: int, output: str
) -> int:
    """Run one command on each node in turn. Returns the number of transport failures."""
    failures = 0
    results = []
    for node in nodes:
        try:
            out = await transport.execute(node.host, wrap_timeout(command, timeout), timeout)
        except TransportError as e:
            failures += 1
            if output == "json":
                results.append({"node": node.name, "ok": False, "error": str(e)})
            else:
                err_console.print(f"!!! {node.name} error: {e}", markup=False, highlight=False)
            continue

        if output == "json":
            results.append(
                {"node": node.name, "ok": True, "stdout": out.stdout, "stderr": out.stderr}
            )
        else:
            console.print(f"=== {node.name} ===", style="bold cyan", markup=False)
            console.out(out.stdout.rstrip("\n"))
            if out.stderr.strip():
                err_console.print(f"--- {node.name} (stderr) ---", style="red", markup=False)
                err_console.out(out.stderr.rstrip("\n"))

    if output == "json":
        console.print_json(json.dumps(results))
    return failures


# Client mount check without the live view

async def run_headless(executor: Executor, aggregator: Aggregator, tick: float = 0.1) -> RunState:
    """Same aggregation loop as the live view, without a terminal UI."""
    tasks = executor.start()
    try:
        while aggregator.poll() is RunState.RUNNING:
            await asyncio.sleep(tick)
            aggregator.drain(executor.channel)
    except asyncio.CancelledError:
        aggregator.cancel()
        executor.cancel()
        raise
    await asyncio.gather(*tasks, return_exceptions=True)
    return aggregator.state


def print_mount_results(aggregator: Aggregator, mount: str, output: str) -> None:
    """Print the final result matrix as a table or JSON."""
    if output == "json":
        console.print_json(
            json.dumps(
                {
                    "mount": mount,
                    "completed": aggregator.completed,
                    "total": aggregator.total,
                    "state": (aggregator.exit_state or aggregator.state).value,
                    "nodes": aggregator.to_dict(),
                }
            )
        )
        return

    table = Table(title=f"Mount {escape(mount)}", show_lines=True)
    table.add_column("Node")
    table.add_column("Host")
    for step in aggregator.steps:
        table.add_column(step.header)
    styles = {"OK": "green", "ERR": "red", "...": "dim"}
    for node, cells in aggregator.rows():
        table.add_row(
            Text(node.name), Text(node.host), *(Text(c, style=styles[c]) for c in cells)
        )
    table.caption = aggregator.footer()
    console.print(table)
