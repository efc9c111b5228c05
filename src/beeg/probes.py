"""Probe sets: ordered diagnostic steps run against every node."""

from __future__ import annotations

import secrets
import shlex
from dataclasses import dataclass
from typing import Callable

from .progress import Outcome
from .transport import ExecOutput

OK_SENTINEL = "OK"
MOUNTS_CONF = "/etc/beegfs/beegfs-mounts.conf"


@dataclass(frozen=True)
class ProbeParams:
    """Run parameters substituted into probe commands."""

    mount: str


@dataclass(frozen=True)
class ProbeStep:
    """One check in a probe set."""

    key: str
    header: str
    build: Callable[[ProbeParams], str]
    classify: Callable[[ExecOutput], Outcome]

    def render(self, params: ProbeParams) -> str:
        return self.build(params)


def classify_sentinel(output: ExecOutput, sentinel: str = OK_SENTINEL) -> Outcome:
    """Ok when the first token of stdout is the sentinel, Err otherwise."""
    tokens = output.stdout.split()
    if tokens and tokens[0] == sentinel:
        return Outcome.ok()
    if tokens:
        return Outcome.err(tokens[0][:32])
    return Outcome.err(output.stderr.strip()[:64] or "no output")


def classify_nonempty(output: ExecOutput) -> Outcome:
    """Ok when stdout has any content.

    Used by the df step, which prints a usage line rather than a sentinel.
    This is looser than classify_sentinel and is kept as-is on purpose.
    """
    if output.stdout.strip():
        return Outcome.ok()
    return Outcome.err("empty output")


def rand_suffix() -> str:
    """32 bits of randomness, hex encoded."""
    return secrets.token_hex(4)


def _mount_defined(params: ProbeParams) -> str:
    mount = shlex.quote(params.mount)
    return (
        f"awk -v m={mount} "
        "'!/^[[:space:]]*#/ { for (i = 1; i <= NF; i++) if ($i == m) f = 1 } END { exit !f }' "
        f"{MOUNTS_CONF} >/dev/null 2>&1 && echo OK || echo MISSING"
    )


def _client_active(params: ProbeParams) -> str:
    return (
        "systemctl is-active beegfs-client >/dev/null 2>&1 && "
        "systemctl is-active beegfs-helperd >/dev/null 2>&1 && echo OK || echo MISSING"
    )


def _df(params: ProbeParams) -> str:
    return f"df -h {shlex.quote(params.mount)} 2>&1 | tail -n +2 || true"


def _ls(params: ProbeParams) -> str:
    return f"ls -la {shlex.quote(params.mount)} >/dev/null 2>&1 && echo OK || echo ERR"


def _read_write(params: ProbeParams) -> str:
    # A transport failure between dd and rm can leave the file behind
    path = shlex.quote(f"{params.mount.rstrip('/')}/.beeg_check_{rand_suffix()}")
    return (
        f"dd if=/dev/urandom of={path} bs=4K count=1 status=none && "
        f"rm -f {path} && echo OK || echo ERR"
    )


CLIENT_MOUNT_PROBES: list[ProbeStep] = [
    ProbeStep("defined", "Defined", _mount_defined, classify_sentinel),
    ProbeStep("client", "Client", _client_active, classify_sentinel),
    ProbeStep("df", "df -h", _df, classify_nonempty),
    ProbeStep("ls", "ls", _ls, classify_sentinel),
    ProbeStep("rw", "rw", _read_write, classify_sentinel),
]
