"""
Tests for the client mount probe set and outcome classification.
"""

import re
import shlex

import pytest

from beeg.probes import (
    CLIENT_MOUNT_PROBES,
    ProbeParams,
    classify_nonempty,
    classify_sentinel,
    rand_suffix,
)
from beeg.progress import OutcomeStatus
from beeg.transport import ExecOutput, wrap_timeout


def probe(key):
    return next(step for step in CLIENT_MOUNT_PROBES if step.key == key)


class TestClassifySentinel:
    @pytest.mark.parametrize("stdout", ["OK", "OK\n", "  OK  \n", "\nOK\n", "OK 4096 bytes"])
    def test_ok(self, stdout):
        assert classify_sentinel(ExecOutput(stdout, "")).status is OutcomeStatus.OK

    @pytest.mark.parametrize("stdout", ["ERR\n", "MISSING\n", "OKAY\n", "ok\n", "", "   \n"])
    def test_err(self, stdout):
        assert classify_sentinel(ExecOutput(stdout, "")).status is OutcomeStatus.ERR

    def test_err_detail_is_first_token(self):
        outcome = classify_sentinel(ExecOutput("MISSING\n", ""))
        assert outcome.detail == "MISSING"

    def test_err_detail_falls_back_to_stderr(self):
        outcome = classify_sentinel(ExecOutput("", "timeout: failed to run command\n"))
        assert outcome.detail == "timeout: failed to run command"


class TestClassifyNonEmpty:
    def test_df_line_is_ok(self):
        out = ExecOutput("beegfs_nodev  100T   40T   60T  40% /mnt/beegfs\n", "")
        assert classify_nonempty(out).status is OutcomeStatus.OK

    def test_empty_is_err(self):
        assert classify_nonempty(ExecOutput("\n", "")).status is OutcomeStatus.ERR


class TestProbeSet:
    def test_order_and_size(self):
        assert [s.key for s in CLIENT_MOUNT_PROBES] == ["defined", "client", "df", "ls", "rw"]

    def test_df_uses_non_empty_classifier(self):
        assert probe("df").classify is classify_nonempty
        assert all(
            s.classify is classify_sentinel for s in CLIENT_MOUNT_PROBES if s.key != "df"
        )

    @pytest.mark.parametrize("mount", ["/mnt/fs", "/mnt/my fs", "/mnt/a;rm -rf /", "/mnt/$(id)'x"])
    def test_mount_is_quoted(self, mount):
        params = ProbeParams(mount=mount)
        assert shlex.split(probe("df").render(params))[2] == mount
        assert shlex.split(probe("ls").render(params))[2] == mount
        assert shlex.split(probe("defined").render(params))[2] == f"m={mount}"

    def test_rw_file_is_unique_under_mount(self):
        params = ProbeParams(mount="/mnt/fs/")
        first = probe("rw").render(params)
        second = probe("rw").render(params)

        pattern = re.compile(r"of=/mnt/fs/\.beeg_check_[0-9a-f]{8} ")
        assert pattern.search(first)
        assert first != second

    def test_rw_deletes_what_it_writes(self):
        tokens = shlex.split(probe("rw").render(ProbeParams(mount="/mnt/fs")))
        written = next(t for t in tokens if t.startswith("of="))[3:]
        assert tokens[tokens.index("rm") + 2] == written

    def test_rand_suffix_is_32_bits_hex(self):
        assert re.fullmatch(r"[0-9a-f]{8}", rand_suffix())


class TestWrapTimeout:
    def test_command_survives_as_single_argument(self):
        command = probe("ls").render(ProbeParams(mount="/mnt/it's here"))
        assert shlex.split(wrap_timeout(command, 7)) == ["timeout", "7s", "sh", "-lc", command]
