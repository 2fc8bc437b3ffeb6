"""
Tests for adapters — command runner, mock runner, docker, systemd, procfs.
"""

import io
import os
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from provisioner.adapters.containers.docker import DockerClient
from provisioner.adapters.mock import MockCommandRunner
from provisioner.adapters.services.systemd import SystemdClient
from provisioner.adapters.shell.command import CommandRunner, merge_env
from provisioner.adapters.shell.procfs import process_exists, write_kernel_tunable
from provisioner.core.errors import CommandError, ProcessTableError
from provisioner.core.models.receipt import Receipt
from provisioner.core.reliability.retry import RetryPolicy

# ── Command Runner ───────────────────────────────────────────────────


class TestCommandRunner:
    def test_success_captures_output(self):
        receipt = CommandRunner().run(["sh", "-c", "echo hello"])
        assert receipt.ok
        assert receipt.return_code == 0
        assert receipt.output == "hello"
        assert receipt.command == ["sh", "-c", "echo hello"]

    def test_combines_stdout_and_stderr(self):
        receipt = CommandRunner().run(["sh", "-c", "echo out; echo err >&2"])
        assert "out" in receipt.output
        assert "err" in receipt.output

    def test_nonzero_exit_is_failure(self):
        receipt = CommandRunner().run(["sh", "-c", "echo broken; exit 3"])
        assert receipt.failed
        assert receipt.return_code == 3
        assert receipt.output == "broken"
        assert "code 3" in receipt.error

    def test_missing_program_is_failure(self, tmp_path: Path):
        missing = str(tmp_path / "no-such-binary")
        receipt = CommandRunner().run([missing, "--flag"])
        assert receipt.failed
        assert receipt.return_code is None
        assert "Command execution error" in receipt.error
        assert missing in receipt.describe()

    def test_env_overlay(self):
        receipt = CommandRunner().run(["sh", "-c", 'echo "$PROV_TEST_VAR"'], env=["PROV_TEST_VAR=bar"])
        assert receipt.output == "bar"

    def test_env_overlay_keeps_inherited(self, monkeypatch):
        monkeypatch.setenv("PROV_INHERITED", "kept")
        receipt = CommandRunner().run(
            ["sh", "-c", 'echo "$PROV_INHERITED-$PROV_ADDED"'],
            env=["PROV_ADDED=new"],
        )
        assert receipt.output == "kept-new"

    def test_cwd(self, tmp_path: Path):
        receipt = CommandRunner().run(["pwd"], cwd=str(tmp_path))
        assert os.path.realpath(receipt.output) == os.path.realpath(tmp_path)

    def test_stream_output_copies_to_sink(self):
        sink = io.StringIO()
        receipt = CommandRunner(stdout=sink).run(["sh", "-c", "echo journal line"], stream_output=True)
        assert receipt.ok
        assert "journal line" in sink.getvalue()

    def test_check_raises_with_command_line(self):
        with pytest.raises(CommandError) as exc_info:
            CommandRunner().check(["sh", "-c", "exit 1"])
        assert exc_info.value.receipt.failed
        assert "sh -c 'exit 1'" in str(exc_info.value)

    def test_timestamps_span_the_process(self):
        receipt = CommandRunner().run(["sh", "-c", "sleep 0.3"])
        started = datetime.fromisoformat(receipt.started_at)
        ended = datetime.fromisoformat(receipt.ended_at)
        assert ended - started >= timedelta(seconds=0.25)

    def test_timestamps_when_program_missing(self, tmp_path: Path):
        receipt = CommandRunner().run([str(tmp_path / "no-such-binary")])
        assert receipt.started_at <= receipt.ended_at

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            CommandRunner().run([])


class TestMergeEnv:
    def test_none_means_inherit(self):
        assert merge_env(None) is None

    def test_later_entries_win(self):
        env = merge_env(["A=1", "A=2", "B=x=y"])
        assert env["A"] == "2"
        assert env["B"] == "x=y"

    def test_empty_value_allowed(self):
        assert merge_env(["EMPTY="])["EMPTY"] == ""

    def test_rejects_missing_equals(self):
        with pytest.raises(ValueError):
            merge_env(["NOEQUALS"])


# ── Mock Runner ──────────────────────────────────────────────────────


class TestMockCommandRunner:
    def test_default_success(self, runner: MockCommandRunner):
        receipt = runner.run(["/usr/bin/docker", "pull", "img"])
        assert receipt.ok
        assert receipt.command == ["/usr/bin/docker", "pull", "img"]
        assert runner.call_count == 1

    def test_failure_matches_basename_prefix(self, runner: MockCommandRunner):
        runner.set_failure(("docker", "pull"), error="network unreachable")
        assert runner.run(["/usr/bin/docker", "pull", "img"]).failed
        assert runner.run(["/usr/bin/docker", "run", "img"]).ok

    def test_failure_times_then_success(self, runner: MockCommandRunner):
        runner.set_failure(("docker",), times=2)
        results = [runner.run(["docker", "pull"]).ok for _ in range(4)]
        assert results == [False, False, True, True]

    def test_most_specific_key_wins(self, runner: MockCommandRunner):
        runner.set_failure(("systemctl",))
        runner.set_response(("systemctl", "stop"), Receipt.success(command=[]))
        assert runner.run(["systemctl", "is-active", "x"]).failed
        assert runner.run(["systemctl", "stop", "x"]).ok

    def test_calls_to_and_env(self, runner: MockCommandRunner):
        runner.run(["docker", "run", "img"], env=["A=1", "B=2"])
        runner.run(["mount", "--bind", "/a", "/a"])
        [call] = runner.calls_to("docker", "run")
        assert call.program == "docker"
        assert call.env_dict() == {"A": "1", "B": "2"}

    def test_reset(self, runner: MockCommandRunner):
        runner.set_failure(("false",))
        runner.run(["false"])
        runner.reset()
        assert runner.call_count == 0
        assert runner.run(["false"]).ok


# ── Docker Client ────────────────────────────────────────────────────


def _docker(runner: MockCommandRunner) -> DockerClient:
    return DockerClient(runner, docker_cmd="/usr/bin/docker", journalctl_cmd="/bin/journalctl")


class TestDockerRun:
    def test_run_passes_args_and_env(self, runner: MockCommandRunner):
        _docker(runner).run(["--rm", "img"], ["FOO=bar"])
        [call] = runner.call_log
        assert call.command == ["/usr/bin/docker", "run", "--rm", "img"]
        assert call.env == ["FOO=bar"]

    def test_run_failure_not_retried(self, runner: MockCommandRunner):
        runner.set_failure(("docker", "run"))
        with pytest.raises(CommandError):
            _docker(runner).run(["img"], [])
        assert len(runner.calls_to("docker", "run")) == 1


class TestDockerPull:
    def test_success_first_attempt(self, runner: MockCommandRunner):
        receipt = _docker(runner).pull(["gcr.io/example/img:latest"])
        assert receipt.ok
        assert runner.commands == [["/usr/bin/docker", "pull", "gcr.io/example/img:latest"]]

    @pytest.mark.parametrize("k", [2, 5, 10])
    def test_succeeds_on_attempt_k(self, runner: MockCommandRunner, k: int):
        runner.set_failure(("docker", "pull"), times=k - 1)
        _docker(runner).pull(["img"])
        assert len(runner.calls_to("docker", "pull")) == k
        assert runner.calls_to("journalctl") == []

    def test_exhaustion_reads_journal_once_and_raises_last_error(self, runner: MockCommandRunner):
        runner.set_failure(("docker", "pull"), error="pull failed", output="TLS handshake timeout")
        with pytest.raises(CommandError) as exc_info:
            _docker(runner).pull(["img"])

        assert len(runner.calls_to("docker", "pull")) == 10
        [journal] = runner.calls_to("journalctl")
        assert journal.command == ["/bin/journalctl", "-u", "docker.service", "--no-pager"]
        assert journal.stream_output
        assert runner.commands[-1] == journal.command
        assert "TLS handshake timeout" in str(exc_info.value)

    def test_journal_failure_does_not_mask_pull_error(self, runner: MockCommandRunner):
        runner.set_failure(("docker", "pull"), error="pull failed")
        runner.set_failure(("journalctl",), error="journal unavailable")
        with pytest.raises(CommandError) as exc_info:
            _docker(runner).pull(["img"])
        assert exc_info.value.receipt.command[1] == "pull"

    def test_custom_policy(self, runner: MockCommandRunner):
        runner.set_failure(("docker", "pull"))
        client = DockerClient(runner, pull_policy=RetryPolicy(max_attempts=3))
        with pytest.raises(CommandError):
            client.pull(["img"])
        assert len(runner.calls_to("docker", "pull")) == 3


# ── Systemd Client ───────────────────────────────────────────────────


class TestSystemdClient:
    def test_is_active(self, runner: MockCommandRunner):
        client = SystemdClient(runner, systemctl_cmd="/bin/systemctl")
        assert client.is_active("docker.service")
        assert runner.commands == [["/bin/systemctl", "is-active", "docker.service"]]

    def test_query_failure_is_inactive(self, runner: MockCommandRunner):
        runner.set_failure(("systemctl", "is-active"))
        assert not SystemdClient(runner).is_active("missing.service")

    def test_stop_active_unit(self, runner: MockCommandRunner):
        SystemdClient(runner).stop("update-engine.service")
        assert runner.commands == [
            ["systemctl", "is-active", "update-engine.service"],
            ["systemctl", "stop", "update-engine.service"],
        ]

    def test_stop_inactive_unit_is_idempotent(self, runner: MockCommandRunner):
        runner.set_failure(("systemctl", "is-active"))
        client = SystemdClient(runner)
        client.stop("update-engine.service")
        client.stop("update-engine.service")
        assert runner.calls_to("systemctl", "stop") == []
        assert len(runner.calls_to("systemctl", "is-active")) == 2

    def test_stop_failure_raises(self, runner: MockCommandRunner):
        runner.set_failure(("systemctl", "stop"), error="access denied")
        with pytest.raises(CommandError):
            SystemdClient(runner).stop("docker.service")


# ── Procfs ───────────────────────────────────────────────────────────


class TestProcessExists:
    def test_no_match_is_false(self, fake_root: Path):
        assert process_exists(fake_root, "nvidia-persistenced") is False

    def test_match(self, fake_root: Path, add_process):
        add_process(1234, "/var/lib/nvidia/bin/nvidia-persistenced", "--verbose")
        assert process_exists(fake_root, "nvidia-persistenced")

    def test_nul_separators_read_as_spaces(self, fake_root: Path, add_process):
        add_process(77, "nvidia-persistenced", "--verbose")
        assert process_exists(fake_root, "nvidia-persistenced --verbose")

    def test_match_ignores_enumeration_order(self, fake_root: Path, add_process):
        add_process(5, "target-daemon")
        add_process(999, "target-daemon", "--other")
        assert process_exists(fake_root, "target-daemon")

    def test_missing_proc_is_false(self, tmp_path: Path):
        assert process_exists(tmp_path, "anything") is False

    def test_unreadable_cmdline_raises(self, fake_root: Path):
        # A directory where a file is expected fails to read.
        (fake_root / "proc" / "666" / "cmdline").mkdir(parents=True)
        with pytest.raises(ProcessTableError):
            process_exists(fake_root, "nvidia-persistenced")


class TestKernelTunable:
    def test_write(self, fake_root: Path):
        path = write_kernel_tunable(fake_root, "kernel/softlockup_panic", "1")
        assert path == fake_root / "proc" / "sys" / "kernel" / "softlockup_panic"
        assert path.read_bytes() == b"1"

    def test_missing_parent_raises(self, tmp_path: Path):
        with pytest.raises(OSError):
            write_kernel_tunable(tmp_path, "kernel/softlockup_panic", "1")
