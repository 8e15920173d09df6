"""Tests for vm_launcher.process module."""

from __future__ import annotations

import io
import signal
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from vm_launcher.exceptions import LauncherError, SpawnError, StateDirError
from vm_launcher.process import BackgroundProcess, ensure_state_dir, run_foreground, swtpm_command


def _fake_proc(output: str = "", returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.pid = 4242
    proc.stdout = io.StringIO(output)
    proc.wait.return_value = returncode
    proc.poll.return_value = None
    proc.returncode = None
    return proc


class TestEnsureStateDir:
    def test_creates_nested_directory(self, tmp_path):
        path = ensure_state_dir(tmp_path / "work", "Mike-0003")
        assert path == tmp_path / "work" / "tpms" / "Mike-0003"
        assert path.is_dir()

    def test_idempotent_and_keeps_state(self, tmp_path):
        path = ensure_state_dir(tmp_path, "Mike-0003")
        state = path / "tpm2-00.permall"
        state.write_bytes(b"\x01\x02")
        assert ensure_state_dir(tmp_path, "Mike-0003") == path
        assert state.read_bytes() == b"\x01\x02"

    def test_failure_raises_state_dir_error(self, tmp_path):
        with patch("vm_launcher.process.ensure_directory", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(StateDirError, match="Permission denied") as exc:
                ensure_state_dir(tmp_path, "Mike-0003")
        assert exc.value.path == tmp_path / "tpms" / "Mike-0003"
        assert isinstance(exc.value, LauncherError)


class TestSwtpmCommand:
    def test_fixed_arguments(self, tmp_path):
        assert swtpm_command("swtpm", tmp_path) == [
            "swtpm",
            "socket",
            "--tpmstate",
            f"dir={tmp_path}",
            "--ctrl",
            f"type=unixio,path={tmp_path / 'swtpm-sock'}",
            "--log",
            "level=20",
            "--tpm2",
            "-t",
        ]


class TestBackgroundProcess:
    def test_start_captures_output_on_a_pipe(self, tmp_path):
        proc = _fake_proc()
        with patch("vm_launcher.process.subprocess.Popen", return_value=proc) as mock_popen:
            bg = BackgroundProcess(["swtpm", "socket"], cwd=tmp_path).start()
            assert bg.join(timeout=5)
        mock_popen.assert_called_once()
        _, kwargs = mock_popen.call_args
        assert kwargs["stdout"] == subprocess.PIPE
        assert kwargs["stderr"] == subprocess.STDOUT
        assert kwargs["cwd"] == tmp_path
        assert bg.name == "swtpm"
        assert bg.pid == 4242

    def test_drain_logs_lines_and_reports_exit(self):
        proc = _fake_proc("first line\nsecond line\n", returncode=0)
        with (
            patch("vm_launcher.process.subprocess.Popen", return_value=proc),
            patch("vm_launcher.process.log") as mock_log,
        ):
            bg = BackgroundProcess(["/usr/bin/swtpm", "socket"]).start()
            assert bg.join(timeout=5)
        assert bg.output == ["first line", "second line"]
        mock_log.assert_any_call("DEBUG", "swtpm: first line")
        mock_log.assert_any_call("DEBUG", "swtpm: second line")
        mock_log.assert_called_with("INFO", "swtpm exited with code 0")
        proc.wait.assert_called_once_with()

    def test_drain_reports_non_zero_exit_as_warning(self):
        proc = _fake_proc("boom\n", returncode=1)
        with (
            patch("vm_launcher.process.subprocess.Popen", return_value=proc),
            patch("vm_launcher.process.log") as mock_log,
        ):
            bg = BackgroundProcess(["swtpm"]).start()
            assert bg.join(timeout=5)
        mock_log.assert_called_with("WARN", "swtpm exited with code 1")

    def test_read_error_still_reaps_and_reports_exit(self):
        proc = _fake_proc(returncode=1)
        proc.stdout = MagicMock()
        proc.stdout.readline.side_effect = OSError("bad fd")
        with (
            patch("vm_launcher.process.subprocess.Popen", return_value=proc),
            patch("vm_launcher.process.log") as mock_log,
        ):
            bg = BackgroundProcess(["swtpm"]).start()
            assert bg.join(timeout=5)
        mock_log.assert_any_call("WARN", "Stopped reading swtpm output: bad fd")
        mock_log.assert_called_with("WARN", "swtpm exited with code 1")
        proc.wait.assert_called_once_with()
        proc.stdout.close.assert_called_once_with()

    def test_missing_program_raises_spawn_error(self, tmp_path):
        missing = str(tmp_path / "no-such-swtpm")
        with pytest.raises(SpawnError) as exc:
            BackgroundProcess([missing, "socket"]).start()
        assert exc.value.program == missing
        assert missing in str(exc.value)

    def test_unexecutable_program_raises_spawn_error(self, tmp_path):
        prog = tmp_path / "swtpm"
        prog.write_bytes(b"\x00\x01garbage")
        prog.chmod(0o755)
        with pytest.raises(SpawnError) as exc:
            BackgroundProcess([str(prog), "socket"], cwd=tmp_path).start()
        assert exc.value.program == str(prog)
        assert exc.value.cwd == tmp_path
        assert "Exec format error" in str(exc.value)

    def test_join_without_start(self):
        assert BackgroundProcess(["swtpm"]).join() is True


class TestStop:
    def test_terminates_running_process(self):
        bg = BackgroundProcess(["swtpm"])
        bg.proc = _fake_proc()
        bg.stop()
        bg.proc.terminate.assert_called_once_with()
        bg.proc.wait.assert_called_once_with(timeout=5.0)
        bg.proc.kill.assert_not_called()

    def test_kills_when_terminate_times_out(self):
        bg = BackgroundProcess(["swtpm"])
        bg.proc = _fake_proc()
        bg.proc.wait.side_effect = subprocess.TimeoutExpired("swtpm", 5)
        bg.stop()
        bg.proc.terminate.assert_called_once_with()
        bg.proc.kill.assert_called_once_with()

    def test_exited_process_is_left_alone(self):
        bg = BackgroundProcess(["swtpm"])
        bg.proc = _fake_proc()
        bg.proc.poll.return_value = 0
        bg.stop()
        bg.proc.terminate.assert_not_called()

    def test_never_started(self):
        BackgroundProcess(["swtpm"]).stop()


class TestWaitReady:
    def test_socket_present(self, tmp_path):
        sock = tmp_path / "swtpm-sock"
        sock.touch()
        bg = BackgroundProcess(["swtpm"])
        bg.proc = _fake_proc()
        assert bg.wait_ready(sock, timeout=1.0) is True

    def test_process_died_raises_with_output(self, tmp_path):
        bg = BackgroundProcess(["swtpm"])
        bg.proc = _fake_proc()
        bg.proc.poll.return_value = 1
        bg.proc.returncode = 1
        bg._output.append("swtpm: Could not open UnixIO socket")
        with pytest.raises(LauncherError, match="exited prematurely \\(code 1\\)") as exc:
            bg.wait_ready(tmp_path / "swtpm-sock", timeout=1.0)
        assert "Could not open UnixIO socket" in str(exc.value)

    def test_timeout_warns_and_continues(self, tmp_path):
        bg = BackgroundProcess(["swtpm"])
        bg.proc = _fake_proc()
        with patch("vm_launcher.process.log") as mock_log:
            assert bg.wait_ready(tmp_path / "swtpm-sock", timeout=0.05) is False
        level, message = mock_log.call_args[0]
        assert level == "WARN"
        assert "did not appear" in message


class TestRunForeground:
    def test_dry_run_prints_and_never_spawns(self, capsys):
        with patch("vm_launcher.process.subprocess.Popen") as mock_popen:
            result = run_foreground("qemu-system-x86_64", ["-m", "512"], dry_run=True)
        mock_popen.assert_not_called()
        assert result.dry_run is True
        assert result.returncode is None
        out = capsys.readouterr().out
        assert "qemu-system-x86_64" in out
        assert "    -m 512" in out

    def test_inherits_stdio_and_returns_exit_code(self, tmp_path):
        proc = MagicMock()
        proc.wait.return_value = 3
        with patch("vm_launcher.process.subprocess.Popen", return_value=proc) as mock_popen:
            result = run_foreground("qemu-system-x86_64", ["-m", "512"], cwd=tmp_path)
        mock_popen.assert_called_once_with(["qemu-system-x86_64", "-m", "512"], cwd=tmp_path)
        assert result.returncode == 3
        assert result.args == ["-m", "512"]

    def test_ctrl_c_is_forwarded_to_child(self):
        proc = MagicMock()
        proc.wait.side_effect = [KeyboardInterrupt(), 130]
        with patch("vm_launcher.process.subprocess.Popen", return_value=proc):
            result = run_foreground("qemu-system-x86_64", [])
        proc.send_signal.assert_called_once_with(signal.SIGINT)
        assert result.returncode == 130

    def test_restores_sigterm_handler(self):
        proc = MagicMock()
        proc.wait.return_value = 0
        before = signal.getsignal(signal.SIGTERM)
        with patch("vm_launcher.process.subprocess.Popen", return_value=proc):
            run_foreground("qemu-system-x86_64", [])
        assert signal.getsignal(signal.SIGTERM) == before

    def test_missing_program_raises_spawn_error(self, tmp_path):
        missing = str(tmp_path / "no-such-qemu")
        with pytest.raises(SpawnError) as exc:
            run_foreground(missing, ["-m", "512"], cwd=tmp_path)
        assert exc.value.program == missing
        assert exc.value.cwd == tmp_path
        assert exc.value.argv == [missing, "-m", "512"]

    def test_unexecutable_program_raises_spawn_error(self, tmp_path):
        prog = tmp_path / "qemu-system-x86_64"
        prog.write_bytes(b"\x00\x01garbage")
        prog.chmod(0o755)
        with pytest.raises(SpawnError) as exc:
            run_foreground(str(prog), ["-m", "512"], cwd=tmp_path)
        assert exc.value.argv == [str(prog), "-m", "512"]
        assert exc.value.cwd == tmp_path
        assert "Exec format error" in str(exc.value)
        assert "-m 512" in str(exc.value)
