"""Background and foreground process handling for vm-launcher."""

from __future__ import annotations

import signal
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional

from vm_launcher.constants import OUTPUT_TAIL_LINES, TPM_LOG_LEVEL, TPM_SOCKET_NAME
from vm_launcher.exceptions import LauncherError, SpawnError, StateDirError
from vm_launcher.models import ProcessResult
from vm_launcher.qemu import format_command, tpm_state_dir
from vm_launcher.utils import ensure_directory, log, wait_for_path


def ensure_state_dir(work_dir: Path, serial: str) -> Path:
    """Create ``<work_dir>/tpms/<serial>`` if needed; existing state is left untouched."""
    state_dir = tpm_state_dir(work_dir, serial)
    try:
        ensure_directory(state_dir)
    except OSError as exc:
        raise StateDirError(state_dir, exc.strerror or str(exc)) from exc
    return state_dir


def swtpm_command(binary: str, state_dir: Path) -> List[str]:
    return [
        binary,
        "socket",
        "--tpmstate",
        f"dir={state_dir}",
        "--ctrl",
        f"type=unixio,path={state_dir / TPM_SOCKET_NAME}",
        "--log",
        f"level={TPM_LOG_LEVEL}",
        "--tpm2",
        "-t",
    ]


class BackgroundProcess:
    """A helper daemon whose output is drained on its own thread.

    The drain thread owns the child's pipe: it reads lines until EOF, logs
    them, then reaps the process and reports how it ended. Callers only poll
    the process or ``join()`` the thread.
    """

    def __init__(self, cmd: List[str], name: Optional[str] = None, cwd: Optional[Path] = None) -> None:
        self.cmd = cmd
        self.name = name or Path(cmd[0]).name
        self.cwd = cwd
        self.proc: Optional[subprocess.Popen] = None
        self._thread: Optional[threading.Thread] = None
        self._output: Deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)

    def start(self) -> "BackgroundProcess":
        log("DEBUG", f"Running: {' '.join(self.cmd)}")
        try:
            self.proc = subprocess.Popen(
                self.cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                cwd=self.cwd,
            )
        except OSError as exc:
            raise SpawnError(self.cmd[0], self.cmd, self.cwd, exc.strerror or str(exc)) from exc
        self._thread = threading.Thread(target=self._drain, name=f"{self.name}-drain", daemon=True)
        self._thread.start()
        return self

    def _drain(self) -> None:
        proc = self.proc
        assert proc is not None and proc.stdout is not None
        try:
            for line in iter(proc.stdout.readline, ""):
                line = line.rstrip("\n")
                self._output.append(line)
                log("DEBUG", f"{self.name}: {line}")
        except (OSError, ValueError) as exc:
            log("WARN", f"Stopped reading {self.name} output: {exc}")
        finally:
            try:
                proc.stdout.close()
            except OSError:
                pass
        returncode = proc.wait()
        result = ProcessResult(program=self.name, args=self.cmd, returncode=returncode)
        if returncode == 0:
            log("INFO", result.describe())
        else:
            log("WARN", result.describe())

    @property
    def pid(self) -> Optional[int]:
        return self.proc.pid if self.proc is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode if self.proc is not None else None

    @property
    def output(self) -> List[str]:
        return list(self._output)

    def poll(self) -> Optional[int]:
        if self.proc is None:
            return None
        return self.proc.poll()

    @property
    def alive(self) -> bool:
        return self.proc is not None and self.proc.poll() is None

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the drain thread; True once it has finished."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def stop(self, timeout: float = 5.0) -> None:
        """Terminate the process if it is still running, killing it after ``timeout``."""
        if not self.alive:
            return
        assert self.proc is not None
        log("INFO", f"Stopping {self.name} (pid {self.proc.pid})")
        try:
            self.proc.terminate()
            self.proc.wait(timeout=timeout)
        except (subprocess.TimeoutExpired, OSError):
            try:
                self.proc.kill()
            except OSError:
                pass
        self.join(timeout=1.0)

    def wait_ready(self, path: Path, timeout: float) -> bool:
        """Block until ``path`` exists, failing fast if the process dies first."""
        if wait_for_path(path, timeout=timeout, abort=lambda: not self.alive):
            return True
        if self.proc is not None and not self.alive:
            self.join(timeout=1.0)
            details = "\n".join(self.output)
            message = f"{self.name} exited prematurely (code {self.returncode})"
            if details:
                message += f":\n{details}"
            raise LauncherError(message)
        log("WARN", f"{self.name} socket {path} did not appear within {timeout:g}s")
        return False


def run_foreground(
    program: str,
    args: List[str],
    dry_run: bool = False,
    cwd: Optional[Path] = None,
) -> ProcessResult:
    """Run ``program`` attached to our terminal and wait for it to exit.

    In dry-run mode the command is printed and nothing is spawned. A non-zero
    exit status is returned to the caller, not raised.
    """
    if dry_run:
        log("INFO", "Dry run: the following command would be executed")
        print(format_command(program, args), flush=True)
        return ProcessResult(program=program, args=args, dry_run=True)

    cmd = [program] + args
    try:
        proc = subprocess.Popen(cmd, cwd=cwd)
    except OSError as exc:
        raise SpawnError(program, cmd, cwd, exc.strerror or str(exc)) from exc

    def _forward_sigterm(signum, frame):
        proc.terminate()

    prev_sigterm = signal.signal(signal.SIGTERM, _forward_sigterm)
    try:
        while True:
            try:
                returncode = proc.wait()
                break
            except KeyboardInterrupt:
                proc.send_signal(signal.SIGINT)
    finally:
        signal.signal(signal.SIGTERM, prev_sigterm)
    return ProcessResult(program=program, args=args, returncode=returncode)
