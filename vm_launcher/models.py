"""Data models for vm-launcher."""

from __future__ import annotations

import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, NamedTuple, Optional

from vm_launcher.constants import (
    DISPLAY_GRAPHICAL,
    QEMU_BINARY,
    SWTPM_BINARY,
    TPM_READY_TIMEOUT,
)
from vm_launcher.exceptions import LauncherError

if TYPE_CHECKING:  # pragma: no cover
    from vm_launcher.network import NetworkDevice


class PortForward(NamedTuple):
    host_port: int
    guest_port: int

    @classmethod
    def parse(cls, raw: str) -> "PortForward":
        """Parse a ``HOST:GUEST`` pair, e.g. ``2222:22``."""
        host, sep, guest = raw.strip().partition(":")
        if not sep:
            raise LauncherError(f"Invalid port forward '{raw}'. Use HOST:GUEST (e.g. '2222:22')")
        try:
            host_port, guest_port = int(host), int(guest)
        except ValueError:
            raise LauncherError(f"Invalid port forward '{raw}'. Ports must be integers")
        for port in (host_port, guest_port):
            if not 1 <= port <= 65535:
                raise LauncherError(f"Invalid port forward '{raw}'. Ports must be in 1-65535")
        return cls(host_port, guest_port)


def parse_port_forwards(raw: Optional[str]) -> List[PortForward]:
    """Parse a comma separated list of ``HOST:GUEST`` pairs, keeping order and duplicates."""
    if not raw:
        return []
    return [PortForward.parse(item) for item in raw.split(",") if item.strip()]


@dataclass
class LaunchConfig:
    base_path: Path
    serial: str
    work_dir: Path
    memory_mb: int
    cpus: int
    firmware_code: str
    firmware_vars: str
    disk_image: str
    display: str = DISPLAY_GRAPHICAL
    display_backend: Optional[str] = None
    gpu: bool = True
    iommu: bool = True
    tpm_enabled: bool = True
    debug_log: Optional[Path] = None
    gdb_port: Optional[int] = None
    kernel_append: Optional[str] = None
    networks: List["NetworkDevice"] = field(default_factory=list)
    qemu_binary: str = QEMU_BINARY
    swtpm_binary: str = SWTPM_BINARY
    tpm_ready_timeout: float = TPM_READY_TIMEOUT


@dataclass
class ProcessResult:
    program: str
    args: List[str]
    returncode: Optional[int] = None
    dry_run: bool = False

    @property
    def term_signal(self) -> Optional[int]:
        """Signal number when the process was killed by one (Popen reports it negated)."""
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None

    @property
    def exit_status(self) -> int:
        """Shell-style status: the exit code, 128+N for signal N, 0 for a dry run."""
        if self.returncode is None:
            return 0
        sig = self.term_signal
        if sig is not None:
            return 128 + sig
        return self.returncode

    def describe(self) -> str:
        if self.dry_run:
            return f"{self.program} not started (dry run)"
        sig = self.term_signal
        if sig is not None:
            try:
                name = signal.Signals(sig).name
            except ValueError:
                name = str(sig)
            return f"{self.program} killed by signal {name}"
        return f"{self.program} exited with code {self.returncode}"
