"""QEMU command line builder for vm-launcher."""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import List, Optional, Union

from vm_launcher.constants import (
    CPU_PROFILE,
    DEBUGCON_IOBASE,
    DEFAULT_GDB_PORT,
    DISK_FORMAT,
    DISK_ID,
    DISPLAY_GRAPHICAL,
    DISPLAY_HEADLESS,
    DISPLAY_MODES,
    FIRMWARE_CODE_SLOT,
    FIRMWARE_SUBDIR,
    FIRMWARE_VARS_SLOT,
    GPU_DEVICE,
    IOMMU_DEVICE,
    MACHINE_PROFILE,
    RTC_PROFILE,
    SERIAL_PROFILE,
    TPM_SOCKET_NAME,
    TPM_STATE_SUBDIR,
    VGA_TYPE,
)
from vm_launcher.exceptions import LauncherError
from vm_launcher.network import NetworkDevice


def tpm_state_dir(work_dir: Path, serial: str) -> Path:
    """Per-VM swtpm state directory; the SMBIOS serial is the key."""
    return work_dir / TPM_STATE_SUBDIR / serial


def tpm_socket_path(work_dir: Path, serial: str) -> Path:
    return tpm_state_dir(work_dir, serial) / TPM_SOCKET_NAME


class QemuCommandBuilder:
    """Append-only accumulator of QEMU arguments for one virtual machine.

    Every method appends its flag/value tokens in call order and returns the
    builder, so calls chain::

        args = (
            QemuCommandBuilder("/vm/current", "Mike-0003")
            .machine()
            .cpu()
            .ram(4096)
            .net(NetworkDevice.create("eth0"))
            .finalize()
        )

    Network devices are rendered after all direct arguments, and the SMBIOS
    serial is always the final pair. Once ``finalize()`` has been called the
    builder rejects further changes.
    """

    def __init__(self, base_path: Union[str, Path], serial: str, work_dir: Union[str, Path] = ".") -> None:
        self._base_path = Path(base_path)
        self._serial = serial
        self._work_dir = Path(work_dir)
        self._args: List[str] = []
        self._nets: List[NetworkDevice] = []
        self._finalized = False

    @property
    def base_path(self) -> Path:
        return self._base_path

    @property
    def serial(self) -> str:
        return self._serial

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    @property
    def tpm_socket_path(self) -> Path:
        return tpm_socket_path(self._work_dir, self._serial)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _push(self, *tokens: str) -> "QemuCommandBuilder":
        if self._finalized:
            raise LauncherError("QEMU command already finalized; create a new builder")
        self._args.extend(tokens)
        return self

    def machine(self) -> "QemuCommandBuilder":
        return self._push("-machine", MACHINE_PROFILE)

    def cpu(self) -> "QemuCommandBuilder":
        return self._push("-cpu", CPU_PROFILE)

    def iommu(self) -> "QemuCommandBuilder":
        return self._push("-device", IOMMU_DEVICE)

    def ram(self, size_mb: int) -> "QemuCommandBuilder":
        if isinstance(size_mb, bool) or not isinstance(size_mb, int) or size_mb <= 0:
            raise LauncherError(f"Memory size must be a positive integer in MiB (got {size_mb!r})")
        return self._push("-m", str(size_mb))

    def smp(self, cpus: int) -> "QemuCommandBuilder":
        if isinstance(cpus, bool) or not isinstance(cpus, int) or cpus <= 0:
            raise LauncherError(f"vCPU count must be a positive integer (got {cpus!r})")
        return self._push("-smp", str(cpus))

    def rtc(self) -> "QemuCommandBuilder":
        return self._push("-rtc", RTC_PROFILE)

    def serial_console(self) -> "QemuCommandBuilder":
        return self._push("-serial", SERIAL_PROFILE)

    def display(self, mode: str, gpu: bool = False, backend: Optional[str] = None) -> "QemuCommandBuilder":
        if mode not in DISPLAY_MODES:
            supported = ", ".join(sorted(DISPLAY_MODES))
            raise LauncherError(f"Unsupported display mode '{mode}'. Supported: {supported}")
        if mode == DISPLAY_HEADLESS:
            return self._push("-nographic")
        self._push("-vga", VGA_TYPE)
        if gpu:
            self._push("-device", GPU_DEVICE)
        if backend:
            self._push("-display", backend)
        return self

    def firmware(self, filename: str, slot: int) -> "QemuCommandBuilder":
        if slot not in (FIRMWARE_CODE_SLOT, FIRMWARE_VARS_SLOT):
            raise LauncherError(f"Firmware slot must be 0 (code) or 1 (variables), got {slot!r}")
        path = self._base_path / FIRMWARE_SUBDIR / filename
        return self._push("-drive", f"if=pflash,format=raw,unit={slot},readonly=on,file={path}")

    def disk(self, image: str) -> "QemuCommandBuilder":
        path = self._base_path / image
        return self._push("-drive", f"file={path},format={DISK_FORMAT},id={DISK_ID}")

    def tpm(self) -> "QemuCommandBuilder":
        # swtpm must already be listening on this socket when QEMU starts
        return self._push(
            "-tpmdev",
            "emulator,id=tpm0,chardev=chrtpm",
            "-device",
            "tpm-tis,tpmdev=tpm0",
            "-chardev",
            f"socket,id=chrtpm,path={self.tpm_socket_path}",
        )

    def debug_console(self, path: Union[str, Path]) -> "QemuCommandBuilder":
        return self._push("-debugcon", f"file:{path}", "-global", DEBUGCON_IOBASE)

    def debugger_stub(self, port: int = DEFAULT_GDB_PORT) -> "QemuCommandBuilder":
        return self._push("-gdb", f"tcp::{port}", "-S")

    def append(self, cmdline: str) -> "QemuCommandBuilder":
        return self._push("-append", cmdline)

    def net(self, device: NetworkDevice) -> "QemuCommandBuilder":
        if self._finalized:
            raise LauncherError("QEMU command already finalized; create a new builder")
        self._nets.append(device)
        return self

    def finalize(self) -> List[str]:
        self._finalized = True
        args = list(self._args)
        for device in self._nets:
            args.extend(device.render())
        args.extend(["-smbios", f"type=1,serial={self._serial}"])
        return args


def format_command(program: str, args: List[str]) -> str:
    """Render a command one flag per line, each followed by its value."""
    lines = [program]
    idx = 0
    while idx < len(args):
        token = args[idx]
        if token.startswith("-") and idx + 1 < len(args) and not args[idx + 1].startswith("-"):
            lines.append(f"    {token} {shlex.quote(args[idx + 1])}")
            idx += 2
        else:
            lines.append(f"    {shlex.quote(token)}")
            idx += 1
    return " \\\n".join(lines)
