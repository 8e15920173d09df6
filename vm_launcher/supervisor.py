"""Launch sequence for vm-launcher: swtpm first, then QEMU."""

from __future__ import annotations

from typing import List, Optional

from vm_launcher.constants import FIRMWARE_CODE_SLOT, FIRMWARE_VARS_SLOT
from vm_launcher.exceptions import LauncherError
from vm_launcher.models import LaunchConfig, ProcessResult
from vm_launcher.process import BackgroundProcess, ensure_state_dir, run_foreground, swtpm_command
from vm_launcher.qemu import QemuCommandBuilder, format_command, tpm_socket_path
from vm_launcher.utils import log


def build_command(cfg: LaunchConfig) -> List[str]:
    """Assemble the QEMU argument vector (without the program name) for ``cfg``."""
    builder = QemuCommandBuilder(cfg.base_path, cfg.serial, cfg.work_dir)
    builder.machine().cpu()
    if cfg.iommu:
        builder.iommu()
    builder.ram(cfg.memory_mb).smp(cfg.cpus).rtc().serial_console()
    builder.display(cfg.display, gpu=cfg.gpu, backend=cfg.display_backend)
    builder.firmware(cfg.firmware_code, FIRMWARE_CODE_SLOT)
    builder.firmware(cfg.firmware_vars, FIRMWARE_VARS_SLOT)
    builder.disk(cfg.disk_image)
    if cfg.tpm_enabled:
        builder.tpm()
    if cfg.debug_log is not None:
        builder.debug_console(cfg.debug_log)
    if cfg.gdb_port is not None:
        builder.debugger_stub(cfg.gdb_port)
    if cfg.kernel_append:
        builder.append(cfg.kernel_append)
    for device in cfg.networks:
        builder.net(device)
    return builder.finalize()


class Supervisor:
    """Run one VM: TPM state dir, swtpm in the background, QEMU in the foreground."""

    def __init__(self, cfg: LaunchConfig) -> None:
        self.cfg = cfg
        self.tpm: Optional[BackgroundProcess] = None
        self.result: Optional[ProcessResult] = None

    def start_tpm(self) -> BackgroundProcess:
        state_dir = ensure_state_dir(self.cfg.work_dir, self.cfg.serial)
        log("INFO", f"Starting software TPM (state: {state_dir})")
        tpm = BackgroundProcess(
            swtpm_command(self.cfg.swtpm_binary, state_dir),
            name="swtpm",
            cwd=self.cfg.work_dir,
        ).start()
        self.tpm = tpm
        if tpm.wait_ready(tpm_socket_path(self.cfg.work_dir, self.cfg.serial), self.cfg.tpm_ready_timeout):
            log("SUCCESS", "Software TPM started")
        return tpm

    def launch(self, dry_run: bool = False) -> int:
        cfg = self.cfg
        if cfg.tpm_enabled:
            if dry_run:
                state_dir = ensure_state_dir(cfg.work_dir, cfg.serial)
                log("INFO", f"TPM state directory: {state_dir}")
                log("INFO", "Dry run: swtpm not started")
            else:
                self.start_tpm()

        try:
            args = build_command(cfg)
            if not dry_run:
                log("INFO", f"Starting {cfg.qemu_binary} for serial {cfg.serial}")
                print(format_command(cfg.qemu_binary, args), flush=True)
            self.result = run_foreground(cfg.qemu_binary, args, dry_run=dry_run, cwd=cfg.work_dir)
        except LauncherError:
            # swtpm -t only exits once a client disconnects
            if self.tpm is not None:
                self.tpm.stop()
            raise

        status = self.result.exit_status
        if status == 0:
            log("INFO", self.result.describe())
        else:
            log("WARN", self.result.describe())
        return status
