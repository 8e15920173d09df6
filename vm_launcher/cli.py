"""CLI entry points for vm-launcher."""

from __future__ import annotations

import argparse
import dataclasses
from pathlib import Path
from typing import List, Optional

from vm_launcher.config import parse_env
from vm_launcher.constants import FIRMWARE_SUBDIR
from vm_launcher.exceptions import LauncherError
from vm_launcher.models import LaunchConfig
from vm_launcher.supervisor import Supervisor
from vm_launcher.utils import find_executable, get_env_bool, kvm_available, log


def show_config(cfg: LaunchConfig) -> None:
    """Print the resolved launch configuration."""
    for field in dataclasses.fields(cfg):
        value = getattr(cfg, field.name)
        if isinstance(value, list) and value and dataclasses.is_dataclass(value[0]):
            print(f"  {field.name}:")
            for i, item in enumerate(value):
                print(f"    [{i}]:")
                for sub_field in dataclasses.fields(item):
                    sub_value = getattr(item, sub_field.name)
                    print(f"      {sub_field.name}: {sub_value}")
        else:
            print(f"  {field.name}: {value}")


def check_environment(cfg: LaunchConfig) -> None:
    """Report host prerequisites without failing; used by dry runs."""
    log("INFO", "=== Environment Checks ===")
    if kvm_available():
        log("SUCCESS", "KVM:         available (/dev/kvm)")
    else:
        log("WARN", "KVM:         NOT available (accel=kvm will fail)")
    binaries = [cfg.qemu_binary]
    if cfg.tpm_enabled:
        binaries.append(cfg.swtpm_binary)
    for binary in binaries:
        location = find_executable(binary)
        if location:
            log("SUCCESS", f"{binary}: {location}")
        else:
            log("WARN", f"{binary}: NOT found in PATH")
    for label, path in (
        ("Firmware code", cfg.base_path / FIRMWARE_SUBDIR / cfg.firmware_code),
        ("Firmware vars", cfg.base_path / FIRMWARE_SUBDIR / cfg.firmware_vars),
        ("Disk image", cfg.base_path / cfg.disk_image),
    ):
        if path.exists():
            log("SUCCESS", f"{label}: {path} (found)")
        else:
            log("WARN", f"{label}: {path} (NOT FOUND)")


def print_summary(cfg: LaunchConfig) -> None:
    log("INFO", f"VM serial: {cfg.serial} | Memory: {cfg.memory_mb} MiB | CPUs: {cfg.cpus} | Disk: {cfg.disk_image}")
    log("INFO", f"Base path: {cfg.base_path} | Work dir: {cfg.work_dir}")
    for device in cfg.networks:
        forwards = ", ".join(f"{pf.host_port}->{pf.guest_port}" for pf in device.port_forwards) or "none"
        log("INFO", f"NIC {device.id}: net={device.mask or 'default'}, forwards={forwards}")
    if cfg.tpm_enabled:
        log("INFO", "TPM: enabled (swtpm)")
    if cfg.debug_log is not None:
        log("INFO", f"Firmware debug log: {cfg.debug_log}")
    if cfg.gdb_port is not None:
        log("WARN", f"gdb stub on tcp::{cfg.gdb_port}; the CPU is halted until a debugger continues it")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Launch a QEMU virtual machine with a software TPM")
    parser.add_argument("--config", type=Path, default=None, help="YAML launch configuration file")
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration and exit")
    parser.add_argument("--dry-run", action="store_true", help="Print the QEMU command without starting anything")
    args = parser.parse_args(argv)

    try:
        cfg = parse_env(args.config)
    except LauncherError as exc:
        log("ERROR", str(exc))
        return 1

    if args.show_config:
        show_config(cfg)
        return 0

    dry_run = args.dry_run or get_env_bool("DRY_RUN", False)
    print_summary(cfg)
    if dry_run:
        check_environment(cfg)

    supervisor = Supervisor(cfg)
    try:
        return supervisor.launch(dry_run=dry_run)
    except LauncherError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return 1
