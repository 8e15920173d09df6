"""Global constants and device profile presets for vm-launcher."""

from __future__ import annotations

import os
from pathlib import Path

QEMU_BINARY = "qemu-system-x86_64"
SWTPM_BINARY = "swtpm"

LAUNCH_CONFIG_ENV = "LAUNCH_CONFIG"
TRUTHY = {"1", "true", "yes", "on"}

# Q35 chipset with KVM and a split irqchip (required by intel-iommu interrupt remapping)
MACHINE_PROFILE = "q35,accel=kvm,usb=off,dump-guest-core=off,kernel-irqchip=split"
CPU_PROFILE = "host"
IOMMU_DEVICE = "intel-iommu,intremap=on,caching-mode=on,aw-bits=48"
RTC_PROFILE = "base=utc,clock=rt"
SERIAL_PROFILE = "mon:stdio"
VGA_TYPE = "std"
GPU_DEVICE = "virtio-gpu-pci"
NIC_MODEL = "virtio-net-pci"
DISK_FORMAT = "qcow2"
DISK_ID = "uefi-disk"
DEBUGCON_IOBASE = "isa-debugcon.iobase=0x402"
DEFAULT_GDB_PORT = 1234

DISPLAY_GRAPHICAL = "graphical"
DISPLAY_HEADLESS = "headless"
DISPLAY_MODES = {DISPLAY_GRAPHICAL, DISPLAY_HEADLESS}
DISPLAY_ALIASES = {
    "gui": DISPLAY_GRAPHICAL,
    "vga": DISPLAY_GRAPHICAL,
    "none": DISPLAY_HEADLESS,
    "nographic": DISPLAY_HEADLESS,
}

# Unit 0 holds the UEFI code, unit 1 the variable store
FIRMWARE_CODE_SLOT = 0
FIRMWARE_VARS_SLOT = 1
FIRMWARE_SUBDIR = Path("installer") / "firmware"

TPM_STATE_SUBDIR = "tpms"
TPM_SOCKET_NAME = "swtpm-sock"
TPM_LOG_LEVEL = 20
TPM_READY_TIMEOUT = 5.0
DEBUG_LOG_NAME = "debug.log"

DEFAULT_SERIAL = "13471118009978"
DEFAULT_NETWORKS = [
    {"id": "eth0", "net": "192.168.1.0/24", "dhcpstart": "192.168.1.10", "forwards": "2222:22"},
    {"id": "eth1", "net": "192.168.2.0/24", "dhcpstart": "192.168.2.10"},
]

# Lines of background process output kept for error reports
OUTPUT_TAIL_LINES = 50

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in {"1", "true", "yes", "on"}
