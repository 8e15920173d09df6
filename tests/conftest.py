"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from vm_launcher.models import LaunchConfig
from vm_launcher.network import NetworkDevice


@pytest.fixture
def default_launch_config(tmp_path) -> LaunchConfig:
    """Return a LaunchConfig whose work_dir is an empty temporary directory."""
    return LaunchConfig(
        base_path=Path("/vm/current"),
        serial="Mike-0003",
        work_dir=tmp_path,
        memory_mb=512,
        cpus=2,
        firmware_code="OVMF_CODE.fd",
        firmware_vars="OVMF_VARS.fd",
        disk_image="live.qcow2",
        networks=[
            NetworkDevice.create("eth0")
            .with_mask("192.168.1.0/24")
            .with_dhcp_start("192.168.1.10")
            .with_port_forward(2222, 22)
        ],
        tpm_ready_timeout=1.0,
    )


@pytest.fixture
def mock_env(monkeypatch):
    """Helper to set environment variables for tests."""

    def _set(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))

    return _set


# All environment variables that parse_env() reads, cleared before each config test.
_PARSE_ENV_VARS = [
    "LAUNCH_CONFIG",
    "BASE_PATH",
    "SERIAL",
    "WORK_DIR",
    "MEMORY",
    "CPUS",
    "FIRMWARE_CODE",
    "FIRMWARE_VARS",
    "DISK_IMAGE",
    "GRAPHICS",
    "DISPLAY_BACKEND",
    "GPU",
    "IOMMU",
    "TPM",
    "DEBUG_LOG",
    "GDB_PORT",
    "KERNEL_APPEND",
    "QEMU_BINARY",
    "SWTPM_BINARY",
    "TPM_READY_TIMEOUT",
    "DRY_RUN",
]
for _index in ("", "2", "3", "4"):
    for _field in ("ID", "NET", "DHCP_START", "PORT_FWD"):
        _PARSE_ENV_VARS.append(f"NETWORK{_index}_{_field}")


@pytest.fixture
def clean_env(monkeypatch):
    """Clear all environment variables that parse_env() reads."""
    for key in _PARSE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
