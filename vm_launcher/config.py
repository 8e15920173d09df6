"""Configuration loading and environment variable parsing for vm-launcher."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vm_launcher.constants import (
    DEBUG_LOG_NAME,
    DEFAULT_NETWORKS,
    DEFAULT_SERIAL,
    DISPLAY_ALIASES,
    DISPLAY_GRAPHICAL,
    DISPLAY_MODES,
    LAUNCH_CONFIG_ENV,
    QEMU_BINARY,
    SWTPM_BINARY,
    TPM_READY_TIMEOUT,
    TRUTHY,
)
from vm_launcher.exceptions import LauncherError
from vm_launcher.models import LaunchConfig, parse_port_forwards
from vm_launcher.network import NetworkDevice
from vm_launcher.utils import get_env, log, parse_int

_NETWORK_ENV_FIELDS = ("NETWORK_ID", "NETWORK_NET", "NETWORK_DHCP_START", "NETWORK_PORT_FWD")
_FALSY = {"", "0", "false", "no", "off"}


def load_config_file(config_path: Path) -> Dict[str, Any]:
    """Read a YAML launch configuration; the top level must be a mapping."""
    if not config_path.exists():
        raise LauncherError(f"Launch config missing: {config_path}")
    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as exc:
        raise LauncherError(f"Launch config {config_path} contains invalid YAML: {exc}")
    except OSError as exc:
        raise LauncherError(f"Cannot read launch config {config_path}: {exc}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise LauncherError(f"Launch config {config_path} must be a YAML mapping, got {type(data).__name__}")
    return data


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def get_env_indexed(name: str, index: int) -> Optional[str]:
    """Get indexed env var. E.g. get_env_indexed("NETWORK_NET", 2) -> NETWORK2_NET."""
    if index == 1:
        return get_env(name)
    prefix, rest = name.split("_", 1)
    return get_env(f"{prefix}{index}_{rest}")


def build_network(entry: Dict[str, Any], index: int) -> NetworkDevice:
    """Turn one ``{id, net, dhcpstart, forwards}`` mapping into a NetworkDevice."""
    device = NetworkDevice.create(_optional_str(entry.get("id")) or f"eth{index - 1}")
    mask = _optional_str(entry.get("net"))
    if mask is not None:
        device = device.with_mask(mask)
    dhcp_start = _optional_str(entry.get("dhcpstart"))
    if dhcp_start is not None:
        device = device.with_dhcp_start(dhcp_start)
    forwards = entry.get("forwards")
    if isinstance(forwards, list):
        forwards = ",".join(str(item) for item in forwards)
    for pf in parse_port_forwards(_optional_str(forwards)):
        device = device.with_port_forward(pf.host_port, pf.guest_port)
    return device


def _network_env_values(index: int) -> Dict[str, Optional[str]]:
    return {field: get_env_indexed(field, index) for field in _NETWORK_ENV_FIELDS}


def _has_values(values: Dict[str, Optional[str]]) -> bool:
    return any(value is not None and value.strip() for value in values.values())


def _networks_from_env() -> Optional[List[NetworkDevice]]:
    devices: List[NetworkDevice] = []
    index = 1
    while True:
        values = _network_env_values(index)
        if not _has_values(values):
            if _has_values(_network_env_values(index + 1)):
                prefix = "NETWORK" if index == 1 else f"NETWORK{index}"
                log(
                    "WARN",
                    f"NETWORK{index + 1}_* is set but {prefix}_* is empty; "
                    f"network definitions from index {index + 1} on are ignored",
                )
            break
        devices.append(
            build_network(
                {
                    "id": values["NETWORK_ID"],
                    "net": values["NETWORK_NET"],
                    "dhcpstart": values["NETWORK_DHCP_START"],
                    "forwards": values["NETWORK_PORT_FWD"],
                },
                index,
            )
        )
        index += 1
    return devices or None


def _networks_from_file(file_cfg: Dict[str, Any]) -> List[NetworkDevice]:
    entries = file_cfg.get("networks", DEFAULT_NETWORKS)
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise LauncherError("'networks' must be a list of network definitions")
    devices = []
    for index, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            raise LauncherError(f"Network #{index} must be a mapping, got {type(entry).__name__}")
        devices.append(build_network(entry, index))
    return devices


def parse_networks(file_cfg: Dict[str, Any]) -> List[NetworkDevice]:
    devices = _networks_from_env()
    if devices is None:
        devices = _networks_from_file(file_cfg)
    ids = [device.id for device in devices]
    duplicates = sorted({dev_id for dev_id in ids if ids.count(dev_id) > 1})
    if duplicates:
        raise LauncherError(f"Duplicate network id(s): {', '.join(duplicates)}")
    return devices


def parse_display(raw: Any) -> str:
    mode = str(raw).strip().lower() or DISPLAY_GRAPHICAL
    mode = DISPLAY_ALIASES.get(mode, mode)
    if mode not in DISPLAY_MODES:
        supported = ", ".join(sorted(DISPLAY_MODES))
        raise LauncherError(f"Unsupported GRAPHICS '{raw}'. Supported: {supported}")
    return mode


def parse_env(config_path: Optional[Path] = None) -> LaunchConfig:
    """Resolve a LaunchConfig from an optional YAML file overlaid with environment variables."""
    if config_path is None:
        env_path = _optional_str(get_env(LAUNCH_CONFIG_ENV))
        config_path = Path(env_path) if env_path else None
    file_cfg = load_config_file(config_path) if config_path is not None else {}

    def setting(env_name: str, key: str, default: Any) -> Any:
        raw = get_env(env_name)
        if raw is not None:
            return raw
        return file_cfg.get(key, default)

    # children run with cwd=work_dir, so relative paths would resolve twice
    base_path = Path(str(setting("BASE_PATH", "base_path", "."))).absolute()
    work_dir = Path(str(setting("WORK_DIR", "work_dir", "."))).absolute()
    serial = _optional_str(setting("SERIAL", "serial", DEFAULT_SERIAL))
    if serial is None:
        raise LauncherError("SERIAL must not be empty")

    memory_mb = parse_int("MEMORY", setting("MEMORY", "memory", "4096"))
    cpus = parse_int("CPUS", setting("CPUS", "cpus", "4"))

    debug_log: Optional[Path] = None
    debug_raw = setting("DEBUG_LOG", "debug_log", None)
    if isinstance(debug_raw, str) and debug_raw.strip().lower() not in TRUTHY | _FALSY:
        debug_log = Path(debug_raw.strip())
    elif debug_raw is not None and _as_bool(debug_raw):
        debug_log = work_dir / DEBUG_LOG_NAME

    gdb_raw = _optional_str(setting("GDB_PORT", "gdb_port", None))
    gdb_port = parse_int("GDB_PORT", gdb_raw, min_val=1, max_val=65535) if gdb_raw else None

    timeout_raw = setting("TPM_READY_TIMEOUT", "tpm_ready_timeout", TPM_READY_TIMEOUT)
    try:
        tpm_ready_timeout = float(timeout_raw)
    except (TypeError, ValueError):
        raise LauncherError(f"TPM_READY_TIMEOUT must be a number of seconds (got '{timeout_raw}')")
    if tpm_ready_timeout < 0:
        raise LauncherError(f"TPM_READY_TIMEOUT must be >= 0 (got {tpm_ready_timeout:g})")

    return LaunchConfig(
        base_path=base_path,
        serial=serial,
        work_dir=work_dir,
        memory_mb=memory_mb,
        cpus=cpus,
        firmware_code=str(setting("FIRMWARE_CODE", "firmware_code", "OVMF_CODE.fd")),
        firmware_vars=str(setting("FIRMWARE_VARS", "firmware_vars", "OVMF_VARS.fd")),
        disk_image=str(setting("DISK_IMAGE", "disk_image", "live.qcow2")),
        display=parse_display(setting("GRAPHICS", "display", DISPLAY_GRAPHICAL)),
        display_backend=_optional_str(setting("DISPLAY_BACKEND", "display_backend", None)),
        gpu=_as_bool(setting("GPU", "gpu", True)),
        iommu=_as_bool(setting("IOMMU", "iommu", True)),
        tpm_enabled=_as_bool(setting("TPM", "tpm", True)),
        debug_log=debug_log,
        gdb_port=gdb_port,
        kernel_append=_optional_str(setting("KERNEL_APPEND", "kernel_append", None)),
        networks=parse_networks(file_cfg),
        qemu_binary=str(setting("QEMU_BINARY", "qemu_binary", QEMU_BINARY)),
        swtpm_binary=str(setting("SWTPM_BINARY", "swtpm_binary", SWTPM_BINARY)),
        tpm_ready_timeout=tpm_ready_timeout,
    )
