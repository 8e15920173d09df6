"""Utility functions for vm-launcher."""

from __future__ import annotations

import os
import shutil
import time
from pathlib import Path
from typing import Callable, Optional, Union

from vm_launcher.constants import _LOG_VERBOSE, TRUTHY
from vm_launcher.exceptions import LauncherError


def log(level: str, message: str) -> None:
    """Lightweight structured logging with coloured level tags."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


def parse_int(name: str, raw: Union[str, int], min_val: int = 1, max_val: Optional[int] = None) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise LauncherError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise LauncherError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise LauncherError(f"{name} must be <= {max_val} (got {value})")
    return value


def kvm_available() -> bool:
    """Return True if /dev/kvm exists and can be opened."""
    kvm_path = Path("/dev/kvm")
    if not kvm_path.exists():
        return False
    try:
        fd = os.open(kvm_path, os.O_RDONLY)
    except OSError:
        return False
    else:
        os.close(fd)
        return True


def find_executable(program: str) -> Optional[str]:
    return shutil.which(program)


def wait_for_path(
    path: Path,
    timeout: float = 10.0,
    interval: float = 0.1,
    abort: Optional[Callable[[], bool]] = None,
) -> bool:
    """Poll for a filesystem path to show up (e.g., the swtpm control socket).

    Returns False on timeout, or as soon as ``abort`` reports True.
    """
    deadline = time.time() + timeout
    while time.time() < deadline:
        if path.exists():
            return True
        if abort is not None and abort():
            return False
        time.sleep(interval)
    return False


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
