"""Custom exceptions for vm-launcher."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional


class LauncherError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class StateDirError(LauncherError):
    """Raised when the TPM state directory cannot be created."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot create TPM state directory {path}: {reason}")
        self.path = path


class SpawnError(LauncherError):
    """Raised when an external program cannot be started."""

    def __init__(self, program: str, argv: List[str], cwd: Optional[Path], reason: str) -> None:
        where = f" (cwd: {cwd})" if cwd is not None else ""
        super().__init__(f"Failed to start '{program}'{where}: {reason}\n  Command: {' '.join(argv)}")
        self.program = program
        self.argv = argv
        self.cwd = cwd
