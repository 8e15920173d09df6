"""vm-launcher package."""

__all__ = [
    "cli",
    "config",
    "constants",
    "exceptions",
    "models",
    "network",
    "process",
    "qemu",
    "supervisor",
    "utils",
]
