"""User-mode network device arguments for vm-launcher."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from vm_launcher.constants import NIC_MODEL
from vm_launcher.models import PortForward


@dataclass(frozen=True)
class NetworkDevice:
    """One virtio NIC backed by QEMU user-mode (SLIRP) networking.

    Instances are immutable; each ``with_*`` call returns an updated copy so a
    device can be shared between configurations without aliasing surprises.
    Addresses are passed through to QEMU verbatim.
    """

    id: str
    mask: Optional[str] = None
    dhcp_start: Optional[str] = None
    port_forwards: Tuple[PortForward, ...] = ()

    @classmethod
    def create(cls, id: str) -> "NetworkDevice":
        return cls(id=id)

    def with_mask(self, cidr: str) -> "NetworkDevice":
        return replace(self, mask=cidr)

    def with_dhcp_start(self, ip: str) -> "NetworkDevice":
        return replace(self, dhcp_start=ip)

    def with_port_forward(self, host_port: int, guest_port: int) -> "NetworkDevice":
        return replace(self, port_forwards=self.port_forwards + (PortForward(host_port, guest_port),))

    def netdev_param(self) -> str:
        param = f"user,id={self.id}"
        if self.mask is not None:
            param += f",net={self.mask}"
        if self.dhcp_start is not None:
            param += f",dhcpstart={self.dhcp_start}"
        for pf in self.port_forwards:
            param += f",hostfwd=tcp::{pf.host_port}-:{pf.guest_port}"
        return param

    def render(self) -> List[str]:
        """Return the ``-netdev``/``-device`` pair for this NIC (always four tokens)."""
        return [
            "-netdev",
            self.netdev_param(),
            "-device",
            f"{NIC_MODEL},netdev={self.id},romfile=",
        ]
