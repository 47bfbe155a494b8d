"""Network device records, device ordering, link speed and GPU PCI indexing."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

logger = logging.getLogger(__name__)

IP_ADDR_MAX_LEN = 40
MAX_IFS = 17
MAX_IF_NAME_SIZE = 16
DEFAULT_SPEED_MBPS = 10000
SYSFS_NET_ROOT = "/sys/class/net"

# Only this many bytes of the speed file are read.
_SPEED_READ_LEN = 8


@dataclass
class SocketDev:
    """A discovered network interface."""

    dev_name: str
    ip_addr: str
    pci_path: Optional[str] = None

    @property
    def pci_bdf(self) -> Optional[str]:
        """The last path component of the PCI path, if one is known."""
        if self.pci_path is None:
            return None
        return self.pci_path.rsplit("/", 1)[-1]


def _sort_key(dev: SocketDev) -> tuple[int, str]:
    # Devices without a PCI path come first, ordered by name; the rest are
    # ordered by the PCI bus/device/function at the end of their path.
    bdf = dev.pci_bdf
    if bdf is None:
        return (0, dev.dev_name)
    return (1, bdf)


def sort_devices(devices: Iterable[SocketDev]) -> list[SocketDev]:
    """Return the devices in enumeration order."""
    return sorted(devices, key=_sort_key)


def find_device_by_ip(devices: Sequence[SocketDev], ip_addr: str) -> int:
    """Return the index of the device with ``ip_addr``; KeyError if absent."""
    for index, dev in enumerate(devices):
        if dev.ip_addr == ip_addr:
            return index
    raise KeyError(f"IP {ip_addr} is never discovered before.")


def _strtol_auto(text: str) -> int:
    """Parse the leading integer of ``text`` the way strtol with base 0 does."""
    s = text.lstrip(" \t\n\r\f\v")
    sign = 1
    if s[:1] in ("+", "-"):
        if s[0] == "-":
            sign = -1
        s = s[1:]
    if s[:2].lower() == "0x" and len(s) > 2 and s[2] in "0123456789abcdefABCDEF":
        base, s, digits = 16, s[2:], "0123456789abcdef"
    elif s[:1] == "0":
        base, digits = 8, "01234567"
    else:
        base, digits = 10, "0123456789"
    value = 0
    for ch in s:
        digit = digits.find(ch.lower())
        if digit < 0:
            break
        value = value * base + digit
    return sign * value


def get_speed(dev_name: str, sysfs_root: str = SYSFS_NET_ROOT) -> int:
    """Link speed of ``dev_name`` in Mbps, defaulting to 10 Gbps."""
    speed_path = os.path.join(sysfs_root, dev_name, "speed")
    speed = 0
    try:
        with open(speed_path, "rb") as handle:
            raw = handle.read(_SPEED_READ_LEN)
    except OSError:
        raw = b""
    if raw:
        speed = _strtol_auto(raw.decode("ascii", errors="replace"))
    if speed <= 0:
        logger.info("Could not get speed from %s. Defaulting to 10 Gbps.", speed_path)
        speed = DEFAULT_SPEED_MBPS
    return speed


class PciIndexMap:
    """Maps GPU PCI addresses to their enumeration index and back.

    Addresses are sorted, duplicates removed, and each is given its position
    in that order. Lookups ignore case.
    """

    def __init__(self, gpu_pci_addresses: Iterable[str]) -> None:
        unique = sorted(set(gpu_pci_addresses))
        self._by_addr: dict[str, int] = {}
        for index, addr in enumerate(unique):
            self._by_addr.setdefault(addr.lower(), index)
        if self._by_addr:
            for addr, index in self._by_addr.items():
                logger.info("FasTrak IDX: [%d]. PCI addr: [%s]", index, addr)
        else:
            logger.info("No GPUs found.")

    def __len__(self) -> int:
        return len(self._by_addr)

    def _log_known(self) -> None:
        for addr, index in self._by_addr.items():
            logger.error("  %s: %d", addr, index)

    def index_of(self, pci_addr: str) -> int:
        """Index of ``pci_addr``; KeyError if it is not known."""
        key = pci_addr.lower()
        try:
            return self._by_addr[key]
        except KeyError:
            self._log_known()
            raise KeyError(f"No FasTrak index found for PCI addr {key}") from None

    def pci_of(self, index: int) -> str:
        """PCI address with ``index``; KeyError if none has it."""
        for addr, known in self._by_addr.items():
            if known == index:
                return addr
        self._log_known()
        raise KeyError(f"No PCI Address found for FasTrak index {index}")