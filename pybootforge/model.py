"""
Normalized USB device records
(C) 2023 Yaroshenko Dmytro (https://github.com/o-murphy)

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program; if not, write to the Free Software
Foundation, Inc., 59 Temple Place, Suite 330, Boston, MA  02111-1307  USA
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class UsbId:
    """Vendor and product id pair, identifies a device type"""
    vid: int
    pid: int

    def as_hex_string(self) -> str:
        return f"{self.vid:04X}:{self.pid:04X}"


@dataclass(frozen=True)
class UsbLocation:
    """
    Where the device sits on the host.
    bus and address may change across reconnects,
    port_path is stable while the device stays in the same physical port
    """
    bus: Optional[int] = None
    address: Optional[int] = None
    port_path: Optional[str] = None


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True)
class DescriptorSummary:
    """Best-effort summary of the standard device descriptor"""
    manufacturer: Optional[str] = None
    product: Optional[str] = None
    serial_number: Optional[str] = None
    device_class: Optional[int] = None
    device_subclass: Optional[int] = None
    device_protocol: Optional[int] = None
    usb_version: Optional[str] = None


class DriverState(Enum):
    """OS driver binding variants"""
    UNKNOWN = 'unknown'
    BOUND = 'bound'
    MISSING = 'missing'
    BLOCKED = 'blocked'
    MULTIPLE = 'multiple'


@dataclass(frozen=True)
class DriverStatus:
    """Driver binding, set by platform enrichment only"""
    state: DriverState = DriverState.UNKNOWN
    name: Optional[str] = None
    reason: Optional[str] = None
    names: tuple = ()

    @classmethod
    def unknown(cls) -> 'DriverStatus':
        return cls()

    @classmethod
    def bound(cls, name: str) -> 'DriverStatus':
        return cls(DriverState.BOUND, name=name)

    @classmethod
    def missing(cls) -> 'DriverStatus':
        return cls(DriverState.MISSING)

    @classmethod
    def blocked(cls, reason: str) -> 'DriverStatus':
        return cls(DriverState.BLOCKED, reason=reason)

    @classmethod
    def multiple(cls, names) -> 'DriverStatus':
        return cls(DriverState.MULTIPLE, names=tuple(names))


class LinkState(Enum):
    """Link health variants"""
    GOOD = 'good'
    UNSTABLE = 'unstable'
    POWER_ISSUE_HINT = 'power_issue_hint'
    RESET_LOOP = 'reset_loop'
    DISCONNECTED = 'disconnected'


@dataclass(frozen=True)
class LinkHealth:
    """Link health, refined by external monitoring only"""
    state: LinkState = LinkState.GOOD
    reason: Optional[str] = None

    @classmethod
    def good(cls) -> 'LinkHealth':
        return cls()

    @classmethod
    def unstable(cls, reason: str) -> 'LinkHealth':
        return cls(LinkState.UNSTABLE, reason)

    @classmethod
    def power_issue_hint(cls, reason: str) -> 'LinkHealth':
        return cls(LinkState.POWER_ISSUE_HINT, reason)

    @classmethod
    def reset_loop(cls) -> 'LinkHealth':
        return cls(LinkState.RESET_LOOP)

    @classmethod
    def disconnected(cls) -> 'LinkHealth':
        return cls(LinkState.DISCONNECTED)


@dataclass
class DeviceRecord:
    """
    A device confirmed by one enumeration pass.
    id, location and descriptor are read-only once the record exists,
    tags, driver, health and raw_data may be updated afterwards
    """
    id: UsbId
    location: UsbLocation = field(default_factory=UsbLocation)
    descriptor: DescriptorSummary = field(default_factory=DescriptorSummary)
    driver: DriverStatus = field(default_factory=DriverStatus)
    health: LinkHealth = field(default_factory=LinkHealth)
    tags: list = field(default_factory=list)
    raw_data: Optional[str] = None

    _READ_ONLY = ('id', 'location', 'descriptor')

    def __setattr__(self, name, value):
        if name in self._READ_ONLY and name in self.__dict__:
            raise AttributeError(f"DeviceRecord.{name} is read-only")
        super().__setattr__(name, value)

    def has_tag(self, tag: str) -> bool:
        """Case-insensitive tag membership"""
        tag = tag.lower()
        return any(t.lower() == tag for t in self.tags)

    def add_tag(self, tag: str) -> None:
        if not self.has_tag(tag):
            self.tags.append(tag)

    def __str__(self) -> str:
        desc = self.descriptor
        text = f"USB Device [{self.id.vid:04x}:{self.id.pid:04x}] "
        if desc.manufacturer:
            text += f"{desc.manufacturer} "
        if desc.product:
            text += f"{desc.product} "
        if desc.serial_number:
            text += f"(S/N: {desc.serial_number}) "
        return (text + f"Bus {self.location.bus or 0:03} "
                       f"Device {self.location.address or 0:03}")


__all__ = (
    'UsbId',
    'UsbLocation',
    'DescriptorSummary',
    'DriverState',
    'DriverStatus',
    'LinkState',
    'LinkHealth',
    'DeviceRecord',
)
