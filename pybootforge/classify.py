"""
Heuristic protocol classification of device records
(C) 2023 Yaroshenko Dmytro (https://github.com/o-murphy)

The result is a hint, not a guarantee, a protocol level handshake
is the only way to be sure a device speaks a protocol.

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
from enum import Enum, IntEnum
from typing import Optional

from pybootforge.model import DeviceRecord


class VENDOR(IntEnum):
    """Vendor IDs"""
    GOOGLE = 0x18d1
    SAMSUNG = 0x04e8
    QUALCOMM = 0x05c6
    APPLE = 0x05ac


class USB_CLASS(IntEnum):  # pylint: disable=invalid-name
    """Device class codes"""
    PER_INTERFACE = 0x00
    IMAGE = 0x06
    VENDOR_SPEC = 0xff


GOOGLE_ADB_PIDS = range(0x4ee1, 0x4ee7 + 1)
SAMSUNG_ADB_PIDS = {0x6860, 0x6864}
GOOGLE_FASTBOOT_PIDS = {0x4ee0, 0xd00d, 0x0d02}
QUALCOMM_EDL_PID = 0x9008

APPLE_DEVICE_PIDS = {
    0x1290, 0x1291, 0x1292, 0x1293,  # iPhone
    0x12a0, 0x12a1, 0x12a2, 0x12a3,  # iPad
    0x1294, 0x1297, 0x129a, 0x129c,  # iPod
    0x12ab, 0x12ac,
}

# Image class, still image subclass, PIMA 15740 protocol
MTP_CLASS_TRIPLE = (USB_CLASS.IMAGE, 0x01, 0x01)


class Protocol(Enum):
    """Application level protocols a device may expose"""
    ADB = 'adb'
    FASTBOOT = 'fastboot'
    APPLE_DEVICE = 'apple'
    MTP = 'mtp'
    UNKNOWN = 'unknown'


def _contains(text: Optional[str], *keywords: str) -> bool:
    if not text:
        return False
    text = text.lower()
    return any(keyword in text for keyword in keywords)


def is_adb_device(record: DeviceRecord) -> bool:
    vid, pid = record.id.vid, record.id.pid
    desc = record.descriptor
    if vid == VENDOR.GOOGLE and pid in GOOGLE_ADB_PIDS:
        return True
    if vid == VENDOR.SAMSUNG and pid in SAMSUNG_ADB_PIDS:
        return True
    if desc.device_class == USB_CLASS.VENDOR_SPEC and _contains(desc.product, 'adb'):
        return True
    return record.has_tag('adb')


def is_fastboot_device(record: DeviceRecord) -> bool:
    vid, pid = record.id.vid, record.id.pid
    if vid == VENDOR.GOOGLE and pid in GOOGLE_FASTBOOT_PIDS:
        return True
    if vid == VENDOR.QUALCOMM and pid == QUALCOMM_EDL_PID:
        return True
    if _contains(record.descriptor.product, 'fastboot', 'bootloader'):
        return True
    return record.has_tag('fastboot')


def is_apple_device(record: DeviceRecord) -> bool:
    desc = record.descriptor
    if record.id.vid == VENDOR.APPLE and record.id.pid in APPLE_DEVICE_PIDS:
        return True
    if _contains(desc.manufacturer, 'apple'):
        return True
    if _contains(desc.product, 'iphone', 'ipad', 'ipod'):
        return True
    return record.has_tag('apple')


def is_mtp_device(record: DeviceRecord) -> bool:
    desc = record.descriptor
    triple = (desc.device_class, desc.device_subclass, desc.device_protocol)
    if triple == MTP_CLASS_TRIPLE:
        return True
    if _contains(desc.product, 'mtp', 'media transfer'):
        return True
    # Android exposes MTP on composite devices, this over-matches
    # vendor specific devices from android vendors
    if (_contains(desc.manufacturer, 'android')
            and desc.device_class in (USB_CLASS.PER_INTERFACE, USB_CLASS.VENDOR_SPEC)):
        return True
    return record.has_tag('mtp')


_PROBES = (
    (Protocol.ADB, is_adb_device),
    (Protocol.FASTBOOT, is_fastboot_device),
    (Protocol.APPLE_DEVICE, is_apple_device),
    (Protocol.MTP, is_mtp_device),
)


def classify(record: DeviceRecord) -> set:
    """
    Classify the protocols a device appears to support
    :param record: DeviceRecord
    :return: non-empty set of Protocol, {Protocol.UNKNOWN} if nothing matched
    """
    protocols = {protocol for protocol, probe in _PROBES if probe(record)}
    return protocols or {Protocol.UNKNOWN}


def classify_and_tag(record: DeviceRecord) -> set:
    """Classify and add matched protocol names to the record tags"""
    protocols = classify(record)
    for protocol in protocols - {Protocol.UNKNOWN}:
        record.add_tag(protocol.value)
    return protocols


__all__ = (
    'Protocol',
    'classify',
    'classify_and_tag',
    'is_adb_device',
    'is_fastboot_device',
    'is_apple_device',
    'is_mtp_device',
)
