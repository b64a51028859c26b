"""
USB Device Firmware Update
Protocol definitions for USB DFU
(C) 2023 Yaroshenko Dmytro (https://github.com/o-murphy)

This ought to be compliant to USB DFU 1.1 as available from
https://www.usb.org/sites/default/files/DFU_1.1.pdf

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
import struct
from dataclasses import dataclass
from enum import IntEnum, IntFlag

from pybootforge.exceptions import ParseError

USB_DT_DFU = 0x21
USB_DT_DFU_SIZE = 9
DFU_STATUS_SIZE = 6

USB_CLASS_APP_SPECIFIC = 0xfe
USB_SUBCLASS_DFU = 0x01
DFU_PROTOCOL_RUNTIME = 0x01
DFU_PROTOCOL_DFU = 0x02


# DFU class-specific requests (Section 3, DFU Rev 1.1)
class UsbReqDfu(IntEnum):
    """Dfu requests"""
    DETACH = 0x00
    DNLOAD = 0x01
    UPLOAD = 0x02
    GETSTATUS = 0x03
    CLRSTATUS = 0x04
    GETSTATE = 0x05
    ABORT = 0x06


class DfuState(IntEnum):
    """Dfu states"""
    APP_IDLE = 0x00
    APP_DETACH = 0x01
    DFU_IDLE = 0x02
    DFU_DOWNLOAD_SYNC = 0x03
    DFU_DOWNLOAD_BUSY = 0x04
    DFU_DOWNLOAD_IDLE = 0x05
    DFU_MANIFEST_SYNC = 0x06
    DFU_MANIFEST = 0x07
    DFU_MANIFEST_WAIT_RESET = 0x08
    DFU_UPLOAD_IDLE = 0x09
    DFU_ERROR = 0x0a

    @classmethod
    def from_byte(cls, value: int) -> 'DfuState':
        """Unknown states decode to DFU_ERROR"""
        try:
            return cls(value)
        except ValueError:
            return cls.DFU_ERROR

    def is_dfu_mode(self) -> bool:
        """False while the device runs its application"""
        return self not in (DfuState.APP_IDLE, DfuState.APP_DETACH)

    def to_string(self) -> str:
        """
        :return: dfu-util name of the state
        """
        return _STATES_NAMES[self]


# DFU_GETSTATUS bStatus values (Section 6.1.2, DFU Rev 1.1)
class DfuStatus(IntEnum):
    """Dfu statuses"""
    OK = 0x00
    ERROR_TARGET = 0x01
    ERROR_FILE = 0x02
    ERROR_WRITE = 0x03
    ERROR_ERASE = 0x04
    ERROR_CHECK_ERASED = 0x05
    ERROR_PROG = 0x06
    ERROR_VERIFY = 0x07
    ERROR_ADDRESS = 0x08
    ERROR_NOTDONE = 0x09
    ERROR_FIRMWARE = 0x0a
    ERROR_VENDOR = 0x0b
    ERROR_USBR = 0x0c
    ERROR_POR = 0x0d
    ERROR_UNKNOWN = 0x0e
    ERROR_STALLEDPKT = 0x0f

    @classmethod
    def from_byte(cls, value: int) -> 'DfuStatus':
        """Unknown codes decode to ERROR_STALLEDPKT"""
        try:
            return cls(value)
        except ValueError:
            return cls.ERROR_STALLEDPKT

    def is_ok(self) -> bool:
        return self is DfuStatus.OK

    def to_string(self) -> str:
        """
        :return: short name of the status, like 'errTARGET'
        """
        if self is DfuStatus.OK:
            return 'OK'
        return 'err' + self.name[len('ERROR_'):]

    @property
    def description(self) -> str:
        return _DFU_STATUS_DESCRIPTIONS[self]


_STATES_NAMES = {
    DfuState.APP_IDLE: 'appIDLE',
    DfuState.APP_DETACH: 'appDETACH',
    DfuState.DFU_IDLE: 'dfuIDLE',
    DfuState.DFU_DOWNLOAD_SYNC: 'dfuDNLOAD-SYNC',
    DfuState.DFU_DOWNLOAD_BUSY: 'dfuDNBUSY',
    DfuState.DFU_DOWNLOAD_IDLE: 'dfuDNLOAD-IDLE',
    DfuState.DFU_MANIFEST_SYNC: 'dfuMANIFEST-SYNC',
    DfuState.DFU_MANIFEST: 'dfuMANIFEST',
    DfuState.DFU_MANIFEST_WAIT_RESET: 'dfuMANIFEST-WAIT-RESET',
    DfuState.DFU_UPLOAD_IDLE: 'dfuUPLOAD-IDLE',
    DfuState.DFU_ERROR: 'dfuERROR',
}

_DFU_STATUS_DESCRIPTIONS = {
    DfuStatus.OK: "No error condition is present",
    DfuStatus.ERROR_TARGET: "File is not targeted for use by this device",
    DfuStatus.ERROR_FILE: "File is for this device but fails some vendor-specific test",
    DfuStatus.ERROR_WRITE: "Device is unable to write memory",
    DfuStatus.ERROR_ERASE: "Memory erase function failed",
    DfuStatus.ERROR_CHECK_ERASED: "Memory erase check failed",
    DfuStatus.ERROR_PROG: "Program memory function failed",
    DfuStatus.ERROR_VERIFY: "Programmed memory failed verification",
    DfuStatus.ERROR_ADDRESS: "Cannot program memory due to received address that is out of range",
    DfuStatus.ERROR_NOTDONE: "Received DNLOAD with wLength = 0, "
                             "but device does not think that it has all data yet",
    DfuStatus.ERROR_FIRMWARE: "Device's firmware is corrupt. "
                              "It cannot return to run-time (non-DFU) operations",
    DfuStatus.ERROR_VENDOR: "iString indicates a vendor specific error",
    DfuStatus.ERROR_USBR: "Device detected unexpected USB reset signalling",
    DfuStatus.ERROR_POR: "Device detected unexpected power on reset",
    DfuStatus.ERROR_UNKNOWN: "Something went wrong, but the device does not know what it was",
    DfuStatus.ERROR_STALLEDPKT: "Device stalled an unexpected request",
}


class BmAttributes(IntFlag):
    """Enum of DFU_FUNC_DESCRIPTOR's BmAttributes"""
    USB_DFU_CAN_DOWNLOAD = 1 << 0
    USB_DFU_CAN_UPLOAD = 1 << 1
    USB_DFU_MANIFEST_TOL = 1 << 2
    USB_DFU_WILL_DETACH = 1 << 3


@dataclass
class StatusResponse:
    """
    DFU_GETSTATUS reply.
    bwPollTimeout is a 24 bit little endian value
    """
    status: DfuStatus = DfuStatus.OK
    poll_timeout: int = 0
    state: DfuState = DfuState.DFU_IDLE
    string_index: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> 'StatusResponse':
        """Parse the first 6 bytes of a GETSTATUS reply"""
        if len(data) < DFU_STATUS_SIZE:
            raise ParseError(f"Status response too short: {len(data)} bytes")
        return cls(
            status=DfuStatus.from_byte(data[0]),
            poll_timeout=int.from_bytes(data[1:4], 'little'),
            state=DfuState.from_byte(data[4]),
            string_index=data[5],
        )

    def __bytes__(self) -> bytes:
        return (
                bytes([self.status])
                + self.poll_timeout.to_bytes(3, 'little')
                + bytes([self.state, self.string_index])
        )


# pylint: disable=invalid-name
@dataclass
class FuncDescriptor:
    """USB_DFU_FUNC_DESCRIPTOR"""
    bLength: int = 0
    bDescriptorType: int = 0
    bmAttributes: BmAttributes = BmAttributes(0)
    wDetachTimeOut: int = 0
    wTransferSize: int = 0
    bcdDFUVersion: int = 0

    def __repr__(self) -> str:
        return (f"FuncDescriptor("
                f"bLength={self.bLength}, "
                f"bDescriptorType={self.bDescriptorType}, "
                f"bmAttributes={self.bmAttributes!r}, "
                f"wDetachTimeOut={self.wDetachTimeOut}, "
                f"wTransferSize={self.wTransferSize}, "
                f"bcdDFUVersion=0x{self.bcdDFUVersion:04x})")

    @classmethod
    def from_bytes(cls, data: bytes) -> 'FuncDescriptor':
        """parse bytes to a FuncDescriptor"""
        if len(data) < USB_DT_DFU_SIZE:
            raise ParseError(f"Functional descriptor too short: {len(data)} bytes")
        (bLength,
         bDescriptorType,
         bmAttributes,
         wDetachTimeOut,
         wTransferSize,
         bcdDFUVersion) = struct.unpack('<BBBHHH', bytes(data[:USB_DT_DFU_SIZE]))
        return cls(bLength, bDescriptorType, BmAttributes(bmAttributes & 0x0f),
                   wDetachTimeOut, wTransferSize, bcdDFUVersion)

    @property
    def will_detach(self) -> bool:
        return bool(self.bmAttributes & BmAttributes.USB_DFU_WILL_DETACH)

    @property
    def manifestation_tolerant(self) -> bool:
        return bool(self.bmAttributes & BmAttributes.USB_DFU_MANIFEST_TOL)

    @property
    def can_upload(self) -> bool:
        return bool(self.bmAttributes & BmAttributes.USB_DFU_CAN_UPLOAD)

    @property
    def can_download(self) -> bool:
        return bool(self.bmAttributes & BmAttributes.USB_DFU_CAN_DOWNLOAD)

    @property
    def detach_timeout(self) -> int:
        return self.wDetachTimeOut

    @property
    def transfer_size(self) -> int:
        return self.wTransferSize

    @property
    def dfu_version(self) -> int:
        return self.bcdDFUVersion

    def version_string(self) -> str:
        """bcdDFUVersion 0x0110 -> '1.10'"""
        return f"{self.bcdDFUVersion >> 8:x}.{self.bcdDFUVersion & 0xff:02x}"


__all__ = (
    'USB_DT_DFU',
    'USB_DT_DFU_SIZE',
    'USB_CLASS_APP_SPECIFIC',
    'USB_SUBCLASS_DFU',
    'DFU_PROTOCOL_RUNTIME',
    'DFU_PROTOCOL_DFU',
    'UsbReqDfu',
    'DfuState',
    'DfuStatus',
    'BmAttributes',
    'StatusResponse',
    'FuncDescriptor',
)
