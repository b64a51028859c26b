"""
Control transfer helpers
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
from enum import IntEnum

import usb.util

from pybootforge.bulk import DEFAULT_TIMEOUT
from pybootforge.exceptions import ParseError
from pybootforge.logger import logger

_logger = logger.getChild(__name__.rsplit('.', maxsplit=1)[-1])

LANGID_EN_US = 0x0409
MAX_STRING_DESC_LEN = 255


class Request(IntEnum):
    """Standard requests (USB 2.0, Table 9-4)"""
    GET_STATUS = 0x00
    CLEAR_FEATURE = 0x01
    SET_FEATURE = 0x03
    SET_ADDRESS = 0x05
    GET_DESCRIPTOR = 0x06
    SET_DESCRIPTOR = 0x07
    GET_CONFIGURATION = 0x08
    SET_CONFIGURATION = 0x09
    GET_INTERFACE = 0x0a
    SET_INTERFACE = 0x0b
    SYNCH_FRAME = 0x0c


class DescriptorType(IntEnum):
    """Descriptor types"""
    DEVICE = 0x01
    CONFIGURATION = 0x02
    STRING = 0x03
    INTERFACE = 0x04
    ENDPOINT = 0x05
    DEVICE_QUALIFIER = 0x06
    OTHER_SPEED_CONFIG = 0x07
    INTERFACE_POWER = 0x08
    BOS = 0x0f
    HID = 0x21
    HID_REPORT = 0x22


DEVICE_DESC_SIZE = 18
CONFIG_DESC_HEADER_SIZE = 9
BOS_DESC_HEADER_SIZE = 5


def build_request_type(direction: int, req_type: int, recipient: int) -> int:
    """
    bmRequestType from its three fields
    :param direction: usb.util.CTRL_IN or usb.util.CTRL_OUT
    :param req_type: usb.util.CTRL_TYPE_STANDARD, CTRL_TYPE_CLASS or CTRL_TYPE_VENDOR
    :param recipient: usb.util.CTRL_RECIPIENT_DEVICE, _INTERFACE, _ENDPOINT or _OTHER
    """
    return usb.util.build_request_type(direction, req_type, recipient)


STANDARD_IN = build_request_type(usb.util.CTRL_IN,
                                 usb.util.CTRL_TYPE_STANDARD,
                                 usb.util.CTRL_RECIPIENT_DEVICE)
STANDARD_OUT = build_request_type(usb.util.CTRL_OUT,
                                  usb.util.CTRL_TYPE_STANDARD,
                                  usb.util.CTRL_RECIPIENT_DEVICE)


def _descriptor_value(desc_type: int, index: int = 0) -> int:
    return (desc_type << 8) | index


def _utf16le_words(payload: bytes) -> bytes:
    """Drop a dangling odd byte"""
    return payload[:len(payload) & ~1]


class ControlTransfer:
    """Standard, class and vendor requests over a device handle"""

    def __init__(self, handle, timeout: int = DEFAULT_TIMEOUT):
        self.handle = handle
        self.timeout = timeout

    # pylint: disable=too-many-arguments
    def read(self, request_type: int, request: int,
             value: int, index: int, length: int) -> bytes:
        return self.handle.control_read(request_type, request, value,
                                        index, length, self.timeout)

    # pylint: disable=too-many-arguments
    def write(self, request_type: int, request: int,
              value: int, index: int, data: bytes = b'') -> int:
        return self.handle.control_write(request_type, request, value,
                                         index, data, self.timeout)

    def _get_descriptor(self, desc_type: int, index: int, lang_id: int, length: int) -> bytes:
        return self.read(STANDARD_IN, Request.GET_DESCRIPTOR,
                         _descriptor_value(desc_type, index), lang_id, length)

    def _get_descriptor_two_phase(self, desc_type: int, index: int, header_size: int) -> bytes:
        """
        Descriptors with a wTotalLength field are read twice,
        first the header to learn the length, then the full descriptor
        """
        header = self._get_descriptor(desc_type, index, 0, header_size)
        if len(header) < 4:
            raise ParseError(f"Descriptor 0x{desc_type:02x} header too short: {len(header)}")
        total_length = int.from_bytes(header[2:4], 'little')
        _logger.debug(f"Descriptor 0x{desc_type:02x} total length {total_length}")
        return self._get_descriptor(desc_type, index, 0, total_length)

    def get_device_descriptor(self) -> bytes:
        return self._get_descriptor(DescriptorType.DEVICE, 0, 0, DEVICE_DESC_SIZE)

    def get_configuration_descriptor(self, index: int) -> bytes:
        """Full configuration descriptor with interfaces and endpoints"""
        return self._get_descriptor_two_phase(DescriptorType.CONFIGURATION,
                                              index, CONFIG_DESC_HEADER_SIZE)

    def get_bos_descriptor(self) -> bytes:
        return self._get_descriptor_two_phase(DescriptorType.BOS, 0, BOS_DESC_HEADER_SIZE)

    def get_string_descriptor(self, index: int, lang_id: int = LANGID_EN_US) -> str:
        """
        String descriptor decoded from UTF-16LE,
        invalid sequences are replaced
        """
        data = self._get_descriptor(DescriptorType.STRING, index, lang_id, MAX_STRING_DESC_LEN)
        if len(data) < 2:
            raise ParseError("String descriptor too short")
        return _utf16le_words(data[2:]).decode('utf-16-le', errors='replace')

    def get_language_ids(self) -> list:
        """Supported language ids, en-US if the device reports none"""
        data = self._get_descriptor(DescriptorType.STRING, 0, 0, MAX_STRING_DESC_LEN)
        if len(data) < 4:
            return [LANGID_EN_US]
        payload = _utf16le_words(data[2:])
        return [int.from_bytes(payload[i:i + 2], 'little')
                for i in range(0, len(payload), 2)]

    def get_hid_report_descriptor(self, interface: int, length: int) -> bytes:
        request_type = build_request_type(usb.util.CTRL_IN,
                                          usb.util.CTRL_TYPE_STANDARD,
                                          usb.util.CTRL_RECIPIENT_INTERFACE)
        return self.read(request_type, Request.GET_DESCRIPTOR,
                         _descriptor_value(DescriptorType.HID_REPORT), interface, length)

    def set_configuration(self, value: int) -> None:
        self.write(STANDARD_OUT, Request.SET_CONFIGURATION, value, 0)

    def get_device_status(self) -> int:
        data = self.read(STANDARD_IN, Request.GET_STATUS, 0, 0, 2)
        if len(data) < 2:
            raise ParseError("Device status too short")
        return int.from_bytes(data[:2], 'little')

    def vendor_read(self, request: int, value: int, index: int, length: int) -> bytes:
        request_type = build_request_type(usb.util.CTRL_IN,
                                          usb.util.CTRL_TYPE_VENDOR,
                                          usb.util.CTRL_RECIPIENT_DEVICE)
        return self.read(request_type, request, value, index, length)

    def vendor_write(self, request: int, value: int, index: int, data: bytes = b'') -> int:
        request_type = build_request_type(usb.util.CTRL_OUT,
                                          usb.util.CTRL_TYPE_VENDOR,
                                          usb.util.CTRL_RECIPIENT_DEVICE)
        return self.write(request_type, request, value, index, data)

    # pylint: disable=too-many-arguments
    def class_read(self, request: int, value: int, index: int, length: int,
                   recipient: int = usb.util.CTRL_RECIPIENT_INTERFACE) -> bytes:
        request_type = build_request_type(usb.util.CTRL_IN,
                                          usb.util.CTRL_TYPE_CLASS,
                                          recipient)
        return self.read(request_type, request, value, index, length)

    # pylint: disable=too-many-arguments
    def class_write(self, request: int, value: int, index: int, data: bytes = b'',
                    recipient: int = usb.util.CTRL_RECIPIENT_INTERFACE) -> int:
        request_type = build_request_type(usb.util.CTRL_OUT,
                                          usb.util.CTRL_TYPE_CLASS,
                                          recipient)
        return self.write(request_type, request, value, index, data)


__all__ = (
    'ControlTransfer',
    'Request',
    'DescriptorType',
    'build_request_type',
    'LANGID_EN_US',
)
