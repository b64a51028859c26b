"""
Device handle over pyusb device
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
import errno
from functools import wraps

import usb.core
import usb.util

from pybootforge.exceptions import TransportLibraryError, PermissionDeniedError
from pybootforge.logger import logger

_logger = logger.getChild(__name__.rsplit('.', maxsplit=1)[-1])


def _translate_usb_errors(func):
    """Re-raise pyusb errors as TransportLibraryError, EACCES as PermissionDeniedError"""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except usb.core.USBError as e:
            if e.errno == errno.EACCES:
                raise PermissionDeniedError(
                    f"{func.__name__} failed, check device permissions: {e}"
                ) from e
            raise TransportLibraryError(
                f"{func.__name__} failed: {e}", cause=e
            ) from e

    return wrapper


def _to_bytes(data) -> bytes:
    if hasattr(data, 'tobytes'):
        return data.tobytes()
    return bytes(data)


class DeviceHandle:
    """
    Opened usb device.
    All timeouts are in milliseconds
    """

    def __init__(self, dev: usb.core.Device):
        self.dev = dev
        self._claimed = set()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return (f"DeviceHandle({self.dev.idVendor:04x}:{self.dev.idProduct:04x}, "
                f"bus={self.dev.bus}, address={self.dev.address})")

    def close(self) -> None:
        """Release claimed interfaces and resources held by pyusb"""
        _logger.debug(f"Releasing {self!r}")
        for interface in sorted(self._claimed):
            try:
                usb.util.release_interface(self.dev, interface)
            except usb.core.USBError as e:
                # the device may be gone after a detach or manifestation
                _logger.debug(f"Can't release interface {interface}: {e}")
        self._claimed.clear()
        usb.util.dispose_resources(self.dev)

    @_translate_usb_errors
    def claim_interface(self, interface: int) -> None:
        usb.util.claim_interface(self.dev, interface)
        self._claimed.add(interface)

    @_translate_usb_errors
    def set_interface_altsetting(self, interface: int, altsetting: int) -> None:
        self.dev.set_interface_altsetting(interface, altsetting)

    @_translate_usb_errors
    def bulk_read(self, endpoint: int, size: int, timeout: int) -> bytes:
        return _to_bytes(self.dev.read(endpoint, size, timeout))

    @_translate_usb_errors
    def bulk_write(self, endpoint: int, data: bytes, timeout: int) -> int:
        return self.dev.write(endpoint, data, timeout)

    # pylint: disable=too-many-arguments
    @_translate_usb_errors
    def control_read(self, request_type: int, request: int,
                     value: int, index: int, length: int, timeout: int) -> bytes:
        result = self.dev.ctrl_transfer(
            bmRequestType=request_type,
            bRequest=request,
            wValue=value,
            wIndex=index,
            data_or_wLength=length,
            timeout=timeout,
        )
        return _to_bytes(result)

    # pylint: disable=too-many-arguments
    @_translate_usb_errors
    def control_write(self, request_type: int, request: int,
                      value: int, index: int, data: bytes, timeout: int) -> int:
        return self.dev.ctrl_transfer(
            bmRequestType=request_type,
            bRequest=request,
            wValue=value,
            wIndex=index,
            data_or_wLength=data if data else None,
            timeout=timeout,
        )

    # libusb picks the transfer type from the endpoint descriptor
    interrupt_read = bulk_read
    interrupt_write = bulk_write


__all__ = ('DeviceHandle',)
