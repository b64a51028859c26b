"""
Interrupt transfer helpers, commonly used by HID devices
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
import threading
from enum import IntEnum
from typing import Callable, Optional

from pybootforge.bulk import DEFAULT_TIMEOUT, ep_in, ep_out
from pybootforge.control import ControlTransfer
from pybootforge.exceptions import TransportLibraryError, ParseError
from pybootforge.logger import logger

_logger = logger.getChild(__name__.rsplit('.', maxsplit=1)[-1])

DEFAULT_POLL_INTERVAL = 10  # ms
TRY_READ_TIMEOUT = 1  # ms


class InterruptTransfer:
    """Interrupt transfers over a device handle, no implicit retry"""

    def __init__(self, handle, timeout: int = DEFAULT_TIMEOUT):
        self.handle = handle
        self.timeout = timeout

    def read(self, endpoint: int, size: int) -> bytes:
        return self.handle.interrupt_read(ep_in(endpoint), size, self.timeout)

    def write(self, endpoint: int, data: bytes) -> int:
        return self.handle.interrupt_write(ep_out(endpoint), data, self.timeout)

    def try_read(self, endpoint: int, size: int) -> Optional[bytes]:
        """Read with a very short timeout, None if nothing arrived"""
        try:
            return self.handle.interrupt_read(ep_in(endpoint), size, TRY_READ_TIMEOUT)
        except TransportLibraryError as e:
            if e.is_timeout():
                return None
            raise


class InterruptPoller:
    """
    Continuous reader of an interrupt IN endpoint.
    poll() blocks, stop() or the cancel event end it
    before the next read
    """

    def __init__(self, endpoint: int, buffer_size: int,
                 poll_interval: int = DEFAULT_POLL_INTERVAL):
        self.endpoint = ep_in(endpoint)
        self.buffer_size = buffer_size
        self.poll_interval = poll_interval
        self._cancel: Optional[threading.Event] = None

    @property
    def is_running(self) -> bool:
        return self._cancel is not None and not self._cancel.is_set()

    def stop(self) -> None:
        """Request the running poll to end, safe to call from another thread"""
        if self._cancel is not None:
            self._cancel.set()

    def poll(self, handle, callback: Callable[[bytes], bool],
             cancel: threading.Event = None) -> None:
        """
        Read chunks and hand them to callback until it returns False
        :param handle: device handle
        :param callback: receives each chunk, returns False to stop
        :param cancel: optional event, polling ends once it is set
        :raise TransportLibraryError: on any error but timeout
        """
        if cancel is None:
            cancel = threading.Event()
        self._cancel = cancel
        try:
            while not cancel.is_set():
                try:
                    chunk = handle.interrupt_read(self.endpoint, self.buffer_size,
                                                  self.poll_interval)
                except TransportLibraryError as e:
                    if e.is_timeout():
                        continue
                    _logger.debug(f"Polling stopped: {e}")
                    raise
                if not callback(chunk):
                    break
        finally:
            self._cancel = None


class ReportType(IntEnum):
    """HID report types"""
    INPUT = 0x01
    OUTPUT = 0x02
    FEATURE = 0x03


class HidRequest(IntEnum):
    """HID class requests"""
    GET_REPORT = 0x01
    GET_IDLE = 0x02
    GET_PROTOCOL = 0x03
    SET_REPORT = 0x09
    SET_IDLE = 0x0a
    SET_PROTOCOL = 0x0b


class HidDevice:
    """HID class requests of one interface"""

    def __init__(self, handle, interface: int, timeout: int = DEFAULT_TIMEOUT):
        self.interface = interface
        self.control = ControlTransfer(handle, timeout)

    def _read_byte(self, request: int, value: int) -> int:
        data = self.control.class_read(request, value, self.interface, 1)
        if not data:
            raise ParseError(f"Empty reply to HID request 0x{request:02x}")
        return data[0]

    def get_report(self, report_type: ReportType, report_id: int, length: int) -> bytes:
        return self.control.class_read(HidRequest.GET_REPORT,
                                       (report_type << 8) | report_id,
                                       self.interface, length)

    def set_report(self, report_type: ReportType, report_id: int, data: bytes) -> int:
        return self.control.class_write(HidRequest.SET_REPORT,
                                        (report_type << 8) | report_id,
                                        self.interface, data)

    def get_idle(self, report_id: int) -> int:
        return self._read_byte(HidRequest.GET_IDLE, report_id)

    def set_idle(self, report_id: int, duration: int) -> None:
        self.control.class_write(HidRequest.SET_IDLE,
                                 (duration << 8) | report_id,
                                 self.interface)

    def get_protocol(self) -> int:
        """0 - boot protocol, 1 - report protocol"""
        return self._read_byte(HidRequest.GET_PROTOCOL, 0)

    def set_protocol(self, protocol: int) -> None:
        self.control.class_write(HidRequest.SET_PROTOCOL, protocol, self.interface)


__all__ = (
    'InterruptTransfer',
    'InterruptPoller',
    'HidDevice',
    'ReportType',
    'HidRequest',
)
