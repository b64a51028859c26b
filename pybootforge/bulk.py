"""
Bulk transfer helpers with retry and chunking
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
from typing import Optional

import usb.util

from pybootforge.exceptions import TransportLibraryError, UsbIOError, ParseError
from pybootforge.logger import logger
from pybootforge.portable import milli_sleep

_logger = logger.getChild(__name__.rsplit('.', maxsplit=1)[-1])

DEFAULT_TIMEOUT = 1000  # ms
MAX_RETRIES = 3
RETRY_BACKOFF = 10  # ms, multiplied by the attempt number

ENDPOINT_DIR_MASK = 0x80


def ep_in(endpoint: int) -> int:
    """Set the IN direction bit"""
    return endpoint | usb.util.ENDPOINT_IN


def ep_out(endpoint: int) -> int:
    """Clear the direction bit"""
    return endpoint & ~ENDPOINT_DIR_MASK & 0xff


class BulkTransfer:
    """
    Bulk transfers over a device handle.
    Timeout, busy and interrupted errors are retried
    with linear backoff, anything else is raised unchanged
    """

    def __init__(self, handle,
                 timeout: int = DEFAULT_TIMEOUT,
                 max_retries: int = MAX_RETRIES,
                 chunk_size: Optional[int] = None):
        if chunk_size is not None and chunk_size <= 0:
            raise ValueError(f"Invalid chunk size {chunk_size}")
        self.handle = handle
        self.timeout = timeout
        self.max_retries = max_retries
        self.chunk_size = chunk_size

    def _with_retry(self, transfer, *args):
        attempt = 0
        while True:
            try:
                return transfer(*args, self.timeout)
            except TransportLibraryError as e:
                if attempt >= self.max_retries or not e.is_retryable():
                    raise
                attempt += 1
                _logger.debug(f"Retry {attempt}/{self.max_retries} after: {e}")
                milli_sleep(RETRY_BACKOFF * attempt)

    def read(self, endpoint: int, size: int) -> bytes:
        """Read up to size bytes from bulk IN endpoint"""
        return self._with_retry(self.handle.bulk_read, ep_in(endpoint), size)

    def _write_single(self, endpoint: int, data: bytes) -> int:
        return self._with_retry(self.handle.bulk_write, ep_out(endpoint), data)

    def write(self, endpoint: int, data: bytes) -> int:
        """
        Write data to bulk OUT endpoint
        :return: total bytes accepted by the device
        """
        if self.chunk_size is None:
            return self._write_single(endpoint, data)

        total_written = 0
        for offset in range(0, len(data), self.chunk_size):
            chunk = data[offset:offset + self.chunk_size]
            written = self._write_single(endpoint, chunk)
            total_written += written
            if written < len(chunk):
                _logger.debug(f"Short write {written}/{len(chunk)}, stopping")
                break
        return total_written

    def read_exact(self, endpoint: int, size: int) -> bytes:
        """
        Read exactly size bytes, in several transfers if needed
        :raise UsbIOError: if the device returns no data before size is reached
        """
        chunk_size = self.chunk_size or size
        data = bytearray()
        while len(data) < size:
            to_read = min(size - len(data), chunk_size)
            block = self.read(endpoint, to_read)
            if not block:
                raise UsbIOError(f"Short read: got {len(data)} of {size} bytes")
            data += block[:to_read]
        return bytes(data)


class BulkReader:
    """Buffered reader over a bulk IN endpoint"""

    def __init__(self, handle, endpoint: int, buffer_size: int,
                 timeout: int = DEFAULT_TIMEOUT):
        if buffer_size <= 0:
            raise ValueError(f"Invalid buffer size {buffer_size}")
        self.handle = handle
        self.endpoint = ep_in(endpoint)
        self.buffer_size = buffer_size
        self.timeout = timeout
        self._buffer = b''
        self._pos = 0

    @property
    def buffered(self) -> int:
        """Bytes received but not consumed yet"""
        return len(self._buffer) - self._pos

    def _drain(self, size: int) -> bytes:
        chunk = self._buffer[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk

    def read(self, size: int) -> bytes:
        """
        Read up to size bytes, buffered data first.
        Returns fewer bytes if the device sends an empty packet
        """
        data = bytearray(self._drain(size))
        while len(data) < size:
            self._buffer = self.handle.bulk_read(self.endpoint, self.buffer_size, self.timeout)
            self._pos = 0
            if not self._buffer:
                break
            data += self._drain(size - len(data))
        return bytes(data)

    def read_line(self) -> str:
        """Read until '\\n', the trailing '\\r\\n' or '\\n' is stripped"""
        line = bytearray()
        while True:
            byte = self.read(1)
            if not byte or byte == b'\n':
                break
            line += byte
        if line.endswith(b'\r'):
            del line[-1]
        try:
            return line.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ParseError(f"Invalid line: {e}") from e


class BulkWriter:
    """
    Buffered writer over a bulk OUT endpoint.
    Use it as a context manager or call close(),
    both flush the buffered bytes
    """

    def __init__(self, handle, endpoint: int, buffer_size: int,
                 timeout: int = DEFAULT_TIMEOUT):
        if buffer_size <= 0:
            raise ValueError(f"Invalid buffer size {buffer_size}")
        self.handle = handle
        self.endpoint = ep_out(endpoint)
        self.buffer_size = buffer_size
        self.timeout = timeout
        self._buffer = bytearray()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def write(self, data: bytes) -> int:
        """Buffer data, flushing each time the buffer fills up"""
        view = memoryview(data)
        while view:
            room = self.buffer_size - len(self._buffer)
            self._buffer += view[:room]
            view = view[room:]
            if len(self._buffer) >= self.buffer_size:
                self.flush()
        return len(data)

    def flush(self) -> None:
        """
        Send the buffered bytes
        :raise UsbIOError: if the device accepts only part of them,
            the rest stays buffered
        """
        if not self._buffer:
            return
        written = self.handle.bulk_write(self.endpoint, bytes(self._buffer), self.timeout)
        del self._buffer[:written]
        if self._buffer:
            raise UsbIOError(f"Short write: {len(self._buffer)} bytes not accepted")

    def write_line(self, line: str) -> None:
        self.write(line.encode('utf-8'))
        self.write(b'\n')
        self.flush()

    def close(self) -> None:
        self.flush()


__all__ = (
    'BulkTransfer',
    'BulkReader',
    'BulkWriter',
    'DEFAULT_TIMEOUT',
    'MAX_RETRIES',
    'ep_in',
    'ep_out',
)
