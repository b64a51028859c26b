"""
Pybootforge exceptions.
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
import logging
import sys
from enum import IntEnum
from functools import wraps

import usb.core


class SysExit(IntEnum):
    OTHER = 1
    EX_OK = 0
    EX_USAGE = 64  # command line usage error
    EX_DATAERR = 65  # data format error
    EX_NOINPUT = 66  # cannot open input
    EX_UNAVAILABLE = 69  # service unavailable
    EX_SOFTWARE = 70  # internal software error
    EX_IOERR = 74  # input/output error
    EX_PROTOCOL = 76  # remote error in protocol
    EX_NOPERM = 77  # permission denied
    EX_NOTFOUND = 79


# libusb error codes, as reported by usb.core.USBError.backend_error_code
LIBUSB_ERROR_BUSY = -6
LIBUSB_ERROR_TIMEOUT = -7
LIBUSB_ERROR_INTERRUPTED = -10

_RETRYABLE_ERRNO = (errno.ETIMEDOUT, errno.EBUSY, errno.EINTR)
_RETRYABLE_BACKEND_CODES = (LIBUSB_ERROR_TIMEOUT,
                            LIBUSB_ERROR_BUSY,
                            LIBUSB_ERROR_INTERRUPTED)


class Errx(Exception):
    """
    Usually indicates a general error.
    It is used as a base of all pybootforge errors
    and carries the process exit code the cli terminates with.
    """
    exit_code = SysExit.OTHER

    def __init__(self, message, exit_code: SysExit = None):
        super().__init__(message)
        if isinstance(exit_code, SysExit):
            self.exit_code = exit_code


class PlatformAccessError(Errx, OSError):
    """USB subsystem or backend is not accessible"""
    exit_code = SysExit.EX_UNAVAILABLE


class DeviceNotFoundError(Errx):
    """EX_NOTFOUND"""
    exit_code = SysExit.EX_NOTFOUND


class PermissionDeniedError(Errx, PermissionError):
    """EX_NOPERM"""
    exit_code = SysExit.EX_NOPERM


class TransportLibraryError(Errx, IOError):
    """
    Wraps an error raised by the underlying usb library.
    The original error is kept as an opaque cause,
    only inspected to decide if the failed call can be retried
    """
    exit_code = SysExit.EX_IOERR

    def __init__(self, message, cause: Exception = None):
        super().__init__(message)
        self.cause = cause

    def is_timeout(self) -> bool:
        """True if the transfer expired"""
        cause = self.cause
        if isinstance(cause, usb.core.USBTimeoutError):
            return True
        return (getattr(cause, 'errno', None) == errno.ETIMEDOUT
                or getattr(cause, 'backend_error_code', None) == LIBUSB_ERROR_TIMEOUT)

    def is_retryable(self) -> bool:
        """True for timeout, busy and interrupted errors"""
        if self.is_timeout():
            return True
        cause = self.cause
        return (getattr(cause, 'errno', None) in _RETRYABLE_ERRNO
                or getattr(cause, 'backend_error_code', None) in _RETRYABLE_BACKEND_CODES)


class UsbIOError(Errx, IOError):
    """EX_IOERR"""
    exit_code = SysExit.EX_IOERR


class ParseError(Errx, ValueError):
    """Malformed descriptor or response payload"""
    exit_code = SysExit.EX_DATAERR


class ProtocolError(Errx):
    """EX_PROTOCOL"""
    exit_code = SysExit.EX_PROTOCOL


class DfuError(ProtocolError):
    """Device reported a DFU fault or an unexpected state"""

    def __init__(self, message, status=None, state=None):
        super().__init__(message)
        self.status = status
        self.state = state


class UnknownError(Errx):
    """Catch-all for unclassified failures"""
    exit_code = SysExit.OTHER


class UsageError(Errx):
    """
    Used to indicate misuse or incorrect usage of the program.
    For example, if the program receives
    invalid command-line arguments or options
    """
    exit_code = SysExit.EX_USAGE


def except_and_safe_exit(_logger: logging.Logger = None):
    """decorator to handle exceptions and exit safely"""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Errx as e:
                if str(e) and _logger:
                    if _logger.getEffectiveLevel() <= logging.DEBUG:
                        _logger.exception(e)
                    else:
                        _logger.error(e)
                sys.exit(e.exit_code)
            # pylint: disable=broad-exception-caught
            except Exception as e:
                if _logger:
                    if _logger.getEffectiveLevel() <= logging.DEBUG:
                        _logger.exception(f"Unhandled exception occurred: {e}")
                    else:
                        _logger.error(f"Unhandled exception occurred: {e}")
                sys.exit(SysExit.OTHER)

        return wrapper

    return decorator


__all__ = (
    'SysExit',
    'Errx',
    'PlatformAccessError',
    'DeviceNotFoundError',
    'PermissionDeniedError',
    'TransportLibraryError',
    'UsbIOError',
    'ParseError',
    'ProtocolError',
    'DfuError',
    'UnknownError',
    'UsageError',
    'except_and_safe_exit',
)
