"""
Low-level DFU communication routines
(C) 2023 Yaroshenko Dmytro (https://github.com/o-murphy)

This is supposed to be a general DFU implementation, as specified in the
USB DFU 1.0 and 1.1 specification.

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
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional

import usb.core
import usb.util

from pybootforge.control import ControlTransfer
from pybootforge.exceptions import DfuError, ParseError, UsageError
from pybootforge.logger import logger
from pybootforge.portable import milli_sleep
from pybootforge.quirks import QUIRK, get_quirks, poll_timeout
from pybootforge.usb_dfu import (UsbReqDfu, DfuState, StatusResponse,
                                 FuncDescriptor, USB_DT_DFU, USB_DT_DFU_SIZE,
                                 USB_CLASS_APP_SPECIFIC, USB_SUBCLASS_DFU,
                                 DFU_PROTOCOL_DFU, DFU_STATUS_SIZE)

_logger = logger.getChild(__name__.rsplit('.', maxsplit=1)[-1])

DEFAULT_TIMEOUT = 10000  # ms
MANIFEST_BACKOFF = 100  # ms
BLOCK_NUMBER_MASK = 0xffff

ProgressCallback = Callable[[int, int], None]


class WaitAction(Enum):
    """What to do after a GETSTATUS while waiting on the device"""
    POLL = 'poll'  # sleep bwPollTimeout, ask again
    READY = 'ready'
    FAIL = 'fail'
    BACKOFF = 'backoff'  # sleep MANIFEST_BACKOFF, ask again


def download_wait_action(response: StatusResponse) -> WaitAction:
    """Next step after a block was sent"""
    if not response.status.is_ok():
        return WaitAction.FAIL
    if response.state in (DfuState.DFU_DOWNLOAD_SYNC,
                          DfuState.DFU_DOWNLOAD_BUSY,
                          DfuState.DFU_MANIFEST_SYNC):
        return WaitAction.POLL
    if response.state in (DfuState.DFU_DOWNLOAD_IDLE,
                          DfuState.DFU_IDLE,
                          DfuState.DFU_MANIFEST):
        return WaitAction.READY
    return WaitAction.FAIL


def manifest_wait_action(response: StatusResponse) -> WaitAction:
    """Next step while the device manifests the new firmware"""
    if not response.status.is_ok():
        return WaitAction.FAIL
    if response.state in (DfuState.DFU_MANIFEST, DfuState.DFU_MANIFEST_SYNC):
        return WaitAction.POLL
    if response.state in (DfuState.DFU_MANIFEST_WAIT_RESET, DfuState.DFU_IDLE):
        return WaitAction.READY
    return WaitAction.BACKOFF


def _status_error(message: str, response: StatusResponse) -> DfuError:
    return DfuError(
        f"{message}: state({response.state}) = {response.state.to_string()}, "
        f"status({response.status}) = {response.status.to_string()} "
        f"({response.status.description})",
        status=response.status,
        state=response.state,
    )


@dataclass
class DfuInterface:  # pylint: disable=too-many-instance-attributes
    """DFU capable interface of a device"""
    # pylint: disable=invalid-name
    vendor: int
    product: int
    bcdDevice: int
    configuration: int
    interface: int
    altsetting: int
    alt_name: Optional[str] = None
    dfu_mode: bool = False
    func_dfu: Optional[FuncDescriptor] = None
    quirks: QUIRK = QUIRK.NONE
    bus: Optional[int] = None
    address: Optional[int] = None

    def __str__(self):
        mode = 'DFU' if self.dfu_mode else 'Runtime'
        return (f"Found {mode}: [{self.vendor:04x}:{self.product:04x}] "
                f"ver={self.bcdDevice:04x}, devnum={self.address}, "
                f"cfg={self.configuration}, intf={self.interface}, "
                f"alt={self.altsetting}, name=\"{self.alt_name or 'UNKNOWN'}\"")


def find_descriptor(desc_list, desc_type: int) -> Optional[bytes]:
    """
    Look for a descriptor in a concatenated descriptor list.
    Will return upon the first match of the given descriptor type
    """
    desc_list = bytes(desc_list or b'')
    p = 0
    while p + 1 < len(desc_list):
        desc_len = desc_list[p]
        if desc_len == 0:
            _logger.warning("Invalid descriptor list")
            return None
        if desc_list[p + 1] == desc_type:
            return desc_list[p:p + desc_len]
        p += desc_len
    return None


def _parse_func_descriptor(raw: Optional[bytes]) -> Optional[FuncDescriptor]:
    if raw is None:
        return None
    # DFU 1.0 descriptors end before bcdDFUVersion
    if len(raw) == USB_DT_DFU_SIZE - 2:
        raw = raw + (0x0100).to_bytes(2, 'little')
    try:
        return FuncDescriptor.from_bytes(raw)
    except ParseError as e:
        _logger.warning(f"Ignoring DFU functional descriptor: {e}")
        return None


def _alt_name(dev: usb.core.Device, index: int) -> Optional[str]:
    if not index:
        return None
    try:
        return usb.util.get_string(dev, index)
    except (usb.core.USBError, ValueError, NotImplementedError) as e:
        _logger.debug(f"Can't read interface name: {e}")
        return None


def find_dfu_interfaces(dev: usb.core.Device) -> Iterator[DfuInterface]:
    """
    Find DFU interfaces of a given USB device
    in all its configurations and alternate settings
    :param dev: usb.core.Device
    :return: DfuInterface generator
    """
    quirks = get_quirks(dev.idVendor, dev.idProduct, dev.bcdDevice)
    for cfg in dev:
        cfg_func_dfu = find_descriptor(getattr(cfg, 'extra_descriptors', None), USB_DT_DFU)
        for intf in cfg:
            if intf.bInterfaceClass != USB_CLASS_APP_SPECIFIC or \
                    intf.bInterfaceSubClass != USB_SUBCLASS_DFU:
                continue
            raw = find_descriptor(getattr(intf, 'extra_descriptors', None), USB_DT_DFU)
            yield DfuInterface(
                vendor=dev.idVendor,
                product=dev.idProduct,
                bcdDevice=dev.bcdDevice,
                configuration=cfg.bConfigurationValue,
                interface=intf.bInterfaceNumber,
                altsetting=intf.bAlternateSetting,
                alt_name=_alt_name(dev, intf.iInterface),
                dfu_mode=intf.bInterfaceProtocol == DFU_PROTOCOL_DFU,
                func_dfu=_parse_func_descriptor(raw if raw is not None else cfg_func_dfu),
                quirks=quirks,
                bus=dev.bus,
                address=dev.address,
            )


class DfuClient:
    """
    DFU 1.1 session over one interface of an opened device.
    The cached state changes only on a successful GETSTATUS or GETSTATE,
    and after ABORT
    """

    # pylint: disable=too-many-arguments
    def __init__(self, handle, interface: int, transfer_size: int,
                 timeout: int = DEFAULT_TIMEOUT, quirks: int = QUIRK.NONE):
        self.handle = handle
        self.interface = interface
        self.transfer_size = transfer_size
        self.timeout = timeout
        self.quirks = quirks
        self.control = ControlTransfer(handle, timeout)
        self._state = DfuState.DFU_IDLE

    @classmethod
    def from_interface(cls, handle, dfu_if: DfuInterface,
                       transfer_size: int = 0,
                       timeout: int = DEFAULT_TIMEOUT) -> 'DfuClient':
        """
        Client for a discovered interface,
        transfer size defaults to wTransferSize of the functional descriptor
        """
        if not transfer_size and dfu_if.func_dfu is not None:
            transfer_size = dfu_if.func_dfu.transfer_size
            _logger.debug(f"Device returned transfer size {transfer_size}")
        return cls(handle, dfu_if.interface, transfer_size, timeout, dfu_if.quirks)

    @property
    def state(self) -> DfuState:
        return self._state

    def __repr__(self):
        return (f"DfuClient(interface={self.interface}, "
                f"transfer_size={self.transfer_size}, "
                f"state={self._state.to_string()})")

    def get_status(self) -> StatusResponse:
        """
        GETSTATUS Request (DFU 1.0, Section 6.1.2)
        :raise DfuError: if the device reports a non OK status
        """
        data = self.control.class_read(UsbReqDfu.GETSTATUS, 0, self.interface, DFU_STATUS_SIZE)
        response = StatusResponse.from_bytes(data)
        self._state = response.state
        _logger.debug(f"GET_STATUS {response.status.to_string()}, "
                      f"state {response.state.to_string()}, "
                      f"poll timeout {response.poll_timeout}")
        if not response.status.is_ok():
            raise _status_error("Device reported an error", response)
        return response

    def get_state(self) -> DfuState:
        """GETSTATE Request (DFU 1.0, Section 6.1.5)"""
        data = self.control.class_read(UsbReqDfu.GETSTATE, 0, self.interface, 1)
        if not data:
            raise ParseError("Empty GETSTATE response")
        self._state = DfuState.from_byte(data[0])
        _logger.debug(f"GET_STATE {self._state.to_string()}")
        return self._state

    def clear_status(self) -> None:
        """CLRSTATUS Request (DFU 1.0, Section 6.1.3)"""
        _logger.debug("CLEAR_STATUS")
        self.control.class_write(UsbReqDfu.CLRSTATUS, 0, self.interface)

    def abort(self) -> None:
        """ABORT Request (DFU 1.0, Section 6.1.4)"""
        _logger.debug("ABORT")
        self.control.class_write(UsbReqDfu.ABORT, 0, self.interface)
        self._state = DfuState.DFU_IDLE

    def detach(self, timeout: int) -> None:
        """
        DETACH Request (DFU 1.0, Section 5.1)
        :param timeout: ms the device should wait for a USB reset
        """
        _logger.debug(f"DETACH, timeout {timeout}")
        self.control.class_write(UsbReqDfu.DETACH, timeout, self.interface)

    def _download_block(self, block_num: int, data: bytes) -> int:
        _logger.debug(f"DNLOAD block {block_num}, {len(data)} bytes")
        return self.control.class_write(UsbReqDfu.DNLOAD,
                                        block_num & BLOCK_NUMBER_MASK,
                                        self.interface, data)

    def _upload_block(self, block_num: int, length: int) -> bytes:
        data = self.control.class_read(UsbReqDfu.UPLOAD,
                                       block_num & BLOCK_NUMBER_MASK,
                                       self.interface, length)
        _logger.debug(f"UPLOAD block {block_num}, {len(data)} bytes")
        return data

    def _check_transfer_size(self) -> None:
        if not self.transfer_size or self.transfer_size <= 0:
            raise UsageError(f"Invalid transfer size {self.transfer_size}, "
                             f"it must be specified")

    def _ensure_idle(self) -> None:
        if self._state != DfuState.DFU_IDLE:
            _logger.debug(f"Aborting from {self._state.to_string()}")
            self.abort()
            self.get_status()

    def _wait(self, response: StatusResponse) -> None:
        milli_sleep(poll_timeout(self.quirks, response.poll_timeout))

    def _wait_for_ready(self) -> None:
        while True:
            response = self.get_status()
            action = download_wait_action(response)
            if action is WaitAction.READY:
                return
            if action is WaitAction.POLL:
                self._wait(response)
                continue
            raise _status_error("Unexpected state during download", response)

    def _wait_for_manifest(self) -> None:
        while True:
            response = self.get_status()
            action = manifest_wait_action(response)
            if action is WaitAction.READY:
                _logger.debug(f"Manifestation done, {response.state.to_string()}")
                return
            if action is WaitAction.POLL:
                self._wait(response)
            elif action is WaitAction.BACKOFF:
                milli_sleep(MANIFEST_BACKOFF)
            else:
                raise _status_error("Manifestation failed", response)

    def download(self, firmware: bytes, progress: ProgressCallback = None) -> int:
        """
        Write firmware to the device and wait for it to be manifested
        :param firmware: image bytes
        :param progress: optional callback(sent, total)
        :return: bytes sent
        """
        self._check_transfer_size()
        self._ensure_idle()
        total = len(firmware)
        sent = 0
        block_num = 0
        while sent < total:
            block = firmware[sent:sent + self.transfer_size]
            self._download_block(block_num, block)
            self._wait_for_ready()
            sent += len(block)
            block_num += 1
            if progress is not None:
                progress(sent, total)

        # zero length DNLOAD signals the end of the image
        self._download_block(block_num, b'')
        self._wait_for_manifest()
        _logger.debug(f"Sent a total of {sent} bytes")
        return sent

    def upload(self, max_size: int, progress: ProgressCallback = None) -> bytes:
        """
        Read firmware from the device
        :param max_size: upper bound of bytes to read
        :param progress: optional callback(received, max_size)
        :return: uploaded bytes
        """
        self._check_transfer_size()
        self._ensure_idle()
        data = bytearray()
        block_num = 0
        while len(data) < max_size:
            length = min(self.transfer_size, max_size - len(data))
            block = self._upload_block(block_num, length)
            if not block:
                break
            data += block[:length]
            block_num += 1
            if progress is not None:
                progress(len(data), max_size)
            if len(block) < length:
                _logger.debug("Short block, upload finished")
                break
            if len(data) >= max_size:
                break
            self.get_status()
        _logger.debug(f"Received a total of {len(data)} bytes")
        return bytes(data)


__all__ = (
    'DEFAULT_TIMEOUT',
    'MANIFEST_BACKOFF',
    'WaitAction',
    'download_wait_action',
    'manifest_wait_action',
    'DfuInterface',
    'DfuClient',
    'find_descriptor',
    'find_dfu_interfaces',
)
