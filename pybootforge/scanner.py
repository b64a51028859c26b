"""
USB transport scanning, the first stage of device detection
(C) 2023 Yaroshenko Dmytro (https://github.com/o-murphy)

Walks the devices libusb reports, reads their descriptors and builds
a DeviceRecord for every device that can be identified.
A device that can not be opened still produces a record,
only its string descriptors stay empty.

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
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional

import libusb_package
import usb.core
import usb.util
from usb.backend import libusb1

from pybootforge.exceptions import PlatformAccessError, DeviceNotFoundError
from pybootforge.handle import DeviceHandle
from pybootforge.logger import logger
from pybootforge.model import DeviceRecord, UsbId, UsbLocation, DescriptorSummary

_logger = logger.getChild(__name__.rsplit('.', maxsplit=1)[-1])

# errors a single device may raise while being probed
_PROBE_ERRORS = (usb.core.USBError, ValueError, NotImplementedError)

Enricher = Callable[[list], None]


def get_backend():
    """libusb-1.0 backend, using the library bundled by libusb_package"""
    return libusb1.get_backend(find_library=libusb_package.find_library)


def bcd_to_version(bcd: int) -> str:
    """0x0210 -> '2.1'"""
    return f"{bcd >> 8:x}.{(bcd >> 4) & 0x0f:x}"


def get_port_path(dev: usb.core.Device) -> Optional[str]:
    """Port path in '<bus>-<port>.<port>' form, None if unknown"""
    try:
        port_numbers = dev.port_numbers
    except _PROBE_ERRORS as e:
        _logger.debug(f"Can't get port numbers: {e}")
        return None
    if not port_numbers:
        return None
    return f"{dev.bus}-{'.'.join(map(str, port_numbers))}"


def _read_string(dev: usb.core.Device, index: int, langid: int) -> Optional[str]:
    if not index:
        return None
    try:
        return usb.util.get_string(dev, index, langid)
    except _PROBE_ERRORS as e:
        _logger.debug(f"Can't read string descriptor {index}: {e}")
        return None


def _read_strings(dev: usb.core.Device) -> tuple:
    """
    Reads manufacturer, product and serial strings
    in the first supported language.
    Reading the language list opens the device,
    so a device we can't open has no strings at all
    """
    try:
        langids = usb.util.get_langids(dev)
    except _PROBE_ERRORS as e:
        _logger.debug(f"Could not open device {dev.idVendor:04x}:{dev.idProduct:04x} "
                      f"(may require elevated permissions): {e}")
        return None, None, None
    if not langids:
        return None, None, None

    langid = langids[0]
    return (_read_string(dev, dev.iManufacturer, langid),
            _read_string(dev, dev.iProduct, langid),
            _read_string(dev, dev.iSerialNumber, langid))


def probe_device(dev: usb.core.Device) -> DeviceRecord:
    """
    Builds a DeviceRecord for a single candidate
    :param dev: pyusb device, its device descriptor is already cached
    :return: DeviceRecord
    """
    manufacturer, product, serial_number = _read_strings(dev)

    return DeviceRecord(
        id=UsbId(dev.idVendor, dev.idProduct),
        location=UsbLocation(dev.bus, dev.address, get_port_path(dev)),
        descriptor=DescriptorSummary(
            manufacturer=manufacturer,
            product=product,
            serial_number=serial_number,
            device_class=dev.bDeviceClass,
            device_subclass=dev.bDeviceSubClass,
            device_protocol=dev.bDeviceProtocol,
            usb_version=bcd_to_version(dev.bcdUSB),
        ),
    )


class UsbEnumerator(ABC):
    """Device enumeration capability"""

    @abstractmethod
    def scan(self) -> list:
        """
        Enumerate devices
        :return: list of DeviceRecord
        """

    def get_device(self, vid: int, pid: int) -> Optional[DeviceRecord]:
        """First device matching VID:PID"""
        return next((rec for rec in self.scan()
                     if rec.id.vid == vid and rec.id.pid == pid), None)

    def is_connected(self, vid: int, pid: int) -> bool:
        return self.get_device(vid, pid) is not None


class LibusbEnumerator(UsbEnumerator):
    """Enumerates devices with pyusb over libusb-1.0"""

    def __init__(self, backend=None):
        self._backend = backend

    @property
    def backend(self):
        if self._backend is None:
            self._backend = get_backend()
        return self._backend

    def _device_list(self) -> list:
        backend = self.backend
        if backend is None:
            raise PlatformAccessError("No USB backend available")
        try:
            return list(backend.enumerate_devices())
        except usb.core.USBError as e:
            raise PlatformAccessError(f"Failed to get USB device list: {e}") from e

    def _find_all(self) -> list:
        """
        pyusb devices for every candidate,
        the device descriptor is read while building each one
        """
        devices = []
        for raw in self._device_list():
            try:
                devices.append(usb.core.Device(raw, self.backend))
            except _PROBE_ERRORS as e:
                _logger.debug(f"Skipping device, descriptor is unreadable: {e}")
        return devices

    def scan(self) -> list:
        _logger.debug("Starting USB transport scan")
        records = []
        for dev in self._find_all():
            try:
                record = probe_device(dev)
            finally:
                usb.util.dispose_resources(dev)
            _logger.debug(f"Probed candidate: {record.id.as_hex_string()}")
            records.append(record)
        _logger.debug(f"Discovered {len(records)} USB candidate devices")
        return records


def default_enumerator() -> UsbEnumerator:
    """Enumerator for the running platform"""
    return LibusbEnumerator()


def enumerate_all(enumerator: UsbEnumerator = None,
                  enrichers: Iterable[Enricher] = ()) -> list:
    """
    Runs the detection pipeline: transport scan,
    then every enricher in order, each decorating the records in place
    :param enumerator: UsbEnumerator, platform default if None
    :param enrichers: callables taking the mutable list of records
    :return: list of DeviceRecord
    """
    if enumerator is None:
        enumerator = default_enumerator()
    records = enumerator.scan()
    _logger.info(f"Scan complete: {len(records)} devices discovered")
    for enrich in enrichers:
        enrich(records)
    return records


def open_device(record: DeviceRecord, backend=None) -> DeviceHandle:
    """
    Finds the device a record was built from and opens it
    :raise DeviceNotFoundError: if the device is gone
    """
    if backend is None:
        backend = get_backend()
    if record.location.bus is not None and record.location.address is not None:
        match = {'bus': record.location.bus, 'address': record.location.address}
    else:
        match = {}
    try:
        dev = usb.core.find(backend=backend,
                            idVendor=record.id.vid,
                            idProduct=record.id.pid,
                            **match)
    except usb.core.NoBackendError as e:
        raise PlatformAccessError(f"No USB backend available: {e}") from e
    if dev is None:
        raise DeviceNotFoundError(f"Device {record.id.as_hex_string()} not found")
    return DeviceHandle(dev)


__all__ = (
    'UsbEnumerator',
    'LibusbEnumerator',
    'default_enumerator',
    'enumerate_all',
    'open_device',
    'probe_device',
    'get_backend',
    'bcd_to_version',
    'get_port_path',
)
