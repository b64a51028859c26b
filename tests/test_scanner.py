import unittest
from types import SimpleNamespace
from unittest.mock import patch, MagicMock, PropertyMock

import usb.backend
import usb.core

from pybootforge.exceptions import PlatformAccessError, DeviceNotFoundError
from pybootforge.handle import DeviceHandle
from pybootforge.model import DeviceRecord, UsbId, UsbLocation
from pybootforge.scanner import (LibusbEnumerator, UsbEnumerator, bcd_to_version,
                                 get_port_path, probe_device, enumerate_all, open_device)


def usb_device(vid=0x18d1, pid=0x4ee2, bus=1, address=5, ports=(2, 1)):
    dev = MagicMock()
    dev.idVendor = vid
    dev.idProduct = pid
    dev.bDeviceClass = 0xff
    dev.bDeviceSubClass = 0x42
    dev.bDeviceProtocol = 0x01
    dev.bcdUSB = 0x0210
    dev.bus = bus
    dev.address = address
    dev.port_numbers = ports
    dev.iManufacturer = 1
    dev.iProduct = 2
    dev.iSerialNumber = 3
    return dev


STRINGS = {1: "Google", 2: "Pixel", 3: "0123456789"}


def get_string(_dev, index, _langid=None):
    return STRINGS[index]


class FakeEnumerator(UsbEnumerator):

    def __init__(self, records):
        self.records = records

    def scan(self):
        return list(self.records)
def fake_backend(*devices):
    backend = MagicMock()
    backend.enumerate_devices.return_value = list(devices)
    return backend


def descriptor(vid, pid, address):
    return SimpleNamespace(
        bLength=18, bDescriptorType=1, bcdUSB=0x0200,
        bDeviceClass=0, bDeviceSubClass=0, bDeviceProtocol=0,
        bMaxPacketSize0=64, idVendor=vid, idProduct=pid, bcdDevice=0x0100,
        iManufacturer=0, iProduct=0, iSerialNumber=0, bNumConfigurations=1,
        address=address, bus=1, port_number=address, port_numbers=(address,), speed=None,
    )


class FlakyBackend(usb.backend.IBackend):
    """Three devices, the descriptor of the second one can't be read"""

    DESCRIPTORS = {
        'good1': descriptor(0x1111, 0x0001, 2),
        'good2': descriptor(0x2222, 0x0002, 4),
    }

    def enumerate_devices(self):
        return iter(['good1', 'bad', 'good2'])

    def get_device_descriptor(self, dev):
        if dev not in self.DESCRIPTORS:
            raise usb.core.USBError("Access denied (insufficient permissions)", errno=13)
        return self.DESCRIPTORS[dev]


@patch("usb.util.dispose_resources")
@patch("usb.util.get_string", side_effect=get_string)
@patch("usb.util.get_langids", return_value=(0x0409,))
@patch("usb.core.Device", side_effect=lambda raw, _backend: raw)
class TestLibusbEnumerator(unittest.TestCase):

    def test_scan(self, _device, _langids, mock_get_string, mock_dispose):
        dev = usb_device()
        records = LibusbEnumerator(backend=fake_backend(dev)).scan()
        self.assertEqual(len(records), 1)
        rec = records[0]
        self.assertEqual(rec.id, UsbId(0x18d1, 0x4ee2))
        self.assertEqual(rec.location, UsbLocation(1, 5, "1-2.1"))
        self.assertEqual(rec.descriptor.manufacturer, "Google")
        self.assertEqual(rec.descriptor.product, "Pixel")
        self.assertEqual(rec.descriptor.serial_number, "0123456789")
        self.assertEqual(rec.descriptor.device_class, 0xff)
        self.assertEqual(rec.descriptor.usb_version, "2.1")
        mock_get_string.assert_any_call(dev, 2, 0x0409)
        mock_dispose.assert_called_once_with(dev)

    def test_order_preserved(self, *_mocks):
        backend = fake_backend(usb_device(pid=1), usb_device(pid=2), usb_device(pid=3))
        records = LibusbEnumerator(backend=backend).scan()
        self.assertEqual([r.id.pid for r in records], [1, 2, 3])

    def test_unopenable_device(self, _device, mock_langids, mock_get_string, _dispose):
        mock_langids.side_effect = usb.core.USBError("Access denied", errno=13)
        rec = LibusbEnumerator(backend=fake_backend(usb_device())).scan()[0]
        self.assertIsNone(rec.descriptor.manufacturer)
        self.assertIsNone(rec.descriptor.product)
        self.assertIsNone(rec.descriptor.serial_number)
        self.assertEqual(rec.descriptor.device_class, 0xff)
        mock_get_string.assert_not_called()

    def test_string_failures_are_independent(self, _device, _langids, mock_get_string, _dispose):
        def flaky(_dev, index, _langid=None):
            if index == 2:
                raise usb.core.USBError("Pipe error")
            return STRINGS[index]

        mock_get_string.side_effect = flaky
        rec = LibusbEnumerator(backend=fake_backend(usb_device())).scan()[0]
        self.assertEqual(rec.descriptor.manufacturer, "Google")
        self.assertIsNone(rec.descriptor.product)
        self.assertEqual(rec.descriptor.serial_number, "0123456789")

    def test_missing_string_index(self, _device, _langids, mock_get_string, _dispose):
        dev = usb_device()
        dev.iSerialNumber = 0
        rec = LibusbEnumerator(backend=fake_backend(dev)).scan()[0]
        self.assertIsNone(rec.descriptor.serial_number)
        self.assertEqual(mock_get_string.call_count, 2)

    def test_list_failure(self, *_mocks):
        backend = fake_backend()
        backend.enumerate_devices.side_effect = usb.core.USBError("Other error")
        with self.assertRaises(PlatformAccessError):
            LibusbEnumerator(backend=backend).scan()

    def test_get_device(self, *_mocks):
        backend = MagicMock()
        backend.enumerate_devices.side_effect = lambda: iter([usb_device(pid=1), usb_device(pid=2)])
        enumerator = LibusbEnumerator(backend=backend)
        self.assertEqual(enumerator.get_device(0x18d1, 2).id.pid, 2)
        self.assertTrue(enumerator.is_connected(0x18d1, 1))
        self.assertFalse(enumerator.is_connected(0x18d1, 3))


@patch("usb.util.get_langids", return_value=())
class TestLibusbEnumeratorBackend(unittest.TestCase):

    def test_unreadable_descriptor_skipped(self, _langids):
        records = LibusbEnumerator(backend=FlakyBackend()).scan()
        self.assertEqual([r.id.vid for r in records], [0x1111, 0x2222])
        self.assertEqual(records[1].location, UsbLocation(1, 4, "1-4"))

    @patch("pybootforge.scanner.get_backend", return_value=None)
    def test_no_backend(self, _get_backend, _langids):
        with self.assertRaises(PlatformAccessError):
            LibusbEnumerator().scan()


class TestHelpers(unittest.TestCase):

    def test_bcd_to_version(self):
        self.assertEqual(bcd_to_version(0x0200), "2.0")
        self.assertEqual(bcd_to_version(0x0110), "1.1")
        self.assertEqual(bcd_to_version(0x0320), "3.2")

    def test_port_path(self):
        self.assertEqual(get_port_path(usb_device(bus=3, ports=(1, 4, 2))), "3-1.4.2")
        self.assertIsNone(get_port_path(usb_device(ports=())))
        dev = usb_device()
        type(dev).port_numbers = PropertyMock(side_effect=NotImplementedError)
        self.assertIsNone(get_port_path(dev))

    @patch("usb.util.get_langids", return_value=())
    def test_probe_without_languages(self, _langids):
        rec = probe_device(usb_device())
        self.assertIsNone(rec.descriptor.product)


class TestPipeline(unittest.TestCase):

    def test_enrichers_run_in_order(self):
        records = [DeviceRecord(UsbId(1, 1)), DeviceRecord(UsbId(2, 2))]
        calls = []

        def first(recs):
            calls.append('first')
            recs[0].add_tag("first")

        def second(recs):
            calls.append('second')
            self.assertTrue(recs[0].has_tag("first"))
            recs.pop()

        result = enumerate_all(FakeEnumerator(records), [first, second])
        self.assertEqual(calls, ['first', 'second'])
        self.assertEqual(len(result), 1)

    def test_no_enrichers(self):
        records = [DeviceRecord(UsbId(1, 1))]
        self.assertEqual(enumerate_all(FakeEnumerator(records)), records)


@patch("usb.core.find")
class TestOpenDevice(unittest.TestCase):

    def test_open_by_location(self, mock_find):
        dev = usb_device()
        mock_find.return_value = dev
        backend = MagicMock()
        record = DeviceRecord(UsbId(0x18d1, 0x4ee2), UsbLocation(1, 5))
        handle = open_device(record, backend=backend)
        self.assertIsInstance(handle, DeviceHandle)
        self.assertIs(handle.dev, dev)
        mock_find.assert_called_once_with(backend=backend, idVendor=0x18d1,
                                          idProduct=0x4ee2, bus=1, address=5)

    def test_open_by_id(self, mock_find):
        mock_find.return_value = usb_device()
        backend = MagicMock()
        open_device(DeviceRecord(UsbId(0x18d1, 0x4ee2)), backend=backend)
        mock_find.assert_called_once_with(backend=backend, idVendor=0x18d1, idProduct=0x4ee2)

    def test_device_gone(self, mock_find):
        mock_find.return_value = None
        with self.assertRaises(DeviceNotFoundError):
            open_device(DeviceRecord(UsbId(1, 2)), backend=MagicMock())


if __name__ == '__main__':
    unittest.main()
