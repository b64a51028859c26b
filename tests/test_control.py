import unittest
from unittest.mock import MagicMock, call

import usb.util

from pybootforge.control import (ControlTransfer, DescriptorType, Request,
                                 build_request_type, LANGID_EN_US)
from pybootforge.exceptions import ParseError


class TestControlTransfer(unittest.TestCase):

    def setUp(self):
        self.handle = MagicMock()
        self.control = ControlTransfer(self.handle, timeout=200)

    def test_build_request_type(self):
        self.assertEqual(build_request_type(usb.util.CTRL_IN, usb.util.CTRL_TYPE_STANDARD,
                                            usb.util.CTRL_RECIPIENT_DEVICE), 0x80)
        self.assertEqual(build_request_type(usb.util.CTRL_OUT, usb.util.CTRL_TYPE_CLASS,
                                            usb.util.CTRL_RECIPIENT_INTERFACE), 0x21)
        self.assertEqual(build_request_type(usb.util.CTRL_IN, usb.util.CTRL_TYPE_VENDOR,
                                            usb.util.CTRL_RECIPIENT_DEVICE), 0xc0)

    def test_device_descriptor(self):
        self.handle.control_read.return_value = bytes(18)
        self.assertEqual(len(self.control.get_device_descriptor()), 18)
        self.handle.control_read.assert_called_once_with(
            0x80, Request.GET_DESCRIPTOR, DescriptorType.DEVICE << 8, 0, 18, 200
        )

    def test_configuration_descriptor_two_phase(self):
        header = bytes([0x09, 0x02, 0x20, 0x00, 0x01, 0x01, 0x00, 0x80, 0x32])
        full = header + bytes(0x20 - 9)
        self.handle.control_read.side_effect = [header, full]
        self.assertEqual(self.control.get_configuration_descriptor(1), full)
        self.assertEqual(self.handle.control_read.call_args_list, [
            call(0x80, Request.GET_DESCRIPTOR, 0x0201, 0, 9, 200),
            call(0x80, Request.GET_DESCRIPTOR, 0x0201, 0, 0x20, 200),
        ])

    def test_bos_descriptor(self):
        header = bytes([0x05, 0x0f, 0x16, 0x00, 0x02])
        self.handle.control_read.side_effect = [header, bytes(0x16)]
        self.assertEqual(len(self.control.get_bos_descriptor()), 0x16)
        self.assertEqual(self.handle.control_read.call_args_list[0][0][4], 5)

    def test_short_header(self):
        self.handle.control_read.return_value = b'\x05\x0f\x16'
        with self.assertRaises(ParseError):
            self.control.get_bos_descriptor()
        self.assertEqual(self.handle.control_read.call_count, 1)

    def test_string_descriptor(self):
        self.handle.control_read.return_value = b'\x0c\x03' + "Pixel".encode('utf-16-le')
        self.assertEqual(self.control.get_string_descriptor(2), "Pixel")
        self.handle.control_read.assert_called_once_with(
            0x80, Request.GET_DESCRIPTOR, 0x0302, LANGID_EN_US, 255, 200
        )

    def test_string_descriptor_replaces_invalid(self):
        self.handle.control_read.return_value = b'\x06\x03' + b'\x00\xd8' + b'A\x00'
        self.assertEqual(self.control.get_string_descriptor(1), "\ufffdA")

    def test_string_descriptor_too_short(self):
        self.handle.control_read.return_value = b'\x02'
        with self.assertRaises(ParseError):
            self.control.get_string_descriptor(1)

    def test_language_ids(self):
        self.handle.control_read.return_value = bytes([0x06, 0x03, 0x09, 0x04, 0x07, 0x04])
        self.assertEqual(self.control.get_language_ids(), [0x0409, 0x0407])

    def test_language_ids_default(self):
        self.handle.control_read.return_value = bytes([0x02, 0x03])
        self.assertEqual(self.control.get_language_ids(), [LANGID_EN_US])

    def test_hid_report_descriptor(self):
        self.handle.control_read.return_value = bytes(52)
        self.control.get_hid_report_descriptor(1, 52)
        self.handle.control_read.assert_called_once_with(
            0x81, Request.GET_DESCRIPTOR, 0x2200, 1, 52, 200
        )

    def test_set_configuration(self):
        self.control.set_configuration(1)
        self.handle.control_write.assert_called_once_with(
            0x00, Request.SET_CONFIGURATION, 1, 0, b'', 200
        )

    def test_device_status(self):
        self.handle.control_read.return_value = b'\x01\x00'
        self.assertEqual(self.control.get_device_status(), 1)

    def test_vendor_passthrough(self):
        self.handle.control_read.return_value = b'\x00'
        self.control.vendor_read(0x33, 0x1234, 0x5678, 1)
        self.handle.control_read.assert_called_once_with(0xc0, 0x33, 0x1234, 0x5678, 1, 200)
        self.control.vendor_write(0x34, 1, 2, b'xy')
        self.handle.control_write.assert_called_once_with(0x40, 0x34, 1, 2, b'xy', 200)

    def test_class_passthrough(self):
        self.control.class_read(0x03, 0, 4, 6)
        self.handle.control_read.assert_called_once_with(0xa1, 0x03, 0, 4, 6, 200)
        self.control.class_write(0x01, 7, 4, b'\x01',
                                 recipient=usb.util.CTRL_RECIPIENT_DEVICE)
        self.handle.control_write.assert_called_once_with(0x20, 0x01, 7, 4, b'\x01', 200)


if __name__ == '__main__':
    unittest.main()
