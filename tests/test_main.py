import io
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch, MagicMock, mock_open as mock_open_file

from pybootforge.__main__ import (main, build_parser, parse_vid_pid, atoi,
                                  format_record, select_dfu_interface, claim_dfu_interface)
from pybootforge.dfu import DfuInterface
from pybootforge.exceptions import (UsageError, DeviceNotFoundError, SysExit, Errx,
                                    TransportLibraryError)
from pybootforge.model import DeviceRecord, UsbId, UsbLocation, DescriptorSummary


def record(vid=0x0483, pid=0xdf11, address=5):
    return DeviceRecord(UsbId(vid, pid), UsbLocation(1, address, "1-2"),
                        DescriptorSummary(manufacturer="STMicroelectronics",
                                          product="DFU in FS Mode"))


class TestArguments(unittest.TestCase):

    def test_parse_vid_pid(self):
        self.assertEqual(parse_vid_pid("0483:df11"), (0x0483, 0xdf11))
        self.assertEqual(parse_vid_pid("0483:"), (0x0483, None))
        self.assertEqual(parse_vid_pid("0483"), (0x0483, None))

    def test_parse_vid_pid_invalid(self):
        for value in ("zz:df11", "0483:xyz", "10000:1", ":"):
            with self.assertRaises(UsageError, msg=value):
                parse_vid_pid(value)

    def test_atoi(self):
        self.assertEqual(atoi("2048"), 2048)
        self.assertEqual(atoi("0x800"), 2048)
        with self.assertRaises(UsageError):
            atoi("big")

    def test_build_parser(self):
        parser = build_parser()
        args = parser.parse_args(["upload", "-d", "0483:df11", "-t", "0x400", "-Z", "4096", "fw.bin"])
        self.assertEqual(args.command, "upload")
        self.assertEqual(args.transfer_size, 1024)
        self.assertEqual(args.upload_size, 4096)
        self.assertEqual(args.file, "fw.bin")
        self.assertFalse(args.verbose)

        args = parser.parse_args(["-e", "list", "-v"])
        self.assertTrue(args.verbose)
        self.assertTrue(args.details)
        self.assertIsNone(args.device)

        args = parser.parse_args(["detach", "-d", "1d50:6017", "-T", "500"])
        self.assertEqual(args.detach_timeout, 500)
        self.assertIsNone(args.intf)
        self.assertIsNone(args.alt)

        args = parser.parse_args(["download", "-d", "0483:df11", "-a", "1", "fw.bin"])
        self.assertEqual(args.alt, "1")


class TestCommands(unittest.TestCase):

    def test_format_record(self):
        line = format_record(record())
        self.assertIn("[0483:df11]", line)
        self.assertIn("DFU in FS Mode", line)
        self.assertIn("path=1-2", format_record(record(), verbose=True))

    @patch("pybootforge.__main__.enumerate_all")
    def test_list(self, mock_enumerate):
        mock_enumerate.return_value = [record(), record(vid=0x18d1, pid=0x4ee2, address=7)]
        out = io.StringIO()
        with redirect_stdout(out):
            main(["list", "-d", "0483"])
        self.assertIn("0483:df11", out.getvalue())
        self.assertNotIn("18d1:4ee2", out.getvalue())

    @patch("sys.exit")
    @patch("pybootforge.__main__.enumerate_all")
    def test_invalid_device_id(self, mock_enumerate, mock_exit):
        main(["list", "-d", "nothex"])
        mock_exit.assert_called_once_with(SysExit.EX_USAGE)
        mock_enumerate.assert_not_called()

    @patch("sys.exit")
    def test_invalid_number(self, mock_exit):
        main(["upload", "-t", "lots", "fw.bin"])
        mock_exit.assert_called_once_with(SysExit.EX_USAGE)

    @patch("sys.exit")
    def test_device_required(self, mock_exit):
        main(["upload", "fw.bin"])
        mock_exit.assert_called_once_with(SysExit.EX_USAGE)

    @patch("sys.exit")
    def test_download_missing_file(self, mock_exit):
        main(["download", "-d", "0483:df11", "/nonexistent/firmware.bin"])
        mock_exit.assert_called_once_with(SysExit.EX_NOINPUT)

    @patch("sys.exit")
    @patch("pybootforge.__main__.enumerate_all", return_value=[])
    def test_device_not_found(self, _enumerate, mock_exit):
        main(["detach", "-d", "0483:df11"])
        mock_exit.assert_called_once_with(SysExit.EX_NOTFOUND)

    @patch("sys.exit")
    @patch("pybootforge.__main__.enumerate_all")
    def test_ambiguous_device(self, mock_enumerate, mock_exit):
        mock_enumerate.return_value = [record(address=5), record(address=6)]
        main(["detach", "-d", "0483:df11"])
        mock_exit.assert_called_once_with(SysExit.EX_USAGE)

    @patch("pybootforge.__main__.find_dfu_interfaces")
    def test_select_dfu_interface(self, mock_find):
        first, second = MagicMock(interface=0), MagicMock(interface=1)
        mock_find.return_value = iter([first, second])
        self.assertIs(select_dfu_interface(MagicMock(), 1), second)
        mock_find.return_value = iter([])
        with self.assertRaises(DeviceNotFoundError):
            select_dfu_interface(MagicMock(), None)



def dfu_interface(altsetting, alt_name, dfu_mode=True, interface=0):
    return DfuInterface(vendor=0x0483, product=0xdf11, bcdDevice=0x2200, configuration=1,
                        interface=interface, altsetting=altsetting, alt_name=alt_name,
                        dfu_mode=dfu_mode)


ALTS = [dfu_interface(0, "@Internal Flash  /0x08000000/04*016Kg"),
        dfu_interface(1, "@Option Bytes  /0x1FFFC000/01*016 e"),
        dfu_interface(2, "@OTP Memory /0x1FFF7800/01*512 e")]


@patch("pybootforge.__main__.find_dfu_interfaces", side_effect=lambda _dev: iter(ALTS))
class TestDfuInterfaceSelection(unittest.TestCase):

    def test_alt_by_number(self, _find):
        self.assertIs(select_dfu_interface(MagicMock(), None, "1"), ALTS[1])
        self.assertIs(select_dfu_interface(MagicMock(), 0, "0x2"), ALTS[2])

    def test_alt_by_name(self, _find):
        self.assertIs(select_dfu_interface(MagicMock(), None, ALTS[2].alt_name), ALTS[2])

    def test_alt_missing(self, _find):
        with self.assertRaises(DeviceNotFoundError):
            select_dfu_interface(MagicMock(), None, "5")
        with self.assertRaises(DeviceNotFoundError):
            select_dfu_interface(MagicMock(), 1, None)


class TestClaimDfuInterface(unittest.TestCase):

    def test_claim_and_set_alt(self):
        handle = MagicMock()
        claim_dfu_interface(handle, dfu_interface(2, None, interface=3))
        handle.claim_interface.assert_called_once_with(3)
        handle.set_interface_altsetting.assert_called_once_with(3, 2)

    def test_runtime_claim_only(self):
        handle = MagicMock()
        claim_dfu_interface(handle, dfu_interface(0, None, dfu_mode=False), set_alt=False)
        handle.claim_interface.assert_called_once_with(0)
        handle.set_interface_altsetting.assert_not_called()

    def test_claim_failure(self):
        handle = MagicMock()
        handle.claim_interface.side_effect = TransportLibraryError("busy")
        with self.assertRaises(Errx):
            claim_dfu_interface(handle, dfu_interface(0, None))
        handle.set_interface_altsetting.assert_not_called()

    def test_set_alt_failure(self):
        handle = MagicMock()
        handle.set_interface_altsetting.side_effect = TransportLibraryError("stall")
        with self.assertRaises(Errx):
            claim_dfu_interface(handle, dfu_interface(1, None))

    @patch("sys.exit")
    @patch("pybootforge.dfu_load.do_upload", return_value=b"")
    @patch("pybootforge.__main__.find_dfu_interfaces", side_effect=lambda _dev: iter(ALTS))
    @patch("pybootforge.__main__.open_single_device")
    def test_upload_claims_selected_alt(self, mock_open, _find, mock_upload, mock_exit):
        handle = MagicMock()
        mock_open.return_value = handle
        with patch("builtins.open", mock_open_file()):
            main(["upload", "-d", "0483:df11", "-a", "1", "-t", "2048", "out.bin"])
        mock_exit.assert_not_called()
        handle.claim_interface.assert_called_once_with(0)
        handle.set_interface_altsetting.assert_called_once_with(0, 1)
        mock_upload.assert_called_once()

    @patch("sys.exit")
    @patch("pybootforge.__main__.find_dfu_interfaces", side_effect=lambda _dev: iter(ALTS))
    @patch("pybootforge.__main__.open_single_device")
    def test_claim_failure_closes_handle(self, mock_open, _find, mock_exit):
        handle = MagicMock()
        handle.claim_interface.side_effect = TransportLibraryError("busy")
        mock_open.return_value = handle
        main(["upload", "-d", "0483:df11", "out.bin"])
        handle.close.assert_called_once_with()
        mock_exit.assert_called_once_with(SysExit.OTHER)


if __name__ == '__main__':
    unittest.main()
