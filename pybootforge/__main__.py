"""
pybootforge
USB device detection and DFU firmware transfer
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
import argparse
from typing import Optional

from pybootforge import __version__
from pybootforge import dfu_load
from pybootforge.classify import classify, classify_and_tag, Protocol
from pybootforge.dfu import DfuClient, DfuInterface, find_dfu_interfaces
from pybootforge.exceptions import (Errx, SysExit, UsageError, DeviceNotFoundError,
                                    TransportLibraryError, except_and_safe_exit)
from pybootforge.handle import DeviceHandle
from pybootforge.logger import logger, set_verbose
from pybootforge.model import DeviceRecord
from pybootforge.scanner import enumerate_all, open_device

VERSION = (f"pybootforge {__version__}\n\n"
           f"2023 Yaroshenko Dmytro (https://github.com/o-murphy)\n")

DEFAULT_DETACH_TIMEOUT = 1000  # ms


def parse_vid_pid(string: str) -> tuple:
    """
    Parse a string containing vendor and product IDs in hexadecimal format.
    :param string: 'vid:pid', 'vid:' or 'vid'
    :return: (vid, pid), pid is None when omitted
    :raise UsageError: on malformed input
    """
    vendor_str, _, product_str = string.partition(':')
    try:
        vendor = int(vendor_str, 16)
        product = int(product_str, 16) if product_str else None
    except ValueError as e:
        raise UsageError(f"Invalid device id '{string}'") from e
    if not 0 <= vendor <= 0xffff or (product is not None and not 0 <= product <= 0xffff):
        raise UsageError(f"Device id out of range '{string}'")
    return vendor, product


def atoi(s: str) -> int:
    """Parse decimal or 0x prefixed integer option"""
    try:
        return int(s, 0)
    except ValueError as e:
        raise UsageError(f"Invalid number '{s}'") from e


def _matches(record: DeviceRecord, vendor: Optional[int], product: Optional[int]) -> bool:
    if vendor is not None and record.id.vid != vendor:
        return False
    return product is None or record.id.pid == product


def find_records(device: Optional[str]) -> list:
    """Enumerated and classified devices, filtered by -d"""
    vendor, product = parse_vid_pid(device) if device else (None, None)
    records = [record for record in enumerate_all()
               if _matches(record, vendor, product)]
    for record in records:
        classify_and_tag(record)
    return records


def format_record(record: DeviceRecord, verbose: bool = False) -> str:
    protocols = ','.join(sorted(p.value for p in classify(record)
                                if p is not Protocol.UNKNOWN)) or Protocol.UNKNOWN.value
    line = f"{record} [{protocols}]"
    if verbose:
        desc = record.descriptor
        line += (f"\n\tclass={desc.device_class}, subclass={desc.device_subclass}, "
                 f"protocol={desc.device_protocol}, usb={desc.usb_version}, "
                 f"path={record.location.port_path}, "
                 f"driver={record.driver.state.value}, health={record.health.state.value}")
    return line


def _alt_matches(dfu_if: DfuInterface, alt: Optional[str]) -> bool:
    """alt is an altsetting number or an alt name"""
    if alt is None:
        return True
    try:
        return dfu_if.altsetting == int(alt, 0)
    except ValueError:
        return dfu_if.alt_name == alt


def select_dfu_interface(handle: DeviceHandle, interface: Optional[int],
                         alt: Optional[str] = None) -> DfuInterface:
    """
    First DFU interface of the device matching -i and -a
    :raise DeviceNotFoundError: if the device has no matching DFU interface
    """
    for dfu_if in find_dfu_interfaces(handle.dev):
        if interface is not None and dfu_if.interface != interface:
            continue
        if _alt_matches(dfu_if, alt):
            logger.info(dfu_if)
            return dfu_if
    raise DeviceNotFoundError("Can't find the matching DFU interface/altsetting")


def claim_dfu_interface(handle: DeviceHandle, dfu_if: DfuInterface,
                        set_alt: bool = True) -> None:
    """Claim the interface and select its alternate setting before any DFU request"""
    logger.info("Claiming USB DFU Interface...")
    try:
        handle.claim_interface(dfu_if.interface)
    except TransportLibraryError as e:
        raise Errx(f"Cannot claim interface: {e}") from e

    if not set_alt:
        return
    logger.info(f"Setting Alternate Setting {dfu_if.altsetting} ...")
    try:
        handle.set_interface_altsetting(dfu_if.interface, dfu_if.altsetting)
    except TransportLibraryError as e:
        raise Errx(f"Cannot set alternate interface: {e}") from e


def open_single_device(device: str) -> DeviceHandle:
    """Open the only device matching -d"""
    if not device:
        raise UsageError("A device id is required, use -d <vid>:<pid>")
    records = find_records(device)
    if not records:
        raise DeviceNotFoundError(f"No device matching {device} found")
    if len(records) > 1:
        # after a DFU reset the device may come back at any address
        raise UsageError("More than one matching USB device found, "
                         "you might try `list' and then disconnect all but one device")
    return open_device(records[0])


def cmd_list(args) -> None:
    records = find_records(args.device)
    if not records:
        logger.info("No USB devices found")
    for record in records:
        print(format_record(record, args.details))


def cmd_detach(args) -> None:
    with open_single_device(args.device) as handle:
        dfu_if = select_dfu_interface(handle, args.intf, args.alt)
        if dfu_if.dfu_mode:
            logger.info("Device already in DFU mode")
            return
        claim_dfu_interface(handle, dfu_if, set_alt=False)
        timeout = args.detach_timeout
        if timeout is None:
            timeout = (dfu_if.func_dfu.detach_timeout
                       if dfu_if.func_dfu is not None else DEFAULT_DETACH_TIMEOUT)
        client = DfuClient.from_interface(handle, dfu_if, args.transfer_size)
        client.detach(timeout)
        logger.info("Device will detach and reattach...")


def _open_client(args):
    handle = open_single_device(args.device)
    try:
        dfu_if = select_dfu_interface(handle, args.intf, args.alt)
        if not dfu_if.dfu_mode:
            raise UsageError("Device is in runtime mode, run `detach' first")
        claim_dfu_interface(handle, dfu_if)
        return handle, DfuClient.from_interface(handle, dfu_if, args.transfer_size)
    except Errx:
        handle.close()
        raise


def cmd_download(args) -> None:
    try:
        with open(args.file, 'rb') as fp:
            firmware = fp.read()
    except OSError as e:
        raise Errx(f"Can't read {args.file}: {e}", SysExit.EX_NOINPUT) from e

    handle, client = _open_client(args)
    with handle:
        dfu_load.do_download(client, firmware)


def cmd_upload(args) -> None:
    handle, client = _open_client(args)
    with handle:
        data = dfu_load.do_upload(client, args.upload_size)
    try:
        with open(args.file, 'wb') as fp:
            fp.write(data)
    except OSError as e:
        raise Errx(f"Can't write {args.file}: {e}", SysExit.EX_IOERR) from e
    logger.info(f"Upload saved to {args.file}")


def add_device_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-d", "--device", metavar="<vendorID>:<productID>",
                        help="Specify Vendor/Product ID of the device")
    parser.add_argument("-i", "--intf", metavar="<intf_nr>", type=atoi,
                        help="Specify the DFU Interface number")
    parser.add_argument("-a", "--alt", metavar="<alt>",
                        help="Specify the Altsetting of the DFU Interface by name or by number")
    parser.add_argument("-t", "--transfer-size", metavar="<size>", type=atoi,
                        help="Specify the number of bytes per USB Transfer")


def build_parser() -> argparse.ArgumentParser:
    """Cli arguments"""
    parser = argparse.ArgumentParser(
        prog="pybootforge",
        description="USB device detection and DFU firmware transfer"
    )
    parser.add_argument("-V", "--version", action="version", version=VERSION,
                        help="Print the version number")
    parser.add_argument("-e", "--verbose", action="store_true",
                        help="Print verbose debug statements")

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    subparsers.required = True

    list_parser = subparsers.add_parser("list", help="List attached USB devices")
    list_parser.add_argument("-d", "--device", metavar="<vendorID>[:<productID>]",
                             help="Filter on Vendor/Product ID")
    list_parser.add_argument("-v", "--details", action="store_true",
                             help="Print descriptor details")
    list_parser.set_defaults(func=cmd_list)

    detach_parser = subparsers.add_parser("detach", help="Switch a runtime device to DFU mode")
    add_device_options(detach_parser)
    detach_parser.add_argument("-T", "--detach-timeout", metavar="<ms>", type=atoi,
                               help="Detach timeout, wDetachTimeOut of the device by default")
    detach_parser.set_defaults(func=cmd_detach)

    download_parser = subparsers.add_parser("download", help="Write firmware from <file> into device")
    add_device_options(download_parser)
    download_parser.add_argument("file", metavar="<file>")
    download_parser.set_defaults(func=cmd_download)

    upload_parser = subparsers.add_parser("upload", help="Read firmware from device into <file>")
    add_device_options(upload_parser)
    upload_parser.add_argument("-Z", "--upload-size", metavar="<bytes>", type=atoi,
                               help="Specify the expected upload size in bytes")
    upload_parser.add_argument("file", metavar="<file>")
    upload_parser.set_defaults(func=cmd_upload)

    return parser


@except_and_safe_exit(logger)
def main(argv=None) -> None:
    """Cli entry point"""
    args = build_parser().parse_args(argv)
    set_verbose(args.verbose)
    logger.debug(f"v{__version__}")
    args.func(args)


if __name__ == '__main__':
    main()
