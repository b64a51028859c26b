"""
Device quirks for DFU devices that misreport their poll timeout
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
from enum import IntEnum, IntFlag

from pybootforge.logger import logger

_logger = logger.getChild(__name__.rsplit('.', maxsplit=1)[-1])

# Fallback value, works for OpenMoko
DEFAULT_POLLTIMEOUT = 5  # ms


class VENDOR(IntEnum):
    """Vendor IDs"""
    OPENMOKO = 0x1d50  # Openmoko Freerunner / GTA02
    VOTI = 0x16c0  # OpenPCD Reader
    SIEMENS = 0x0908  # Siemens AG
    MIDIMAN = 0x0763  # Midiman


class PRODUCT(IntEnum):
    """Product IDs"""
    FREERUNNER_FIRST = 0x5117
    FREERUNNER_LAST = 0x5126
    SIMTRACE = 0x0762
    OPENPCD = 0x076b
    OPENPICC = 0x076c
    PXM40 = 0x02c4  # Siemens AG, PXM 40
    PXM50 = 0x02c5  # Siemens AG, PXM 50
    TRANSIT = 0x2806  # M-Audio Transit (Midiman)


class QUIRK(IntFlag):
    """Quirk flags"""
    NONE = 0
    POLLTIMEOUT = 1 << 0


# pylint: disable=invalid-name
def get_quirks(vendor: int, product: int, bcdDevice: int) -> QUIRK:
    """
    Get device specific quirks
    :param vendor: VID
    :param product: PID
    :param bcdDevice: device release number
    :return: device specific quirks
    """
    quirks = QUIRK.NONE

    # Device returns bogus bwPollTimeout values
    if vendor == VENDOR.OPENMOKO and \
            PRODUCT.FREERUNNER_FIRST <= product <= PRODUCT.FREERUNNER_LAST:
        quirks |= QUIRK.POLLTIMEOUT

    if vendor == VENDOR.VOTI and \
            product in {PRODUCT.OPENPCD, PRODUCT.SIMTRACE, PRODUCT.OPENPICC}:
        quirks |= QUIRK.POLLTIMEOUT

    # old devices(bcdDevice == 0) return bogus bwPollTimeout values
    if vendor == VENDOR.SIEMENS and \
            product in {PRODUCT.PXM40, PRODUCT.PXM50} and \
            bcdDevice == 0:
        quirks |= QUIRK.POLLTIMEOUT

    # M-Audio Transit returns bogus bwPollTimeout values
    if vendor == VENDOR.MIDIMAN and \
            product == PRODUCT.TRANSIT:
        quirks |= QUIRK.POLLTIMEOUT

    if quirks:
        _logger.debug(f"Quirks for {vendor:04x}:{product:04x}: {quirks!r}")
    return quirks


def poll_timeout(quirks: int, reported: int) -> int:
    """Poll timeout to wait, ms"""
    if quirks & QUIRK.POLLTIMEOUT:
        return DEFAULT_POLLTIMEOUT
    return reported


__all__ = (
    'VENDOR',
    'PRODUCT',
    'QUIRK',
    'DEFAULT_POLLTIMEOUT',
    'get_quirks',
    'poll_timeout',
)
