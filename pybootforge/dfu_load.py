"""
DFU transfer routines
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
from pybootforge.dfu import DfuClient
from pybootforge.logger import logger
from pybootforge.progress import Progress

_logger = logger.getChild('dfu_load')

# read until a short block when no size is expected
UPLOAD_LIMIT = 0x7fffffff


def do_upload(client: DfuClient, max_size: int = None, progress: Progress = None) -> bytes:
    """
    Uploads data from DFU device
    :param client: DfuClient
    :param max_size: optional upper bound of bytes expected
    :param progress: optional Progress, a default one is created if omitted
    :return: uploaded bytes
    """
    _logger.info("Copying data from DFU device to PC")

    with progress or Progress() as bar:
        bar.start_task(description="Uploading", total=max_size)
        data = client.upload(max_size or UPLOAD_LIMIT, progress=bar.callback("Uploading"))
        bar.update(description="Upload finished!")

    _logger.debug(f"Received a total of {len(data)} bytes")
    return data


def do_download(client: DfuClient, firmware: bytes, progress: Progress = None) -> int:
    """
    Downloads firmware to DFU device
    :param client: DfuClient
    :param firmware: image bytes
    :param progress: optional Progress, a default one is created if omitted
    :return: bytes sent
    """
    _logger.info("Copying data from PC to DFU device")

    with progress or Progress() as bar:
        bar.start_task(description="Downloading", total=len(firmware))
        sent = client.download(firmware, progress=bar.callback("Downloading"))
        bar.update(description="Download finished!")

    _logger.info(f"Done! state = {client.state.to_string()}")
    return sent


__all__ = (
    'do_upload',
    'do_download'
)
