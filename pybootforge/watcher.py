"""
Hotplug notifications
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
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pybootforge.exceptions import Errx
from pybootforge.logger import logger
from pybootforge.model import DeviceRecord
from pybootforge.scanner import UsbEnumerator

_logger = logger.getChild(__name__.rsplit('.', maxsplit=1)[-1])

DEFAULT_INTERVAL = 1.0  # seconds
STOP_JOIN_TIMEOUT = 2.0  # seconds


class EventKind(Enum):
    """Hotplug event kinds"""
    ADDED = 'added'
    REMOVED = 'removed'
    CHANGED = 'changed'


@dataclass(frozen=True)
class DeviceEvent:
    kind: EventKind
    record: DeviceRecord


class DeviceWatcher(ABC):
    """Source of hotplug events"""

    @abstractmethod
    def start(self) -> queue.Queue:
        """
        Begin watching
        :return: queue.Queue receiving DeviceEvent
        """

    @abstractmethod
    def stop(self) -> None:
        """Stop watching, no events are queued afterwards"""


def _key(record: DeviceRecord) -> tuple:
    return (record.location.bus, record.location.address,
            record.id.vid, record.id.pid)


def diff_snapshots(previous: dict, current: dict) -> list:
    """
    Events turning the previous snapshot into the current one
    :param previous: dict of key -> DeviceRecord
    :param current: dict of key -> DeviceRecord
    :return: list of DeviceEvent, removals first
    """
    events = [DeviceEvent(EventKind.REMOVED, record)
              for key, record in previous.items() if key not in current]
    for key, record in current.items():
        old = previous.get(key)
        if old is None:
            events.append(DeviceEvent(EventKind.ADDED, record))
        elif old.descriptor != record.descriptor:
            events.append(DeviceEvent(EventKind.CHANGED, record))
    return events


class PollingWatcher(DeviceWatcher):
    """
    Portable watcher, rescans every interval seconds in a daemon thread
    and reports the difference between consecutive scans
    """

    def __init__(self, enumerator: UsbEnumerator, interval: float = DEFAULT_INTERVAL):
        if interval <= 0:
            raise ValueError(f"Invalid interval {interval}")
        self.enumerator = enumerator
        self.interval = interval
        self._events: queue.Queue = queue.Queue()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._snapshot: dict = {}

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def poll_once(self) -> list:
        """Rescan, queue and return the events found"""
        current = {_key(record): record for record in self.enumerator.scan()}
        events = diff_snapshots(self._snapshot, current)
        self._snapshot = current
        for event in events:
            _logger.debug(f"{event.kind.value}: {event.record}")
            self._events.put(event)
        return events

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Errx as e:
                _logger.warning(f"Hotplug scan failed: {e}")
            self._stop.wait(self.interval)

    def start(self) -> queue.Queue:
        if self.is_running:
            return self._events
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True,
                                        name="PollingWatcher")
        self._thread.start()
        _logger.debug(f"Polling watcher started (interval={self.interval}s)")
        return self._events

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=STOP_JOIN_TIMEOUT)
        self._thread = None
        _logger.debug("Polling watcher stopped")


__all__ = (
    'EventKind',
    'DeviceEvent',
    'DeviceWatcher',
    'PollingWatcher',
    'diff_snapshots',
)
