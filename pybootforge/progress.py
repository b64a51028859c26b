"""
Progress bar utilities
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
from abc import ABC, abstractmethod
from typing import Optional

from rich import progress as rich_progress


class AbstractProgressBackend(ABC):
    """Abstract class for progress bar backends"""

    @abstractmethod
    def start_task(self, *, description: str = None, total: int = None):
        """
        Start progress task
        :param description:
        :param total:
        """

    @abstractmethod
    def update(self, *, description: str = None, completed: int = None):
        """
        Update progress task
        :param description:
        :param completed:
        """

    @abstractmethod
    def fail(self):
        """Runs on Progress.__exit__ if ctx raises exception"""

    @abstractmethod
    def stop(self):
        """Stop progressbar backend"""


class NoProgressBarBackend(AbstractProgressBackend):
    """progress bar backend that does nothing"""

    def start_task(self, *, description: str = None, total: int = None):
        pass

    def update(self, *, description: str = None, completed: int = None):
        pass

    def fail(self):
        pass

    def stop(self):
        pass


class RichBackend(AbstractProgressBackend):
    """Rich.progress based progress bar backend"""

    DONE_COLOR = "#729C1F"
    ACTIVE_COLOR = "#F92672"

    def __init__(self):
        self._progress: Optional[rich_progress.Progress] = None
        self._task_id = None
        self._description = ""
        self._fail = False

    def start_task(self, *, description: str = None, total: int = None):
        self._progress = rich_progress.Progress(
            rich_progress.TextColumn("[progress.description]{task.description}"),
            rich_progress.BarColumn(20),
            rich_progress.TaskProgressColumn(),
            rich_progress.TimeRemainingColumn(),
            rich_progress.DownloadColumn(),
            rich_progress.TransferSpeedColumn(),
        )
        self._progress.start()
        self._fail = False
        self._description = description or ""
        self._task_id = self._progress.add_task(
            f"[{self.ACTIVE_COLOR}]{self._description}", total=total
        )

    def update(self, *, description: str = None, completed: int = None):
        if self._progress is None:
            return
        if description is not None:
            self._description = description
        kwargs = {"description": f"[{self.ACTIVE_COLOR}]{self._description}"}
        if completed is not None:
            kwargs["completed"] = completed
        self._progress.update(self._task_id, **kwargs)

    def fail(self):
        if self._progress is None:
            return
        self._fail = True
        self._progress.update(self._task_id, description=f"[red]{self._description}")

    def stop(self):
        if self._progress is None:
            return
        if not self._fail:
            task = self._progress.tasks[self._task_id]
            self._progress.update(self._task_id,
                                  description=f"[{self.DONE_COLOR}]{self._description}",
                                  total=task.completed)
        self._progress.stop()
        self._progress = None


class Progress:
    """
    High leveled progress bar class
    Use this as a context
    """

    _default_backend = RichBackend

    def __init__(self, backend: type = None):
        if backend is None:
            backend = Progress._default_backend
        self._backend = backend()

    @classmethod
    def set_default_backend(cls, backend: type):
        """
        Sets the default progressbar backend
        :param backend: AbstractProgressBackend subclass
        """
        if not issubclass(backend, AbstractProgressBackend):
            raise TypeError("Invalid backend")
        cls._default_backend = backend

    def start_task(self, *, description: str = None, total: int = None):
        self._backend.start_task(description=description, total=total)

    def update(self, *, description: str = None, completed: int = None):
        self._backend.update(description=description, completed=completed)

    def callback(self, description: str):
        """
        Adapter for DfuClient progress callbacks
        :return: callable(done, total)
        """

        def _callback(done: int, _total: int):
            self.update(description=description, completed=done)

        return _callback

    def stop(self):
        self._backend.stop()

    def fail(self):
        self._backend.fail()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type:
            self.fail()
        self.stop()
        return False


__all__ = (
    'Progress',
    'RichBackend',
    'AbstractProgressBackend',
    'NoProgressBarBackend',
)
