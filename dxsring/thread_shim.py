"""A thread that runs one callback and is joined when the shim is released."""

from __future__ import annotations

import threading
from types import TracebackType
from typing import Callable, Optional, Type


class ThreadShim:
    """Runs ``callback`` on a new named thread, started immediately."""

    def __init__(self, callback: Callable[[], object], thread_name: str) -> None:
        self._thread = threading.Thread(target=callback, name=thread_name)
        self._thread.start()

    @property
    def name(self) -> str:
        return self._thread.name

    def join(self) -> None:
        """Wait for the callback to finish."""
        self._thread.join()

    def __enter__(self) -> "ThreadShim":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.join()


def new_thread_shim(callback: Callable[[], object], thread_name: str) -> ThreadShim:
    """Start ``callback`` on a new thread and return its shim."""
    return ThreadShim(callback, thread_name)