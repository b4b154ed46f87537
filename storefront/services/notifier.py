"""
User Notices.

The session engine reports transient problems (offline, backend down)
through a ``Notifier``.  Rendering is the UI's business; the default
implementation only logs.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Optional, Protocol

from storefront.logger import StructuredLogger


class Notifier(Protocol):
    def notify(self, title: str, message: str) -> None: ...  # noqa: E704


class LoggingNotifier:
    """Notifier that writes every notice to the structured log."""

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger = logger

    def notify(self, title: str, message: str) -> None:
        self._logger.info("%s: %s", title, message, extra={"event": "NOTICE"})


class CooldownNotifier:
    """Forwards at most one notice per cooldown window.

    Parameters
    ----------
    inner:
        Notifier that actually displays the notice.
    cooldown_s:
        Length of the suppression window after a notice is shown.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        inner: Notifier,
        cooldown_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._inner: Notifier = inner
        self._cooldown_s: float = cooldown_s
        self._clock: Callable[[], float] = clock
        self._last_shown: Optional[float] = None
        self._lock: threading.Lock = threading.Lock()

    def notify(self, title: str, message: str) -> None:
        self.notify_once(title, message)

    def notify_once(self, title: str, message: str) -> bool:
        """Show the notice unless one was shown within the window.

        Returns ``True`` when the notice was forwarded.
        """
        with self._lock:
            now = self._clock()
            if self._last_shown is not None and now - self._last_shown < self._cooldown_s:
                return False
            self._last_shown = now
        self._inner.notify(title, message)
        return True
