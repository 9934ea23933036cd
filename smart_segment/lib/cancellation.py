#!/usr/bin/env python3
"""
Cooperative cancellation for long-running segmentation calls.

A single CancellationToken is threaded through classifier, splitter and
sampler calls. Triggering it is safe from any thread; callbacks registered
with the token run on the triggering thread and must hand work back to their
own event loop themselves.
"""

from __future__ import annotations
import threading
from typing import Callable, List, Optional

from smart_segment.lib.logging_config import CancellationError


class CancellationRegistration:
    """Handle returned by CancellationToken.register; call detach() when done."""

    def __init__(self, token: "CancellationToken", callback: Callable[[], None]):
        self._token = token
        self._callback = callback

    def detach(self) -> None:
        self._token._remove(self._callback)


class CancellationToken:
    """Thread-safe cooperative cancellation signal."""

    def __init__(self, message: str = "Operation cancelled"):
        self.message = message
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Trigger cancellation and notify registered listeners once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            callback()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError(self.message)

    def register(self, callback: Callable[[], None]) -> CancellationRegistration:
        """
        Register a listener invoked when the token is triggered.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return CancellationRegistration(self, callback)
        callback()
        return CancellationRegistration(self, callback)

    def _remove(self, callback: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass


def raise_if_cancelled(token: Optional[CancellationToken]) -> None:
    """Convenience check for optional tokens."""
    if token is not None:
        token.raise_if_cancelled()
