#!/usr/bin/env python3
"""
Tests for the cooperative cancellation token.
"""

import threading

import pytest

from smart_segment.lib.cancellation import CancellationToken, raise_if_cancelled
from smart_segment.lib.logging_config import CancellationError


def test_callbacks_run_once():
    token = CancellationToken()
    calls = []
    token.register(lambda: calls.append("a"))
    token.cancel()
    token.cancel()
    assert calls == ["a"]
    assert token.cancelled


def test_register_after_cancel_runs_immediately():
    token = CancellationToken()
    token.cancel()
    calls = []
    token.register(lambda: calls.append(1))
    assert calls == [1]


def test_detached_callback_is_not_called():
    token = CancellationToken()
    calls = []
    registration = token.register(lambda: calls.append(1))
    registration.detach()
    registration.detach()
    token.cancel()
    assert calls == []


def test_raise_if_cancelled_carries_message():
    token = CancellationToken("user pressed stop")
    raise_if_cancelled(None)
    token.raise_if_cancelled()
    token.cancel()
    with pytest.raises(CancellationError, match="user pressed stop") as excinfo:
        raise_if_cancelled(token)
    assert excinfo.value.stage == "cancellation"


def test_cancel_from_another_thread():
    token = CancellationToken()
    fired = threading.Event()
    token.register(fired.set)
    thread = threading.Thread(target=token.cancel)
    thread.start()
    thread.join()
    assert fired.is_set()
