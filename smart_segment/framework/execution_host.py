#!/usr/bin/env python3
"""
Execution host for the neural VAD classifier.

A ClassifierSession owns one worker process running the Silero model. The
caller talks to it through asyncio: initialization happens once and is
shared by concurrent callers, each ``process`` call is one request/response
round trip, and a CancellationToken can abandon a call without killing the
worker.

Sessions are single-flight: issuing a second ``process`` call while one is in
flight raises SessionBusyError instead of queueing. A session belongs to the
event loop it was first used on and must be disposed explicitly by its owner.
"""

from __future__ import annotations
import asyncio
import itertools
import multiprocessing
import threading
import time
from dataclasses import dataclass
from enum import Enum
from multiprocessing.connection import Connection
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from smart_segment.framework.classifier_worker import ClassifierFactory, run_classifier_worker
from smart_segment.framework.worker_protocol import (
    ErrorResponse,
    InitRequest,
    ProcessRequest,
    ProgressResponse,
    ReadyResponse,
    ResultResponse,
    ShutdownRequest,
    WorkerExited,
    WorkerResponse,
)
from smart_segment.lib.cancellation import CancellationToken, raise_if_cancelled
from smart_segment.lib.settings import SegmentationSettings
from smart_segment.lib.logging_config import (
    CancellationError,
    ClassifierInitError,
    ClassifierProcessError,
    SessionBusyError,
    get_logger,
    log_debug,
    log_progress,
)
from smart_segment.processing.vad.data_structures import ClassifierConfig


ProgressCallback = Callable[[int, float], None]


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    PROCESSING = "processing"
    FAILED = "failed"
    DISPOSED = "disposed"


@dataclass
class _PendingRequest:
    future: "asyncio.Future[List[Tuple[float, float]]]"
    on_progress: Optional[ProgressCallback] = None


class ClassifierSession:
    """
    Caller-owned handle to the classifier worker process.

    The worker is started lazily by the first ``ensure_ready`` or ``process``
    call. Initialization failures are memoized: the session stays FAILED
    until disposed.
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        *,
        classifier_factory: Optional[ClassifierFactory] = None,
        start_method: Optional[str] = "spawn",
        shutdown_timeout: float = 5.0,
    ):
        """
        Args:
            config: Model location and detection thresholds sent on ``init``
            classifier_factory: Picklable callable building the classifier in
                the worker; defaults to the Silero loader
            start_method: multiprocessing start method ("spawn" keeps torch
                out of forked children); None uses the platform default
            shutdown_timeout: Seconds to wait for a clean worker exit
        """
        self.logger = get_logger()
        self.config = config or ClassifierConfig()
        self._factory = classifier_factory
        self._start_method = start_method
        self._shutdown_timeout = shutdown_timeout

        self._state = SessionState.UNINITIALIZED
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._process: Optional[Any] = None
        self._requests: Optional[Connection] = None
        self._responses: Optional[Connection] = None
        self._reader: Optional[threading.Thread] = None
        self._init_future: Optional[asyncio.Future] = None
        self._failure: Optional[ClassifierInitError] = None
        self._pending: Dict[int, _PendingRequest] = {}
        self._request_ids = itertools.count(1)
        self._in_flight: Optional[int] = None

    @classmethod
    def from_settings(cls, settings: SegmentationSettings, **kwargs: Any) -> "ClassifierSession":
        """Build a session from environment-derived settings."""
        return cls(settings.classifier_config(), start_method=settings.start_method, **kwargs)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._in_flight is not None

    # ---------- lifecycle ----------

    async def ensure_ready(self, token: Optional[CancellationToken] = None) -> None:
        """Start the worker if needed and wait until the model is loaded."""
        if self._state is SessionState.DISPOSED:
            raise ClassifierInitError("session has been disposed")
        if self._failure is not None:
            raise ClassifierInitError(self._failure.reason, detail=self._failure.detail)

        loop = asyncio.get_running_loop()
        if self._loop is not None and self._loop is not loop:
            raise ClassifierProcessError("session is bound to a different event loop")

        if self._init_future is None:
            self._start(loop)

        started = time.perf_counter()
        await self._wait(self._init_future, token)
        log_debug(f"VAD worker ready after {(time.perf_counter() - started) * 1000:.2f}ms")

    def _start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._init_future = loop.create_future()
        self._state = SessionState.INITIALIZING
        log_progress("Starting VAD worker process...")

        ctx = multiprocessing.get_context(self._start_method)
        request_recv, request_send = ctx.Pipe(duplex=False)
        response_recv, response_send = ctx.Pipe(duplex=False)
        process = ctx.Process(
            target=run_classifier_worker,
            args=(request_recv, response_send, self._factory),
            name="smart-segment-vad",
            daemon=True,
        )
        try:
            process.start()
        except Exception as e:
            for conn in (request_recv, request_send, response_recv, response_send):
                conn.close()
            self._fail_init(ClassifierInitError(f"could not start worker process: {e}", cause=e))
            return

        # The worker owns these ends now
        request_recv.close()
        response_send.close()

        self._process = process
        self._requests = request_send
        self._responses = response_recv
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(response_recv, loop),
            name="smart-segment-vad-reader",
            daemon=True,
        )
        self._reader.start()

        try:
            request_send.send(InitRequest(self.config))
        except (OSError, ValueError) as e:
            self._fail_init(ClassifierInitError(f"could not send init request: {e}", cause=e))

    def dispose(self) -> None:
        """
        Shut the worker down and reject anything still pending.

        Blocks for up to ``shutdown_timeout + 1`` seconds while the worker
        exits; from a coroutine use ``aclose()`` instead.
        """
        if self._state is SessionState.DISPOSED:
            return
        self._state = SessionState.DISPOSED
        self._reject_pending()
        self._stop_worker()

    async def aclose(self) -> None:
        """Dispose without blocking the event loop."""
        if self._state is SessionState.DISPOSED:
            return
        self._state = SessionState.DISPOSED
        self._reject_pending()
        await asyncio.get_running_loop().run_in_executor(None, self._stop_worker)

    def __enter__(self) -> "ClassifierSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.dispose()

    def _reject_pending(self) -> None:
        # Futures belong to the session loop; only touch them from its thread
        if self._loop is not None and not self._loop.is_closed():
            if self._init_future is not None and not self._init_future.done():
                self._init_future.set_exception(ClassifierInitError("session disposed during initialization"))
                self._init_future.exception()
            for pending in self._pending.values():
                if not pending.future.done():
                    pending.future.set_exception(ClassifierProcessError("session disposed"))
        self._pending.clear()

    def _stop_worker(self) -> None:
        if self._requests is not None:
            try:
                self._requests.send(ShutdownRequest())
            except (OSError, ValueError):
                pass

        if self._process is not None:
            self._process.join(self._shutdown_timeout)
            if self._process.is_alive():
                self.logger.warning("VAD worker did not exit in time; terminating")
                self._process.terminate()
                self._process.join(1.0)

        for conn in (self._requests, self._responses):
            if conn is not None:
                conn.close()
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(1.0)

        log_debug("VAD session disposed")

    # ---------- requests ----------

    async def process(
        self,
        samples: np.ndarray,
        sample_rate: int,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Tuple[float, float]]:
        """
        Run the neural classifier over one mono buffer.

        Args:
            samples: Mono float samples
            sample_rate: Sample rate of ``samples``
            token: Rejects the call with CancellationError when triggered
            on_progress: Called with (spans so far, latest span start)

        Returns:
            Ascending (start_s, end_s) pairs

        Raises:
            CancellationError: token triggered before or during the call
            ClassifierInitError: the model could not be loaded
            ClassifierProcessError: inference failed or the worker died
            SessionBusyError: another call is in flight on this session
        """
        raise_if_cancelled(token)
        if self._in_flight is not None:
            raise SessionBusyError()

        await self.ensure_ready(token)

        if self._in_flight is not None:
            raise SessionBusyError()
        if self._state is not SessionState.READY:
            raise ClassifierProcessError(f"session is not ready (state: {self._state.value})")

        loop = self._loop
        request_id = next(self._request_ids)
        future = loop.create_future()
        self._pending[request_id] = _PendingRequest(future, on_progress)
        self._in_flight = request_id
        self._state = SessionState.PROCESSING

        try:
            raise_if_cancelled(token)
            request = ProcessRequest(
                request_id,
                np.ascontiguousarray(samples, dtype=np.float32),
                int(sample_rate),
            )
            try:
                await loop.run_in_executor(None, self._requests.send, request)
            except (OSError, ValueError) as e:
                raise ClassifierProcessError(f"could not send audio to worker: {e}", cause=e)

            started = time.perf_counter()
            spans = await self._wait(future, token)
            log_debug(
                f"VAD execution complete in {(time.perf_counter() - started) * 1000:.2f}ms. "
                f"Found {len(spans)} speech segments."
            )
            return spans
        finally:
            self._pending.pop(request_id, None)
            self._in_flight = None
            if self._state is SessionState.PROCESSING:
                self._state = SessionState.READY

    async def _wait(self, source: asyncio.Future, token: Optional[CancellationToken]) -> Any:
        """Await a shared future, rejecting early if the token fires."""
        if token is None:
            return await asyncio.shield(source)

        loop = self._loop
        waiter = loop.create_future()

        def relay(fut: asyncio.Future) -> None:
            if waiter.done():
                return
            if fut.cancelled():
                waiter.cancel()
            elif fut.exception() is not None:
                waiter.set_exception(fut.exception())
            else:
                waiter.set_result(fut.result())

        def reject() -> None:
            if not waiter.done():
                waiter.set_exception(CancellationError(token.message))

        def on_cancel() -> None:
            try:
                loop.call_soon_threadsafe(reject)
            except RuntimeError:
                pass

        source.add_done_callback(relay)
        registration = token.register(on_cancel)
        try:
            return await waiter
        finally:
            registration.detach()
            source.remove_done_callback(relay)

    # ---------- worker messages ----------

    def _read_loop(self, conn: Connection, loop: asyncio.AbstractEventLoop) -> None:
        """Pump worker responses into the event loop (runs on a thread)."""
        while True:
            try:
                message = conn.recv()
            except (EOFError, OSError):
                break
            if not self._post(loop, message):
                return
        exitcode = self._process.exitcode if self._process is not None else None
        self._post(loop, WorkerExited(exitcode))

    def _post(self, loop: asyncio.AbstractEventLoop, message: WorkerResponse) -> bool:
        try:
            loop.call_soon_threadsafe(self._dispatch, message)
        except RuntimeError:
            # Event loop already closed
            return False
        return True

    def _dispatch(self, message: WorkerResponse) -> None:
        if isinstance(message, ReadyResponse):
            if self._state is SessionState.INITIALIZING:
                self._state = SessionState.READY
            if self._init_future is not None and not self._init_future.done():
                self._init_future.set_result(None)

        elif isinstance(message, ProgressResponse):
            log_debug(f"VAD Progress: {message.processed} segments (Latest: {message.latest_time:.2f}s)")
            pending = self._pending.get(message.request_id)
            if pending is not None and pending.on_progress is not None:
                pending.on_progress(message.processed, message.latest_time)

        elif isinstance(message, ResultResponse):
            pending = self._pending.get(message.request_id)
            if pending is None:
                log_debug(f"Discarding stale VAD result for request {message.request_id}")
            elif not pending.future.done():
                pending.future.set_result(list(message.spans))

        elif isinstance(message, ErrorResponse):
            if message.request_id is None:
                self.logger.error(
                    f"VAD worker initialization error: {message.message}",
                    extra={"detail": message.traceback},
                )
                self._fail_init(ClassifierInitError(message.message, detail=message.traceback))
            else:
                pending = self._pending.get(message.request_id)
                self.logger.error(
                    f"VAD worker processing error: {message.message}",
                    extra={"detail": message.traceback},
                )
                if pending is not None and not pending.future.done():
                    pending.future.set_exception(ClassifierProcessError(message.message, detail=message.traceback))

        elif isinstance(message, WorkerExited):
            self._handle_exit(message)

        else:
            self.logger.warning(f"Ignoring unknown VAD worker message: {message!r}")

    def _handle_exit(self, message: WorkerExited) -> None:
        if self._state is SessionState.DISPOSED:
            return
        reason = f"worker process exited unexpectedly (exit code {message.exitcode})"
        self.logger.error(f"VAD {reason}")
        self._fail_init(ClassifierInitError(reason))
        for pending in self._pending.values():
            if not pending.future.done():
                pending.future.set_exception(ClassifierProcessError(reason))

    def _fail_init(self, error: ClassifierInitError) -> None:
        self._failure = error
        if self._state is not SessionState.DISPOSED:
            self._state = SessionState.FAILED
        if self._init_future is not None and not self._init_future.done():
            self._init_future.set_exception(error)
            # Later callers read _failure instead of this future
            self._init_future.exception()
