#!/usr/bin/env python3
"""
Tests for the classifier worker process and its asyncio host.

The worker runs with picklable fake classifiers from fake_classifiers so no
model download is needed.
"""

import asyncio
import multiprocessing

import numpy as np
import pytest

import fake_classifiers
from conftest import build_signal
from smart_segment.framework.classifier_worker import run_classifier_worker
from smart_segment.framework.execution_host import ClassifierSession, SessionState
from smart_segment.framework.worker_protocol import (
    ErrorResponse,
    InitRequest,
    ProcessRequest,
    ProgressResponse,
    ReadyResponse,
    ResultResponse,
    ShutdownRequest,
)
from smart_segment.lib.cancellation import CancellationToken
from smart_segment.lib.logging_config import (
    CancellationError,
    ClassifierInitError,
    ClassifierProcessError,
    SessionBusyError,
)
from smart_segment.processing.vad.classifier import VoiceActivityClassifier
from smart_segment.processing.vad.data_structures import ClassifierConfig, Provenance


TIMEOUT = 60.0


def speech():
    return build_signal([("silence", 1.0), ("tone", 2.0), ("silence", 1.0)], 16000)


def run_with_session(factory, body, **kwargs):
    """Run ``body(session)`` on a fresh event loop and always dispose the session."""
    session = ClassifierSession(classifier_factory=factory, **kwargs)

    async def main():
        try:
            return await asyncio.wait_for(body(session), TIMEOUT)
        finally:
            session.dispose()

    return asyncio.run(main()), session


def drive_worker(requests, factory):
    """Feed ``requests`` to the worker loop in-process and collect its responses."""
    request_recv, request_send = multiprocessing.Pipe(duplex=False)
    response_recv, response_send = multiprocessing.Pipe(duplex=False)
    for request in requests:
        request_send.send(request)
    request_send.send(ShutdownRequest())

    run_classifier_worker(request_recv, response_send, factory)

    responses = []
    while True:
        try:
            responses.append(response_recv.recv())
        except EOFError:
            break
    request_send.close()
    response_recv.close()
    return responses


# ---------- worker loop ----------

def test_worker_reports_progress_and_result():
    samples = np.zeros(1600, dtype=np.float32)
    responses = drive_worker(
        [InitRequest(ClassifierConfig()), ProcessRequest(7, samples, 16000)],
        fake_classifiers.many_spans_classifier,
    )

    assert isinstance(responses[0], ReadyResponse)
    progress = [r for r in responses if isinstance(r, ProgressResponse)]
    assert [p.processed for p in progress] == [50, 100]
    assert all(p.request_id == 7 for p in progress)
    assert isinstance(responses[-1], ResultResponse)
    assert len(responses[-1].spans) == 120


def test_worker_rejects_process_before_init():
    responses = drive_worker([ProcessRequest(1, np.zeros(16, dtype=np.float32), 16000)], fake_classifiers.threshold_classifier)
    assert len(responses) == 1
    assert isinstance(responses[0], ErrorResponse)
    assert responses[0].request_id == 1
    assert responses[0].message == "VAD not initialized"


def test_worker_reports_init_failure_without_request_id():
    responses = drive_worker([InitRequest(ClassifierConfig(model_path="/missing.jit"))], fake_classifiers.failing_factory)
    assert isinstance(responses[0], ErrorResponse)
    assert responses[0].request_id is None
    assert "model file missing" in responses[0].message
    assert "RuntimeError" in responses[0].traceback


def test_worker_answers_repeated_init_once_loaded():
    responses = drive_worker(
        [InitRequest(ClassifierConfig()), InitRequest(ClassifierConfig())],
        fake_classifiers.threshold_classifier,
    )
    assert [type(r) for r in responses] == [ReadyResponse, ReadyResponse]


def test_worker_survives_processing_errors():
    samples = np.zeros(160, dtype=np.float32)
    responses = drive_worker(
        [InitRequest(ClassifierConfig()), ProcessRequest(1, samples, 16000), ProcessRequest(2, samples, 16000)],
        fake_classifiers.exploding_classifier,
    )
    errors = [r for r in responses if isinstance(r, ErrorResponse)]
    assert [e.request_id for e in errors] == [1, 2]
    assert "inference exploded" in errors[0].message


# ---------- host ----------

def test_session_round_trip():
    signal = speech()

    async def body(session):
        assert session.state is SessionState.UNINITIALIZED
        spans = await session.process(signal.mono(), signal.sample_rate)
        assert session.state is SessionState.READY
        again = await session.process(signal.mono(), signal.sample_rate)
        return spans, again

    (spans, again), session = run_with_session(fake_classifiers.threshold_classifier, body)

    assert spans == again
    assert len(spans) == 1
    assert spans[0][0] == pytest.approx(1.0)
    assert spans[0][1] == pytest.approx(3.0)
    assert session.state is SessionState.DISPOSED


def test_concurrent_ensure_ready_shares_one_worker():
    async def body(session):
        await asyncio.gather(session.ensure_ready(), session.ensure_ready(), session.ensure_ready())
        return session._process.pid

    pid, session = run_with_session(fake_classifiers.threshold_classifier, body)
    assert pid is not None


def test_init_failure_is_typed_and_memoized():
    async def body(session):
        errors = []
        for _ in range(2):
            try:
                await session.ensure_ready()
            except ClassifierInitError as e:
                errors.append(e)
        return errors

    errors, session = run_with_session(fake_classifiers.failing_factory, body)

    assert len(errors) == 2
    assert "VAD classifier failed to initialize" in str(errors[0])
    assert "model file missing" in errors[0].reason
    assert "RuntimeError" in errors[1].detail


def test_progress_reaches_callback():
    seen = []

    async def body(session):
        return await session.process(
            np.zeros(1600, dtype=np.float32),
            16000,
            on_progress=lambda count, latest: seen.append((count, latest)),
        )

    spans, _ = run_with_session(fake_classifiers.many_spans_classifier, body)

    assert len(spans) == 120
    assert seen == [(50, 98.0), (100, 198.0)]


def test_second_call_while_busy_is_rejected():
    samples = np.zeros(1600, dtype=np.float32)

    async def body(session):
        await session.ensure_ready()
        first = asyncio.ensure_future(session.process(samples, 16000))
        while not session.is_busy:
            await asyncio.sleep(0.01)
        with pytest.raises(SessionBusyError):
            await session.process(samples, 16000)
        return await first

    spans, _ = run_with_session(fake_classifiers.slow_classifier, body)
    assert spans == [(0.0, 0.1)]


def test_cancellation_rejects_call_and_keeps_worker():
    samples = np.zeros(1600, dtype=np.float32)

    async def body(session):
        await session.ensure_ready()
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.2, token.cancel)
        with pytest.raises(CancellationError):
            await session.process(samples, 16000, token=token)
        assert session.state is SessionState.READY
        # The abandoned result arrives first and must not leak into this call
        return await session.process(samples[:800], 16000)

    spans, _ = run_with_session(fake_classifiers.slow_classifier, body)
    assert spans == [(0.0, 0.05)]


def test_worker_crash_fails_session():
    async def body(session):
        with pytest.raises(ClassifierProcessError):
            await session.process(np.zeros(160, dtype=np.float32), 16000)
        assert session.state is SessionState.FAILED
        with pytest.raises(ClassifierInitError):
            await session.ensure_ready()

    run_with_session(fake_classifiers.crashing_classifier, body)


def test_disposed_session_refuses_work():
    session = ClassifierSession(classifier_factory=fake_classifiers.threshold_classifier)
    session.dispose()
    with pytest.raises(ClassifierInitError):
        asyncio.run(session.ensure_ready())


def test_classifier_falls_back_when_worker_cannot_load():
    signal = speech()

    async def body(session):
        return await VoiceActivityClassifier(session).detect_speech(signal)

    spans, _ = run_with_session(fake_classifiers.failing_factory, body)

    assert len(spans) == 1
    assert spans[0].source is Provenance.ENERGY


def test_classifier_uses_worker_spans():
    signal = speech()

    async def body(session):
        return await VoiceActivityClassifier(session).detect_speech(signal)

    spans, _ = run_with_session(fake_classifiers.threshold_classifier, body)

    assert len(spans) == 1
    assert spans[0].source is Provenance.NEURAL
    assert spans[0].start == pytest.approx(1.0)


def test_session_reused_from_another_loop_falls_back():
    signal = speech()
    session = ClassifierSession(classifier_factory=fake_classifiers.threshold_classifier)
    classifier = VoiceActivityClassifier(session)

    async def detect():
        return await asyncio.wait_for(classifier.detect_speech(signal), TIMEOUT)

    async def process_directly():
        await session.process(signal.mono(), signal.sample_rate)

    try:
        first = asyncio.run(detect())
        second = asyncio.run(detect())
        with pytest.raises(ClassifierProcessError, match="different event loop"):
            asyncio.run(process_directly())
    finally:
        session.dispose()

    assert first[0].source is Provenance.NEURAL
    assert len(second) == 1
    assert second[0].source is Provenance.ENERGY
    assert second[0].start == pytest.approx(1.0, abs=0.02)


def test_aclose_rejects_in_flight_call():
    samples = np.zeros(1600, dtype=np.float32)
    session = ClassifierSession(classifier_factory=fake_classifiers.slow_classifier)

    async def main():
        await asyncio.wait_for(session.ensure_ready(), TIMEOUT)
        call = asyncio.ensure_future(session.process(samples, 16000))
        while not session.is_busy:
            await asyncio.sleep(0.01)
        await session.aclose()
        with pytest.raises(ClassifierProcessError, match="session disposed"):
            await call

    try:
        asyncio.run(main())
    finally:
        session.dispose()

    assert session.state is SessionState.DISPOSED
    assert not session._process.is_alive()
