#!/usr/bin/env python3
"""
Entry point of the classifier worker process.

The loop owns the model for the lifetime of the process. It answers one
request at a time, in arrival order, and reports every failure back to the
host as an ErrorResponse instead of dying.
"""

import traceback
from multiprocessing.connection import Connection
from typing import Any, Callable, Optional

from smart_segment.framework.worker_protocol import (
    PROGRESS_EVERY,
    ErrorResponse,
    InitRequest,
    ProcessRequest,
    ProgressResponse,
    ReadyResponse,
    ResultResponse,
    ShutdownRequest,
)
from smart_segment.lib.logging_config import get_logger
from smart_segment.processing.vad.data_structures import ClassifierConfig


ClassifierFactory = Callable[[ClassifierConfig], Any]


def default_classifier_factory(config: ClassifierConfig) -> Any:
    # Imported lazily so torch only loads inside the worker
    from smart_segment.processing.vad.silero_vad import load_silero_classifier
    return load_silero_classifier(config)


def run_classifier_worker(
    requests: Connection,
    responses: Connection,
    factory: Optional[ClassifierFactory] = None,
) -> None:
    """
    Serve requests until shutdown or EOF.

    Args:
        requests: Receiving end of the host -> worker pipe
        responses: Sending end of the worker -> host pipe
        factory: Builds an object exposing ``detect(samples, sample_rate)``
            which yields ``(start_s, end_s)`` pairs
    """
    logger = get_logger()
    factory = factory or default_classifier_factory
    classifier = None

    while True:
        try:
            request = requests.recv()
        except (EOFError, OSError):
            break

        if isinstance(request, ShutdownRequest):
            break

        if isinstance(request, InitRequest):
            if classifier is not None:
                responses.send(ReadyResponse())
                continue
            try:
                classifier = factory(request.config)
            except Exception as e:
                logger.error(f"VAD worker failed to load model: {e}")
                responses.send(ErrorResponse(None, str(e) or type(e).__name__, traceback.format_exc()))
            else:
                responses.send(ReadyResponse())

        elif isinstance(request, ProcessRequest):
            if classifier is None:
                responses.send(ErrorResponse(request.request_id, "VAD not initialized"))
                continue
            try:
                spans = []
                for start_s, end_s in classifier.detect(request.samples, request.sample_rate):
                    spans.append((float(start_s), float(end_s)))
                    if len(spans) % PROGRESS_EVERY == 0:
                        responses.send(ProgressResponse(request.request_id, len(spans), float(start_s)))
            except Exception as e:
                logger.error(f"VAD worker failed while processing request {request.request_id}: {e}")
                responses.send(ErrorResponse(request.request_id, str(e) or type(e).__name__, traceback.format_exc()))
            else:
                responses.send(ResultResponse(request.request_id, spans))

        else:
            logger.warning(f"VAD worker ignoring unknown request: {type(request).__name__}")

    requests.close()
    responses.close()
