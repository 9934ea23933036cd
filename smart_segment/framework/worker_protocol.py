#!/usr/bin/env python3
"""
Messages exchanged between the execution host and the classifier worker.

Requests flow host -> worker, responses flow worker -> host over a
multiprocessing Pipe. Every message is a small picklable dataclass; the
receiving side dispatches on the concrete type.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import numpy as np

from smart_segment.processing.vad.data_structures import ClassifierConfig


# ---------- requests ----------

@dataclass(frozen=True)
class InitRequest:
    """Load the model described by ``config``."""
    config: ClassifierConfig


@dataclass(frozen=True)
class ProcessRequest:
    """Run detection over one mono buffer."""
    request_id: int
    samples: np.ndarray
    sample_rate: int


@dataclass(frozen=True)
class ShutdownRequest:
    """Ask the worker loop to exit."""


WorkerRequest = Union[InitRequest, ProcessRequest, ShutdownRequest]


# ---------- responses ----------

@dataclass(frozen=True)
class ReadyResponse:
    """The model loaded; the worker accepts ProcessRequests."""


@dataclass(frozen=True)
class ResultResponse:
    request_id: int
    spans: List[Tuple[float, float]] = field(default_factory=list)


@dataclass(frozen=True)
class ProgressResponse:
    request_id: int
    processed: int          # Spans emitted so far
    latest_time: float      # Start of the most recent span, seconds


@dataclass(frozen=True)
class ErrorResponse:
    """
    A failure inside the worker.

    ``request_id`` is None for initialization failures.
    """
    request_id: Optional[int]
    message: str
    traceback: str = ""


@dataclass(frozen=True)
class WorkerExited:
    """Synthesised on the host side when the pipe closes."""
    exitcode: Optional[int] = None


WorkerResponse = Union[ReadyResponse, ResultResponse, ProgressResponse, ErrorResponse, WorkerExited]


PROGRESS_EVERY = 50
