#!/usr/bin/env python3
"""
Tests for silence-aware chunk splitting.
"""

import asyncio

import numpy as np
import pytest

from conftest import build_signal
from smart_segment.lib.cancellation import CancellationToken
from smart_segment.lib.logging_config import CancellationError, InvalidInputError
from smart_segment.processing.chunk_splitter import ChunkSplitter, segment_audio
from smart_segment.processing.vad.classifier import VoiceActivityClassifier
from smart_segment.processing.vad.data_structures import AudioSignal, ChunkSplitterConfig, SpeechSpan


def assert_covers(chunks, total):
    assert chunks[0].start == 0.0
    assert chunks[-1].end == total
    for i, (prev, nxt) in enumerate(zip(chunks, chunks[1:])):
        assert prev.end == nxt.start
        assert prev.index == i
    assert all(c.end > c.start for c in chunks)


def random_spans(total, seed):
    rng = np.random.default_rng(seed)
    spans = []
    t = float(rng.uniform(0, 5))
    while t < total:
        length = float(rng.uniform(0.5, 40))
        end = min(total, t + length)
        if end > t:
            spans.append(SpeechSpan(t, end))
        t = end + float(rng.uniform(0.05, 6))
    return spans


def test_short_signal_is_single_chunk():
    chunks = ChunkSplitter().split(120.0, [SpeechSpan(0.0, 120.0)], 300.0)
    assert len(chunks) == 1
    assert (chunks[0].start, chunks[0].end) == (0.0, 120.0)


def test_continuous_speech_hard_cuts_near_target():
    chunks = ChunkSplitter().split(610.0, [SpeechSpan(0.0, 610.0)], 300.0)

    assert len(chunks) == 2
    assert abs(chunks[0].end - 300.0) <= 30.0
    assert chunks[1].end == 610.0
    assert_covers(chunks, 610.0)


def test_silent_signal_uses_naive_boundaries():
    chunks = ChunkSplitter().split(60.0, [], 30.0)
    assert [(c.start, c.end) for c in chunks] == [(0.0, 30.0), (30.0, 60.0)]


def test_cut_lands_on_closest_gap_midpoint():
    spans = [SpeechSpan(0.0, 280.0), SpeechSpan(282.0, 295.0), SpeechSpan(297.0, 1000.0)]
    chunks = ChunkSplitter().split(1000.0, spans, 300.0)
    assert chunks[0].end == pytest.approx(296.0)


def test_cut_uses_partial_gap_at_window_edge():
    spans = [SpeechSpan(0.0, 310.0), SpeechSpan(400.0, 1000.0)]
    chunks = ChunkSplitter().split(1000.0, spans, 300.0)
    # Silence from 310s runs past the 330s window edge
    assert chunks[0].end == pytest.approx(320.0)


def test_window_never_precedes_minimum_chunk_length():
    config = ChunkSplitterConfig(search_ratio=0.5, max_search_s=30.0, min_chunk_s=10.0)
    spans = [SpeechSpan(0.0, 4.0), SpeechSpan(6.0, 100.0)]
    chunks = ChunkSplitter(config).split(100.0, spans, 20.0)
    # The gap at 5s sits before cursor + 10s and must be ignored
    assert chunks[0].end >= 10.0


def test_tiny_target_does_not_stall():
    chunks = ChunkSplitter().split(30.0, [SpeechSpan(0.0, 30.0)], 5.0)
    assert len(chunks) == 6
    assert_covers(chunks, 30.0)


@pytest.mark.parametrize("seed", [1, 2, 3, 4])
def test_random_layouts_stay_contiguous_and_bounded(seed):
    total = 3600.0
    target = 300.0
    spans = random_spans(total, seed)
    splitter = ChunkSplitter()
    chunks = splitter.split(total, spans, target)

    assert_covers(chunks, total)
    width = splitter.config.search_width(target)
    assert max(c.duration for c in chunks) <= target + width + 1e-9
    assert splitter.split(total, spans, target) == chunks


def test_rejects_invalid_targets():
    splitter = ChunkSplitter()
    with pytest.raises(InvalidInputError):
        splitter.split(100.0, [], 0.0)
    with pytest.raises(InvalidInputError):
        splitter.split(100.0, [], float("nan"))
    with pytest.raises(InvalidInputError):
        splitter.split(0.0, [], 30.0)


def test_segment_audio_with_energy_fallback():
    signal = build_signal(
        [("tone", 20.0), ("silence", 2.0), ("tone", 20.0), ("silence", 2.0), ("tone", 20.0)],
        8000,
    )
    result = asyncio.run(segment_audio(signal, 20.0, VoiceActivityClassifier()))

    assert_covers(result.chunks, signal.duration)
    assert len(result.speech_spans) == 3
    assert result.chunks[0].end == pytest.approx(21.0, abs=0.05)


def test_segment_audio_honours_cancellation():
    signal = AudioSignal(np.zeros(8000, dtype=np.float32), 8000)
    token = CancellationToken()
    token.cancel()
    with pytest.raises(CancellationError):
        asyncio.run(segment_audio(signal, 30.0, VoiceActivityClassifier(), token=token))


class CancellingClassifier(VoiceActivityClassifier):
    """Trips the token while detection is running."""

    def __init__(self, token):
        super().__init__()
        self.token = token

    async def detect_speech(self, signal, options=None):
        self.token.cancel()
        return [SpeechSpan(0.0, 0.5)]


def test_segment_audio_cancelled_during_detection():
    signal = AudioSignal(np.zeros(8000, dtype=np.float32), 8000)
    token = CancellationToken()

    with pytest.raises(CancellationError):
        asyncio.run(segment_audio(signal, 30.0, CancellingClassifier(token), token=token))
    assert token.cancelled
