#!/usr/bin/env python3
"""
Tests for speech span merging.
"""

from smart_segment.processing.vad.data_structures import Provenance, SpeechSpan
from smart_segment.processing.vad.segment_merger import SegmentMerger, merge_spans


def test_merges_spans_closer_than_tolerance():
    spans = [SpeechSpan(0.0, 1.0, 0.2), SpeechSpan(1.05, 2.0, 0.4)]
    merged = merge_spans(spans, 0.1)
    assert len(merged) == 1
    assert merged[0].start == 0.0
    assert merged[0].end == 2.0
    assert abs(merged[0].energy - 0.3) < 1e-9


def test_keeps_gap_equal_to_tolerance():
    spans = [SpeechSpan(0.0, 1.0), SpeechSpan(1.1, 2.0)]
    merged = merge_spans(spans, 0.05)
    assert merged == spans


def test_sorts_and_absorbs_contained_spans():
    spans = [SpeechSpan(5.0, 6.0), SpeechSpan(0.0, 4.0), SpeechSpan(1.0, 2.0)]
    merged = merge_spans(spans)
    assert [(s.start, s.end) for s in merged] == [(0.0, 4.0), (5.0, 6.0)]


def test_merge_is_idempotent():
    spans = [SpeechSpan(0.0, 1.0), SpeechSpan(1.02, 3.0), SpeechSpan(4.0, 5.0), SpeechSpan(5.01, 5.5)]
    once = merge_spans(spans)
    assert merge_spans(once) == once


def test_energy_mean_weighs_each_span_equally():
    spans = [SpeechSpan(0.0, 10.0, 1.0), SpeechSpan(10.0, 10.5, 0.0), SpeechSpan(10.5, 11.0, 0.5)]
    merged = merge_spans(spans)
    assert len(merged) == 1
    assert abs(merged[0].energy - 0.5) < 1e-9


def test_preserves_provenance_and_empty_input():
    merger = SegmentMerger()
    assert merger.merge([]) == []
    merged = merger.merge([SpeechSpan(0.0, 1.0, 0.5, Provenance.ENERGY), SpeechSpan(1.0, 2.0, 0.5, Provenance.ENERGY)])
    assert merged[0].source is Provenance.ENERGY
