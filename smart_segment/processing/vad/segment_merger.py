#!/usr/bin/env python3
"""
Coalesce adjacent speech spans separated by very short gaps.
"""

from typing import Iterable, List

from smart_segment.processing.vad.data_structures import SpeechSpan


DEFAULT_MERGE_TOLERANCE_S = 0.1


def merge_spans(spans: Iterable[SpeechSpan], tolerance: float = DEFAULT_MERGE_TOLERANCE_S) -> List[SpeechSpan]:
    """
    Merge spans whose gap to the running span is below ``tolerance`` seconds.

    The merged energy is the arithmetic mean of the constituent energies.
    Output is sorted, non-overlapping, and every gap between consecutive
    spans is at least ``tolerance``, so merging the output again is a no-op.

    Args:
        spans: Speech spans, ideally sorted by start time
        tolerance: Gaps strictly shorter than this are bridged

    Returns:
        Newly created merged spans
    """
    ordered = sorted(spans, key=lambda s: (s.start, s.end))
    if not ordered:
        return []

    merged: List[SpeechSpan] = []
    current = ordered[0]
    end = current.end
    energy_sum = current.energy
    count = 1

    for span in ordered[1:]:
        if span.start - end < tolerance:
            end = max(end, span.end)
            energy_sum += span.energy
            count += 1
        else:
            merged.append(SpeechSpan(current.start, end, energy_sum / count, current.source))
            current = span
            end = span.end
            energy_sum = span.energy
            count = 1

    merged.append(SpeechSpan(current.start, end, energy_sum / count, current.source))
    return merged


class SegmentMerger:
    """Reusable merger bound to one gap tolerance."""

    def __init__(self, tolerance: float = DEFAULT_MERGE_TOLERANCE_S):
        self.tolerance = tolerance

    def merge(self, spans: Iterable[SpeechSpan]) -> List[SpeechSpan]:
        return merge_spans(spans, self.tolerance)
