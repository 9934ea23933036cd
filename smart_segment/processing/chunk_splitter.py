#!/usr/bin/env python3
"""
Split long audio into near-target-duration chunks for transcription.

Boundaries prefer silence: around each naive boundary a search window is
scanned for gaps between speech spans and the gap midpoint closest to the
naive boundary wins. When the window is all speech the boundary is a hard
cut, so the splitter never stalls.
"""

import math
from typing import List, Optional, Sequence, Union

from smart_segment.lib.cancellation import CancellationToken, raise_if_cancelled
from smart_segment.lib.logging_config import InvalidInputError, log_debug, log_progress, log_completion
from smart_segment.processing.vad.classifier import DetectionOptions, VoiceActivityClassifier
from smart_segment.processing.vad.data_structures import (
    AudioSignal,
    Chunk,
    ChunkSplitterConfig,
    EnergyVADConfig,
    SegmentationResult,
    SpeechSpan,
)


class ChunkSplitter:
    """
    Greedy left-to-right chunk splitter.

    Chunks from one ``split`` call are contiguous, gap-free and cover exactly
    ``[0, total_duration]``. Each chunk is at most ``target + search width``
    long. A remainder shorter than both the search width and the minimum
    chunk length is absorbed by the final chunk instead of becoming its own.
    """

    def __init__(self, config: Optional[ChunkSplitterConfig] = None):
        self.config = config or ChunkSplitterConfig()

    def split(
        self,
        signal: Union[AudioSignal, float],
        speech_spans: Sequence[SpeechSpan],
        target_duration: float,
    ) -> List[Chunk]:
        """
        Compute chunk boundaries.

        Args:
            signal: The signal, or its total duration in seconds
            speech_spans: Detected speech, sorted by start
            target_duration: Desired chunk length in seconds

        Returns:
            Chunks in timeline order
        """
        total = signal.duration if isinstance(signal, AudioSignal) else float(signal)
        if not math.isfinite(total) or total <= 0:
            raise InvalidInputError(f"Total duration must be finite and positive, got {total}")
        if not math.isfinite(target_duration) or target_duration <= 0:
            raise InvalidInputError(f"Target duration must be finite and positive, got {target_duration}")

        spans = sorted(speech_spans, key=lambda s: s.start)
        chunks: List[Chunk] = []
        cursor = 0.0

        # A remainder this short is folded into the final chunk
        tail_limit = min(self.config.search_width(target_duration), self.config.min_chunk_s)

        while cursor < total:
            naive_end = cursor + target_duration
            if total - naive_end <= tail_limit:
                chunks.append(Chunk(len(chunks), cursor, total))
                break

            cut = self._find_cut(cursor, naive_end, total, target_duration, spans)
            chunks.append(Chunk(len(chunks), cursor, cut))
            cursor = cut

        log_debug(f"Segmented audio into {len(chunks)} chunks.")
        return chunks

    def _find_cut(
        self,
        cursor: float,
        naive_end: float,
        total: float,
        target_duration: float,
        spans: Sequence[SpeechSpan],
    ) -> float:
        width = self.config.search_width(target_duration)
        window_start = max(cursor + self.config.min_chunk_s, naive_end - width)
        window_end = min(total, naive_end + width)

        if window_end <= window_start:
            log_debug(f"Search window empty near {naive_end:.2f}s, hard cutting.")
            return naive_end

        relevant = [s for s in spans if s.end > window_start and s.start < window_end]
        if not relevant:
            return naive_end

        # Silence gaps inside the window, as (gap_start, gap_end)
        gaps = []
        if relevant[0].start > window_start:
            gaps.append((window_start, relevant[0].start))
        running_end = relevant[0].end
        for span in relevant[1:]:
            if span.start > running_end:
                gaps.append((running_end, span.start))
            running_end = max(running_end, span.end)
        if running_end < window_end:
            gaps.append((running_end, window_end))

        best = None
        best_distance = math.inf
        for gap_start, gap_end in gaps:
            midpoint = (gap_start + gap_end) / 2
            distance = abs(midpoint - naive_end)
            if distance < best_distance:
                best = midpoint
                best_distance = distance

        if best is None:
            log_debug(f"No smart split found near {naive_end:.2f}s, hard cutting.")
            return naive_end

        log_debug(f"Smart split found at {best:.2f}s (Target: {naive_end:.2f}s)")
        return best


async def segment_audio(
    signal: AudioSignal,
    target_duration: float,
    classifier: VoiceActivityClassifier,
    token: Optional[CancellationToken] = None,
    splitter: Optional[ChunkSplitter] = None,
    min_speech_duration: float = 0.5,
) -> SegmentationResult:
    """
    Detect speech and split ``signal`` into transcription chunks.

    The detected spans are returned alongside the chunks so they can be
    reused by the representative sampler without a second VAD pass.
    """
    raise_if_cancelled(token)
    log_progress(f"Segmenting {signal.duration:.1f}s of audio into ~{target_duration:.0f}s chunks")

    options = DetectionOptions(
        min_speech_duration=min_speech_duration,
        energy=EnergyVADConfig.for_splitting(),
        token=token,
    )
    spans = await classifier.detect_speech(signal, options)
    raise_if_cancelled(token)

    chunks = (splitter or ChunkSplitter()).split(signal, spans, target_duration)
    log_completion(f"Split audio into {len(chunks)} chunks", {"speech_spans": len(spans)})
    return SegmentationResult(chunks=chunks, speech_spans=spans)
