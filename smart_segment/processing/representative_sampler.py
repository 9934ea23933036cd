#!/usr/bin/env python3
"""
Representative audio sampling for speaker profile extraction.

Selects a bounded amount of speech spread across the recording's timeline
instead of sending the whole file to the profiler.

Strategy for recordings longer than the short-input threshold:
1. Start zone (first 120s): the whole zone when speech is dense, otherwise
   its individual speech spans
2. Middle zone (20%-80%): best span from each of 4 equal sub-zones
3. End zone (last 20%): best span from each of 2 equal sub-zones

Short recordings take every eligible span in order instead. A long recording
with no qualifying speech falls back to its leading target-length slice,
tagged with FALLBACK provenance.
"""

from typing import List, Optional, Sequence

import numpy as np

from smart_segment.lib.cancellation import CancellationToken, raise_if_cancelled
from smart_segment.lib.logging_config import log_progress, log_debug, log_completion, get_logger
from smart_segment.processing.vad.classifier import DetectionOptions, VoiceActivityClassifier
from smart_segment.processing.vad.data_structures import (
    AudioSignal,
    EnergyVADConfig,
    Provenance,
    Sample,
    SampleArtifact,
    SamplerConfig,
    SamplingResult,
    SpeechSpan,
)
from smart_segment.processing.vad.segment_merger import merge_spans


DEFAULT_TARGET_DURATION_S = 300.0


class RepresentativeSampler:
    """
    Builds a timeline-representative speech excerpt.

    Selection is deterministic: identical inputs yield identical samples.
    """

    def __init__(
        self,
        classifier: Optional[VoiceActivityClassifier] = None,
        config: Optional[SamplerConfig] = None,
    ):
        """
        Args:
            classifier: Used when ``sample`` is called without cached spans
            config: Zone layout and thresholds
        """
        self.classifier = classifier or VoiceActivityClassifier()
        self.config = config or SamplerConfig()
        self.logger = get_logger()

    async def sample(
        self,
        signal: AudioSignal,
        speech_spans: Optional[Sequence[SpeechSpan]] = None,
        target_total_duration: float = DEFAULT_TARGET_DURATION_S,
        token: Optional[CancellationToken] = None,
    ) -> SamplingResult:
        """
        Select samples and concatenate them into one artifact.

        Args:
            signal: Full decoded recording
            speech_spans: Cached spans (e.g. from segment_audio); None runs VAD
            target_total_duration: Budget for the total sampled duration
            token: Cancellation token, checked before and after VAD and per sample

        Returns:
            SamplingResult(samples, artifact, duration)
        """
        log_progress(
            f"Starting intelligent audio sampling (Target: {target_total_duration}s, "
            f"Cached VAD: {speech_spans is not None})"
        )
        raise_if_cancelled(token)

        if speech_spans is None:
            spans = await self._analyze(signal, token)
        else:
            log_debug(f"Using cached VAD segments ({len(speech_spans)} segments), skipping VAD analysis")
            spans = merge_spans(speech_spans, self.config.merge_tolerance_s)

        raise_if_cancelled(token)

        selected = self.select(spans, signal.duration, target_total_duration)
        log_progress(f"Selected {len(selected)} samples for profile extraction")

        mono = signal.mono()
        pieces: List[np.ndarray] = []
        for sample in selected:
            raise_if_cancelled(token)
            start = max(0, int(np.floor(sample.start * signal.sample_rate)))
            end = min(len(mono), int(np.floor(sample.end * signal.sample_rate)))
            if end > start:
                pieces.append(mono[start:end])

        merged = np.concatenate(pieces) if pieces else np.zeros(0, dtype=np.float32)
        artifact = SampleArtifact(samples=merged.astype(np.float32, copy=False), sample_rate=signal.sample_rate)

        log_completion(
            f"Sampled {artifact.duration:.1f}s of audio from {len(selected)} segments",
            {"total_duration": f"{signal.duration:.1f}s"},
        )
        return SamplingResult(samples=selected, artifact=artifact, duration=artifact.duration)

    async def _analyze(self, signal: AudioSignal, token: Optional[CancellationToken]) -> List[SpeechSpan]:
        log_debug("No cached VAD segments, running VAD analysis")
        options = DetectionOptions(
            min_speech_duration=self.config.min_speech_duration_s,
            energy=EnergyVADConfig.for_sampling(),
            token=token,
        )
        spans = await self.classifier.detect_speech(signal, options)
        return merge_spans(spans, self.config.merge_tolerance_s)

    def select(
        self,
        spans: Sequence[SpeechSpan],
        total_duration: float,
        target_total_duration: float = DEFAULT_TARGET_DURATION_S,
    ) -> List[Sample]:
        """Pick sample spans from merged speech spans."""
        eligible = [s for s in sorted(spans, key=lambda s: s.start) if s.duration >= self.config.min_sample_s]
        if not eligible:
            end = min(total_duration, target_total_duration)
            if total_duration <= self.config.short_threshold_s or end <= 0:
                self.logger.warning("No voice segments long enough for sampling")
                return []
            self.logger.warning(
                f"No voice segments long enough for sampling, using the first {end:.1f}s of audio"
            )
            return [Sample(0.0, end, Provenance.FALLBACK)]

        if total_duration <= self.config.short_threshold_s:
            return self._select_short(eligible, total_duration, target_total_duration)
        return self._select_zones(eligible, total_duration, target_total_duration)

    def _select_short(
        self,
        eligible: List[SpeechSpan],
        total_duration: float,
        target_total_duration: float,
    ) -> List[Sample]:
        log_debug(f"Short recording detected ({total_duration:.1f}s), using simplified sampling")
        selected: List[Sample] = []
        accumulated = 0.0
        for span in eligible:
            if accumulated >= target_total_duration:
                break
            selected.append(Sample.from_span(span))
            accumulated += span.duration

        log_debug(f"Selected {len(selected)} segments, total {accumulated:.1f}s")
        return selected

    def _select_zones(
        self,
        eligible: List[SpeechSpan],
        total_duration: float,
        target_total_duration: float,
    ) -> List[Sample]:
        config = self.config
        candidates: List[Sample] = []

        # 1. Start zone
        start_zone_end = min(total_duration, config.start_zone_s)
        start_spans = [s for s in eligible if s.end <= start_zone_end]
        coverage = sum(s.duration for s in start_spans) / start_zone_end
        log_debug(f"Start zone coverage: {coverage:.0%}")

        if coverage > config.dense_coverage:
            candidates.append(Sample(0.0, start_zone_end, eligible[0].source, 1.0))
        else:
            candidates.extend(Sample.from_span(s) for s in start_spans)

        # 2. Middle zone
        mid_lo, mid_hi = config.middle_bounds
        candidates.extend(self._best_per_subzone(
            eligible, total_duration * mid_lo, total_duration * mid_hi, config.middle_subzones
        ))

        # 3. End zone
        candidates.extend(self._best_per_subzone(
            eligible, total_duration * mid_hi, total_duration, config.end_subzones
        ))

        # Exact repeats and picks inside an already taken whole zone are skipped
        selected: List[Sample] = []
        accumulated = 0.0
        for sample in candidates:
            if any(sample.start < s.end and s.start < sample.end for s in selected):
                continue
            if accumulated >= target_total_duration:
                log_debug(f"Sampling budget reached at {accumulated:.1f}s; skipping remaining zones")
                break
            selected.append(sample)
            accumulated += sample.duration

        return sorted(selected, key=lambda s: (s.start, s.end))

    def _best_per_subzone(
        self,
        eligible: List[SpeechSpan],
        zone_start: float,
        zone_end: float,
        count: int,
    ) -> List[Sample]:
        picks: List[Sample] = []
        step = (zone_end - zone_start) / count
        for i in range(count):
            sub_start = zone_start + i * step
            sub_end = sub_start + step
            inside = [s for s in eligible if s.start >= sub_start and s.end <= sub_end]
            if not inside:
                continue
            best = max(inside, key=lambda s: s.energy * s.duration)
            picks.append(Sample.from_span(best))
        return picks


async def intelligent_audio_sampling(
    signal: AudioSignal,
    classifier: Optional[VoiceActivityClassifier] = None,
    target_total_duration: float = DEFAULT_TARGET_DURATION_S,
    token: Optional[CancellationToken] = None,
    cached_spans: Optional[Sequence[SpeechSpan]] = None,
) -> SamplingResult:
    """Convenience wrapper building a sampler for one call."""
    sampler = RepresentativeSampler(classifier=classifier)
    return await sampler.sample(signal, cached_spans, target_total_duration, token)
