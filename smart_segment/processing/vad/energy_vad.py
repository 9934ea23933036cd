#!/usr/bin/env python3
"""
Energy-based speech detection used when the neural classifier is unavailable.

Two independently tuned variants exist, selected by EnergyVADConfig:

- HYSTERESIS (20ms windows, RMS): speech opens above a fraction of the peak
  energy and only closes after a sustained run of windows below a lower
  silence threshold. Used when splitting audio into transcription chunks.
- MEDIAN (1s windows, mean absolute amplitude): every window above a fraction
  of the median energy is speech; adjacent windows are then merged. Used
  when sampling audio for speaker profiling.
"""

import math
from typing import List, Tuple

import numpy as np

from smart_segment.lib.logging_config import InvalidInputError, log_debug
from smart_segment.processing.vad.data_structures import (
    EnergyMode,
    EnergyVADConfig,
    Provenance,
    SpeechSpan,
)
from smart_segment.processing.vad.segment_merger import merge_spans


def window_energies(
    samples: np.ndarray,
    sample_rate: int,
    window_s: float,
    measure: str = "rms",
) -> Tuple[np.ndarray, int]:
    """
    Compute per-window energy.

    Args:
        samples: Mono samples
        sample_rate: Sample rate in Hz
        window_s: Window length in seconds
        measure: "rms" or "mean_abs"

    Returns:
        (energies, window length in samples); the last window may be partial
    """
    window = max(1, int(sample_rate * window_s))
    data = np.asarray(samples, dtype=np.float64)
    n = len(data)
    if n == 0:
        return np.zeros(0, dtype=np.float64), window

    count = int(math.ceil(n / window))
    padded = np.zeros(count * window, dtype=np.float64)
    padded[:n] = data
    frames = padded.reshape(count, window)

    lengths = np.full(count, window, dtype=np.float64)
    lengths[-1] = n - (count - 1) * window

    if measure == "rms":
        energies = np.sqrt(np.sum(frames ** 2, axis=1) / lengths)
    elif measure == "mean_abs":
        energies = np.sum(np.abs(frames), axis=1) / lengths
    else:
        raise InvalidInputError(f"Unknown energy measure: {measure}")
    return energies, window


def detect_hysteresis(
    samples: np.ndarray,
    sample_rate: int,
    config: EnergyVADConfig,
    min_duration_s: float,
) -> List[SpeechSpan]:
    """Two-level hysteresis over RMS windows."""
    energies, window = window_energies(samples, sample_rate, config.window_s, "rms")
    if len(energies) == 0:
        return []

    duration = len(samples) / sample_rate
    max_energy = float(np.max(energies))
    speech_threshold = max(max_energy * config.speech_ratio, config.floor)
    silence_threshold = speech_threshold * config.silence_ratio

    windows_per_s = sample_rate / window
    min_speech_windows = int(math.ceil(min_duration_s * windows_per_s))
    max_silence_windows = int(math.ceil(config.max_silence_s * windows_per_s))

    log_debug(
        f"Energy VAD (hysteresis) - speech threshold: {speech_threshold:.4f}, "
        f"silence threshold: {silence_threshold:.4f}"
    )

    spans: List[SpeechSpan] = []

    def emit(start_idx: int, end_idx: int) -> None:
        if end_idx - start_idx < max(1, min_speech_windows):
            return
        start_s = start_idx * window / sample_rate
        end_s = min(end_idx * window / sample_rate, duration)
        if end_s > start_s:
            energy = float(np.mean(energies[start_idx:end_idx]))
            spans.append(SpeechSpan(start_s, end_s, energy, Provenance.ENERGY))

    speaking = False
    start = 0
    silence = 0
    for i, energy in enumerate(energies):
        if not speaking:
            if energy > speech_threshold:
                speaking = True
                start = i
                silence = 0
        elif energy < silence_threshold:
            silence += 1
            if silence > max_silence_windows:
                emit(start, i - silence + 1)
                speaking = False
                silence = 0
        else:
            silence = 0

    if speaking:
        emit(start, len(energies) - silence)

    return spans


def detect_median(
    samples: np.ndarray,
    sample_rate: int,
    config: EnergyVADConfig,
) -> List[SpeechSpan]:
    """One span per window whose mean absolute amplitude exceeds the median-derived threshold."""
    energies, window = window_energies(samples, sample_rate, config.window_s, "mean_abs")
    if len(energies) == 0:
        return []

    median = float(np.sort(energies)[len(energies) // 2])
    threshold = max(median * config.median_ratio, config.floor)

    log_debug(f"Energy VAD (median) - threshold: {threshold:.4f}, median: {median:.4f}")

    n = len(samples)
    spans: List[SpeechSpan] = []
    for i, energy in enumerate(energies):
        if energy > threshold:
            start = i * window
            end = min(start + window, n)
            spans.append(SpeechSpan(start / sample_rate, end / sample_rate, float(energy), Provenance.ENERGY))
    return spans


def detect_energy_spans(
    samples: np.ndarray,
    sample_rate: int,
    config: EnergyVADConfig,
    min_duration_s: float = 0.5,
    merge_tolerance_s: float = 0.1,
) -> List[SpeechSpan]:
    """
    Run the energy fallback configured for one call site.

    Returns:
        Sorted, non-overlapping spans no shorter than ``min_duration_s``
    """
    if sample_rate <= 0:
        raise InvalidInputError(f"Sample rate must be positive, got {sample_rate}")

    if config.mode is EnergyMode.HYSTERESIS:
        return detect_hysteresis(samples, sample_rate, config, min_duration_s)

    merged = merge_spans(detect_median(samples, sample_rate, config), merge_tolerance_s)
    return [s for s in merged if s.duration >= min_duration_s]
