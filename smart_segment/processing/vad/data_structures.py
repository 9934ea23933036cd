#!/usr/bin/env python3
"""
Data structures for VAD-driven segmentation and sampling.

This module defines the decoded signal view, speech spans, transcription
chunks, profiling samples and the configuration dataclasses shared by the
classifier, the chunk splitter and the representative sampler.
"""

from __future__ import annotations
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Dict, Any

import numpy as np

from smart_segment.lib.logging_config import InvalidInputError


class Provenance(str, Enum):
    """Which detector produced a span."""
    NEURAL = "neural"
    ENERGY = "energy"
    FALLBACK = "fallback"    # Leading audio taken when no speech qualified


@dataclass(frozen=True, eq=False)
class AudioSignal:
    """
    Immutable view of decoded PCM.

    ``data`` is either ``(n,)`` or ``(n, channels)``. The array is stored as
    a read-only view; callers keep ownership of the underlying buffer.
    """
    data: np.ndarray
    sample_rate: int

    def __post_init__(self):
        data = np.asarray(self.data)
        if data.ndim not in (1, 2):
            raise InvalidInputError(f"Audio data must be 1-D or 2-D, got {data.ndim} dimensions")
        if data.shape[0] == 0 or data.size == 0:
            raise InvalidInputError("Audio signal is empty")
        try:
            rate = float(self.sample_rate)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Invalid sample rate: {self.sample_rate!r}", cause=e)
        if not math.isfinite(rate) or rate <= 0:
            raise InvalidInputError(f"Sample rate must be finite and positive, got {self.sample_rate!r}")

        view = data.view()
        view.flags.writeable = False
        object.__setattr__(self, "data", view)

    @property
    def channels(self) -> int:
        return 1 if self.data.ndim == 1 else self.data.shape[1]

    @property
    def num_samples(self) -> int:
        return self.data.shape[0]

    @property
    def duration(self) -> float:
        """Total duration in seconds."""
        return self.num_samples / self.sample_rate

    def mono(self) -> np.ndarray:
        """First channel only, as float32."""
        channel = self.data if self.data.ndim == 1 else self.data[:, 0]
        return np.asarray(channel, dtype=np.float32)

    def slice(self, start_s: float, end_s: float) -> np.ndarray:
        """Mono samples between two timestamps (seconds), clamped to the signal."""
        start = max(0, int(math.floor(start_s * self.sample_rate)))
        end = min(self.num_samples, int(math.floor(end_s * self.sample_rate)))
        if end <= start:
            return np.zeros(0, dtype=np.float32)
        return self.mono()[start:end]


@dataclass(frozen=True)
class SpeechSpan:
    """
    A contiguous interval believed to contain speech.

    Within one detection pass spans are sorted and non-overlapping.
    """
    start: float             # Start time in seconds
    end: float               # End time in seconds
    energy: float = 1.0      # Energy score (neural spans use 1.0)
    source: Provenance = Provenance.NEURAL

    def __post_init__(self):
        if not (math.isfinite(self.start) and math.isfinite(self.end)):
            raise InvalidInputError(f"Span bounds must be finite: ({self.start}, {self.end})")
        if self.start >= self.end:
            raise InvalidInputError(f"Span start must precede end: ({self.start}, {self.end})")

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "duration": round(self.duration, 3),
            "energy": self.energy,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class Chunk:
    """
    A bounded-duration slice of the full signal for independent transcription.

    The transcription scheduler re-adds ``start`` to chunk-relative timestamps
    to recover absolute times.
    """
    index: int
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "start": self.start,
            "end": self.end,
            "duration": round(self.duration, 3),
        }


@dataclass(frozen=True)
class Sample:
    """A span selected for speaker profiling."""
    start: float
    end: float
    source: Provenance
    energy: float = 1.0

    def __post_init__(self):
        if self.end <= self.start:
            raise InvalidInputError(f"Sample duration must be positive: ({self.start}, {self.end})")

    @property
    def duration(self) -> float:
        return self.end - self.start

    @classmethod
    def from_span(cls, span: SpeechSpan) -> 'Sample':
        return cls(start=span.start, end=span.end, source=span.source, energy=span.energy)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "duration": round(self.duration, 3),
            "source": self.source.value,
            "energy": self.energy,
        }


@dataclass
class SampleArtifact:
    """Concatenated mono PCM of the selected samples."""
    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    def to_wav_bytes(self) -> bytes:
        """Encode as 16-bit PCM WAV for the speaker-profiling collaborator."""
        from smart_segment.lib.audio_io import encode_wav
        return encode_wav(self.samples, self.sample_rate)


@dataclass
class SamplingResult:
    """Selected samples, their concatenated artifact and its duration."""
    samples: List[Sample]
    artifact: SampleArtifact
    duration: float

    def __iter__(self):
        return iter((self.samples, self.artifact, self.duration))


@dataclass
class SegmentationResult:
    """Chunk boundaries plus the speech spans they were derived from."""
    chunks: List[Chunk]
    speech_spans: List[SpeechSpan]


@dataclass
class ClassifierConfig:
    """
    Parameters sent to the neural classifier on ``init``.

    Frame counts are in model frames of ``frame_samples`` samples at 16kHz.
    """
    model_path: Optional[str] = None       # None loads the model bundled with silero-vad
    positive_threshold: float = 0.6        # Speech probability to open a span
    negative_threshold: float = 0.4        # Probability below which frames count as silence
    min_speech_frames: int = 4
    redemption_frames: int = 8             # ~250ms of silence closes a span
    pre_speech_pad_frames: int = 1
    frame_samples: int = 512

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_path": self.model_path,
            "positive_threshold": self.positive_threshold,
            "negative_threshold": self.negative_threshold,
            "min_speech_frames": self.min_speech_frames,
            "redemption_frames": self.redemption_frames,
            "pre_speech_pad_frames": self.pre_speech_pad_frames,
            "frame_samples": self.frame_samples,
        }


class EnergyMode(str, Enum):
    """Thresholding strategy of the energy fallback."""
    HYSTERESIS = "hysteresis"
    MEDIAN = "median"


@dataclass(frozen=True)
class EnergyVADConfig:
    """
    Energy fallback configuration for one call site.

    The splitting and sampling call sites use independently tuned window
    sizes and thresholds; use the matching factory rather than one shared
    setting.
    """
    mode: EnergyMode
    window_s: float
    floor: float = 0.005
    speech_ratio: float = 0.05       # hysteresis: fraction of max energy
    silence_ratio: float = 0.4       # hysteresis: silence threshold / speech threshold
    max_silence_s: float = 0.5       # hysteresis: silence needed to close a span
    median_ratio: float = 0.2        # median: fraction of median energy

    @classmethod
    def for_splitting(cls) -> 'EnergyVADConfig':
        return cls(mode=EnergyMode.HYSTERESIS, window_s=0.02)

    @classmethod
    def for_sampling(cls) -> 'EnergyVADConfig':
        return cls(mode=EnergyMode.MEDIAN, window_s=1.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "window_s": self.window_s,
            "floor": self.floor,
            "speech_ratio": self.speech_ratio,
            "silence_ratio": self.silence_ratio,
            "max_silence_s": self.max_silence_s,
            "median_ratio": self.median_ratio,
        }


@dataclass
class ChunkSplitterConfig:
    """Search window parameters for chunk boundaries."""
    search_ratio: float = 0.1          # Half-width of the search window as a fraction of target
    max_search_s: float = 30.0         # Cap on the half-width
    min_chunk_s: float = 10.0          # Window never starts before cursor + this

    def search_width(self, target_duration: float) -> float:
        return min(target_duration * self.search_ratio, self.max_search_s)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "search_ratio": self.search_ratio,
            "max_search_s": self.max_search_s,
            "min_chunk_s": self.min_chunk_s,
        }


@dataclass
class SamplerConfig:
    """Zone layout for representative sampling."""
    short_threshold_s: float = 150.0
    min_sample_s: float = 5.0
    start_zone_s: float = 120.0
    dense_coverage: float = 0.7
    middle_bounds: tuple = (0.2, 0.8)
    middle_subzones: int = 4
    end_subzones: int = 2
    min_speech_duration_s: float = 0.5
    merge_tolerance_s: float = 0.1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "short_threshold_s": self.short_threshold_s,
            "min_sample_s": self.min_sample_s,
            "start_zone_s": self.start_zone_s,
            "dense_coverage": self.dense_coverage,
            "middle_bounds": list(self.middle_bounds),
            "middle_subzones": self.middle_subzones,
            "end_subzones": self.end_subzones,
            "min_speech_duration_s": self.min_speech_duration_s,
            "merge_tolerance_s": self.merge_tolerance_s,
        }
