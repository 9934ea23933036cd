#!/usr/bin/env python3
"""
smart_segment: speech-aware chunking and representative sampling of long audio.

Available components:
- VoiceActivityClassifier: Silero VAD via a worker process, energy fallback
- ClassifierSession: Caller-owned handle to the classifier worker
- ChunkSplitter / segment_audio: Near-target chunks cut inside silence
- RepresentativeSampler: Timeline-spread speech excerpt for speaker profiling
- merge_spans: Coalesce speech spans separated by short gaps
"""

from smart_segment.lib.cancellation import CancellationToken
from smart_segment.lib.logging_config import (
    SegmentationError,
    CancellationError,
    ClassifierError,
    ClassifierInitError,
    ClassifierProcessError,
    SessionBusyError,
    InvalidInputError,
    AudioProcessingError,
    configure_global_logging,
)
from smart_segment.processing.vad import (
    AudioSignal,
    SpeechSpan,
    Chunk,
    Sample,
    SampleArtifact,
    SamplingResult,
    SegmentationResult,
    Provenance,
    ClassifierConfig,
    EnergyVADConfig,
    ChunkSplitterConfig,
    SamplerConfig,
    SegmentMerger,
    merge_spans,
    VoiceActivityClassifier,
    DetectionOptions,
    NeuralOutcome,
    OutcomeKind,
)
from smart_segment.framework import ClassifierSession, SessionState
from smart_segment.processing.chunk_splitter import ChunkSplitter, segment_audio
from smart_segment.processing.representative_sampler import (
    RepresentativeSampler,
    intelligent_audio_sampling,
)


__all__ = [
    'CancellationToken',
    # Errors
    'SegmentationError',
    'CancellationError',
    'ClassifierError',
    'ClassifierInitError',
    'ClassifierProcessError',
    'SessionBusyError',
    'InvalidInputError',
    'AudioProcessingError',
    'configure_global_logging',
    # Data structures
    'AudioSignal',
    'SpeechSpan',
    'Chunk',
    'Sample',
    'SampleArtifact',
    'SamplingResult',
    'SegmentationResult',
    'Provenance',
    'ClassifierConfig',
    'EnergyVADConfig',
    'ChunkSplitterConfig',
    'SamplerConfig',
    # Processors
    'SegmentMerger',
    'merge_spans',
    'VoiceActivityClassifier',
    'DetectionOptions',
    'NeuralOutcome',
    'OutcomeKind',
    'ClassifierSession',
    'SessionState',
    'ChunkSplitter',
    'segment_audio',
    'RepresentativeSampler',
    'intelligent_audio_sampling',
]
