#!/usr/bin/env python3
"""
VAD (Voice Activity Detection) module.

Available components:
- AudioSignal, SpeechSpan, Chunk, Sample: Core data structures
- ClassifierConfig / EnergyVADConfig: Neural and fallback detector settings
- SegmentMerger: Coalesces spans separated by short gaps
- VoiceActivityClassifier: Neural detection with energy fallback
- SileroVADProcessor lives in silero_vad and is only imported by the worker
"""

from smart_segment.processing.vad.data_structures import (
    AudioSignal,
    SpeechSpan,
    Chunk,
    Sample,
    SampleArtifact,
    SamplingResult,
    SegmentationResult,
    Provenance,
    ClassifierConfig,
    EnergyMode,
    EnergyVADConfig,
    ChunkSplitterConfig,
    SamplerConfig,
)

from smart_segment.processing.vad.segment_merger import SegmentMerger, merge_spans

from smart_segment.processing.vad.energy_vad import detect_energy_spans

from smart_segment.processing.vad.classifier import (
    VoiceActivityClassifier,
    DetectionOptions,
    NeuralOutcome,
    OutcomeKind,
)


__all__ = [
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
    'EnergyMode',
    'EnergyVADConfig',
    'ChunkSplitterConfig',
    'SamplerConfig',
    # Processors
    'SegmentMerger',
    'merge_spans',
    'detect_energy_spans',
    'VoiceActivityClassifier',
    'DetectionOptions',
    'NeuralOutcome',
    'OutcomeKind',
]
