#!/usr/bin/env python3
"""
Voice activity detection with a neural primary path and an energy fallback.

The neural attempt returns an explicit NeuralOutcome; ``detect_speech``
matches on its kind, raising on cancellation and falling back to the energy
detector for every other failure.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from smart_segment.framework.execution_host import ClassifierSession, ProgressCallback
from smart_segment.lib.cancellation import CancellationToken, raise_if_cancelled
from smart_segment.lib.logging_config import (
    CancellationError,
    ClassifierError,
    ClassifierInitError,
    SessionBusyError,
    get_logger,
    log_exception,
    log_progress,
    log_completion,
)
from smart_segment.processing.vad.data_structures import (
    AudioSignal,
    EnergyVADConfig,
    Provenance,
    SpeechSpan,
)
from smart_segment.processing.vad.energy_vad import detect_energy_spans


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    UNAVAILABLE = "unavailable"        # No session configured
    INIT_FAILED = "init_failed"
    PROCESS_FAILED = "process_failed"
    CANCELLED = "cancelled"


@dataclass
class NeuralOutcome:
    """Result of one attempt on the neural path."""
    kind: OutcomeKind
    spans: List[SpeechSpan] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


@dataclass
class DetectionOptions:
    """Per-call detection parameters."""
    min_speech_duration: float = 0.5
    energy: EnergyVADConfig = field(default_factory=EnergyVADConfig.for_splitting)
    token: Optional[CancellationToken] = None
    on_progress: Optional[ProgressCallback] = None


class VoiceActivityClassifier:
    """
    Detects speech spans in an AudioSignal.

    Args:
        session: Caller-owned neural classifier session; None runs the
            energy detector only
    """

    def __init__(self, session: Optional[ClassifierSession] = None):
        self.session = session
        self.logger = get_logger()

    async def classify(self, signal: AudioSignal, options: DetectionOptions) -> NeuralOutcome:
        """Attempt the neural path and report how it went."""
        if self.session is None:
            return NeuralOutcome(OutcomeKind.UNAVAILABLE)

        try:
            pairs = await self.session.process(
                signal.mono(),
                signal.sample_rate,
                token=options.token,
                on_progress=options.on_progress,
            )
        except CancellationError as e:
            return NeuralOutcome(OutcomeKind.CANCELLED, error=e)
        except ClassifierInitError as e:
            return NeuralOutcome(OutcomeKind.INIT_FAILED, error=e)
        except ClassifierError as e:
            return NeuralOutcome(OutcomeKind.PROCESS_FAILED, error=e)
        except SessionBusyError:
            raise
        except Exception as e:
            return NeuralOutcome(OutcomeKind.PROCESS_FAILED, error=e)

        spans = [
            SpeechSpan(start, end, 1.0, Provenance.NEURAL)
            for start, end in pairs
            if end > start and end - start >= options.min_speech_duration
        ]
        spans.sort(key=lambda s: s.start)
        return NeuralOutcome(OutcomeKind.SUCCESS, spans)

    async def detect_speech(
        self,
        signal: AudioSignal,
        options: Optional[DetectionOptions] = None,
    ) -> List[SpeechSpan]:
        """
        Detect speech spans, falling back to energy detection on neural failure.

        Raises:
            CancellationError: the token was triggered; never masked by the fallback
        """
        options = options or DetectionOptions()
        raise_if_cancelled(options.token)

        log_progress(
            f"Detecting speech in {signal.duration:.1f}s of audio "
            f"({signal.channels} channel(s), {signal.sample_rate}Hz)"
        )

        outcome = await self.classify(signal, options)

        if outcome.kind is OutcomeKind.SUCCESS:
            log_completion(f"Silero VAD detected {len(outcome.spans)} speech segments")
            return outcome.spans

        if outcome.kind is OutcomeKind.CANCELLED:
            raise outcome.error

        if outcome.error is not None:
            log_exception(
                self.logger,
                outcome.error,
                context={"fallback": "energy", "outcome": outcome.kind.value},
                level=logging.WARNING,
            )
            self.logger.warning("Falling back to energy-based segmentation due to VAD error")

        raise_if_cancelled(options.token)
        spans = detect_energy_spans(
            signal.mono(),
            signal.sample_rate,
            options.energy,
            min_duration_s=options.min_speech_duration,
        )
        log_completion(
            f"Energy VAD ({options.energy.mode.value}, {options.energy.window_s * 1000:.0f}ms windows) "
            f"detected {len(spans)} speech segments"
        )
        return spans
