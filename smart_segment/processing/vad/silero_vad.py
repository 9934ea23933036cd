#!/usr/bin/env python3
"""
Silero VAD wrapper run inside the classifier worker process.

This module provides the neural speech detector behind the execution host.
It is only imported in the worker so that torch and the model never load in
the caller's process.
"""

from typing import Iterator, Optional, Any, Callable, List, Tuple
import numpy as np
import torch

from smart_segment.processing.vad.data_structures import ClassifierConfig
from smart_segment.lib.logging_config import log_progress, log_debug, log_completion, get_logger


class SileroVADProcessor:
    """
    Wrapper for Silero VAD configured from a ClassifierConfig.

    Frame-count parameters are converted to the millisecond arguments of
    ``get_speech_timestamps`` using the model frame size at 16kHz.
    """

    # Standard sample rate for Silero VAD
    SAMPLE_RATE = 16000

    def __init__(self, config: Optional[ClassifierConfig] = None):
        self.logger = get_logger()
        self.config = config or ClassifierConfig()

        # Model state (lazy loaded)
        self._model: Optional[Any] = None
        self._get_speech_timestamps: Optional[Callable[..., Any]] = None

    @property
    def frame_ms(self) -> float:
        return self.config.frame_samples * 1000.0 / self.SAMPLE_RATE

    def load_model(self) -> None:
        """Load the Silero VAD model (once)."""
        if self._model is not None:
            return

        log_progress("Loading Silero VAD model...")

        try:
            from silero_vad import load_silero_vad, get_speech_timestamps

            if self.config.model_path:
                self._model = torch.jit.load(self.config.model_path, map_location="cpu")
                self._model.eval()
            else:
                self._model = load_silero_vad()
            self._get_speech_timestamps = get_speech_timestamps

            log_completion("Silero VAD model loaded successfully (via silero-vad package)")

        except ImportError:
            # Fallback to torch.hub
            log_debug("silero-vad package not available, falling back to torch.hub")
            self._model, utils = torch.hub.load(
                repo_or_dir='snakers4/silero-vad',
                model='silero_vad',
                force_reload=False,
                trust_repo=True
            )
            (self._get_speech_timestamps, _, _, _, _) = utils  # type: ignore
            log_completion("Silero VAD model loaded successfully (via torch.hub)")

    def _prepare(self, samples: np.ndarray, sample_rate: int) -> torch.Tensor:
        audio = np.asarray(samples, dtype=np.float32)
        if sample_rate != self.SAMPLE_RATE:
            import librosa
            audio = librosa.resample(audio, orig_sr=sample_rate, target_sr=self.SAMPLE_RATE)
        return torch.from_numpy(np.ascontiguousarray(audio, dtype=np.float32))

    def get_speech_timestamps(self, wav: torch.Tensor) -> List[dict]:
        """
        Get raw speech timestamps from Silero VAD.

        Args:
            wav: Audio tensor (16kHz mono)

        Returns:
            List of dicts with 'start' and 'end' keys (in samples)
        """
        self.load_model()

        if self._get_speech_timestamps is None:
            raise RuntimeError("VAD model not properly loaded")

        config = self.config
        return self._get_speech_timestamps(
            wav,
            self._model,
            threshold=config.positive_threshold,
            neg_threshold=config.negative_threshold,
            min_speech_duration_ms=int(config.min_speech_frames * self.frame_ms),
            min_silence_duration_ms=int(config.redemption_frames * self.frame_ms),
            speech_pad_ms=int(config.pre_speech_pad_frames * self.frame_ms),
            return_seconds=False,  # Return samples for precision
            sampling_rate=self.SAMPLE_RATE,
        )

    def detect(self, samples: np.ndarray, sample_rate: int) -> Iterator[Tuple[float, float]]:
        """
        Detect speech in mono samples.

        Args:
            samples: Mono float samples in [-1, 1]
            sample_rate: Sample rate of ``samples``

        Yields:
            (start_s, end_s) pairs in ascending order
        """
        wav = self._prepare(samples, sample_rate)
        for ts in self.get_speech_timestamps(wav):
            yield ts['start'] / self.SAMPLE_RATE, ts['end'] / self.SAMPLE_RATE


def load_silero_classifier(config: ClassifierConfig) -> SileroVADProcessor:
    """Default classifier factory used by the worker on ``init``."""
    processor = SileroVADProcessor(config)
    processor.load_model()
    return processor
