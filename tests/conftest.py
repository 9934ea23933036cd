import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from smart_segment.processing.vad.data_structures import AudioSignal  # noqa: E402


def tone(duration_s: float, sample_rate: int, amplitude: float = 0.5, freq: float = 220.0) -> np.ndarray:
    t = np.arange(int(round(duration_s * sample_rate))) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def silence(duration_s: float, sample_rate: int) -> np.ndarray:
    return np.zeros(int(round(duration_s * sample_rate)), dtype=np.float32)


def build_signal(parts, sample_rate: int) -> AudioSignal:
    """parts: sequence of ("tone" | "silence", seconds)."""
    pieces = [tone(d, sample_rate) if kind == "tone" else silence(d, sample_rate) for kind, d in parts]
    return AudioSignal(np.concatenate(pieces), sample_rate)


@pytest.fixture
def speech_signal():
    """1s silence, 2s tone, 1.5s silence, 1s tone, 1.5s silence at 16kHz."""
    return build_signal(
        [("silence", 1.0), ("tone", 2.0), ("silence", 1.5), ("tone", 1.0), ("silence", 1.5)],
        16000,
    )
