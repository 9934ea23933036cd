#!/usr/bin/env python3
"""
Audio file decoding and in-memory WAV encoding.

Decoding helpers for collaborators that start from files; the engine itself
only ever sees in-memory AudioSignal objects.
"""

from __future__ import annotations
import io
import pathlib
from typing import Optional
import numpy as np
import soundfile as sf

from smart_segment.lib.logging_config import get_logger, AudioProcessingError, InvalidInputError
from smart_segment.processing.vad.data_structures import AudioSignal


def load_signal(path: str | pathlib.Path, target_sr: Optional[int] = None) -> AudioSignal:
    """
    Decode an audio file into an AudioSignal.

    Parameters
    ----------
    path : str | pathlib.Path
        Audio file readable by soundfile (librosa is used for other formats)
    target_sr : Optional[int]
        Resample to this rate; channels are kept unless resampling

    Returns
    -------
    AudioSignal
        Float32 samples shaped (n,) or (n, channels)

    Raises
    ------
    AudioProcessingError
        If the file is missing or cannot be decoded
    """
    logger = get_logger()
    src = pathlib.Path(path)

    if not src.exists():
        raise AudioProcessingError(f"Source audio file not found: {src}", audio_path=str(src))
    if not src.is_file():
        raise AudioProcessingError(f"Source path is not a file: {src}", audio_path=str(src))

    try:
        data, sr = sf.read(str(src), dtype="float32", always_2d=False)
    except Exception as e:
        logger.info(f"soundfile could not read {src} ({e}); falling back to librosa")
        import librosa
        try:
            data, sr = librosa.load(str(src), sr=target_sr, mono=True)
        except Exception as inner:
            raise AudioProcessingError(f"Could not decode audio: {inner}", audio_path=str(src), cause=inner)
        return _to_signal(data, sr, src)

    if target_sr is not None and sr != target_sr:
        import librosa
        mono = data if data.ndim == 1 else data[:, 0]
        data = librosa.resample(mono, orig_sr=sr, target_sr=target_sr)
        sr = target_sr

    return _to_signal(data, sr, src)


def _to_signal(data: np.ndarray, sample_rate: int, src: pathlib.Path) -> AudioSignal:
    try:
        return AudioSignal(np.asarray(data, dtype=np.float32), int(sample_rate))
    except InvalidInputError as e:
        raise AudioProcessingError(f"Decoded audio is unusable: {e}", audio_path=str(src), cause=e)


def encode_wav(samples: np.ndarray, sample_rate: int, subtype: str = "PCM_16") -> bytes:
    """Encode mono samples as an in-memory WAV file."""
    buffer = io.BytesIO()
    try:
        sf.write(buffer, np.asarray(samples, dtype=np.float32), sample_rate, format="WAV", subtype=subtype)
    except Exception as e:
        raise AudioProcessingError(f"WAV encoding failed: {e}", cause=e)
    return buffer.getvalue()


def decode_wav(payload: bytes) -> AudioSignal:
    """Decode WAV bytes produced by ``encode_wav``."""
    try:
        data, sr = sf.read(io.BytesIO(payload), dtype="float32", always_2d=False)
    except Exception as e:
        raise AudioProcessingError(f"WAV decoding failed: {e}", cause=e)
    return AudioSignal(data, int(sr))
