#!/usr/bin/env python3
# lib/settings.py - Environment-driven defaults for the segmentation engine

from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from dotenv import load_dotenv

from smart_segment.lib.logging_config import configure_global_logging
from smart_segment.processing.vad.data_structures import ClassifierConfig


ENV_PREFIX = "SMART_SEGMENT_"


@dataclass
class SegmentationSettings:
    """Caller-level defaults resolved from the environment."""
    vad_model_path: Optional[str] = None
    log_level: str = "WARNING"
    start_method: Optional[str] = "spawn"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "SegmentationSettings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read instead of ``os.environ``
            dotenv: Load a ``.env`` file into ``os.environ`` first
        """
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        return cls(
            vad_model_path=env.get(ENV_PREFIX + "VAD_MODEL") or None,
            log_level=(env.get(ENV_PREFIX + "LOG_LEVEL") or "WARNING").upper(),
            start_method=env.get(ENV_PREFIX + "START_METHOD") or "spawn",
        )

    def classifier_config(self) -> ClassifierConfig:
        return ClassifierConfig(model_path=self.vad_model_path)

    def apply_logging(self) -> None:
        configure_global_logging(self.log_level)
