#!/usr/bin/env python3
"""
Worker process hosting for the neural VAD classifier.
"""

from smart_segment.framework.execution_host import ClassifierSession, SessionState

__all__ = [
    'ClassifierSession',
    'SessionState',
]
