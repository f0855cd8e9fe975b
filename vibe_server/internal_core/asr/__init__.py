from __future__ import annotations

from .base import EngineContext, EngineError, EngineSegment, ProgressCallback, TranscriptionEngine
from .mock import MockEngine
from .whisper_cpp import WhisperCppEngine, whisper_cpp_available

__all__ = [
    "EngineContext",
    "EngineError",
    "EngineSegment",
    "MockEngine",
    "ProgressCallback",
    "TranscriptionEngine",
    "WhisperCppEngine",
    "whisper_cpp_available",
]
