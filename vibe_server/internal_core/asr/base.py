from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..contracts import DiarizeParams, ResolvedTranscribeOptions

ProgressCallback = Callable[[int], None]


class EngineError(RuntimeError):
    def __init__(self, code: str, message: str, engine_name: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.engine_name = engine_name


@dataclass(frozen=True)
class EngineSegment:
    start: float
    end: float
    text: str
    speaker: Optional[str] = None


class EngineContext(ABC):
    """A loaded model. Not safe for concurrent use."""

    @property
    @abstractmethod
    def model_path(self) -> str: ...

    @abstractmethod
    def transcribe(
        self,
        options: ResolvedTranscribeOptions,
        *,
        progress: Optional[ProgressCallback] = None,
        diarize: Optional[DiarizeParams] = None,
    ) -> List[EngineSegment]: ...

    def close(self) -> None:
        return None


class TranscriptionEngine(ABC):
    @abstractmethod
    def create_context(self, model_path: str) -> EngineContext: ...

    @abstractmethod
    def name(self) -> str: ...
