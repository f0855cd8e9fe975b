from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Iterable, List, Optional

from ..contracts import DiarizeParams, ResolvedTranscribeOptions
from .base import EngineContext, EngineError, EngineSegment, ProgressCallback, TranscriptionEngine

_DEFAULT_SEGMENTS = (
    EngineSegment(start=0.0, end=2.5, text="(mock) simulated transcript"),
    EngineSegment(start=2.5, end=4.0, text="for the uploaded audio."),
)


class MockContext(EngineContext):
    def __init__(self, engine: "MockEngine", model_path: str):
        self._engine = engine
        self._model_path = model_path
        self.closed = False

    @property
    def model_path(self) -> str:
        return self._model_path

    def transcribe(
        self,
        options: ResolvedTranscribeOptions,
        *,
        progress: Optional[ProgressCallback] = None,
        diarize: Optional[DiarizeParams] = None,
    ) -> List[EngineSegment]:
        if self.closed:
            raise EngineError("CONTEXT_CLOSED", "mock context was already closed", self._engine.name())
        return self._engine._run(self, options, progress=progress, diarize=diarize)

    def close(self) -> None:
        self.closed = True


class MockEngine(TranscriptionEngine):
    def __init__(
        self,
        segments: Optional[Iterable[EngineSegment]] = None,
        *,
        transcribe_delay_sec: float = 0.0,
        load_delay_sec: float = 0.0,
        fail_load_paths: Iterable[str] = (),
        fail_transcribe: Optional[str] = None,
    ) -> None:
        self._segments = list(segments) if segments is not None else list(_DEFAULT_SEGMENTS)
        self._transcribe_delay_sec = transcribe_delay_sec
        self._load_delay_sec = load_delay_sec
        self._fail_load_paths = {str(p) for p in fail_load_paths}
        self.fail_transcribe = fail_transcribe
        self._stats_lock = threading.Lock()
        self._active_loads = 0
        self._active_transcribes = 0
        self.load_calls: List[str] = []
        self.transcribe_calls: List[ResolvedTranscribeOptions] = []
        self.max_concurrent_loads = 0
        self.max_concurrent_transcribes = 0

    def name(self) -> str:
        return "mock"

    def create_context(self, model_path: str) -> EngineContext:
        with self._stats_lock:
            self._active_loads += 1
            self.max_concurrent_loads = max(self.max_concurrent_loads, self._active_loads)
            self.load_calls.append(model_path)
        try:
            if self._load_delay_sec:
                time.sleep(self._load_delay_sec)
            if model_path in self._fail_load_paths:
                raise EngineError("MODEL_LOAD_FAILED", f"mock refused to load {model_path}", self.name())
            if not Path(model_path).exists():
                raise EngineError("MODEL_MISSING", f"model not found: {model_path}", self.name())
            return MockContext(self, model_path)
        finally:
            with self._stats_lock:
                self._active_loads -= 1

    def _run(
        self,
        context: MockContext,
        options: ResolvedTranscribeOptions,
        *,
        progress: Optional[ProgressCallback],
        diarize: Optional[DiarizeParams],
    ) -> List[EngineSegment]:
        with self._stats_lock:
            self._active_transcribes += 1
            self.max_concurrent_transcribes = max(
                self.max_concurrent_transcribes, self._active_transcribes
            )
            self.transcribe_calls.append(options)
        try:
            if progress is not None:
                progress(0)
            if self._transcribe_delay_sec:
                time.sleep(self._transcribe_delay_sec)
            if self.fail_transcribe:
                raise EngineError("TRANSCRIBE_FAILED", self.fail_transcribe, self.name())
            out: List[EngineSegment] = []
            for index, segment in enumerate(self._segments):
                speaker = None
                if diarize is not None:
                    speaker = f"SPEAKER_{index % diarize.max_speakers:02d}"
                out.append(
                    EngineSegment(
                        start=segment.start,
                        end=segment.end,
                        text=segment.text,
                        speaker=speaker or segment.speaker,
                    )
                )
            if progress is not None:
                progress(100)
            return out
        finally:
            with self._stats_lock:
                self._active_transcribes -= 1
