from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..asr.models import TranscriptResult
from .errors import ErrorKind

JobStatus = Literal["processing", "completed", "failed"]

MAX_THREADS = 256
MAX_TEXT_LEN = 1_000_000
MAX_VAD_DURATION_MS = 60_000


class TranscribeOptionsLayer(BaseModel):
    """One configuration layer. Every field is optional; unset means "inherit"."""

    model_config = ConfigDict(extra="forbid")

    path: Optional[str] = None
    lang: Optional[str] = Field(default=None, max_length=16)
    verbose: Optional[bool] = None
    n_threads: Optional[int] = Field(default=None, ge=1, le=MAX_THREADS)
    init_prompt: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    translate: Optional[bool] = None
    max_text_ctx: Optional[int] = Field(default=None, ge=0, le=MAX_TEXT_LEN)
    word_timestamps: Optional[bool] = None
    max_sentence_len: Optional[int] = Field(default=None, ge=0, le=MAX_TEXT_LEN)

    diarize: Optional[bool] = None
    diarize_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_speakers: Optional[int] = Field(default=None, ge=1, le=64)

    vad: Optional[bool] = None
    vad_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    vad_min_speech_duration_ms: Optional[int] = Field(default=None, ge=0, le=MAX_VAD_DURATION_MS)
    vad_min_silence_duration_ms: Optional[int] = Field(default=None, ge=0, le=MAX_VAD_DURATION_MS)
    vad_speech_pad_ms: Optional[int] = Field(default=None, ge=0, le=MAX_VAD_DURATION_MS)


class DiarizeSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    threshold: float
    max_speakers: int


class VadSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    threshold: float
    min_speech_duration_ms: int
    min_silence_duration_ms: int
    speech_pad_ms: int


class ResolvedTranscribeOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str
    lang: Optional[str] = None
    verbose: bool = False
    n_threads: Optional[int] = None
    init_prompt: Optional[str] = None
    temperature: Optional[float] = None
    translate: bool = False
    max_text_ctx: Optional[int] = None
    word_timestamps: bool = False
    max_sentence_len: Optional[int] = None
    diarize: Optional[DiarizeSettings] = None
    vad: Optional[VadSettings] = None


class DiarizeParams(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    segment_model_path: str
    embedding_model_path: str
    threshold: float
    max_speakers: int


class JobOutcome(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    status: Literal["completed", "failed"]
    result: Optional[TranscriptResult] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def completed(cls, result: TranscriptResult) -> "JobOutcome":
        return cls(status="completed", result=result)

    @classmethod
    def failed(cls, message: str, kind: ErrorKind = "engine_failure") -> "JobOutcome":
        return cls(status="failed", error=message, error_kind=kind)


class JobRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    job_id: str
    status: JobStatus
    model_name: str = ""
    result: Optional[TranscriptResult] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    created_at: float
    updated_at: float
    finished_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "processing"
