from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..utils.model_paths import DEFAULT_MODEL_FILES, ModelCatalog, default_model_dir, parse_model_mapping
from .contracts import TranscribeOptionsLayer


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_opt_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_opt_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return int(value)


def _getenv_opt_bool(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _default_whisper_bin(model_dir: Path) -> str:
    candidates = [
        model_dir.parent / "whisper.cpp" / "build" / "bin" / "whisper-cli",
        Path.home() / "whisper.cpp" / "build" / "bin" / "whisper-cli",
        Path("/usr/local/bin/whisper-cli"),
    ]
    for candidate in candidates:
        if candidate.exists():
            return str(candidate.resolve())
    # Keep deterministic fallback even when file is absent.
    return str(candidates[0])


@dataclass(frozen=True)
class ServerConfig:
    VIBE_HOST: str
    VIBE_PORT: int
    VIBE_LOG_LEVEL: str
    VIBE_ENGINE: str
    VIBE_WHISPER_CPP_BIN: str
    VIBE_WHISPER_CPP_NO_GPU: bool
    VIBE_WHISPER_CPP_TIMEOUT_SEC: float
    VIBE_MODEL_DIR: str
    VIBE_MODELS: dict[str, str]
    VIBE_DEFAULT_MODEL: str
    VIBE_DIARIZE_SEGMENT_MODEL: str
    VIBE_DIARIZE_EMBEDDING_MODEL: str
    VIBE_VAD_MODEL: str
    VIBE_UPLOAD_DIR: str
    VIBE_MAX_UPLOAD_BYTES: int
    VIBE_JOB_TTL_SECONDS: int
    VIBE_PROGRESS_BUFFER: int
    VIBE_DEFAULT_LANG: Optional[str]
    VIBE_DEFAULT_N_THREADS: Optional[int]
    VIBE_DEFAULT_TEMPERATURE: Optional[float]
    VIBE_DEFAULT_TRANSLATE: Optional[bool]
    VIBE_DEFAULT_WORD_TIMESTAMPS: Optional[bool]
    VIBE_DEFAULT_MAX_TEXT_CTX: Optional[int]
    VIBE_DEFAULT_MAX_SENTENCE_LEN: Optional[int]
    VIBE_DEFAULT_INIT_PROMPT: Optional[str]

    def model_dir_path(self) -> Path:
        return Path(self.VIBE_MODEL_DIR).expanduser().resolve()

    def upload_dir_path(self) -> Path:
        return Path(self.VIBE_UPLOAD_DIR).expanduser().resolve()

    def catalog(self) -> ModelCatalog:
        return ModelCatalog(
            model_dir=self.model_dir_path(),
            default_name=self.VIBE_DEFAULT_MODEL,
            files=dict(self.VIBE_MODELS),
        )

    def vad_model_path(self) -> str:
        if not self.VIBE_VAD_MODEL:
            return ""
        return str(self.catalog().auxiliary_path(self.VIBE_VAD_MODEL))

    def server_defaults(self) -> TranscribeOptionsLayer:
        values = {
            "lang": self.VIBE_DEFAULT_LANG,
            "n_threads": self.VIBE_DEFAULT_N_THREADS,
            "temperature": self.VIBE_DEFAULT_TEMPERATURE,
            "translate": self.VIBE_DEFAULT_TRANSLATE,
            "word_timestamps": self.VIBE_DEFAULT_WORD_TIMESTAMPS,
            "max_text_ctx": self.VIBE_DEFAULT_MAX_TEXT_CTX,
            "max_sentence_len": self.VIBE_DEFAULT_MAX_SENTENCE_LEN,
            "init_prompt": self.VIBE_DEFAULT_INIT_PROMPT,
        }
        return TranscribeOptionsLayer(**{k: v for k, v in values.items() if v is not None})


def load_config() -> ServerConfig:
    model_dir = default_model_dir()
    models = parse_model_mapping(_getenv_str("VIBE_MODELS", "")) or dict(DEFAULT_MODEL_FILES)

    return ServerConfig(
        VIBE_HOST=_getenv_str("VIBE_HOST", "127.0.0.1"),
        VIBE_PORT=_getenv_int("VIBE_PORT", 3022),
        VIBE_LOG_LEVEL=_getenv_str("VIBE_LOG_LEVEL", "INFO"),
        VIBE_ENGINE=_getenv_str("VIBE_ENGINE", "whisper_cpp"),
        VIBE_WHISPER_CPP_BIN=_getenv_str("VIBE_WHISPER_CPP_BIN", _default_whisper_bin(model_dir)),
        VIBE_WHISPER_CPP_NO_GPU=_getenv_bool("VIBE_WHISPER_CPP_NO_GPU", False),
        VIBE_WHISPER_CPP_TIMEOUT_SEC=_getenv_float("VIBE_WHISPER_CPP_TIMEOUT_SEC", 3600.0),
        VIBE_MODEL_DIR=str(model_dir),
        VIBE_MODELS=models,
        VIBE_DEFAULT_MODEL=_getenv_str("VIBE_DEFAULT_MODEL", "base"),
        VIBE_DIARIZE_SEGMENT_MODEL=_getenv_str("VIBE_DIARIZE_SEGMENT_MODEL", "segmentation-3.0.onnx"),
        VIBE_DIARIZE_EMBEDDING_MODEL=_getenv_str(
            "VIBE_DIARIZE_EMBEDDING_MODEL", "wespeaker_en_voxceleb_CAM++.onnx"
        ),
        VIBE_VAD_MODEL=_getenv_str("VIBE_VAD_MODEL", "ggml-silero-v5.1.2.bin"),
        VIBE_UPLOAD_DIR=_getenv_str("VIBE_UPLOAD_DIR", "/tmp/vibe_uploads"),
        VIBE_MAX_UPLOAD_BYTES=_getenv_int("VIBE_MAX_UPLOAD_BYTES", 500 * 1024 * 1024),
        VIBE_JOB_TTL_SECONDS=_getenv_int("VIBE_JOB_TTL_SECONDS", 86400),
        VIBE_PROGRESS_BUFFER=_getenv_int("VIBE_PROGRESS_BUFFER", 16),
        VIBE_DEFAULT_LANG=_getenv_opt_str("VIBE_DEFAULT_LANG") or "en",
        VIBE_DEFAULT_N_THREADS=_getenv_opt_int("VIBE_DEFAULT_N_THREADS") or 4,
        VIBE_DEFAULT_TEMPERATURE=_getenv_float("VIBE_DEFAULT_TEMPERATURE", 0.4),
        VIBE_DEFAULT_TRANSLATE=_getenv_opt_bool("VIBE_DEFAULT_TRANSLATE"),
        VIBE_DEFAULT_WORD_TIMESTAMPS=_getenv_opt_bool("VIBE_DEFAULT_WORD_TIMESTAMPS"),
        VIBE_DEFAULT_MAX_TEXT_CTX=_getenv_opt_int("VIBE_DEFAULT_MAX_TEXT_CTX"),
        VIBE_DEFAULT_MAX_SENTENCE_LEN=_getenv_opt_int("VIBE_DEFAULT_MAX_SENTENCE_LEN"),
        VIBE_DEFAULT_INIT_PROMPT=_getenv_opt_str("VIBE_DEFAULT_INIT_PROMPT"),
    )
