from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..utils.model_paths import ModelCatalog
from .asr import MockEngine, TranscriptionEngine, WhisperCppEngine
from .config import ServerConfig, load_config
from .executor import JobExecutor
from .job_registry import InMemoryJobRegistry
from .model_resource import ModelResource
from .submission import SubmissionHandler


@dataclass(frozen=True)
class ServiceContext:
    config: ServerConfig
    catalog: ModelCatalog
    registry: InMemoryJobRegistry
    model_resource: ModelResource
    executor: JobExecutor
    submissions: SubmissionHandler


def build_engine(config: ServerConfig) -> TranscriptionEngine:
    if config.VIBE_ENGINE == "mock":
        return MockEngine()
    if config.VIBE_ENGINE == "whisper_cpp":
        return WhisperCppEngine(
            config.VIBE_WHISPER_CPP_BIN,
            no_gpu=config.VIBE_WHISPER_CPP_NO_GPU,
            vad_model_path=config.vad_model_path(),
            timeout_sec=config.VIBE_WHISPER_CPP_TIMEOUT_SEC,
        )
    raise ValueError(f"Unsupported VIBE_ENGINE: {config.VIBE_ENGINE}")


def build_context(
    config: Optional[ServerConfig] = None,
    *,
    engine: Optional[TranscriptionEngine] = None,
) -> ServiceContext:
    config = config or load_config()
    catalog = config.catalog()
    registry = InMemoryJobRegistry(ttl_seconds=config.VIBE_JOB_TTL_SECONDS)
    model_resource = ModelResource(engine or build_engine(config))
    executor = JobExecutor(
        registry,
        model_resource,
        catalog,
        diarize_segment_model=config.VIBE_DIARIZE_SEGMENT_MODEL,
        diarize_embedding_model=config.VIBE_DIARIZE_EMBEDDING_MODEL,
        progress_buffer=config.VIBE_PROGRESS_BUFFER,
    )
    submissions = SubmissionHandler(
        catalog=catalog,
        registry=registry,
        executor=executor,
        model_resource=model_resource,
        server_defaults=config.server_defaults(),
    )
    return ServiceContext(
        config=config,
        catalog=catalog,
        registry=registry,
        model_resource=model_resource,
        executor=executor,
        submissions=submissions,
    )
