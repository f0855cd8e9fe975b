from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from ..utils.model_paths import ModelCatalog
from .asr.base import EngineContext
from .contracts import JobOutcome, TranscribeOptionsLayer
from .errors import InvalidRequest, ModelNotFound
from .executor import JobExecutor, TranscriptionJob, remove_temp_files
from .job_registry import InMemoryJobRegistry
from .model_resource import ModelResource
from .options import merge_transcribe_options

logger = logging.getLogger(__name__)


class SubmissionHandler:
    """Validates a transcription request, registers the job and hands it off."""

    def __init__(
        self,
        *,
        catalog: ModelCatalog,
        registry: InMemoryJobRegistry,
        executor: JobExecutor,
        model_resource: ModelResource,
        server_defaults: Optional[TranscribeOptionsLayer] = None,
    ):
        self._catalog = catalog
        self._registry = registry
        self._executor = executor
        self._model_resource = model_resource
        self._server_defaults = server_defaults

    def resolve_model(self, model_name: Optional[str]) -> tuple[str, Path]:
        try:
            return self._catalog.resolve(model_name)
        except KeyError as exc:
            raise ModelNotFound(f"Unknown model: {exc.args[0]}") from exc
        except FileNotFoundError as exc:
            raise ModelNotFound(f"Model file not found on disk: {exc.args[0]}") from exc

    def submit(
        self,
        audio_path: Optional[str],
        *,
        model_name: Optional[str] = None,
        task_options: Optional[TranscribeOptionsLayer] = None,
        module_options: Optional[TranscribeOptionsLayer] = None,
        cleanup_paths: Sequence[str] = (),
    ) -> str:
        try:
            resolved_name, model_path = self.resolve_model(model_name)
            if not audio_path:
                raise InvalidRequest("Missing audio file.")
            absolute_audio = Path(audio_path).expanduser().resolve()
            if not absolute_audio.is_file():
                raise InvalidRequest(f"Audio file not found: {absolute_audio}")
            options = merge_transcribe_options(
                self._server_defaults,
                module_options,
                task_options,
                audio_path=str(absolute_audio),
            )
        except Exception:
            remove_temp_files(cleanup_paths)
            raise

        job_id = self._registry.create(model_name=resolved_name)
        logger.info("job_id=%s submitted model=%s audio=%s", job_id, resolved_name, absolute_audio.name)
        job = TranscriptionJob(
            job_id=job_id,
            model_name=resolved_name,
            model_path=str(model_path),
            options=options,
            cleanup_paths=tuple(str(p) for p in cleanup_paths),
        )
        try:
            self._executor.dispatch(job)
        except Exception as exc:
            # The record already exists; it must still reach a terminal state.
            logger.exception("job_id=%s could not be dispatched", job_id)
            remove_temp_files(job.cleanup_paths)
            self._registry.write_terminal(
                job_id,
                JobOutcome.failed(f"Could not start transcription worker: {exc}", "engine_failure"),
            )
        return job_id

    def load_model(self, model_name: Optional[str]) -> tuple[str, str]:
        """Eagerly load a catalog model into the slot; blocks behind running jobs."""

        resolved_name, model_path = self.resolve_model(model_name)
        with self._model_resource.acquire_exclusive() as slot:
            context: EngineContext = slot.ensure_loaded(str(model_path))
            loaded_path = context.model_path
        return resolved_name, loaded_path
