from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..asr.models import Segment, TranscriptResult, join_segment_text
from ..utils.model_paths import ModelCatalog
from .asr.base import EngineError, EngineSegment
from .contracts import DiarizeParams, JobOutcome, ResolvedTranscribeOptions
from .errors import EngineFailure, ModelNotFound, TranscriptionError
from .job_registry import InMemoryJobRegistry
from .model_resource import ModelResource

logger = logging.getLogger(__name__)


def remove_temp_files(paths: Sequence[str]) -> None:
    for raw in paths:
        try:
            Path(raw).unlink(missing_ok=True)
        except OSError:
            logger.warning("could not remove temp file %s", raw)


@dataclass(frozen=True)
class TranscriptionJob:
    job_id: str
    model_name: str
    model_path: str
    options: ResolvedTranscribeOptions
    cleanup_paths: tuple[str, ...] = ()


class ProgressChannel:
    """Bounded, non-blocking progress feed. Full or closed -> the update is dropped."""

    def __init__(self, maxsize: int = 16):
        self._queue: "queue.Queue[int]" = queue.Queue(maxsize=max(1, maxsize))
        self._closed = False
        self._latest: Optional[int] = None
        self._drain_lock = threading.Lock()
        self.dropped = 0

    def report(self, percent: int) -> None:
        if self._closed:
            self.dropped += 1
            return
        try:
            self._queue.put_nowait(int(percent))
        except queue.Full:
            self.dropped += 1

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def latest(self) -> Optional[int]:
        with self._drain_lock:
            while True:
                try:
                    self._latest = self._queue.get_nowait()
                except queue.Empty:
                    break
            return self._latest


def build_transcript(raw_segments: Sequence[EngineSegment]) -> TranscriptResult:
    try:
        segments = [
            Segment(start=item.start, end=item.end, text=item.text.strip(), speaker=item.speaker)
            for item in raw_segments
        ]
        return TranscriptResult(text=join_segment_text(segments), segments=segments)
    except ValidationError as exc:
        raise EngineFailure(f"Invalid engine output: {exc.errors()[0].get('msg', exc)}") from exc


class JobExecutor:
    def __init__(
        self,
        registry: InMemoryJobRegistry,
        model_resource: ModelResource,
        catalog: ModelCatalog,
        *,
        diarize_segment_model: str,
        diarize_embedding_model: str,
        progress_buffer: int = 16,
    ):
        self._registry = registry
        self._model_resource = model_resource
        self._catalog = catalog
        self._diarize_segment_model = diarize_segment_model
        self._diarize_embedding_model = diarize_embedding_model
        self._progress_buffer = progress_buffer
        self._channels: Dict[str, ProgressChannel] = {}
        self._channels_lock = threading.Lock()

    def dispatch(self, job: TranscriptionJob) -> threading.Thread:
        self._channel_for(job.job_id)
        worker = threading.Thread(
            target=self.run,
            args=(job,),
            name=f"transcribe-{job.job_id[:8]}",
            daemon=True,
        )
        try:
            worker.start()
        except Exception:
            with self._channels_lock:
                self._channels.pop(job.job_id, None)
            raise
        return worker

    def progress(self, job_id: str) -> Optional[int]:
        with self._channels_lock:
            channel = self._channels.get(job_id)
        return None if channel is None else channel.latest()

    def run(self, job: TranscriptionJob) -> JobOutcome:
        channel = self._channel_for(job.job_id)
        started = time.perf_counter()
        try:
            try:
                outcome = self._execute(job, channel)
            except TranscriptionError as exc:
                logger.warning("job_id=%s failed kind=%s: %s", job.job_id, exc.kind, exc.message)
                outcome = JobOutcome.failed(exc.message, exc.kind)
            except Exception as exc:
                logger.exception("job_id=%s crashed", job.job_id)
                outcome = JobOutcome.failed(str(exc) or exc.__class__.__name__, "engine_failure")
        finally:
            channel.close()
            remove_temp_files(job.cleanup_paths)

        self._registry.write_terminal(job.job_id, outcome)
        with self._channels_lock:
            self._channels.pop(job.job_id, None)
        logger.info(
            "job_id=%s finished status=%s elapsed_ms=%.1f",
            job.job_id,
            outcome.status,
            (time.perf_counter() - started) * 1000.0,
        )
        return outcome

    def _channel_for(self, job_id: str) -> ProgressChannel:
        with self._channels_lock:
            channel = self._channels.get(job_id)
            if channel is None:
                channel = ProgressChannel(self._progress_buffer)
                self._channels[job_id] = channel
            return channel

    def _execute(self, job: TranscriptionJob, channel: ProgressChannel) -> JobOutcome:
        with self._model_resource.acquire_exclusive() as slot:
            context = slot.ensure_loaded(job.model_path)
            diarize = self.build_diarize_params(job.options)
            try:
                raw_segments = context.transcribe(job.options, progress=channel.report, diarize=diarize)
            except EngineError as exc:
                raise EngineFailure(exc.message) from exc
        result = build_transcript(raw_segments)
        return JobOutcome.completed(result)

    def build_diarize_params(self, options: ResolvedTranscribeOptions) -> Optional[DiarizeParams]:
        if options.diarize is None:
            return None
        segment_path = self._catalog.auxiliary_path(self._diarize_segment_model)
        embedding_path = self._catalog.auxiliary_path(self._diarize_embedding_model)
        missing: List[str] = [str(p) for p in (segment_path, embedding_path) if not p.is_file()]
        if missing:
            raise ModelNotFound(f"Diarization model files not found: {', '.join(missing)}")
        return DiarizeParams(
            segment_model_path=str(segment_path),
            embedding_model_path=str(embedding_path),
            threshold=options.diarize.threshold,
            max_speakers=options.diarize.max_speakers,
        )
