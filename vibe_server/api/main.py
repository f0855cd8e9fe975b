from __future__ import annotations

"""
HTTP API surface for vibe-server.

Design intent:
- Keep API orchestration thin and typed.
- Return a job id immediately; transcription runs in a background worker.
- Hand one ServiceContext to every handler instead of module-level state.
- No app is built at import time; run `uvicorn --factory vibe_server.api.main:create_app`
  or the `vibe-server` script, which builds the single context itself.
"""

import logging
from pathlib import Path
from typing import Any, Literal, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vibe_server.asr.formatting import render_transcript
from vibe_server.asr.models import Segment
from vibe_server.internal_core.context import ServiceContext, build_context
from vibe_server.internal_core.contracts import JobRecord, JobStatus
from vibe_server.internal_core.errors import InvalidRequest, JobNotFound, TranscriptionError
from vibe_server.internal_core.options import parse_options_layer


class TranscribeAcceptedResponse(BaseModel):
    job_id: str
    status: Literal["processing"] = "processing"


class JobQuery(BaseModel):
    job_id: str = Field(min_length=1, max_length=128)


class JobResultQuery(JobQuery):
    format: Literal["json", "text", "srt", "vtt"] = "json"


class JobStatusResponse(BaseModel):
    job_id: str
    status: JobStatus
    model_name: str = ""
    progress: int | None = None
    error: str | None = None
    error_kind: str | None = None
    created_at: float
    updated_at: float
    finished_at: float | None = None


class JobResultResponse(BaseModel):
    job_id: str
    status: JobStatus
    text: str | None = None
    segments: list[Segment] = Field(default_factory=list)
    formatted: str | None = None
    error: str | None = None
    error_kind: str | None = None


class LoadRequest(BaseModel):
    model_name: str | None = Field(default=None, max_length=128)


class LoadResponse(BaseModel):
    status: Literal["loaded"] = "loaded"
    model_name: str
    model_path: str


class ModelListResponse(BaseModel):
    models: list[str] = Field(default_factory=list)
    default_model: str
    debug: dict[str, Any] = Field(default_factory=dict)


class ServiceStatusResponse(BaseModel):
    engine: str
    loaded_model_path: str | None = None
    jobs: dict[str, int] = Field(default_factory=dict)


logger = logging.getLogger(__name__)
router = APIRouter()


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def _sanitize_audio_filename_stem(filename: str) -> str:
    raw_stem = Path(str(filename or "audio")).stem.strip()
    if not raw_stem:
        raw_stem = "audio"
    safe = "".join(ch if (ch.isalnum() or ch in {"_", "-"}) else "_" for ch in raw_stem)
    safe = safe.strip("_")
    return (safe or "audio")[:64]


def _store_upload(context: ServiceContext, filename: str, payload: bytes) -> Path:
    output_dir = context.config.upload_dir_path()
    output_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(str(filename or "")).suffix.lower()[:8]
    stem = _sanitize_audio_filename_stem(filename)
    output_path = output_dir / f"{stem}_{uuid4().hex[:10]}{suffix}"
    output_path.write_bytes(payload)
    logger.debug("stored upload %s (%d bytes)", output_path, len(payload))
    return output_path


def _get_record(context: ServiceContext, job_id: str) -> JobRecord:
    normalized_job_id = str(job_id or "").strip()
    record = context.registry.get(normalized_job_id)
    if record is None:
        raise JobNotFound(f"Transcription job not found: {normalized_job_id}")
    return record


async def _transcription_error_handler(request: Request, exc: TranscriptionError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.message, "error_kind": exc.kind},
    )


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/transcribe", response_model=TranscribeAcceptedResponse)
async def transcribe(
    file: Optional[UploadFile] = File(default=None),
    model: Optional[str] = Form(default=None),
    task_options: Optional[str] = Form(default=None),
    module_options: Optional[str] = Form(default=None),
    context: ServiceContext = Depends(get_context),
) -> TranscribeAcceptedResponse:
    if file is None:
        raise InvalidRequest("Missing audio file field 'file'.")

    task_layer = parse_options_layer(task_options, "task_options")
    module_layer = parse_options_layer(module_options, "module_options")
    # Reject unknown models before touching the upload.
    context.submissions.resolve_model(model)

    payload = await file.read()
    if not payload:
        raise InvalidRequest("Uploaded file is empty.")
    max_bytes = context.config.VIBE_MAX_UPLOAD_BYTES
    if len(payload) > max_bytes:
        raise InvalidRequest(f"Uploaded file exceeds {max_bytes} bytes.")

    upload_path = _store_upload(context, file.filename or "audio", payload)
    job_id = context.submissions.submit(
        str(upload_path),
        model_name=model,
        task_options=task_layer,
        module_options=module_layer,
        cleanup_paths=[str(upload_path)],
    )
    return TranscribeAcceptedResponse(job_id=job_id)


@router.post("/transcription_status", response_model=JobStatusResponse)
async def transcription_status(
    payload: JobQuery,
    context: ServiceContext = Depends(get_context),
) -> JobStatusResponse:
    record = _get_record(context, payload.job_id)
    if record.status == "processing":
        progress = context.executor.progress(record.job_id)
    elif record.status == "completed":
        progress = 100
    else:
        progress = None
    return JobStatusResponse(
        job_id=record.job_id,
        status=record.status,
        model_name=record.model_name,
        progress=progress,
        error=record.error,
        error_kind=record.error_kind,
        created_at=record.created_at,
        updated_at=record.updated_at,
        finished_at=record.finished_at,
    )


@router.post("/transcription_result", response_model=JobResultResponse)
async def transcription_result(
    payload: JobResultQuery,
    context: ServiceContext = Depends(get_context),
) -> JobResultResponse:
    record = _get_record(context, payload.job_id)
    if record.status != "completed" or record.result is None:
        return JobResultResponse(
            job_id=record.job_id,
            status=record.status,
            error=record.error,
            error_kind=record.error_kind,
        )

    formatted = None
    if payload.format != "json":
        formatted = render_transcript(record.result.segments, payload.format)
    return JobResultResponse(
        job_id=record.job_id,
        status=record.status,
        text=record.result.text,
        segments=list(record.result.segments),
        formatted=formatted,
    )


@router.post("/load", response_model=LoadResponse)
async def load(
    payload: LoadRequest,
    context: ServiceContext = Depends(get_context),
) -> LoadResponse:
    model_name, model_path = await run_in_threadpool(context.submissions.load_model, payload.model_name)
    return LoadResponse(model_name=model_name, model_path=model_path)


@router.get("/list", response_model=ModelListResponse)
async def list_models(context: ServiceContext = Depends(get_context)) -> ModelListResponse:
    models = context.catalog.available()
    return ModelListResponse(
        models=models,
        default_model=context.catalog.default_name,
        debug={
            "model_dir": str(context.catalog.model_dir),
            "catalog_size": len(context.catalog.files),
            "count": len(models),
        },
    )


@router.get("/status", response_model=ServiceStatusResponse)
async def service_status(context: ServiceContext = Depends(get_context)) -> ServiceStatusResponse:
    return ServiceStatusResponse(
        engine=context.model_resource.engine.name(),
        loaded_model_path=context.model_resource.loaded_model_path,
        jobs=context.registry.counts(),
    )


def create_app(context: ServiceContext | None = None) -> FastAPI:
    created = FastAPI(title="vibe transcription server")
    created.state.context = context or build_context()
    created.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    created.add_exception_handler(TranscriptionError, _transcription_error_handler)
    created.include_router(router)
    return created
