from __future__ import annotations

from typing import Literal

ErrorKind = Literal[
    "invalid_request",
    "model_not_found",
    "model_load_failed",
    "engine_failure",
    "job_not_found",
]


class TranscriptionError(RuntimeError):
    kind: ErrorKind = "engine_failure"
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(TranscriptionError):
    kind: ErrorKind = "invalid_request"
    status_code = 400


class ModelNotFound(TranscriptionError):
    kind: ErrorKind = "model_not_found"
    status_code = 404


class ModelLoadFailed(TranscriptionError):
    kind: ErrorKind = "model_load_failed"
    status_code = 500


class EngineFailure(TranscriptionError):
    kind: ErrorKind = "engine_failure"
    status_code = 500


class JobNotFound(TranscriptionError):
    kind: ErrorKind = "job_not_found"
    status_code = 404
