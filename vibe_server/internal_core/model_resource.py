from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .asr.base import EngineContext, EngineError, TranscriptionEngine
from .errors import ModelLoadFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ModelSlot:
    # Handle and provenance are replaced together, never separately.
    model_path: str
    context: EngineContext


def _normalize_model_path(model_path: str) -> str:
    return str(Path(model_path).expanduser().resolve())


class ModelSlotHandle:
    """Exclusive view of the model slot, valid only inside `acquire_exclusive()`."""

    def __init__(self, resource: "ModelResource"):
        self._resource = resource
        self._released = False

    def _check(self) -> None:
        if self._released:
            raise RuntimeError("ModelSlotHandle used after release")

    @property
    def model_path(self) -> Optional[str]:
        self._check()
        slot = self._resource._slot
        return None if slot is None else slot.model_path

    @property
    def context(self) -> Optional[EngineContext]:
        self._check()
        slot = self._resource._slot
        return None if slot is None else slot.context

    def ensure_loaded(self, model_path: str) -> EngineContext:
        self._check()
        return self._resource._ensure_loaded_locked(model_path)

    def _release(self) -> None:
        self._released = True


class ModelResource:
    """
    Single in-process model slot.

    The exclusive lock is held for the whole `with acquire_exclusive()` block,
    inference included, because the engine context is not safe for concurrent
    use and is expensive to rebuild. Transcriptions are therefore serialized:
    at most one runs at a time and every other job waits here, served in lock
    acquisition order.
    """

    def __init__(self, engine: TranscriptionEngine):
        self._engine = engine
        self._lock = threading.Lock()
        self._slot: Optional[_ModelSlot] = None

    @property
    def engine(self) -> TranscriptionEngine:
        return self._engine

    @property
    def loaded_model_path(self) -> Optional[str]:
        slot = self._slot
        return None if slot is None else slot.model_path

    @contextmanager
    def acquire_exclusive(self) -> Iterator[ModelSlotHandle]:
        self._lock.acquire()
        handle = ModelSlotHandle(self)
        try:
            yield handle
        finally:
            handle._release()
            self._lock.release()

    def _ensure_loaded_locked(self, model_path: str) -> EngineContext:
        requested = _normalize_model_path(model_path)
        current = self._slot
        if current is not None and current.model_path == requested:
            return current.context

        started = time.perf_counter()
        try:
            context = self._engine.create_context(requested)
        except EngineError as exc:
            logger.warning("model load failed path=%s code=%s: %s", requested, exc.code, exc.message)
            raise ModelLoadFailed(f"Failed to load model {requested}: {exc.message}") from exc
        except Exception as exc:
            logger.exception("model load crashed path=%s", requested)
            raise ModelLoadFailed(f"Failed to load model {requested}: {exc}") from exc

        self._slot = _ModelSlot(model_path=requested, context=context)
        logger.info(
            "model loaded path=%s previous=%s elapsed_ms=%.1f",
            requested,
            None if current is None else current.model_path,
            (time.perf_counter() - started) * 1000.0,
        )
        if current is not None:
            try:
                current.context.close()
            except Exception:
                logger.exception("failed to close previous model context path=%s", current.model_path)
        return context

    def close(self) -> None:
        with self._lock:
            current = self._slot
            self._slot = None
        if current is not None:
            current.context.close()
