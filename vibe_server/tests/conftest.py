import dataclasses
from pathlib import Path
from typing import Callable

import pytest

from vibe_server.internal_core.config import ServerConfig, load_config


def _write_model(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"lmgg" + b"\x00" * 32)
    return path


@pytest.fixture
def write_model() -> Callable[[Path], Path]:
    return _write_model


@pytest.fixture
def model_dir(tmp_path: Path) -> Path:
    root = tmp_path / "models"
    _write_model(root / "base.bin")
    _write_model(root / "tiny.bin")
    return root


@pytest.fixture
def service_config(tmp_path: Path, model_dir: Path) -> ServerConfig:
    return dataclasses.replace(
        load_config(),
        VIBE_ENGINE="mock",
        VIBE_MODEL_DIR=str(model_dir),
        VIBE_MODELS={"base": "base.bin", "tiny": "tiny.bin", "ghost": "ghost.bin"},
        VIBE_DEFAULT_MODEL="base",
        VIBE_DIARIZE_SEGMENT_MODEL="segmentation.onnx",
        VIBE_DIARIZE_EMBEDDING_MODEL="embedding.onnx",
        VIBE_UPLOAD_DIR=str(tmp_path / "uploads"),
        VIBE_JOB_TTL_SECONDS=0,
        VIBE_DEFAULT_LANG="en",
        VIBE_DEFAULT_N_THREADS=4,
        VIBE_DEFAULT_TEMPERATURE=0.4,
    )
