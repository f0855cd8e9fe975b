from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_MODEL_FILES: dict[str, str] = {
    "tiny": "ggml-tiny.bin",
    "base": "ggml-base.bin",
    "small": "ggml-small.bin",
    "medium": "ggml-medium.bin",
    "large-v3": "ggml-large-v3.bin",
    "large-v3-turbo": "ggml-large-v3-turbo.bin",
}


def project_root() -> Path:
    # vibe_server/utils/model_paths.py -> vibe_server -> project
    return Path(__file__).resolve().parents[2]


def default_model_dir() -> Path:
    raw = os.getenv("VIBE_MODEL_DIR", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return (project_root() / "models").resolve()


def parse_model_mapping(raw: str) -> dict[str, str]:
    """Parse `name=file,name=file` into an ordered mapping."""

    out: dict[str, str] = {}
    for item in str(raw or "").split(","):
        name, sep, filename = item.partition("=")
        name = name.strip()
        filename = filename.strip()
        if not sep or not name or not filename:
            continue
        out[name] = filename
    return out


@dataclass(frozen=True)
class ModelCatalog:
    model_dir: Path
    default_name: str
    files: Mapping[str, str] = field(default_factory=dict)

    def path_for(self, name: str) -> Optional[Path]:
        filename = self.files.get(name)
        if filename is None:
            return None
        candidate = Path(filename).expanduser()
        if not candidate.is_absolute():
            candidate = self.model_dir / candidate
        return candidate.resolve()

    def resolve(self, name: Optional[str]) -> tuple[str, Path]:
        """
        Return `(name, absolute path)` for a logical model name.

        Empty names fall back to the default. Raises KeyError when the name is
        not in the catalog and FileNotFoundError when its file is absent.
        """

        resolved_name = str(name or "").strip() or self.default_name
        path = self.path_for(resolved_name)
        if path is None:
            raise KeyError(resolved_name)
        if not path.is_file():
            raise FileNotFoundError(str(path))
        return resolved_name, path

    def available(self) -> list[str]:
        out: list[str] = []
        for name in self.files:
            path = self.path_for(name)
            if path is not None and path.is_file():
                out.append(name)
        return out

    def auxiliary_path(self, filename: str) -> Path:
        candidate = Path(filename).expanduser()
        if not candidate.is_absolute():
            candidate = self.model_dir / candidate
        return candidate.resolve()


def prepare_model_path(raw: str, model_dir: Path) -> Path:
    """Resolve a CLI model argument: absolute, then relative to cwd, then under model_dir."""

    path = Path(raw).expanduser()
    if path.is_absolute() or path.exists():
        return path.resolve()
    under_models = model_dir / path
    if under_models.exists():
        return under_models.resolve()
    return path.resolve()
