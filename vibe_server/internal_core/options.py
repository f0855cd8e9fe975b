from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import ValidationError

from .contracts import (
    DiarizeSettings,
    ResolvedTranscribeOptions,
    TranscribeOptionsLayer,
    VadSettings,
)
from .errors import InvalidRequest

DEFAULT_DIARIZE_THRESHOLD = 0.5
DEFAULT_MAX_SPEAKERS = 8
DEFAULT_VAD_THRESHOLD = 0.5
DEFAULT_VAD_MIN_SPEECH_MS = 250
DEFAULT_VAD_MIN_SILENCE_MS = 100
DEFAULT_VAD_SPEECH_PAD_MS = 30


def _explicit_values(layer: Optional[TranscribeOptionsLayer]) -> dict[str, Any]:
    # Only fields the caller actually supplied (and did not null out) take part.
    if layer is None:
        return {}
    return {
        name: getattr(layer, name)
        for name in layer.model_fields_set
        if getattr(layer, name) is not None
    }


def _pick(merged: dict[str, Any], name: str, default: Any) -> Any:
    value = merged.get(name)
    return default if value is None else value


def merge_transcribe_options(
    server_defaults: Optional[TranscribeOptionsLayer],
    module_options: Optional[TranscribeOptionsLayer],
    task_options: Optional[TranscribeOptionsLayer],
    *,
    audio_path: Optional[str] = None,
) -> ResolvedTranscribeOptions:
    """
    Resolve three option layers field by field.

    Precedence: task_options > module_options > server_defaults. A field left
    unset at a higher layer never erases the value from a lower one.
    `audio_path` is the validated upload location and wins over every layer.
    """

    merged: dict[str, Any] = {}
    for layer in (server_defaults, module_options, task_options):
        merged.update(_explicit_values(layer))
    if audio_path:
        merged["path"] = audio_path

    path = str(merged.get("path") or "").strip()
    if not path:
        raise InvalidRequest("Audio file path is empty after merging options.")

    diarize: Optional[DiarizeSettings] = None
    if merged.get("diarize"):
        diarize = DiarizeSettings(
            threshold=float(_pick(merged, "diarize_threshold", DEFAULT_DIARIZE_THRESHOLD)),
            max_speakers=int(_pick(merged, "max_speakers", DEFAULT_MAX_SPEAKERS)),
        )

    vad: Optional[VadSettings] = None
    if merged.get("vad"):
        vad = VadSettings(
            threshold=float(_pick(merged, "vad_threshold", DEFAULT_VAD_THRESHOLD)),
            min_speech_duration_ms=int(
                _pick(merged, "vad_min_speech_duration_ms", DEFAULT_VAD_MIN_SPEECH_MS)
            ),
            min_silence_duration_ms=int(
                _pick(merged, "vad_min_silence_duration_ms", DEFAULT_VAD_MIN_SILENCE_MS)
            ),
            speech_pad_ms=int(_pick(merged, "vad_speech_pad_ms", DEFAULT_VAD_SPEECH_PAD_MS)),
        )

    n_threads = merged.get("n_threads")
    max_text_ctx = merged.get("max_text_ctx")
    max_sentence_len = merged.get("max_sentence_len")
    temperature = merged.get("temperature")
    return ResolvedTranscribeOptions(
        path=path,
        lang=merged.get("lang"),
        verbose=bool(merged.get("verbose", False)),
        n_threads=None if n_threads is None else int(n_threads),
        init_prompt=merged.get("init_prompt"),
        temperature=None if temperature is None else float(temperature),
        translate=bool(merged.get("translate", False)),
        max_text_ctx=None if max_text_ctx is None else int(max_text_ctx),
        word_timestamps=bool(merged.get("word_timestamps", False)),
        max_sentence_len=None if max_sentence_len is None else int(max_sentence_len),
        diarize=diarize,
        vad=vad,
    )


def parse_options_layer(raw: Optional[str], field_name: str) -> Optional[TranscribeOptionsLayer]:
    """Decode an optional JSON form field into an options layer."""

    if raw is None or not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidRequest(f"{field_name} is not valid JSON: {exc.msg}") from exc
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise InvalidRequest(f"{field_name} must be a JSON object.")
    try:
        return TranscribeOptionsLayer.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidRequest(f"Invalid {field_name}.{location}: {first.get('msg', '')}") from exc
