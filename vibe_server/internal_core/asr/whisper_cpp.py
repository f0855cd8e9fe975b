from __future__ import annotations

import json
import logging
import os
import re
import signal
import subprocess
import tempfile
import threading
from collections import deque
from pathlib import Path
from typing import IO, List, Optional, Tuple

from ..contracts import DiarizeParams, ResolvedTranscribeOptions
from .base import EngineContext, EngineError, EngineSegment, ProgressCallback, TranscriptionEngine

logger = logging.getLogger(__name__)

_PROGRESS_RE = re.compile(r"progress\s*=\s*(\d{1,3})%")
_STDERR_TAIL_LINES = 20
_READER_JOIN_SEC = 5.0


def whisper_cpp_available(bin_path: str, model_path: str) -> Tuple[bool, str]:
    if not bin_path:
        return False, "missing VIBE_WHISPER_CPP_BIN"
    if not model_path:
        return False, "missing model path"
    if not Path(bin_path).exists():
        return False, f"whisper-cli not found: {bin_path}"
    if not Path(model_path).is_file():
        return False, f"model not found: {model_path}"
    return True, ""


def _with_dyld_paths(bin_path: str, env: Optional[dict[str, str]] = None) -> dict[str, str]:
    env_out = dict(os.environ) if env is None else dict(env)
    if not bin_path:
        return env_out
    try:
        build_dir = Path(bin_path).resolve().parents[1]
    except Exception:
        return env_out

    candidates = [
        build_dir / "src",
        build_dir / "ggml" / "src",
        build_dir / "ggml" / "src" / "ggml-blas",
        build_dir / "ggml" / "src" / "ggml-metal",
    ]
    new_paths = [str(p) for p in candidates if p.exists()]
    if not new_paths:
        return env_out

    existing = env_out.get("DYLD_LIBRARY_PATH", "")
    joined = os.pathsep.join(new_paths)
    env_out["DYLD_LIBRARY_PATH"] = (
        joined if not existing else f"{joined}{os.pathsep}{existing}"
    )
    return env_out


def build_whisper_cli_args(
    options: ResolvedTranscribeOptions,
    *,
    model_path: str,
    out_prefix: str,
    vad_model_path: str = "",
) -> List[str]:
    args = [
        "-m",
        model_path,
        "-f",
        options.path,
        "-oj",
        "-of",
        out_prefix,
        "-pp",
        "-l",
        options.lang or "auto",
    ]
    if not options.verbose:
        args.append("-np")
    if options.n_threads is not None:
        args.extend(["-t", str(options.n_threads)])
    if options.init_prompt:
        args.extend(["--prompt", options.init_prompt])
    if options.translate:
        args.append("-tr")
    if options.temperature is not None:
        args.extend(["-tp", f"{options.temperature:g}"])
    if options.max_text_ctx is not None:
        args.extend(["-mc", str(options.max_text_ctx)])
    if options.word_timestamps:
        args.extend(["-ml", "1", "-sow"])
    elif options.max_sentence_len:
        args.extend(["-ml", str(options.max_sentence_len), "-sow"])
    if options.vad is not None:
        args.extend(
            [
                "--vad",
                "-vm",
                vad_model_path,
                "-vt",
                f"{options.vad.threshold:g}",
                "-vspd",
                str(options.vad.min_speech_duration_ms),
                "-vsd",
                str(options.vad.min_silence_duration_ms),
                "-vp",
                str(options.vad.speech_pad_ms),
            ]
        )
    return args


def parse_whisper_json(payload: dict) -> List[EngineSegment]:
    # whisper.cpp reports offsets in milliseconds.
    segments: List[EngineSegment] = []
    for item in list(payload.get("transcription", []) or []):
        offsets = dict(item.get("offsets", {}) or {})
        start = max(0.0, float(offsets.get("from", 0)) / 1000.0)
        end = max(start, float(offsets.get("to", 0)) / 1000.0)
        text = str(item.get("text", "") or "").strip()
        segments.append(EngineSegment(start=start, end=end, text=text))
    return segments


def _pump_stderr(
    stream: IO[str],
    tail: deque[str],
    progress: Optional[ProgressCallback],
    verbose: bool,
) -> None:
    with stream:
        for line in stream:
            match = _PROGRESS_RE.search(line)
            if match:
                if progress is not None:
                    progress(min(100, int(match.group(1))))
                continue
            stripped = line.strip()
            if stripped:
                tail.append(stripped)
                if verbose:
                    logger.debug("whisper-cli: %s", stripped)


def _kill_process_group(proc: subprocess.Popen) -> None:
    # whisper-cli runs in its own session; kill the group so no child keeps the pipe open.
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        logger.debug("whisper-cli pid=%s exited before kill", proc.pid)
    proc.wait()


class WhisperCppContext(EngineContext):
    def __init__(self, engine: "WhisperCppEngine", model_path: str):
        self._engine = engine
        self._model_path = model_path
        self._runtime_no_gpu = engine.no_gpu

    @property
    def model_path(self) -> str:
        return self._model_path

    def transcribe(
        self,
        options: ResolvedTranscribeOptions,
        *,
        progress: Optional[ProgressCallback] = None,
        diarize: Optional[DiarizeParams] = None,
    ) -> List[EngineSegment]:
        engine_name = self._engine.name()
        if diarize is not None:
            raise EngineError(
                "DIARIZATION_UNSUPPORTED",
                "whisper-cli cannot run segmentation/embedding speaker diarization; "
                "submit without diarize or use an engine that supports it",
                engine_name,
            )
        if options.vad is not None and not Path(self._engine.vad_model_path or "").is_file():
            raise EngineError(
                "VAD_MODEL_MISSING",
                f"VAD requested but the VAD model is missing: {self._engine.vad_model_path or '(unset)'}",
                engine_name,
            )
        if not Path(options.path).is_file():
            raise EngineError("AUDIO_MISSING", f"audio file not found: {options.path}", engine_name)

        # Some macOS builds crash in Metal path on certain machines; retry once on CPU.
        attempt_no_gpu = [True] if self._runtime_no_gpu else [False, True]
        attempt_errors: list[str] = []
        saw_timeout = False
        for use_no_gpu in attempt_no_gpu:
            mode = "cpu_no_gpu" if use_no_gpu else "gpu_default"
            with tempfile.TemporaryDirectory(prefix="vibe_whisper_") as tmp_dir:
                out_prefix = str(Path(tmp_dir) / "transcript")
                cmd = [self._engine.bin_path] + build_whisper_cli_args(
                    options,
                    model_path=self._model_path,
                    out_prefix=out_prefix,
                    vad_model_path=self._engine.vad_model_path,
                )
                if use_no_gpu:
                    cmd.insert(1, "-ng")
                try:
                    returncode, stderr_tail = self._run(cmd, progress=progress, verbose=options.verbose)
                except subprocess.TimeoutExpired:
                    saw_timeout = True
                    attempt_errors.append(f"{mode}: timeout after {self._engine.timeout_sec:g}s")
                    if not use_no_gpu:
                        self._runtime_no_gpu = True
                    continue
                except OSError as exc:
                    attempt_errors.append(f"{mode}: {exc}")
                    if not use_no_gpu:
                        self._runtime_no_gpu = True
                    continue

                if returncode != 0:
                    msg = stderr_tail or f"exit_code={returncode}"
                    if len(msg) > 200:
                        msg = msg[-200:]
                    attempt_errors.append(f"{mode}: {msg}")
                    if not use_no_gpu:
                        self._runtime_no_gpu = True
                    continue

                json_path = Path(f"{out_prefix}.json")
                try:
                    payload = json.loads(json_path.read_text(encoding="utf-8", errors="replace"))
                except (OSError, json.JSONDecodeError) as exc:
                    attempt_errors.append(f"{mode}: unreadable JSON output: {exc}")
                    continue
                return parse_whisper_json(payload)

        if saw_timeout:
            raise EngineError("WHISPER_TIMEOUT", "; ".join(attempt_errors), engine_name)
        raise EngineError("WHISPER_EXIT_NONZERO", "; ".join(attempt_errors) or "non-zero exit", engine_name)

    def _run(
        self,
        cmd: List[str],
        *,
        progress: Optional[ProgressCallback],
        verbose: bool,
    ) -> Tuple[int, str]:
        tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            env=_with_dyld_paths(self._engine.bin_path),
            start_new_session=True,
        )
        if proc.stderr is None:
            proc.kill()
            proc.wait()
            raise OSError("whisper-cli stderr pipe was not opened")
        reader = threading.Thread(
            target=_pump_stderr,
            args=(proc.stderr, tail, progress, verbose),
            name="whisper-cli-stderr",
            daemon=True,
        )
        reader.start()
        try:
            returncode = proc.wait(timeout=self._engine.timeout_sec)
        finally:
            if proc.poll() is None:
                _kill_process_group(proc)
            reader.join(timeout=_READER_JOIN_SEC)
        return returncode, " ".join(tail)


class WhisperCppEngine(TranscriptionEngine):
    def __init__(
        self,
        bin_path: str,
        *,
        no_gpu: bool = False,
        vad_model_path: str = "",
        timeout_sec: Optional[float] = None,
    ):
        self.bin_path = bin_path
        self.no_gpu = bool(no_gpu)
        self.vad_model_path = vad_model_path
        # None or <= 0 waits for whisper-cli indefinitely.
        self.timeout_sec = timeout_sec if timeout_sec and timeout_sec > 0 else None

    def name(self) -> str:
        return "whisper_cpp"

    def create_context(self, model_path: str) -> EngineContext:
        ok, reason = whisper_cpp_available(self.bin_path, model_path)
        if not ok:
            raise EngineError("WHISPER_UNAVAILABLE", reason, self.name())
        try:
            with open(model_path, "rb") as handle:
                header = handle.read(4)
        except OSError as exc:
            raise EngineError("WHISPER_MODEL_UNREADABLE", str(exc), self.name()) from exc
        if len(header) < 4:
            raise EngineError("WHISPER_MODEL_INVALID", f"model file is truncated: {model_path}", self.name())
        return WhisperCppContext(self, model_path)
