from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from vibe_server.asr.formatting import render_transcript
from vibe_server.internal_core.config import load_config
from vibe_server.internal_core.context import build_engine
from vibe_server.internal_core.contracts import TranscribeOptionsLayer
from vibe_server.internal_core.errors import TranscriptionError
from vibe_server.internal_core.executor import build_transcript
from vibe_server.internal_core.model_resource import ModelResource
from vibe_server.internal_core.options import merge_transcribe_options
from vibe_server.utils.model_paths import prepare_model_path


def _str2bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Transcribe one audio file with the configured engine.")
    parser.add_argument("--model", required=True, help="Model file path or catalog name.")
    parser.add_argument("--file", required=True, type=Path, help="Audio file to transcribe.")
    parser.add_argument("--language", default="en")
    parser.add_argument("--temperature", type=float, default=0.4)
    parser.add_argument("--n-threads", type=int, default=4)
    parser.add_argument("--translate", type=_str2bool, default=None)
    parser.add_argument("--init-prompt", default=None)
    parser.add_argument("--write", type=Path, default=None, help="Also write the transcript here.")
    parser.add_argument("--format", choices=["srt", "vtt", "text"], default="srt")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    config = load_config()
    logging.basicConfig(level=config.VIBE_LOG_LEVEL.upper(), stream=sys.stderr)

    catalog = config.catalog()
    catalog_path = catalog.path_for(args.model)
    if catalog_path is not None and catalog_path.is_file():
        model_path = catalog_path
    else:
        model_path = prepare_model_path(args.model, config.model_dir_path())

    cli_layer = TranscribeOptionsLayer(
        lang=args.language,
        temperature=args.temperature,
        n_threads=args.n_threads,
        translate=args.translate,
        init_prompt=args.init_prompt,
    )
    resource = ModelResource(build_engine(config))
    print("Transcribe...", file=sys.stderr)
    started = time.perf_counter()
    try:
        options = merge_transcribe_options(
            config.server_defaults(),
            None,
            cli_layer,
            audio_path=str(args.file.expanduser().resolve()),
        )
        with resource.acquire_exclusive() as slot:
            context = slot.ensure_loaded(str(model_path))
            raw_segments = context.transcribe(options)
        transcript = build_transcript(raw_segments)
    except TranscriptionError as exc:
        print(f"error ({exc.kind}): {exc.message}", file=sys.stderr)
        return 1
    except Exception as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        resource.close()

    rendered = render_transcript(transcript.segments, args.format)
    print(rendered)
    if args.write is not None:
        try:
            args.write.write_text(rendered, encoding="utf-8")
        except OSError as exc:
            print(f"Error writing transcript to file: {exc}", file=sys.stderr)

    print(f"Transcription completed in {time.perf_counter() - started:.1f}s", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
