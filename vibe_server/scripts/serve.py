from __future__ import annotations

import argparse
import logging

import uvicorn

from vibe_server.api.main import create_app
from vibe_server.internal_core.config import load_config
from vibe_server.internal_core.context import build_context


def main(argv: list[str] | None = None) -> None:
    config = load_config()
    parser = argparse.ArgumentParser(description="Run the vibe transcription server.")
    parser.add_argument("--host", default=config.VIBE_HOST)
    parser.add_argument("--port", type=int, default=config.VIBE_PORT)
    parser.add_argument("--log-level", default=config.VIBE_LOG_LEVEL)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=str(args.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    context = build_context(config)
    app = create_app(context)
    logging.getLogger(__name__).info(
        "listening on %s:%d engine=%s model_dir=%s",
        args.host,
        args.port,
        config.VIBE_ENGINE,
        config.VIBE_MODEL_DIR,
    )
    try:
        uvicorn.run(app, host=args.host, port=args.port, log_level=str(args.log_level).lower())
    finally:
        context.model_resource.close()


if __name__ == "__main__":
    main()
