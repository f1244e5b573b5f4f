"""Command line entry point that serves the scanning API."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from .camera import CAMERA_SOURCES


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the server CLI."""

    parser = argparse.ArgumentParser(
        prog="python -m barcode_recorder",
        description="Serve the barcode scan-and-record API",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind.")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind.")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("data/config.json"),
        help="Path of the JSON configuration file.",
    )
    parser.add_argument(
        "--state",
        type=Path,
        default=None,
        help="Path of the persisted catalog (defaults to state.json beside the config).",
    )
    parser.add_argument(
        "--camera",
        choices=sorted(CAMERA_SOURCES),
        default=None,
        help="Override the configured camera backend for this run.",
    )
    parser.add_argument("--log-level", default="info", help="Logging level name.")
    return parser


def run(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    import uvicorn

    from .app import create_app
    from .devices import create_backend

    backend = create_backend(args.camera) if args.camera else None
    application = create_app(args.config, state_path=args.state, backend=backend)
    uvicorn.run(application, host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point used by `python -m barcode_recorder`."""

    return run(argv)


__all__ = ["build_parser", "main", "run"]


if __name__ == "__main__":  # pragma: no cover - module behaviour
    sys.exit(main())
