from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from llmcfg.service.store import STORE_PATH_ENV

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8083


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="llmcfg",
        description="Serve the LLM configuration and proxy resolution service",
    )
    parser.add_argument(
        "--host",
        default=DEFAULT_HOST,
        help=f"Bind host (default: {DEFAULT_HOST})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"Bind port (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Path of the JSON store file (default: config/store.json)",
    )
    parser.add_argument(
        "--reload",
        default=False,
        action=argparse.BooleanOptionalAction,
        help="Enable autoreload (default: off)",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug", "trace"],
        help="Uvicorn log level",
    )
    return parser.parse_args(argv)


def _run_service(host: str, port: int, reload: bool, log_level: str) -> None:
    config = uvicorn.Config(
        "llmcfg.service.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
        reload_dirs=[str(PROJECT_ROOT / "llmcfg")],
    )
    server = uvicorn.Server(config)
    server.run()


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)

    if args.store is not None:
        # The app module is imported by uvicorn (possibly in a reloader child),
        # so the store location travels through the environment.
        os.environ[STORE_PATH_ENV] = str(args.store.resolve())

    print(f"[llmcfg] Starting config service at http://{args.host}:{args.port}")
    try:
        _run_service(args.host, args.port, args.reload, args.log_level)
    except KeyboardInterrupt:  # pragma: no cover - interactive session
        pass
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
