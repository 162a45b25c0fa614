"""Command line entry point serving the SheetLedger API with uvicorn."""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn

from . import database
from .config import load_settings
from .errors import ConfigurationError
from .logging import configure_logging
from .server import create_app

LOG = logging.getLogger("sheetledger.cli")

DESCRIPTION = "SheetLedger: personal expense tracking backed by Google Sheets"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sheetledger", description=DESCRIPTION)
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: $PORT or 8000)")
    parser.add_argument("--log-level", default=None, help="Logging level, e.g. DEBUG or INFO")
    parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Emit single-line JSON log records",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the cache tables and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        configure_logging(json_logs=bool(args.json_logs), level=args.log_level)
        LOG.error("Invalid configuration: %s", exc.message)
        return 1

    json_logs = settings.json_logs if args.json_logs is None else args.json_logs
    level = args.log_level or settings.log_level
    configure_logging(json_logs=json_logs, level=level)

    if args.init_db:
        engine = database.build_engine(settings.database_url)
        database.init_db(engine)
        engine.dispose()
        LOG.info("Database tables created")
        return 0

    port = args.port if args.port is not None else settings.port
    LOG.info("Starting SheetLedger on %s:%d (%s)", args.host, port, settings.environment)
    uvicorn.run(create_app(settings), host=args.host, port=port, log_level=level.lower())
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
