"""Command line entry point: ``geocode-tool`` / ``python -m geocode_tool``."""

import argparse
import logging
import sys

from geocode_tool.config import Settings, get_settings
from geocode_tool.infrastructure.observability import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="geocode-tool", description="Geocode tool backend server",
    )
    parser.add_argument("--host", help="bind address (server:hostname)")
    parser.add_argument("--port", type=int, help="bind port (server:port)")
    parser.add_argument(
        "--workers", type=int,
        help="worker processes; more than one starts a supervisor",
    )
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides = {
        key: value
        for key, value in (
            ("hostname", args.host),
            ("port", args.port),
            ("workers", args.workers),
        )
        if value is not None
    }
    if not overrides:
        return settings
    server = settings.server.model_copy(update=overrides)
    return settings.model_copy(update={"server": server})


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = apply_overrides(get_settings(), args)
    setup_logging(settings.log_level, settings.log_format)

    if settings.server.workers > 1:
        from geocode_tool.runtime.supervisor import WorkerSupervisor
        return WorkerSupervisor(settings).run()

    from geocode_tool.runtime.worker import run_worker
    return run_worker(settings)


if __name__ == "__main__":
    sys.exit(main())
