"""Command-line entry point: ``fedi-lookup`` / ``python -m fedi_lookup``."""

import argparse
import logging

import uvicorn

from fedi_lookup.config import get_settings
from fedi_lookup.logging_setup import configure_logging
from fedi_lookup.server import create_app

logger = logging.getLogger("fedi_lookup")


def main(argv: list[str] | None = None) -> None:
    """Run the lookup service HTTP server."""
    settings = get_settings()

    parser = argparse.ArgumentParser(
        description="Fediverse instance software lookup service"
    )
    parser.add_argument(
        "--host",
        default=settings.host,
        help=f"Bind address (default: {settings.host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"Port to listen on (default: {settings.port})",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help=f"Log level (default: {settings.log_level})",
    )
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    logger.info(f"{settings.site_name} starting on http://{settings.domain}:{args.port}")

    uvicorn.run(
        create_app(settings),
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
