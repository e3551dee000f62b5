# main.py

"""Entry point for price_monitor (API server or one-shot check)."""

import argparse
import asyncio
import logging
import sys

from price_monitor.config.logging_config import setup_logging

logger = logging.getLogger("price_monitor.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="price_monitor",
        description="Competitor product price monitor.",
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API server.")
    serve.add_argument("--host", default=None, help="Bind address.")
    serve.add_argument("--port", type=int, default=None, help="Bind port.")
    serve.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable Flask debug mode.",
    )

    check = sub.add_parser(
        "check", help="Run one monitoring pass and print the changes."
    )
    check.add_argument(
        "-p",
        "--products",
        default=None,
        dest="products_file",
        help="JSON file of products (default: fetch from the catalog).",
    )
    check.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="table",
        dest="output_format",
        help="Output format (default: table).",
    )
    check.add_argument(
        "--no-write",
        action="store_false",
        default=True,
        dest="write_back",
        help="Do not write changed prices back to the catalog.",
    )
    return parser


def _run_server(args: argparse.Namespace) -> None:
    """Serve the API until interrupted."""
    from price_monitor.cli.runner import run_server

    try:
        run_server(args.host, args.port, args.debug)
    except Exception:
        logger.critical("Fatal error in API server", exc_info=True)
        raise
    finally:
        logger.info("price_monitor API shutting down")


def _run_check(args: argparse.Namespace) -> None:
    """Run one headless monitoring pass and exit."""
    from price_monitor.cli.runner import cli_check

    exit_code = asyncio.run(
        cli_check(
            products_file=args.products_file,
            output_format=args.output_format,
            write_back=args.write_back,
        )
    )
    sys.exit(exit_code)


def main() -> None:
    """Route to the API server or a one-shot check (the default)."""
    parser = _build_parser()
    args = parser.parse_args()

    if args.command == "serve":
        log_file = setup_logging(
            console_level=logging.INFO, include=("werkzeug",)
        )
        logger.info("price_monitor starting, log file: %s", log_file)
        _run_server(args)
    else:
        if args.command is None:
            args = parser.parse_args(["check"])
        log_file = setup_logging()
        logger.info("price_monitor starting, log file: %s", log_file)
        _run_check(args)


if __name__ == "__main__":
    main()
