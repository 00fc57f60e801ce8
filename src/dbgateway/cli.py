"""Command-line interface for dbgateway.

Provides the main entry point for running the gateway, checking a
deployment before starting it, listing the routes, and calling a running
gateway.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

CALLABLE_ROUTES = (
    "version",
    "listdbs",
    "base64querypostbase64return",
    "base64postjsonreturn",
    "base64nonquery",
)


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="dbgateway",
        description="HTTPS gateway in front of database shell scripts",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config.yml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Run the HTTPS gateway")
    subparsers.add_parser("check", help="Validate config and TLS files without serving")
    subparsers.add_parser("routes", help="List the gateway routes")

    call_parser = subparsers.add_parser("call", help="Call a route on a running gateway")
    call_parser.add_argument("route", choices=CALLABLE_ROUTES)
    call_parser.add_argument("--database", default="", help="Target database")
    call_parser.add_argument("--base64value", default="", help="Base64-encoded payload")
    call_parser.add_argument(
        "--url", default=None,
        help="Gateway base URL (default: https://localhost:<api_port>)",
    )
    call_parser.add_argument(
        "--insecure", action="store_true",
        help="Skip TLS certificate verification",
    )

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)


async def _call(settings, args) -> str:
    """Call one route on a running gateway and return its reply."""
    from dbgateway.client import GatewayClient

    url = args.url or f"https://localhost:{settings.get('api_port')}"
    async with GatewayClient(base_url=url, verify=not args.insecure) as gw:
        if args.route == "version":
            return await gw.version()
        if args.route == "listdbs":
            return await gw.list_databases()
        if args.route == "base64querypostbase64return":
            return await gw.query_base64(args.database, args.base64value)
        if args.route == "base64postjsonreturn":
            return await gw.query_json(args.database, args.base64value)
        return await gw.non_query(args.database, args.base64value)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the dbgateway CLI. Returns the exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    from dbgateway.config.settings import ConfigError, load_settings
    from dbgateway.utils.logging import setup_logging

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        setup_logging()
        logger.critical("Failed to load config: %s", e)
        return 1

    log_config = settings.logging
    if args.verbose:
        log_config = log_config.model_copy(update={"level": "DEBUG"})
    setup_logging(log_config)

    if args.command == "routes":
        from dbgateway.gateway.routes import route_names

        base_url = settings.index_base_url()
        for name in route_names():
            print(f"{base_url}{name}")
        return 0

    if args.command == "call":
        from dbgateway.client import GatewayClientError

        try:
            print(asyncio.run(_call(settings, args)))
        except GatewayClientError as e:
            logger.error("%s", e)
            return 1
        return 0

    from dbgateway.gateway.server import StartupError, check_startup, serve

    try:
        if args.command == "check":
            listener = check_startup(settings)
            logger.info(
                "Configuration OK: port %d, cert %s, key %s",
                listener.port, listener.cert_file, listener.key_file,
            )
        elif args.command == "serve":
            logger.info("Starting gateway")
            serve(settings)
    except StartupError as e:
        logger.critical("%s", e)
        return 1
    return 0


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
