"""
main.py — throttle-bridge Entry Point

Usage:
    python main.py                          # default settings (config/config.yaml)
    python main.py --config path/to/config.yaml
    python main.py --log-level DEBUG        # Verbose logging
"""

from __future__ import annotations

import argparse
import asyncio
import sys


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="throttle-bridge",
        description="throttle-bridge — WiThrottle ↔ WebSocket bridge",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $BRIDGE_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from config.settings import load_settings, ConfigError
    from observability.logger import setup_logging, get_logger
    from pydantic import ValidationError

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your environment and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    log_level = args.log_level or settings.log_level

    setup_logging(
        level=log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("throttle_bridge.main")
    return settings, log


async def run_bridge(settings, log) -> int:
    """Connect upstream, serve the gateway, and relay until a loop ends."""
    from dcc.store import StateStore
    from exceptions import UpstreamConnectionError
    from gateway.gateway_server import GatewayServer
    from observability.counters import DropCounter
    from relay.orchestrator import Relay
    from withrottle.connector import UpstreamConnector

    address = settings.throttle_address
    store = StateStore([address])
    drops = DropCounter()

    # ── Upstream: no retry, the bridge is useless without it ──────────────────
    try:
        connector = await UpstreamConnector.connect(
            settings.upstream.host,
            settings.upstream.port,
            capacity=settings.bus.upstream_capacity,
            drops=drops,
        )
    except UpstreamConnectionError as exc:
        log.error("bridge.upstream_connect_failed", error=str(exc))
        print(f"\n❌  {exc}\n", file=sys.stderr)
        return 1

    gateway = GatewayServer(
        address=address,
        host=settings.gateway.host,
        port=settings.gateway.port,
        ws_path=settings.gateway.ws_path,
        health_path=settings.gateway.health_path,
        capacity=settings.bus.gateway_capacity,
        max_message_bytes=settings.gateway.max_message_bytes,
        drops=drops,
    )
    try:
        await gateway.start()
    except OSError as exc:
        log.error("bridge.gateway_start_failed", error=str(exc))
        print(f"\n❌  Failed to start gateway: {exc}\n", file=sys.stderr)
        await connector.close()
        return 1

    relay = Relay(
        store,
        connector.clone_sender(),
        gateway.clone_channel(),
        address=address,
        drops=drops,
    )
    relay.start()
    relay.send_session_init(settings.client_id, settings.upstream.client_name)

    try:
        await relay.wait()
    finally:
        await relay.stop()
        await gateway.shutdown()
        await connector.close()
        log.info("bridge.stopped", dropped=drops.snapshot())

    return 0


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)

    log.info(
        "bridge.starting",
        upstream=f"{settings.upstream.host}:{settings.upstream.port}",
        gateway=f"{settings.gateway.host}:{settings.gateway.port}",
        address=settings.throttle_address,
    )
    return await run_bridge(settings, log)


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
