"""Signaling relay server.

Main entry point that:
1. Loads configuration
2. Builds the relay context and router
3. Starts the WebSocket transport
4. Provides HTTP health check and metrics endpoints
5. Runs until SIGINT/SIGTERM, then shuts everything down
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite

from src.relay.auth import build_validator
from src.relay.config import RelayConfig
from src.relay.context import RelayContext
from src.relay.health import setup_health_routes
from src.relay.metrics import get_metrics_collector
from src.relay.router import MessageRouter
from src.relay.transport.websocket_transport import WebSocketRelayTransport

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure process-wide logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # websockets logs every handshake failure at INFO
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


async def start_server(
    config: RelayConfig,
    stop_event: asyncio.Event | None = None,
    context: RelayContext | None = None,
) -> None:
    """Run the relay until ``stop_event`` is set or a termination signal arrives.

    Args:
        config: Relay configuration
        stop_event: Optional externally controlled shutdown event (for testing)
        context: Optional pre-built relay context (for testing)

    Raises:
        OSError: If the WebSocket or health port cannot be bound
    """
    if stop_event is None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                pass

    if context is None:
        context = RelayContext(metrics=get_metrics_collector())

    router = MessageRouter(context)
    ws_config = config.transport
    transport = WebSocketRelayTransport(
        context=context,
        router=router,
        validator=build_validator(config.auth),
        host=ws_config.host,
        port=ws_config.port,
        max_message_bytes=ws_config.max_message_bytes,
        ping_interval_s=ws_config.ping_interval_s,
        ping_timeout_s=ws_config.ping_timeout_s,
    )

    # Bind failures abort startup
    await transport.start()

    runner: AppRunner | None = None
    try:
        if config.health.enabled:
            health_app = Application()
            setup_health_routes(health_app, context, transport)
            runner = AppRunner(health_app)
            await runner.setup()
            site = TCPSite(runner, config.health.host, config.health.port)
            await site.start()
            logger.info(
                "Health check server started",
                extra={"host": config.health.host, "port": config.health.port},
            )

        logger.info("Signaling relay ready", extra={"port": transport.port})
        await stop_event.wait()
        logger.info("Shutdown requested")

    finally:
        logger.info("Shutting down signaling relay")
        try:
            await asyncio.wait_for(
                transport.stop(), timeout=config.graceful_shutdown_timeout_s
            )
        except TimeoutError:
            logger.warning(
                "Transport did not stop within timeout",
                extra={"timeout_s": config.graceful_shutdown_timeout_s},
            )

        if runner is not None:
            await runner.cleanup()
            logger.info("Health check server stopped")

        context.close()
        logger.info("Signaling relay stopped")


def main() -> None:
    """Entry point for the relay server."""
    parser = argparse.ArgumentParser(description="Call signaling relay")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent.parent.parent / "configs" / "relay.yaml",
        help="Path to relay config YAML file",
    )
    args = parser.parse_args()

    config = RelayConfig.from_yaml_with_defaults(args.config)
    configure_logging(config.log_level)
    logger.info("Loaded configuration", extra={"config_path": str(args.config)})

    try:
        asyncio.run(start_server(config))
    except KeyboardInterrupt:
        logger.info("Signaling relay interrupted")


if __name__ == "__main__":
    main()
