"""Command-line interface for vbus-pulse"""

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from typing import Optional

from vbus_pulse import __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vbus-pulse",
        description="Poll a VBus controller and keep solar and pool readings cached",
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        help="Path to config file (default: auto-detect)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Refresh once, print the result as JSON and exit",
    )
    parser.add_argument(
        "--no-web",
        action="store_true",
        help="Disable web server",
    )
    parser.add_argument(
        "--web-port",
        type=int,
        default=None,
        help="Port for web server (default: from config, 8080)",
    )
    parser.add_argument(
        "--web-host",
        type=str,
        default=None,
        help="Host for web server (default: from config, 127.0.0.1)",
    )
    return parser


async def async_main(argv: Optional[list[str]] = None) -> int:
    """Async main entry point"""
    args = build_parser().parse_args(argv)

    from vbus_pulse.config import load_config
    from vbus_pulse.context import AppContext
    from vbus_pulse.coordinator import RefreshReason
    from vbus_pulse.errors import ConfigError
    from vbus_pulse.log_handler import setup_logging

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    # Setup logging (override with verbose flag if set)
    log_level = "DEBUG" if args.verbose else config.logging.level
    setup_logging(log_level, config.logging.file)

    logger = logging.getLogger(__name__)
    logger.info("=" * 50)
    logger.info(f"Starting vbus-pulse {__version__}")
    logger.info("=" * 50)

    context = AppContext.create(config)

    if args.once:
        try:
            await context.start(boot=False, attach_dashboard=False)
            notification = await context.coordinator.request_refresh(RefreshReason.USER)
            print(json.dumps(notification.to_dict(), indent=2, ensure_ascii=False))
            return 0 if not notification.stale else 1
        finally:
            await context.shutdown()

    shutdown_event = asyncio.Event()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
        shutdown_event.set()

    reload_tasks: set[asyncio.Task] = set()

    def reload_handler() -> None:
        logger.info("Received SIGHUP, reloading preferences")
        task = asyncio.create_task(context.preferences.reload())
        reload_tasks.add(task)
        task.add_done_callback(reload_tasks.discard)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler, sig)
    loop.add_signal_handler(signal.SIGHUP, reload_handler)

    web_enabled = config.web.enabled and not args.no_web
    web_server_task = None
    try:
        # Without the web surface only widgets keep the refresh trigger armed
        await context.start(attach_dashboard=web_enabled)

        # =====================================================================
        # Start web server in background (unless disabled)
        # =====================================================================
        if web_enabled:
            import uvicorn

            from vbus_pulse.web.app import create_app

            host = args.web_host or config.web.host
            port = args.web_port or config.web.port
            logger.info(f"Starting web server on {host}:{port}")
            app = create_app(context=context)

            config_uvicorn = uvicorn.Config(
                app,
                host=host,
                port=port,
                log_level=log_level.lower(),
                log_config=None,  # Prevent uvicorn from reconfiguring logging
            )
            server = uvicorn.Server(config_uvicorn)
            web_server_task = asyncio.create_task(server.serve())

        await shutdown_event.wait()
        return 0

    except asyncio.CancelledError:
        logger.info("Main task cancelled")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1
    finally:
        logger.info("Shutting down...")
        if web_server_task:
            web_server_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await web_server_task
        await context.shutdown()
        logger.info("Cleanup complete")


def main() -> int:
    """Main entry point - wraps async_main()"""
    return asyncio.run(async_main())


if __name__ == "__main__":
    sys.exit(main())
