"""
main.py — Single entry point.

One asyncio event loop hosts everything:
  ├── aiohttp web server  (pipeline, grouping, usage and cache endpoints)
  └── scheduler task      (periodic usage summary to the log)

Providers, cache and usage monitor are built once by services.build_services()
and shared by every request.
"""
import asyncio
import logging
import signal
import sys

import config

logger = logging.getLogger(__name__)

_QUIET_LOGGERS = ("httpx", "httpcore", "aiohttp.access")


def setup_logging() -> None:
    """stdout plus a log file next to the cache database in DATA_DIR."""
    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, config.LOG_LEVEL, logging.INFO)
    handlers: list[logging.Handler] = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(str(config.DATA_DIR / config.LOG_FILE_NAME), encoding="utf-8"),
    ]
    # pipeline loggers run at INFO for request traces; output honours LOG_LEVEL
    for handler in handlers:
        handler.setLevel(level)
    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        level=level,
        handlers=handlers,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    def _stop(*_):
        logger.info("Shutdown signal received.")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):
            # not available on Windows event loops
            pass


async def run() -> None:
    import request_trace
    import scheduler as sched
    from server import start_server
    from services import build_services

    services = build_services()
    try:
        await services.start()
    except Exception as exc:
        logger.critical("FATAL: service start-up failed: %s", exc, exc_info=True)
        raise

    enabled = [name for name, ok in services.health().items() if ok]
    if enabled:
        logger.info("Enabled providers: %s", ", ".join(enabled))
    else:
        logger.warning("No providers configured; every image will fail identification.")

    request_trace.install()
    web_runner = await start_server(services)
    sched_task = sched.start(services.usage)

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    logger.info("✅ Pipeline v%s listening on %s:%d", config.PIPELINE_VERSION,
                config.SERVER_HOST, config.SERVER_PORT)
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down…")
        sched.stop()
        sched_task.cancel()
        await web_runner.cleanup()
        logger.info("Goodbye.")


def main() -> None:
    setup_logging()
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
