"""whisperbot — Telegram bot that transcribes audio with whisper.cpp."""

import asyncio
import logging
import logging.handlers
import os
import signal
from pathlib import Path

from whisperbot.config import load_config
from whisperbot.pipeline.admission import AdmissionController
from whisperbot.pipeline.orchestrator import JobOrchestrator
from whisperbot.pipeline.supervisor import RecognitionSupervisor
from whisperbot.services.audio_preprocessor import AudioPreprocessor
from whisperbot.services.health import ComponentStatus, run_startup_checks
from whisperbot.services.telegram import TelegramTransport

logger = logging.getLogger("whisperbot")


def configure_logging(log_dir: Path):
    """Structured logging with file rotation."""
    log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Console handler (human-readable)
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(
        "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    ))
    console.setLevel(log_level)

    # Rotating file handler (full detail, 10MB x 5 files)
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / "whisperbot.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(name)s] %(levelname)s: %(message)s  [%(filename)s:%(lineno)d]",
    ))
    file_handler.setLevel(logging.DEBUG)

    # Error-only file (quick scan for problems)
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "whisperbot_errors.log",
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
        encoding="utf-8",
    )
    error_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(name)s] %(levelname)s: %(message)s  [%(filename)s:%(lineno)d]",
    ))
    error_handler.setLevel(logging.ERROR)

    logging.basicConfig(level=logging.DEBUG, handlers=[console, file_handler, error_handler])
    # httpx logs every long-poll request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def run_bot():
    config = load_config()
    configure_logging(config.log_dir)

    logger.info("=" * 50)
    logger.info("  whisperbot — Starting up")
    logger.info(f"  Queue max: {config.limits.max_queue}, Audio max: {config.limits.max_seconds:.0f}s")
    logger.info(f"  Recognizer: {config.recognizer.whisper_path}")
    logger.info(f"  Timeout: {config.recognizer.timeout_seconds:.0f}s")
    logger.info("=" * 50)

    health = await run_startup_checks(config)
    if health.overall == ComponentStatus.DOWN:
        # Don't abort: jobs that hit a missing tool fail with a user-facing message
        logger.warning("Some components are DOWN. Bot will start in degraded mode.")

    async with TelegramTransport(config.telegram) as transport:
        admission = AdmissionController(config.limits.max_queue)
        supervisor = RecognitionSupervisor(config.recognizer, config.limits, admission, transport)
        orchestrator = JobOrchestrator(
            config, transport, admission, supervisor,
            AudioPreprocessor(config.media, config.limits),
        )

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        async def poll():
            async for submission in transport.poll_updates():
                orchestrator.submit(submission)

        poller = asyncio.create_task(poll())
        await stop.wait()

        logger.info("Shutting down...")
        poller.cancel()
        try:
            await poller
        except asyncio.CancelledError:
            pass
        await orchestrator.shutdown()
        logger.info(f"Final metrics: {orchestrator.metrics}")


def main():
    asyncio.run(run_bot())


if __name__ == "__main__":
    main()
