"""Startup health checks for the external tools whisperbot drives."""

import asyncio
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger("whisperbot.health")


class ComponentStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass
class HealthCheck:
    component: str
    status: ComponentStatus
    message: str = ""
    latency_ms: float = 0.0


@dataclass
class SystemHealth:
    checks: list[HealthCheck] = field(default_factory=list)
    overall: ComponentStatus = ComponentStatus.OK

    def add(self, check: HealthCheck):
        self.checks.append(check)
        if check.status == ComponentStatus.DOWN:
            self.overall = ComponentStatus.DOWN
        elif check.status == ComponentStatus.DEGRADED and self.overall != ComponentStatus.DOWN:
            self.overall = ComponentStatus.DEGRADED


async def check_tool(name: str, executable: str) -> HealthCheck:
    """Check an ffmpeg-family tool runs and report its version line."""
    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            executable, "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=5)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return HealthCheck(name, ComponentStatus.DOWN, f"{executable} -version timed out")
        latency = (time.monotonic() - start) * 1000

        if proc.returncode == 0:
            version_line = stdout.decode(errors="replace").split("\n")[0] if stdout else "unknown"
            return HealthCheck(name, ComponentStatus.OK, version_line, latency)
        return HealthCheck(name, ComponentStatus.DOWN, f"{executable} returned non-zero exit code")
    except FileNotFoundError:
        return HealthCheck(name, ComponentStatus.DOWN,
                           f"{executable} not found in PATH. Install: apt install ffmpeg")
    except OSError as e:
        return HealthCheck(name, ComponentStatus.DOWN, str(e))


def check_whisper(whisper_path: str) -> HealthCheck:
    """Check the recognizer binary exists and is executable."""
    resolved = shutil.which(whisper_path)
    if resolved and os.access(resolved, os.X_OK):
        return HealthCheck("whisper", ComponentStatus.OK, resolved)
    return HealthCheck("whisper", ComponentStatus.DOWN,
                       f"{whisper_path} not found or not executable")


def check_models(model_base: str, model_medium: str) -> HealthCheck:
    """Both models are needed; with one missing, jobs routed to it fail."""
    missing = [p for p in (model_base, model_medium) if not Path(p).is_file()]
    if not missing:
        return HealthCheck("models", ComponentStatus.OK, "base and medium present")
    if len(missing) == 2:
        return HealthCheck("models", ComponentStatus.DOWN, f"Missing: {missing}")
    return HealthCheck("models", ComponentStatus.DEGRADED, f"Missing: {missing}")


def check_bot_token(token: str) -> HealthCheck:
    if token:
        return HealthCheck("telegram", ComponentStatus.OK, "Token configured")
    return HealthCheck("telegram", ComponentStatus.DOWN, "TELEGRAM_BOT_TOKEN not set")


async def run_startup_checks(config) -> SystemHealth:
    """Run all startup health checks. Logs results and returns health status."""
    health = SystemHealth()

    logger.info("Running startup health checks...")

    health.add(await check_tool("ffmpeg", config.media.ffmpeg_path))
    health.add(await check_tool("ffprobe", config.media.ffprobe_path))
    health.add(check_whisper(config.recognizer.whisper_path))
    health.add(check_models(config.recognizer.model_base, config.recognizer.model_medium))
    health.add(check_bot_token(config.telegram.api_token))

    # Log results
    for check in health.checks:
        if check.status == ComponentStatus.OK:
            logger.info(f"  [{check.status.value}] {check.component}: {check.message}")
        elif check.status == ComponentStatus.DEGRADED:
            logger.warning(f"  [{check.status.value}] {check.component}: {check.message}")
        else:
            logger.error(f"  [{check.status.value}] {check.component}: {check.message}")

    logger.info(f"Startup health: {health.overall.value}")
    return health
