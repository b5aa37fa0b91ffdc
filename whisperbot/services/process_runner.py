"""Run external tools (ffmpeg, ffprobe) to completion."""

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger("whisperbot.runner")


@dataclass
class CommandResult:
    ok: bool
    output: str = ""  # captured stdout, empty in silent mode or on failure


async def run_command(args: list[str], capture: bool = False) -> CommandResult:
    """Run ``args[0]`` with ``args[1:]`` and wait for it to exit.

    Silent mode discards stdout and stderr; capture mode collects stdout.
    stderr is always discarded. Success means exit status 0. On spawn
    failure or non-zero exit nothing captured is returned.

    The child is always awaited, including when the calling task is
    cancelled while waiting on it.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE if capture else asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.error(f"Cannot spawn {args[0]}: {e}")
        return CommandResult(ok=False)

    try:
        stdout, _ = await proc.communicate()
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    if proc.returncode != 0:
        logger.warning("%s exited with status %s", args[0], proc.returncode)
        return CommandResult(ok=False)

    output = stdout.decode(errors="replace") if stdout else ""
    return CommandResult(ok=True, output=output)
