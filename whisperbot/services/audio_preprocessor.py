"""Audio probing and normalisation via ffprobe / ffmpeg.

whisper-cli wants 16 kHz mono 16-bit PCM and fails on clips shorter than
about one second, so short clips are padded with trailing silence up to
the short-audio threshold.
"""

import logging
import re
from pathlib import Path

from whisperbot.config import LimitsConfig, MediaConfig
from whisperbot.services.process_runner import run_command

logger = logging.getLogger("whisperbot.audio")

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def parse_duration(output: str) -> float | None:
    """Return the first decimal number in ffprobe output, or None."""
    match = _NUMBER_RE.search(output)
    if not match:
        return None
    value = float(match.group())
    if value < 0:
        return None
    return value


class AudioPreprocessor:
    """Probes duration and converts arbitrary audio into whisper-ready WAV."""

    def __init__(self, media: MediaConfig, limits: LimitsConfig):
        self.media = media
        self.limits = limits

    def is_short(self, duration: float) -> bool:
        return duration < self.limits.short_audio_threshold

    def build_probe_args(self, path: str | Path) -> list[str]:
        return [
            self.media.ffprobe_path,
            "-i", str(path),
            "-show_entries", "format=duration",
            "-v", "quiet",
            "-of", "csv=p=0",
        ]

    def build_convert_args(self, in_path: str | Path, out_path: str | Path,
                           duration: float) -> list[str]:
        args = [self.media.ffmpeg_path, "-y", "-i", str(in_path)]
        if self.is_short(duration):
            args += ["-af", f"apad=whole_dur={self.limits.short_audio_threshold:g}"]
        args += [
            "-ar", str(self.media.sample_rate),
            "-ac", "1",
            "-c:a", "pcm_s16le",
            str(out_path),
        ]
        return args

    async def probe_duration(self, path: str | Path) -> float | None:
        """Duration of ``path`` in seconds, or None if it cannot be read."""
        result = await run_command(self.build_probe_args(path), capture=True)
        if not result.ok:
            return None
        duration = parse_duration(result.output)
        if duration is None:
            logger.warning(f"Unparseable ffprobe output for {path}: {result.output!r}")
            return None
        logger.debug("Duration of %s: %.2fs", path, duration)
        return duration

    async def normalize(self, in_path: str | Path, out_path: str | Path,
                        duration: float) -> bool:
        """Convert to mono PCM WAV at the configured rate. Returns success."""
        if self.is_short(duration):
            logger.info(
                "Short clip (%.2fs), padding to %.1fs",
                duration, self.limits.short_audio_threshold,
            )
        result = await run_command(self.build_convert_args(in_path, out_path, duration))
        if not result.ok:
            logger.error(f"ffmpeg conversion failed: {in_path}")
        return result.ok
