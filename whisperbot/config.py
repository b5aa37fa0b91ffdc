"""whisperbot configuration — all settings in one place."""

from pydantic import BaseModel
from pathlib import Path
import logging
import os
from dotenv import load_dotenv

# Load .env from the repository root (one level up from whisperbot/)
load_dotenv(Path(__file__).parent.parent / ".env")


class LimitsConfig(BaseModel):
    """Admission and input limits."""
    max_queue: int = 10  # admitted jobs, running one included
    max_seconds: float = 900.0  # longest accepted clip
    short_audio_threshold: float = 1.5  # pad to this and skip language detection
    fallback_language: str = "it"  # used for short audio instead of "auto"


class RecognizerConfig(BaseModel):
    """whisper-cli invocation and streaming settings."""
    whisper_path: str = "/app/build/bin/whisper-cli"
    model_base: str = "/app/models/ggml-base.bin"
    model_medium: str = "/app/models/ggml-medium.bin"
    queue_threshold_base: int = 3  # switch to base model at this queue depth

    timeout_seconds: float = 600.0
    message_limit: int = 4000  # chars per status message before splitting
    edit_interval_ms: int = 500  # min gap between throttled edits
    poll_interval_ms: int = 100


class MediaConfig(BaseModel):
    """ffmpeg / ffprobe and temp file settings."""
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    sample_rate: int = 16000
    temp_dir: Path = Path("/tmp")
    temp_prefix: str = "wb"


class TelegramConfig(BaseModel):
    """Telegram Bot API transport settings."""
    api_token: str = ""  # set via env var
    api_url: str = "https://api.telegram.org"
    poll_timeout_seconds: int = 30  # getUpdates long-poll
    request_timeout_seconds: float = 60.0


class AppConfig(BaseModel):
    """Root configuration."""
    log_dir: Path = Path("data")

    limits: LimitsConfig = LimitsConfig()
    recognizer: RecognizerConfig = RecognizerConfig()
    media: MediaConfig = MediaConfig()
    telegram: TelegramConfig = TelegramConfig()


def load_config() -> AppConfig:
    """Load config with environment variable overrides."""
    config = AppConfig()

    # Environment overrides
    if token := os.getenv("TELEGRAM_BOT_TOKEN"):
        config.telegram.api_token = token
    if url := os.getenv("TELEGRAM_API_URL"):
        config.telegram.api_url = url.rstrip("/")
    if path := os.getenv("WHISPER_PATH"):
        config.recognizer.whisper_path = path
    if model := os.getenv("WHISPER_MODEL_BASE"):
        config.recognizer.model_base = model
    if model := os.getenv("WHISPER_MODEL_MEDIUM"):
        config.recognizer.model_medium = model
    if timeout := os.getenv("TRANSCRIBE_TIMEOUT"):
        config.recognizer.timeout_seconds = float(timeout)
    if queue := os.getenv("MAX_QUEUE"):
        config.limits.max_queue = int(queue)
    if seconds := os.getenv("MAX_SECONDS"):
        config.limits.max_seconds = float(seconds)
    if lang := os.getenv("DEFAULT_LANG"):
        config.limits.fallback_language = lang
    if ffmpeg := os.getenv("FFMPEG_PATH"):
        config.media.ffmpeg_path = ffmpeg
    if ffprobe := os.getenv("FFPROBE_PATH"):
        config.media.ffprobe_path = ffprobe
    if tmp := os.getenv("TEMP_DIR"):
        config.media.temp_dir = Path(tmp)
    if log_dir := os.getenv("LOG_DIR"):
        config.log_dir = Path(log_dir)

    # Validate critical config
    if not config.telegram.api_token:
        logging.getLogger("whisperbot.config").warning(
            "TELEGRAM_BOT_TOKEN not set, the bot cannot poll for updates"
        )

    # Ensure directories exist
    config.log_dir.mkdir(parents=True, exist_ok=True)
    config.media.temp_dir.mkdir(parents=True, exist_ok=True)

    return config
