"""Shared pytest fixtures for whisperbot tests."""

import itertools
import os
import stat
import struct
import sys
import time
from pathlib import Path

import pytest

from whisperbot.config import AppConfig, LimitsConfig, MediaConfig, RecognizerConfig
from whisperbot.models.schemas import FileType, StatusHandle, Submission


class FakeTransport:
    """In-memory Transport that records every call with a timestamp."""

    def __init__(self, download_ok: bool = True, payload: bytes = b"\x00" * 64):
        self.download_ok = download_ok
        self.payload = payload
        self.sent: list[tuple[int, str, int | None]] = []  # (target, text, reply_to)
        self.edits: list[tuple[int, str, float]] = []  # (message_id, text, monotonic)
        self.downloads: list[Path] = []
        self._ids = itertools.count(100)

    async def download(self, submission, path):
        self.downloads.append(Path(path))
        if not self.download_ok:
            return False
        Path(path).write_bytes(self.payload)
        return True

    async def send_message(self, target, text, reply_to=None):
        self.sent.append((target, text, reply_to))
        return StatusHandle(chat_id=target, message_id=next(self._ids))

    async def edit_message(self, handle, text):
        self.edits.append((handle.message_id, text, time.monotonic()))
        return True

    @property
    def sent_texts(self) -> list[str]:
        return [text for _, text, _ in self.sent]

    @property
    def edit_texts(self) -> list[str]:
        return [text for _, text, _ in self.edits]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def app_config(tmp_path):
    """AppConfig pointing temp files at tmp_path, with fast recognizer timings."""
    temp_dir = tmp_path / "work"
    temp_dir.mkdir()
    return AppConfig(
        log_dir=tmp_path / "logs",
        limits=LimitsConfig(),
        recognizer=RecognizerConfig(
            model_base=str(tmp_path / "ggml-base.bin"),
            model_medium=str(tmp_path / "ggml-medium.bin"),
            timeout_seconds=10.0,
        ),
        media=MediaConfig(temp_dir=temp_dir),
    )


@pytest.fixture
def make_executable(tmp_path):
    """Write a Python script with a shebang and make it executable."""

    def _make(name: str, body: str) -> Path:
        path = tmp_path / name
        path.write_text(f"#!{sys.executable}\nimport os, sys, time\n{body}\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def fake_whisper(make_executable, app_config):
    """Install a fake whisper-cli into app_config and return its path."""

    def _install(body: str) -> Path:
        path = make_executable("whisper-cli", body)
        app_config.recognizer.whisper_path = str(path)
        return path

    return _install


@pytest.fixture
def voice_submission():
    return Submission(
        target=42,
        message_id=7,
        file_type=FileType.VOICE,
        file_id="voice-file-id",
        mime_type="audio/ogg",
    )


def write_silence_wav(path: Path, duration_seconds: float = 0.5, sample_rate: int = 16000):
    """Write a minimal valid WAV file (16-bit mono silence)."""
    num_samples = int(sample_rate * duration_seconds)
    data_size = num_samples * 2  # 16-bit = 2 bytes per sample
    with open(path, "wb") as f:
        f.write(b"RIFF")
        f.write(struct.pack("<I", 36 + data_size))
        f.write(b"WAVE")
        f.write(b"fmt ")
        f.write(struct.pack("<I", 16))
        f.write(struct.pack("<HHIIHH", 1, 1, sample_rate, sample_rate * 2, 2, 16))
        f.write(b"data")
        f.write(struct.pack("<I", data_size))
        f.write(b"\x00" * data_size)


def pid_alive(pid: int) -> bool:
    """True if ``pid`` still exists (a zombie counts as alive)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True
