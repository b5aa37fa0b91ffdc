"""Data schemas for whisperbot."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


# --- Transport ---

class FileType(str, Enum):
    VOICE = "voice"  # voice note (ogg/opus)
    AUDIO = "audio"  # audio file sent as music
    DOCUMENT = "document"  # generic file, may or may not be audio
    OTHER = "other"


class Submission(BaseModel):
    """One incoming message carrying a file, as seen by the core."""
    target: int  # chat to answer in
    message_id: Optional[int] = None  # message to reply to
    file_type: FileType = FileType.OTHER
    file_id: str = ""
    mime_type: Optional[str] = None
    file_name: Optional[str] = None  # untrusted, never used as a path


class StatusHandle(BaseModel):
    """Reference to an editable status message."""
    chat_id: int
    message_id: int


# --- Recognition ---

class RecognitionState(str, Enum):
    WAITING_LOCK = "waiting_lock"
    RUNNING = "running"
    DONE = "done"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass
class ModelChoice:
    name: str  # "base" or "medium"
    path: str


@dataclass
class RecognitionResult:
    state: RecognitionState
    model: str = ""
    exit_code: Optional[int] = None  # None when killed or never spawned
    transcript: str = ""


# --- Job (one transcription request in flight) ---

@dataclass
class Job:
    target: int
    source_path: Path
    converted_path: Path
    reply_to: Optional[int] = None
    duration: float = -1.0  # -1 until probed / on probe failure
    status_handle: Optional[StatusHandle] = None
    queue_position: Optional[int] = None  # advisory, display only
    model: Optional[str] = None  # chosen at lock acquisition
    short_audio: bool = False
    state: Optional[RecognitionState] = None
