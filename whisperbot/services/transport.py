"""Contract between the transcription core and the chat transport."""

from pathlib import Path
from typing import Optional, Protocol

from whisperbot.models.schemas import StatusHandle, Submission


class Transport(Protocol):
    """What the core needs from a messaging backend.

    Implementations report failures through return values; the core never
    sees transport exceptions.
    """

    async def download(self, submission: Submission, path: Path) -> bool:
        """Save the submission's payload to ``path``."""
        ...

    async def send_message(self, target: int, text: str,
                           reply_to: Optional[int] = None) -> Optional[StatusHandle]:
        """Send a new message; returns its handle, or None on failure."""
        ...

    async def edit_message(self, handle: StatusHandle, text: str) -> bool:
        """Replace the text of a previously sent message."""
        ...
