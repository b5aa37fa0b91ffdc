"""Bounded admission of transcription jobs."""

import logging

logger = logging.getLogger("whisperbot.admission")


class AdmissionController:
    """Counts admitted jobs (waiting + running) and rejects past ``max_queue``.

    Not a queue: ordering among admitted jobs is decided by the recognition
    lock. All mutations happen on the event loop thread with no await in
    between, so increment/test/undo is atomic with respect to other jobs.
    """

    def __init__(self, max_queue: int = 10):
        self.max_queue = max_queue
        self._queue_len = 0

    @property
    def depth(self) -> int:
        """Live number of admitted jobs."""
        return self._queue_len

    def try_admit(self) -> int | None:
        """Reserve a slot. Returns the 0-based position, or None if full."""
        position = self._queue_len
        self._queue_len += 1
        if position >= self.max_queue:
            self._queue_len -= 1
            logger.info("Admission rejected, queue full (%d)", self.max_queue)
            return None
        logger.debug("Admitted at position %d", position)
        return position

    def release(self) -> None:
        """Give back a slot taken by a successful ``try_admit``."""
        if self._queue_len <= 0:
            logger.error("release() without a matching admission")
            return
        self._queue_len -= 1
