"""Recognition supervisor — runs whisper-cli one job at a time and streams
its output into the job's status message.

Lifecycle of one job:
    WAITING_LOCK -> RUNNING -> DONE | TIMED_OUT | FAILED

- Only one whisper-cli process exists at any time (``asyncio.Lock``, FIFO
  waiters). The model is picked when the lock is acquired, from the live
  admission depth, so a long queue trades accuracy for latency.
- stdout and stderr are merged and read without blocking the loop. Edits
  are throttled; text past the per-message limit continues in a new message.
- The wall-clock timeout cancels the read loop; the child is always killed
  and reaped before ``run`` returns, whatever the exit path.
"""

import asyncio
import codecs
import logging
import time
from typing import Callable, Optional

from whisperbot.config import LimitsConfig, RecognizerConfig
from whisperbot.models.schemas import (
    Job, ModelChoice, RecognitionResult, RecognitionState, StatusHandle,
)
from whisperbot.pipeline.admission import AdmissionController
from whisperbot.services.transport import Transport

logger = logging.getLogger("whisperbot.supervisor")

TIMED_OUT_TEXT = "Transcription timed out."
FAILED_TEXT = "Transcription failed."
NO_SPEECH_TEXT = "(no speech detected)"
CONTINUATION_PREFIX = "[...]\n"

READ_SIZE = 65536


class StatusStream:
    """Accumulates recognizer output and mirrors it into status messages.

    Edits go out in the order they are generated, at most one per
    ``edit_interval`` seconds, except overflow flushes and the final edit.
    """

    def __init__(
        self,
        transport: Transport,
        target: int,
        handle: StatusHandle,
        message_limit: int = 4000,
        edit_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.target = target
        self.handle = handle
        self.message_limit = message_limit
        self.edit_interval = edit_interval
        self.text = ""
        self.messages_started = 0
        self._clock = clock
        self._pushed: Optional[str] = None
        self._last_edit: Optional[float] = None
        # set when a continuation could not be sent; ``handle`` then still
        # points at the previous message, which holds a finished head
        self._unsent = False

    def append(self, text: str):
        self.text += text

    async def _publish(self, text: str) -> bool:
        """Show ``text`` in the current message, sending it first if still unsent."""
        if not self._unsent:
            return await self.transport.edit_message(self.handle, text)
        new_handle = await self.transport.send_message(self.target, text)
        if new_handle is None:
            return False
        self.handle = new_handle
        self.messages_started += 1
        self._unsent = False
        return True

    async def flush_overflow(self):
        """Split the buffer across messages while it exceeds the limit."""
        while len(self.text) > self.message_limit:
            head = self.text[:self.message_limit]
            rest = self.text[self.message_limit:]
            await self._publish(head)

            self.text = CONTINUATION_PREFIX + rest
            new_handle = await self.transport.send_message(self.target, self.text)
            if new_handle is None:
                logger.warning("Could not start continuation after message %s, will retry",
                               self.handle.message_id)
                self._unsent = True
                self._pushed = None
            else:
                self.handle = new_handle
                self.messages_started += 1
                self._unsent = False
                self._pushed = self.text
            self._last_edit = self._clock()

    async def maybe_push(self) -> bool:
        """Edit the status message if there is new text and the throttle allows."""
        if not self.text or self.text == self._pushed:
            return False
        now = self._clock()
        if self._last_edit is not None and now - self._last_edit < self.edit_interval:
            return False
        await self._publish(self.text)
        self._pushed = None if self._unsent else self.text
        self._last_edit = now
        return True

    async def finish(self, text: str):
        """Final, unthrottled update of the current message."""
        await self._publish(text)


class RecognitionSupervisor:
    """Owns the global recognition lock; one instance per process."""

    def __init__(
        self,
        config: RecognizerConfig,
        limits: LimitsConfig,
        admission: AdmissionController,
        transport: Transport,
    ):
        self.config = config
        self.limits = limits
        self.admission = admission
        self.transport = transport
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def select_model(self, depth: int) -> ModelChoice:
        if depth >= self.config.queue_threshold_base:
            return ModelChoice("base", self.config.model_base)
        return ModelChoice("medium", self.config.model_medium)

    def build_args(self, wav_path, model: ModelChoice, short_audio: bool) -> list[str]:
        language = self.limits.fallback_language if short_audio else "auto"
        return [
            self.config.whisper_path,
            "-m", model.path,
            "-f", str(wav_path),
            "-l", language,
            "-np", "-nt",
        ]

    async def run(self, job: Job) -> RecognitionResult:
        """Wait for the lock, then transcribe ``job.converted_path``."""
        if job.status_handle is None:
            raise ValueError("job has no status message to stream into")

        job.state = RecognitionState.WAITING_LOCK
        if self.busy:
            logger.debug("Job for %s waiting for recognizer", job.target)
        async with self._lock:
            model = self.select_model(self.admission.depth)
            job.model = model.name
            logger.info(
                "Transcribing %s with %s model (queue=%d, short=%s)",
                job.converted_path.name, model.name, self.admission.depth, job.short_audio,
            )
            await self.transport.edit_message(job.status_handle, f"Transcribing ({model.name})...")
            result = await self._recognize(job, model)
            job.state = result.state

        logger.info("Job for %s finished: %s", job.target, result.state.value)
        return result

    async def _recognize(self, job: Job, model: ModelChoice) -> RecognitionResult:
        args = self.build_args(job.converted_path, model, job.short_audio)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.error(f"Cannot start recognizer {args[0]}: {e}")
            await self.transport.edit_message(job.status_handle, FAILED_TEXT)
            return RecognitionResult(RecognitionState.FAILED, model=model.name)

        job.state = RecognitionState.RUNNING
        stream = StatusStream(
            self.transport, job.target, job.status_handle,
            message_limit=self.config.message_limit,
            edit_interval=self.config.edit_interval_ms / 1000,
        )
        started = time.monotonic()
        try:
            try:
                exit_code = await asyncio.wait_for(
                    self._pump(proc, stream), timeout=self.config.timeout_seconds,
                )
            except asyncio.TimeoutError:
                await self._kill(proc)
                elapsed = time.monotonic() - started
                logger.warning("Recognizer timed out after %.0fs, killed pid %d", elapsed, proc.pid)
                await stream.finish(TIMED_OUT_TEXT)
                job.status_handle = stream.handle
                return RecognitionResult(RecognitionState.TIMED_OUT, model=model.name)
        finally:
            if proc.returncode is None:
                await self._kill(proc)

        transcript = stream.text.strip()
        succeeded = exit_code == 0
        if transcript:
            final = transcript
        elif succeeded:
            final = NO_SPEECH_TEXT
        else:
            final = FAILED_TEXT
        await stream.finish(final)
        job.status_handle = stream.handle

        if not succeeded:
            logger.warning("Recognizer exited with status %s", exit_code)
        return RecognitionResult(
            RecognitionState.DONE if succeeded else RecognitionState.FAILED,
            model=model.name,
            exit_code=exit_code,
            transcript=transcript,
        )

    async def _pump(self, proc: asyncio.subprocess.Process, stream: StatusStream) -> int:
        """Read loop: drain output, push throttled edits, return exit status.

        Ends on EOF, or one quiet poll after the child has exited. A
        descendant that inherited the pipe can keep it open long after
        whisper-cli itself is gone.
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        poll = self.config.poll_interval_ms / 1000
        exited = False

        while True:
            try:
                chunk = await asyncio.wait_for(proc.stdout.read(READ_SIZE), timeout=poll)
            except asyncio.TimeoutError:
                chunk = None  # nothing new this poll

            if chunk == b"" or (chunk is None and exited):
                stream.append(decoder.decode(b"", final=True))
                await stream.flush_overflow()
                break

            if chunk:
                stream.append(decoder.decode(chunk))
            elif proc.returncode is not None:
                # child gone, pipe still open: one more poll for its last writes
                exited = True
            await stream.flush_overflow()
            await stream.maybe_push()

        if proc.returncode is not None:
            return proc.returncode
        return await proc.wait()

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process):
        try:
            proc.kill()
        except ProcessLookupError:
            pass  # already exited, still needs reaping
        await proc.wait()
