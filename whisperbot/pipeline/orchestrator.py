"""Job orchestrator — takes one submission from download to final transcript."""

import asyncio
import itertools
import logging
import os
from pathlib import Path

from whisperbot.config import AppConfig
from whisperbot.models.schemas import FileType, Job, RecognitionResult, Submission
from whisperbot.pipeline.admission import AdmissionController
from whisperbot.pipeline.supervisor import RecognitionSupervisor
from whisperbot.services.audio_preprocessor import AudioPreprocessor
from whisperbot.services.transport import Transport

logger = logging.getLogger("whisperbot.orchestrator")

AUDIO_EXTENSIONS = frozenset({
    ".mp3", ".wav", ".ogg", ".oga", ".m4a", ".flac", ".opus",
    ".mpeg", ".mpga", ".wma", ".aac", ".webm",
})

DOWNLOAD_FAILED_TEXT = "Can't download audio."
PROBE_FAILED_TEXT = "Can't read audio duration."
CONVERSION_FAILED_TEXT = "Audio conversion failed."
BUSY_TEXT = "Too busy, try later."


def is_audio(submission: Submission) -> bool:
    """Voice notes and audio files always; documents only if they look like audio."""
    if submission.file_type in (FileType.VOICE, FileType.AUDIO):
        return True
    if submission.file_type != FileType.DOCUMENT:
        return False

    mime = (submission.mime_type or "").lower()
    if "audio/" in mime or "ogg" in mime:
        return True
    if submission.file_name:
        return Path(submission.file_name).suffix.lower() in AUDIO_EXTENSIONS
    return False


class JobOrchestrator:
    """Runs the per-submission sequence and owns its temp files.

    Sequence: download -> probe -> convert -> admit -> status -> recognize.
    Every path out of ``handle`` removes both temp files and, if the job was
    admitted, releases its slot exactly once.

    Ownership:
    - Shares one AdmissionController and one RecognitionSupervisor with all
      jobs; both are created at startup and passed in.
    - Owns the set of in-flight job tasks started through ``submit``.
    """

    _ids = itertools.count()  # process-wide, for unique temp names

    def __init__(
        self,
        config: AppConfig,
        transport: Transport,
        admission: AdmissionController,
        supervisor: RecognitionSupervisor,
        preprocessor: AudioPreprocessor | None = None,
    ):
        self.config = config
        self.transport = transport
        self.admission = admission
        self.supervisor = supervisor
        self.preprocessor = preprocessor or AudioPreprocessor(config.media, config.limits)

        self._inflight: set[asyncio.Task] = set()
        self._metrics = {
            "jobs_started": 0,
            "jobs_ignored": 0,
            "jobs_rejected": 0,
            "jobs_completed": 0,
        }

    @property
    def metrics(self) -> dict:
        """Snapshot of counters plus live queue state."""
        return {
            **self._metrics,
            "queue_depth": self.admission.depth,
            "inflight_jobs": len(self._inflight),
            "recognizer_busy": self.supervisor.busy,
        }

    def temp_paths(self) -> tuple[Path, Path]:
        """Fresh (raw, wav) paths. The raw extension is fixed; ffmpeg sniffs content."""
        n = next(self._ids)
        base = self.config.media.temp_dir / f"{self.config.media.temp_prefix}_{os.getpid()}_{n}"
        return base.with_suffix(".audio"), base.with_suffix(".wav")

    # ------------------------------------------------------------------
    # Task management
    # ------------------------------------------------------------------

    def submit(self, submission: Submission) -> asyncio.Task | None:
        """Start handling ``submission`` on its own task. Ignores non-audio."""
        if not is_audio(submission):
            self._metrics["jobs_ignored"] += 1
            return None
        task = asyncio.create_task(self._run_job(submission))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run_job(self, submission: Submission):
        try:
            await self.handle(submission)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Unhandled error in job for chat {submission.target}: {e}", exc_info=True)

    async def shutdown(self, timeout: float = 5.0):
        """Cancel in-flight jobs and wait for their cleanup to run."""
        if not self._inflight:
            return
        logger.info(f"Cancelling {len(self._inflight)} in-flight job(s)... metrics={self.metrics}")
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        try:
            await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=True), timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for jobs to clean up")

    # ------------------------------------------------------------------
    # One job
    # ------------------------------------------------------------------

    async def handle(self, submission: Submission) -> RecognitionResult | None:
        """Process one submission. Returns the recognition result, or None if
        the job ended before recognition (ignored, rejected, or failed)."""
        if not is_audio(submission):
            return None

        source, converted = self.temp_paths()
        job = Job(
            target=submission.target,
            source_path=source,
            converted_path=converted,
            reply_to=submission.message_id,
        )
        admitted = False
        self._metrics["jobs_started"] += 1

        try:
            if not await self.transport.download(submission, source):
                await self._reject(job, DOWNLOAD_FAILED_TEXT)
                return None

            duration = await self.preprocessor.probe_duration(source)
            if duration is None:
                await self._reject(job, PROBE_FAILED_TEXT)
                return None
            job.duration = duration

            max_seconds = self.config.limits.max_seconds
            if duration > max_seconds:
                await self._reject(job, f"Audio too long: {duration:.0f}s (max {max_seconds:.0f}s).")
                return None

            job.short_audio = self.preprocessor.is_short(duration)
            converted_ok = await self.preprocessor.normalize(source, converted, duration)
            source.unlink(missing_ok=True)
            if not converted_ok:
                await self._reject(job, CONVERSION_FAILED_TEXT)
                return None

            position = self.admission.try_admit()
            if position is None:
                await self._reject(job, BUSY_TEXT)
                return None
            admitted = True
            job.queue_position = position

            status = f"Queued ({position + 1})..." if position > 0 else "Transcribing..."
            job.status_handle = await self.transport.send_message(
                job.target, status, reply_to=job.reply_to,
            )
            if job.status_handle is None:
                logger.error("Could not send status message to %s, dropping job", job.target)
                return None

            result = await self.supervisor.run(job)
            self._metrics["jobs_completed"] += 1
            return result

        finally:
            if admitted:
                self.admission.release()
            source.unlink(missing_ok=True)
            converted.unlink(missing_ok=True)

    async def _reject(self, job: Job, text: str):
        logger.info("Job for %s rejected: %s", job.target, text)
        self._metrics["jobs_rejected"] += 1
        await self.transport.send_message(job.target, text, reply_to=job.reply_to)
