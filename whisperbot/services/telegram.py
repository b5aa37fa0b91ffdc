"""Telegram Bot API transport over httpx.

Implements the ``Transport`` contract used by the core plus long-polling
for incoming updates. Wire errors are logged and reported as failure
values; they never reach the job pipeline as exceptions.
"""

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx

from whisperbot.config import TelegramConfig
from whisperbot.models.schemas import FileType, StatusHandle, Submission

logger = logging.getLogger("whisperbot.telegram")


class TelegramError(Exception):
    """Bot API answered with ``ok: false``."""


def parse_update(update: dict) -> Submission | None:
    """Turn a getUpdates entry into a Submission, or None if it carries no file."""
    message = update.get("message")
    if not message:
        return None
    chat = message.get("chat") or {}
    if "id" not in chat:
        return None

    if voice := message.get("voice"):
        file_type, payload = FileType.VOICE, voice
    elif audio := message.get("audio"):
        file_type, payload = FileType.AUDIO, audio
    elif document := message.get("document"):
        file_type, payload = FileType.DOCUMENT, document
    else:
        return None

    return Submission(
        target=chat["id"],
        message_id=message.get("message_id"),
        file_type=file_type,
        file_id=payload.get("file_id", ""),
        mime_type=payload.get("mime_type"),
        file_name=payload.get("file_name"),
    )


class TelegramTransport:
    """Bot API client. Use as an async context manager or call ``close()``."""

    def __init__(self, config: TelegramConfig, client: httpx.AsyncClient | None = None):
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.request_timeout_seconds)
        self._offset = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def close(self):
        await self._client.aclose()

    @property
    def _base(self) -> str:
        return f"{self._config.api_url}/bot{self._config.api_token}"

    async def _call(self, method: str, **params) -> dict | list:
        """POST a Bot API method and return its ``result``."""
        resp = await self._client.post(f"{self._base}/{method}", json=params)
        data = resp.json()
        if not data.get("ok"):
            raise TelegramError(f"{method}: {data.get('description', resp.status_code)}")
        return data["result"]

    # ------------------------------------------------------------------
    # Transport contract
    # ------------------------------------------------------------------

    async def send_message(self, target: int, text: str,
                           reply_to: Optional[int] = None) -> StatusHandle | None:
        params = {"chat_id": target, "text": text}
        if reply_to is not None:
            params["reply_to_message_id"] = reply_to
            params["allow_sending_without_reply"] = True
        try:
            result = await self._call("sendMessage", **params)
        except (httpx.HTTPError, ValueError, TelegramError) as e:
            logger.warning(f"sendMessage to {target} failed: {e}")
            return None
        return StatusHandle(chat_id=result["chat"]["id"], message_id=result["message_id"])

    async def edit_message(self, handle: StatusHandle, text: str) -> bool:
        try:
            await self._call(
                "editMessageText",
                chat_id=handle.chat_id, message_id=handle.message_id, text=text,
            )
        except TelegramError as e:
            # "message is not modified" and friends; the text stays as it was
            logger.debug(f"editMessageText {handle.message_id}: {e}")
            return False
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"editMessageText {handle.message_id} failed: {e}")
            return False
        return True

    async def download(self, submission: Submission, path: Path) -> bool:
        if not submission.file_id:
            return False
        try:
            info = await self._call("getFile", file_id=submission.file_id)
            file_path = info.get("file_path")
            if not file_path:
                logger.warning("getFile returned no path for %s", submission.file_id)
                return False
            url = f"{self._config.api_url}/file/bot{self._config.api_token}/{file_path}"
            async with self._client.stream("GET", url) as resp:
                resp.raise_for_status()
                with open(path, "wb") as f:
                    async for chunk in resp.aiter_bytes():
                        await asyncio.to_thread(f.write, chunk)
        except (httpx.HTTPError, ValueError, TelegramError, OSError) as e:
            logger.warning(f"Download of {submission.file_id} failed: {e}")
            Path(path).unlink(missing_ok=True)
            return False
        logger.debug("Downloaded %s to %s", submission.file_id, path)
        return True

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def poll_updates(self) -> AsyncIterator[Submission]:
        """Yield submissions forever, long-polling getUpdates."""
        while True:
            try:
                updates = await self._call(
                    "getUpdates",
                    offset=self._offset,
                    timeout=self._config.poll_timeout_seconds,
                    allowed_updates=["message"],
                )
            except (httpx.HTTPError, ValueError, TelegramError) as e:
                logger.warning(f"getUpdates failed: {e}, retrying in 5s")
                await asyncio.sleep(5)
                continue

            for update in updates:
                self._offset = max(self._offset, update.get("update_id", 0) + 1)
                submission = parse_update(update)
                if submission is not None:
                    yield submission
