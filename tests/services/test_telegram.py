"""Tests for whisperbot.services.telegram — Bot API transport."""

import json

import httpx
import pytest

from whisperbot.config import TelegramConfig
from whisperbot.models.schemas import FileType, StatusHandle, Submission
from whisperbot.services.telegram import TelegramTransport, parse_update

API = "https://api.test"


@pytest.fixture
def tg_config():
    return TelegramConfig(api_token="TOKEN", api_url=API)


def make_transport(tg_config, handler):
    """TelegramTransport whose HTTP traffic goes to ``handler``."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TelegramTransport(tg_config, client=client)


def ok(result):
    return httpx.Response(200, json={"ok": True, "result": result})


# ---------------------------------------------------------------------------
# parse_update
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestParseUpdate:
    def test_voice(self):
        sub = parse_update({"update_id": 1, "message": {
            "message_id": 5, "chat": {"id": 99},
            "voice": {"file_id": "v1", "mime_type": "audio/ogg", "duration": 3},
        }})
        assert sub == Submission(target=99, message_id=5, file_type=FileType.VOICE,
                                 file_id="v1", mime_type="audio/ogg")

    def test_audio(self):
        sub = parse_update({"message": {
            "message_id": 6, "chat": {"id": 99},
            "audio": {"file_id": "a1", "mime_type": "audio/mpeg", "file_name": "song.mp3"},
        }})
        assert sub.file_type == FileType.AUDIO
        assert sub.file_name == "song.mp3"

    def test_document(self):
        sub = parse_update({"message": {
            "message_id": 7, "chat": {"id": -100},
            "document": {"file_id": "d1", "file_name": "notes.pdf", "mime_type": "application/pdf"},
        }})
        assert sub.file_type == FileType.DOCUMENT
        assert sub.target == -100

    @pytest.mark.parametrize("update", [
        {"update_id": 1},
        {"message": {"message_id": 1, "chat": {"id": 1}, "text": "hi"}},
        {"message": {"message_id": 1, "voice": {"file_id": "x"}}},
    ])
    def test_updates_without_files_are_skipped(self, update):
        assert parse_update(update) is None


# ---------------------------------------------------------------------------
# send / edit
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestSendMessage:
    async def test_returns_handle_and_posts_reply(self, tg_config):
        requests = []

        def handler(request):
            requests.append(request)
            return ok({"message_id": 321, "chat": {"id": 99}})

        async with make_transport(tg_config, handler) as tg:
            handle = await tg.send_message(99, "Transcribing...", reply_to=5)

        assert handle == StatusHandle(chat_id=99, message_id=321)
        assert str(requests[0].url) == f"{API}/botTOKEN/sendMessage"
        body = json.loads(requests[0].content)
        assert body["chat_id"] == 99
        assert body["text"] == "Transcribing..."
        assert body["reply_to_message_id"] == 5

    async def test_no_reply_field_without_reply_to(self, tg_config):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return ok({"message_id": 1, "chat": {"id": 99}})

        async with make_transport(tg_config, handler) as tg:
            await tg.send_message(99, "[...]\nmore")

        assert "reply_to_message_id" not in bodies[0]

    async def test_api_error_returns_none(self, tg_config):
        def handler(request):
            return httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked"})

        async with make_transport(tg_config, handler) as tg:
            assert await tg.send_message(99, "x") is None

    async def test_network_error_returns_none(self, tg_config):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        async with make_transport(tg_config, handler) as tg:
            assert await tg.send_message(99, "x") is None


@pytest.mark.unit
class TestEditMessage:
    async def test_edit_posts_ids_and_text(self, tg_config):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return ok({"message_id": 321})

        async with make_transport(tg_config, handler) as tg:
            assert await tg.edit_message(StatusHandle(chat_id=99, message_id=321), "hello") is True

        assert bodies == [{"chat_id": 99, "message_id": 321, "text": "hello"}]

    async def test_not_modified_is_not_fatal(self, tg_config):
        def handler(request):
            return httpx.Response(400, json={
                "ok": False, "description": "Bad Request: message is not modified",
            })

        async with make_transport(tg_config, handler) as tg:
            assert await tg.edit_message(StatusHandle(chat_id=1, message_id=2), "same") is False

    async def test_garbage_response_is_not_fatal(self, tg_config):
        def handler(request):
            return httpx.Response(502, text="<html>bad gateway</html>")

        async with make_transport(tg_config, handler) as tg:
            assert await tg.edit_message(StatusHandle(chat_id=1, message_id=2), "x") is False


# ---------------------------------------------------------------------------
# download
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestDownload:
    async def test_downloads_file_content(self, tg_config, tmp_path, voice_submission):
        def handler(request):
            if request.url.path.endswith("/getFile"):
                assert json.loads(request.content) == {"file_id": "voice-file-id"}
                return ok({"file_id": "voice-file-id", "file_path": "voice/file_1.oga"})
            assert str(request.url) == f"{API}/file/botTOKEN/voice/file_1.oga"
            return httpx.Response(200, content=b"OggS-payload")

        dest = tmp_path / "in.audio"
        async with make_transport(tg_config, handler) as tg:
            assert await tg.download(voice_submission, dest) is True

        assert dest.read_bytes() == b"OggS-payload"

    async def test_http_error_leaves_no_file(self, tg_config, tmp_path, voice_submission):
        def handler(request):
            if request.url.path.endswith("/getFile"):
                return ok({"file_path": "voice/file_1.oga"})
            return httpx.Response(404)

        dest = tmp_path / "in.audio"
        async with make_transport(tg_config, handler) as tg:
            assert await tg.download(voice_submission, dest) is False

        assert not dest.exists()

    async def test_missing_file_path(self, tg_config, tmp_path, voice_submission):
        def handler(request):
            return ok({"file_id": "voice-file-id"})

        async with make_transport(tg_config, handler) as tg:
            assert await tg.download(voice_submission, tmp_path / "in.audio") is False

    async def test_submission_without_file_id(self, tg_config, tmp_path):
        def handler(request):
            raise AssertionError("no request expected")

        async with make_transport(tg_config, handler) as tg:
            sub = Submission(target=1, file_type=FileType.VOICE)
            assert await tg.download(sub, tmp_path / "in.audio") is False


# ---------------------------------------------------------------------------
# poll_updates
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestPollUpdates:
    async def test_yields_submissions_and_advances_offset(self, tg_config):
        offsets = []
        batches = [
            [
                {"update_id": 10, "message": {"message_id": 1, "chat": {"id": 5}, "text": "hi"}},
                {"update_id": 11, "message": {"message_id": 2, "chat": {"id": 5},
                                              "voice": {"file_id": "v"}}},
            ],
            [
                {"update_id": 12, "message": {"message_id": 3, "chat": {"id": 6},
                                              "audio": {"file_id": "a"}}},
            ],
        ]

        def handler(request):
            offsets.append(json.loads(request.content)["offset"])
            return ok(batches.pop(0) if batches else [])

        received = []
        async with make_transport(tg_config, handler) as tg:
            async for sub in tg.poll_updates():
                received.append(sub)
                if len(received) == 2:
                    break

        assert [s.file_id for s in received] == ["v", "a"]
        assert offsets == [0, 12]
