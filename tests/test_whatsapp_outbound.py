"""Tests for the Evolution channel client - HTTP calls, retries, no PII in logs."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from lardigital.infra.settings import EvolutionConfig
from lardigital.whatsapp.channel import (
    EVENT_AUTH_FAILURE,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    ChannelError,
)
from lardigital.whatsapp.evolution_adapter import InvalidPayloadError
from lardigital.whatsapp.evolution_client import EvolutionChannelClient

CONFIG = EvolutionConfig(
    base_url="http://localhost:8080",
    instance="casa",
    api_key="test-api-key",
    webhook_secret="s3cret",
)

TEST_JID = "jid_test@s.whatsapp.net"
TEST_TEXT = "dummy_text_content"


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def get_all_logged_content(self) -> str:
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)

    def levels(self) -> list[str]:
        return [level for level, _, _ in self.calls]


def _response(payload=None, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    return response


def _client(*responses, error=None):
    session = MagicMock()
    if error is not None:
        session.request.side_effect = error
    else:
        session.request.side_effect = list(responses)
    return EvolutionChannelClient(CONFIG, session=session), session


def _record(message_id, ts, *, from_me=False):
    return {
        "key": {"id": message_id, "remoteJid": TEST_JID, "fromMe": from_me},
        "messageType": "conversation",
        "message": {"conversation": "oi"},
        "messageTimestamp": ts,
    }


class TestSend:
    def test_posts_to_send_text(self):
        client, session = _client(_response({"key": {"id": "X"}}))

        client.send_message_sync(TEST_JID, TEST_TEXT)

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "POST"
        assert url == "http://localhost:8080/message/sendText/casa"
        assert kwargs["json"] == {"number": TEST_JID, "text": TEST_TEXT}
        assert kwargs["headers"]["apikey"] == "test-api-key"

    def test_retries_once_on_5xx(self):
        client, session = _client(_response({}, status_code=503), _response({}))

        with patch("lardigital.whatsapp.evolution_client.time.sleep") as sleep:
            client.send_message_sync(TEST_JID, TEST_TEXT)

        assert session.request.call_count == 2
        sleep.assert_called_once()

    def test_does_not_retry_4xx(self):
        client, session = _client(_response({}, status_code=400))

        with pytest.raises(ChannelError):
            client.send_message_sync(TEST_JID, TEST_TEXT)

        assert session.request.call_count == 1

    def test_gives_up_after_retry(self):
        client, session = _client(error=requests.ConnectionError("refused"))

        with patch("lardigital.whatsapp.evolution_client.time.sleep"):
            with pytest.raises(ChannelError, match="ConnectionError"):
                client.send_message_sync(TEST_JID, TEST_TEXT)

        assert session.request.call_count == 2

    def test_missing_config_raises(self):
        client = EvolutionChannelClient(EvolutionConfig(), session=MagicMock())

        with pytest.raises(ChannelError, match="Missing Evolution config"):
            client.send_message_sync(TEST_JID, TEST_TEXT)

    @pytest.mark.asyncio
    async def test_async_send(self):
        client, session = _client(_response({}))

        await client.send_message(TEST_JID, TEST_TEXT)

        assert session.request.call_count == 1


class TestNoPiiLeakage:
    """Recipients and text never reach the logs."""

    def test_success_logs_have_no_pii(self):
        recorder = LogRecorder()
        client, _ = _client(_response({}))

        with patch("lardigital.whatsapp.evolution_client.logger", recorder):
            client.send_message_sync(TEST_JID, TEST_TEXT)

        content = recorder.get_all_logged_content()
        assert TEST_JID not in content
        assert TEST_TEXT not in content
        assert "text_len" in content

    def test_failure_logs_have_no_pii(self):
        recorder = LogRecorder()
        client, _ = _client(error=requests.ConnectionError(f"cannot reach {TEST_JID}"))

        with patch("lardigital.whatsapp.evolution_client.logger", recorder):
            with patch("lardigital.whatsapp.evolution_client.time.sleep"):
                with pytest.raises(ChannelError):
                    client.send_message_sync(TEST_JID, TEST_TEXT)

        content = recorder.get_all_logged_content()
        assert TEST_JID not in content
        assert TEST_TEXT not in content
        assert recorder.levels()[-1] == "error"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_open_session_emits_ready(self):
        client, _ = _client(_response({"instance": {"state": "open"}}))
        events = []
        client.on(EVENT_READY, lambda: events.append("ready"))

        await client.initialize()

        assert events == ["ready"]

    @pytest.mark.asyncio
    async def test_closed_session_emits_qr(self):
        client, session = _client(
            _response({"instance": {"state": "close"}}),
            _response({"code": "2@abc"}),
        )
        codes = []
        client.on(EVENT_QR, codes.append)

        await client.initialize()

        assert codes == ["2@abc"]
        assert session.request.call_args.args[1].endswith("/instance/connect/casa")

    @pytest.mark.asyncio
    async def test_unreachable_gateway_raises(self):
        client, _ = _client(error=requests.ConnectionError("refused"))

        with pytest.raises(ChannelError):
            await client.initialize()

    @pytest.mark.asyncio
    async def test_destroy_closes_session(self):
        client, session = _client()

        await client.destroy()

        assert client.destroyed
        session.close.assert_called_once()


class TestFetchAndMedia:
    @pytest.mark.asyncio
    async def test_fetch_filters_and_sorts(self):
        since = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
        cutoff = int(since.timestamp())
        client, session = _client(
            _response(
                {
                    "messages": {
                        "pages": 1,
                        "records": [
                            _record("B", cutoff + 60),
                            _record("A", cutoff + 30),
                            _record("OLD", cutoff - 30),
                            _record("MINE", cutoff + 90, from_me=True),
                            {"key": {}},
                        ],
                    }
                }
            )
        )

        messages = await client.fetch_messages_since(since)

        assert [m.message_id for m in messages] == ["A", "B"]
        body = session.request.call_args.kwargs["json"]
        assert body["where"]["messageTimestamp"]["gte"] == cutoff

    @pytest.mark.asyncio
    async def test_fetch_follows_pages(self):
        since = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
        cutoff = int(since.timestamp())
        client, session = _client(
            _response({"messages": {"pages": 2, "records": [_record("A", cutoff)]}}),
            _response({"messages": {"pages": 2, "records": [_record("B", cutoff + 1)]}}),
        )

        messages = await client.fetch_messages_since(since)

        assert [m.message_id for m in messages] == ["A", "B"]
        assert session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_download_media_decodes_base64(self):
        from lardigital.whatsapp.evolution_adapter import normalize_message

        client, session = _client(_response({"base64": "aGVsbG8="}))
        message = normalize_message(_record("M1", 1773142200))

        assert await client.download_media(message) == b"hello"
        assert session.request.call_args.kwargs["json"]["message"]["key"]["id"] == "M1"

    @pytest.mark.asyncio
    async def test_download_without_key_returns_none(self):
        from .fakes import message

        client, session = _client()

        assert await client.download_media(message(None, media_kind="image")) is None
        session.request.assert_not_called()


class TestHandleWebhook:
    @pytest.mark.asyncio
    async def test_upsert_emits_message(self):
        client, _ = _client()
        received = []
        client.on(EVENT_MESSAGE, received.append)

        name = await client.handle_webhook(
            {"event": "MESSAGES_UPSERT", "data": _record("M1", 1773142200)}
        )

        assert name == "messages.upsert"
        assert [m.message_id for m in received] == ["M1"]

    @pytest.mark.asyncio
    async def test_own_message_is_not_emitted(self):
        client, _ = _client()
        received = []
        client.on(EVENT_MESSAGE, received.append)

        await client.handle_webhook(
            {"event": "messages.upsert", "data": _record("M1", 1773142200, from_me=True)}
        )

        assert received == []

    @pytest.mark.asyncio
    async def test_malformed_upsert_raises(self):
        client, _ = _client()

        with pytest.raises(InvalidPayloadError):
            await client.handle_webhook({"event": "messages.upsert", "data": {"key": {}}})

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "data,expected",
        [
            ({"state": "open"}, [("ready",)]),
            ({"state": "close", "statusReason": 428}, [("disconnected", "428")]),
            ({"state": "close", "statusReason": 401}, [("auth_failure", "logged out")]),
            ({"state": "connecting"}, []),
        ],
    )
    async def test_connection_updates(self, data, expected):
        client, _ = _client()
        events = []
        client.on(EVENT_READY, lambda: events.append(("ready",)))
        client.on(EVENT_DISCONNECTED, lambda reason: events.append(("disconnected", reason)))
        client.on(EVENT_AUTH_FAILURE, lambda reason: events.append(("auth_failure", reason)))

        await client.handle_webhook({"event": "connection.update", "data": data})

        assert events == expected

    @pytest.mark.asyncio
    async def test_qrcode_update(self):
        client, _ = _client()
        codes = []
        client.on(EVENT_QR, codes.append)

        await client.handle_webhook(
            {"event": "QRCODE_UPDATED", "data": {"qrcode": {"code": "2@xyz"}}}
        )

        assert codes == ["2@xyz"]

    @pytest.mark.asyncio
    async def test_unknown_event_is_returned(self):
        client, _ = _client()

        assert await client.handle_webhook({"event": "PRESENCE_UPDATE"}) == "presence.update"
