"""Unit tests for WhatsAppClient: media download and text replies.

Uses httpx.MockTransport so no real network calls are made.
"""

import json

import httpx
import pytest

from whatsapp_agent.errors import DeliveryFailed, MediaUnavailable
from whatsapp_agent.services.whatsapp_service import MediaBlob, WhatsAppClient

GRAPH = "https://graph.test/v21.0"
CDN_URL = "https://lookaside.test/whatsapp_business/attachments/?mid=media-1"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _started_client(handler, access_token: str = "tok", phone_id: str = "555") -> WhatsAppClient:
    """Return a WhatsAppClient with a mock transport already initialised."""
    wc = WhatsAppClient(access_token=access_token, phone_id=phone_id, base_url=GRAPH)
    wc._client = httpx.AsyncClient(base_url=GRAPH, transport=httpx.MockTransport(handler))
    return wc


def _media_handler(captured: list, lookup_status: int = 200, download_status: int = 200, lookup_body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        if request.url.host == "graph.test":
            body = lookup_body if lookup_body is not None else {"url": CDN_URL, "mime_type": "image/jpeg", "id": "media-1"}
            return httpx.Response(lookup_status, json=body)
        return httpx.Response(download_status, content=b"\xff\xd8jpeg-bytes")

    return handler


# ---------------------------------------------------------------------------
# Lifecycle tests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_startup_and_shutdown():
    wc = WhatsAppClient(access_token="tok", phone_id="555")
    assert wc._client is None
    await wc.startup()
    assert wc._client is not None
    await wc.shutdown()
    assert wc._client is None


def test_client_property_raises_before_startup():
    wc = WhatsAppClient()
    with pytest.raises(RuntimeError, match="not initialized"):
        _ = wc.client


# ---------------------------------------------------------------------------
# fetch_media
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fetch_media_two_step_download():
    captured: list[httpx.Request] = []
    wc = _started_client(_media_handler(captured))

    blob = await wc.fetch_media("media-1")

    assert blob == MediaBlob(data=b"\xff\xd8jpeg-bytes", mime_type="image/jpeg")
    assert len(captured) == 2
    assert captured[0].url.path == "/v21.0/media-1"
    assert str(captured[1].url) == CDN_URL
    for request in captured:
        assert request.headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_fetch_media_uses_reported_mime_type():
    captured: list[httpx.Request] = []
    body = {"url": CDN_URL, "mime_type": "audio/ogg; codecs=opus"}
    wc = _started_client(_media_handler(captured, lookup_body=body))

    blob = await wc.fetch_media("media-1")

    assert blob.mime_type == "audio/ogg; codecs=opus"


@pytest.mark.asyncio
async def test_fetch_media_without_token_raises():
    captured: list[httpx.Request] = []
    wc = _started_client(_media_handler(captured), access_token="")

    with pytest.raises(MediaUnavailable, match="ACCESS_TOKEN"):
        await wc.fetch_media("media-1")
    assert captured == []


@pytest.mark.asyncio
async def test_fetch_media_lookup_error_raises():
    wc = _started_client(_media_handler([], lookup_status=404, lookup_body={"error": {"message": "bad id"}}))
    with pytest.raises(MediaUnavailable, match="404"):
        await wc.fetch_media("bogus")


@pytest.mark.asyncio
async def test_fetch_media_download_error_raises():
    wc = _started_client(_media_handler([], download_status=500))
    with pytest.raises(MediaUnavailable):
        await wc.fetch_media("media-1")


@pytest.mark.asyncio
async def test_fetch_media_missing_url_raises():
    wc = _started_client(_media_handler([], lookup_body={"mime_type": "image/png"}))
    with pytest.raises(MediaUnavailable, match="No download URL"):
        await wc.fetch_media("media-1")


@pytest.mark.asyncio
async def test_fetch_media_non_object_lookup_raises():
    captured: list[httpx.Request] = []
    wc = _started_client(_media_handler(captured, lookup_body=["not", "an", "object"]))
    with pytest.raises(MediaUnavailable, match="Unexpected media lookup response"):
        await wc.fetch_media("media-1")
    assert len(captured) == 1


@pytest.mark.asyncio
async def test_fetch_media_transport_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    wc = _started_client(handler)
    with pytest.raises(MediaUnavailable):
        await wc.fetch_media("media-1")


# ---------------------------------------------------------------------------
# send_text_message
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_send_text_message_posts_correct_payload():
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})

    wc = _started_client(handler)
    await wc.send_text_message("15550001111", "hello there")

    assert len(captured) == 1
    assert captured[0].method == "POST"
    assert captured[0].url.path == "/v21.0/555/messages"
    assert captured[0].headers["Authorization"] == "Bearer tok"
    assert json.loads(captured[0].content) == {
        "messaging_product": "whatsapp",
        "to": "15550001111",
        "type": "text",
        "text": {"body": "hello there"},
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("token,phone_id", [("", "555"), ("tok", "")])
async def test_send_text_message_missing_credentials_raises(token, phone_id):
    wc = _started_client(lambda r: httpx.Response(200), access_token=token, phone_id=phone_id)
    with pytest.raises(DeliveryFailed, match="not configured"):
        await wc.send_text_message("1555", "hi")


@pytest.mark.asyncio
async def test_send_text_message_http_error_raises():
    wc = _started_client(lambda r: httpx.Response(400, json={"error": {"message": "bad recipient"}}))
    with pytest.raises(DeliveryFailed, match="400"):
        await wc.send_text_message("1555", "hi")
