"""WhatsApp Cloud API client.

Covers the two Graph API concerns the pipelines need:
  1. Media download: resolve a media id to a temporary URL + MIME type, then
     fetch the bytes from that URL (both calls carry the bearer token).
  2. Reply delivery: POST a one-shot text message from the configured phone id.

Every call is single-attempt; failures surface as MediaUnavailable /
DeliveryFailed so the dispatcher can decide what to tell the user.
"""

from dataclasses import dataclass

import httpx
import structlog

from whatsapp_agent.config import settings
from whatsapp_agent.errors import DeliveryFailed, MediaUnavailable

logger = structlog.get_logger()


@dataclass(frozen=True)
class MediaBlob:
    data: bytes
    mime_type: str


class WhatsAppClient:
    def __init__(
        self,
        access_token: str | None = None,
        phone_id: str | None = None,
        base_url: str | None = None,
    ) -> None:
        self.access_token = settings.ACCESS_TOKEN if access_token is None else access_token
        self.phone_id = settings.PHONE_ID if phone_id is None else phone_id
        self.base_url = base_url or settings.GRAPH_API_URL
        # Populated by startup(); None until then
        self._client: httpx.AsyncClient | None = None

    async def startup(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS, connect=5.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )

    async def shutdown(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("WhatsAppClient not initialized; call startup() first")
        return self._client

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def fetch_media(self, media_id: str) -> MediaBlob:
        """Download the media behind *media_id*.

        The returned MIME type is the one the Graph API reports for the file,
        not whatever the inbound message claimed.

        Raises:
            MediaUnavailable: no access token, invalid id, or either call failed.
        """
        if not self.access_token:
            raise MediaUnavailable("ACCESS_TOKEN not configured")
        if not media_id:
            raise MediaUnavailable("Empty media id")

        log = logger.bind(media_id=media_id)
        try:
            # 1. Resolve media id → temporary URL
            meta_resp = await self.client.get(f"/{media_id}", headers=self._auth_headers())
            meta_resp.raise_for_status()
            meta = meta_resp.json()
            if not isinstance(meta, dict):
                raise MediaUnavailable(f"Unexpected media lookup response for {media_id}")
            url = meta.get("url")
            mime_type = meta.get("mime_type") or "application/octet-stream"
            if not url:
                raise MediaUnavailable(f"No download URL returned for media {media_id}")

            # 2. Download the bytes (absolute URL, bypasses base_url)
            data_resp = await self.client.get(url, headers=self._auth_headers())
            data_resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            log.error("media_download_failed", status=exc.response.status_code, body=exc.response.text[:300])
            raise MediaUnavailable(f"Media download failed ({exc.response.status_code})") from exc
        except (httpx.HTTPError, ValueError) as exc:
            log.error("media_download_failed", error=str(exc))
            raise MediaUnavailable(f"Media download failed: {exc}") from exc

        blob = MediaBlob(data=data_resp.content, mime_type=mime_type)
        log.info("media_downloaded", size=len(blob.data), mime_type=blob.mime_type)
        return blob

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_text_message(self, to: str, body: str) -> None:
        """Send a text message to *to*.

        Raises:
            DeliveryFailed: missing credentials or the Graph API call failed.
        """
        if not self.access_token or not self.phone_id:
            raise DeliveryFailed("ACCESS_TOKEN or PHONE_ID not configured")

        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        try:
            resp = await self.client.post(
                f"/{self.phone_id}/messages",
                json=payload,
                headers={**self._auth_headers(), "Content-Type": "application/json"},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("message_send_failed", to=to, status=exc.response.status_code, body=exc.response.text[:300])
            raise DeliveryFailed(f"Send failed ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            logger.error("message_send_failed", to=to, error=str(exc))
            raise DeliveryFailed(f"Send failed: {exc}") from exc

        logger.info("message_sent", to=to)
