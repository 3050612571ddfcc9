"""Async HTTP client for the WhatsApp Cloud API with retry logic.

Only the outbound half of the channel lives here (send text, send image,
mark as read).  Webhook verification and inbound parsing are handled by the
channel gateway in front of this service.

Graph API docs: https://developers.facebook.com/docs/whatsapp/cloud-api
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from src.config import WHATSAPP_ACCESS_TOKEN, WHATSAPP_BASE_URL, WHATSAPP_PHONE_NUMBER_ID
from src.errors import ChannelAPIError
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0


class WhatsAppClient:
    """Thin wrapper around the Cloud API ``/messages`` and ``/media`` endpoints.

    Timeouts, connection errors and 5xx responses are retried with
    exponential backoff; 4xx responses fail immediately.
    """

    def __init__(
        self,
        phone_number_id: str | None = None,
        access_token: str | None = None,
        base_url: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._phone_number_id = phone_number_id or WHATSAPP_PHONE_NUMBER_ID
        self._access_token = access_token or WHATSAPP_ACCESS_TOKEN
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url or WHATSAPP_BASE_URL,
            headers={"Authorization": f"Bearer {self._access_token}"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self._phone_number_id and self._access_token)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Internal helpers ─────────────────────────────────────────────

    async def _request(
        self,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """POST with exponential-backoff retries."""
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = await self._client.post(path, json=json_body, files=files, data=data)
                elapsed = (time.perf_counter() - t0) * 1000
                if response.status_code >= 400:
                    kind = "Server" if response.status_code >= 500 else "Client"
                    raise ChannelAPIError(
                        f"{kind} error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success("whatsapp", f"POST {path}", latency_ms=elapsed)
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                metrics.record_failure("whatsapp", f"POST {path}", error_type=type(exc).__name__)
                logger.warning(
                    "WhatsApp API attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except ChannelAPIError as exc:
                elapsed = (time.perf_counter() - t0) * 1000
                metrics.record_failure(
                    "whatsapp", f"POST {path}",
                    error_type=f"{exc.status_code // 100}xx", latency_ms=elapsed,
                )
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "WhatsApp API server error on attempt %d/%d. Retrying…",
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise  # 4xx errors are not retried

            if attempt < MAX_RETRIES:
                await asyncio.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise ChannelAPIError(
            f"WhatsApp API request failed after {MAX_RETRIES} retries: {last_error}"
        )

    # ── Public API ───────────────────────────────────────────────────

    async def send_text(self, to: str, body: str) -> dict[str, Any]:
        """Send a plain text message to ``to`` (E.164 digits)."""
        result = await self._request(
            f"/{self._phone_number_id}/messages",
            json_body={
                "messaging_product": "whatsapp",
                "to": to,
                "type": "text",
                "text": {"body": body},
            },
        )
        logger.info("Message sent to %s", to)
        return result

    async def upload_media(self, content: bytes, *, filename: str = "table.png", mime_type: str = "image/png") -> str:
        """Upload bytes to the media endpoint and return the media id."""
        result = await self._request(
            f"/{self._phone_number_id}/media",
            data={"messaging_product": "whatsapp"},
            files={"file": (filename, content, mime_type)},
        )
        return result["id"]

    async def send_image(self, to: str, content: bytes, *, caption: str | None = None) -> dict[str, Any]:
        """Upload an image, then send it as an image message."""
        media_id = await self.upload_media(content)
        image: dict[str, Any] = {"id": media_id}
        if caption:
            image["caption"] = caption
        result = await self._request(
            f"/{self._phone_number_id}/messages",
            json_body={
                "messaging_product": "whatsapp",
                "to": to,
                "type": "image",
                "image": image,
            },
        )
        logger.info("Image sent to %s", to)
        return result

    async def mark_as_read(self, message_id: str) -> None:
        """Best-effort read receipt; failures are only logged."""
        try:
            await self._request(
                f"/{self._phone_number_id}/messages",
                json_body={
                    "messaging_product": "whatsapp",
                    "status": "read",
                    "message_id": message_id,
                },
            )
        except ChannelAPIError as exc:
            logger.warning("Could not mark message %s as read: %s", message_id, exc)
