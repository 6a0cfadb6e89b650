"""LINE Messaging API gateway.

Uses the push endpoint for a single recipient and multicast for batches.
Delivery failures are returned as results, never raised, so the core can
count them against the attempt budget.
"""

from __future__ import annotations

import asyncio
import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Any, Optional, Sequence

from adapters.notification_formatting import TEXT_MESSAGE_LIMIT, build_flex_message, format_notification, truncate
from core.models import AlertContent, BatchPushResult, PushResult

LOGGER = logging.getLogger(__name__)

BASE_URL = "https://api.line.me/v2/bot"
MAX_MULTICAST_RECIPIENTS = 500


class LineGateway:
    """Gateway adapter that delivers alerts through the LINE Messaging API."""

    max_batch_size = MAX_MULTICAST_RECIPIENTS

    def __init__(
        self,
        channel_access_token: str,
        message_format: str = "flex",
        timeout_seconds: float = 10.0,
        base_url: str = BASE_URL,
    ) -> None:
        if message_format not in {"flex", "text"}:
            raise ValueError("LINE message_format must be 'flex' or 'text'")
        self._token = channel_access_token
        self._format = message_format
        self._timeout = timeout_seconds
        self._base_url = base_url.rstrip("/")

    def _build_message(self, content: AlertContent) -> dict[str, Any]:
        if self._format == "flex":
            return build_flex_message(content)
        return {"type": "text", "text": truncate(format_notification(content, "text"), TEXT_MESSAGE_LIMIT)}

    def _post(self, path: str, payload: dict[str, Any]) -> PushResult:
        """Blocking POST; run in a worker thread by the async methods."""

        url = f"{self._base_url}{path}"
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(url, data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        request.add_header("Authorization", f"Bearer {self._token}")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                request_id = response.headers.get("X-Line-Request-Id")
                LOGGER.debug("LINE request to %s ok (request id %s)", path, request_id)
                return PushResult.ok()
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            message = _error_message(body)
            LOGGER.warning("LINE API error %s on %s: %s", e.code, path, message)
            return PushResult.fail(str(e.code), message)
        except (socket.timeout, TimeoutError):
            LOGGER.warning("LINE API request to %s timed out", path)
            return PushResult.fail("TIMEOUT", "request timed out")
        except urllib.error.URLError as e:
            LOGGER.warning("LINE API network error on %s: %s", path, e.reason)
            return PushResult.fail("NETWORK_ERROR", str(e.reason))

    async def push_one(self, address: str, content: AlertContent) -> PushResult:
        payload = {"to": address, "messages": [self._build_message(content)]}
        return await asyncio.to_thread(self._post, "/message/push", payload)

    async def push_batch(self, addresses: Sequence[str], content: AlertContent) -> BatchPushResult:
        """Multicast in chunks of the API cap; a failed chunk fails all its recipients."""

        message = self._build_message(content)
        failed: list[str] = []
        last_error: Optional[str] = None
        recipients = list(addresses)
        for start in range(0, len(recipients), MAX_MULTICAST_RECIPIENTS):
            chunk = recipients[start : start + MAX_MULTICAST_RECIPIENTS]
            result = await asyncio.to_thread(
                self._post, "/message/multicast", {"to": chunk, "messages": [message]}
            )
            if not result.success:
                failed.extend(chunk)
                last_error = f"{result.error_code}: {result.error_message}"

        if not failed:
            return BatchPushResult(success=True)
        return BatchPushResult(
            success=len(failed) < len(recipients),
            failed_addresses=tuple(failed),
            error_message=f"{len(failed)}/{len(recipients)} recipients failed ({last_error})",
        )


def _error_message(body: str) -> str:
    try:
        data = json.loads(body)
    except ValueError:
        return body[:200] or "unknown error"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return "unknown error"
