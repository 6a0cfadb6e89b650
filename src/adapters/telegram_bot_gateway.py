"""Telegram Bot API gateway.

Uses the Bot API for delivery so alerts arrive from a bot chat. The Bot API
has no multicast, so a batch is a sequence of pushes with per-recipient
outcomes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Sequence

from adapters.notification_formatting import format_notification
from core.models import AlertContent, BatchPushResult, PushResult

LOGGER = logging.getLogger(__name__)

MAX_BATCH = 30


class TelegramBotGateway:
    """Gateway adapter that sends alerts via the Telegram Bot API."""

    max_batch_size = MAX_BATCH

    def __init__(self, bot_token: str, timeout_seconds: float = 10.0) -> None:
        self._bot_token = bot_token
        self._timeout = timeout_seconds

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def _send(self, chat_id: str, text: str) -> PushResult:
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout):
                return PushResult.ok()
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            LOGGER.warning("Bot API error %s for chat %s", e.code, chat_id)
            return PushResult.fail(str(e.code), body[:500])
        except (socket.timeout, TimeoutError):
            return PushResult.fail("TIMEOUT", "request timed out")
        except urllib.error.URLError as e:
            return PushResult.fail("NETWORK_ERROR", str(e.reason))

    async def push_one(self, address: str, content: AlertContent) -> PushResult:
        text = format_notification(content, mode="html")
        return await asyncio.to_thread(self._send, address, text)

    async def push_batch(self, addresses: Sequence[str], content: AlertContent) -> BatchPushResult:
        text = format_notification(content, mode="html")
        failed: list[str] = []
        last_error = None
        for address in addresses:
            result = await asyncio.to_thread(self._send, address, text)
            if not result.success:
                failed.append(address)
                last_error = f"{result.error_code}: {result.error_message}"
        if not failed:
            return BatchPushResult(success=True)
        return BatchPushResult(
            success=len(failed) < len(addresses),
            failed_addresses=tuple(failed),
            error_message=last_error,
        )
