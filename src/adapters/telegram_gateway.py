"""Telegram user-client gateway.

Sends alerts from a logged-in Telegram account through Telethon. Addresses
are "@username" or a numeric chat id ("chat_id:123" or "123").
"""

from __future__ import annotations

import logging
from typing import Sequence, Union

from telethon import errors

from adapters.notification_formatting import format_notification
from core.models import AlertContent, BatchPushResult, PushResult

LOGGER = logging.getLogger(__name__)

MAX_BATCH = 20


def parse_address(address: str) -> Union[int, str]:
    """Turn a stored address into something Telethon can resolve."""

    value = address.strip()
    if value.startswith("chat_id:"):
        value = value.split("chat_id:", 1)[1]
    try:
        return int(value)
    except ValueError:
        return value


class TelegramUserGateway:
    """Gateway adapter that sends alerts via a Telethon user session."""

    max_batch_size = MAX_BATCH

    def __init__(self, client) -> None:
        self._client = client

    async def push_one(self, address: str, content: AlertContent) -> PushResult:
        message = format_notification(content, mode="markdown")
        try:
            await self._client.send_message(parse_address(address), message, parse_mode="md")
        except errors.FloodWaitError as e:
            return PushResult.fail("FLOOD_WAIT", f"retry after {e.seconds}s")
        except errors.RPCError as e:
            LOGGER.warning("Telegram refused message to %s: %s", address, e)
            return PushResult.fail("RPC_ERROR", str(e))
        except ValueError as e:
            # Telethon could not resolve the entity.
            return PushResult.fail("INVALID_ADDRESS", str(e))
        except ConnectionError as e:
            return PushResult.fail("NETWORK_ERROR", str(e))
        return PushResult.ok()

    async def push_batch(self, addresses: Sequence[str], content: AlertContent) -> BatchPushResult:
        failed: list[str] = []
        last_error = None
        for address in addresses:
            result = await self.push_one(address, content)
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
