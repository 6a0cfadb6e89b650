"""Gateway call helpers shared by the delivery loops.

Both loops treat a gateway timeout or an unexpected gateway exception as an
ordinary transport failure that counts toward the attempt budget.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from core.models import AlertContent, BatchPushResult, Message, PushResult
from core.ports import CatalogPort, GatewayPort

LOGGER = logging.getLogger(__name__)

TIMEOUT = "TIMEOUT"
GATEWAY_ERROR = "GATEWAY_ERROR"


async def push_one(gateway: GatewayPort, address: str, content: AlertContent, timeout: float) -> PushResult:
    try:
        return await asyncio.wait_for(gateway.push_one(address, content), timeout=timeout)
    except asyncio.TimeoutError:
        LOGGER.warning("Push to %s timed out after %ss", address, timeout)
        return PushResult.fail(TIMEOUT, f"push timed out after {timeout}s")
    except Exception as exc:
        LOGGER.exception("Gateway raised while pushing to %s", address)
        return PushResult.fail(GATEWAY_ERROR, str(exc) or exc.__class__.__name__)


async def push_batch(
    gateway: GatewayPort, addresses: Sequence[str], content: AlertContent, timeout: float
) -> BatchPushResult:
    try:
        return await asyncio.wait_for(gateway.push_batch(addresses, content), timeout=timeout)
    except asyncio.TimeoutError:
        LOGGER.warning("Batch push to %s recipients timed out after %ss", len(addresses), timeout)
        return BatchPushResult(success=False, error_message=f"{TIMEOUT}: batch push timed out after {timeout}s")
    except Exception as exc:
        LOGGER.exception("Gateway raised during batch push to %s recipients", len(addresses))
        return BatchPushResult(success=False, error_message=f"{GATEWAY_ERROR}: {exc}")


def describe_failure(result: PushResult) -> str:
    if result.error_code and result.error_message:
        return f"{result.error_code}: {result.error_message}"
    return result.error_message or result.error_code or "unknown error"


def chunked(items: Sequence, size: int) -> list:
    size = max(1, size)
    return [items[index : index + size] for index in range(0, len(items), size)]


def render_content(catalog: CatalogPort, message: Message) -> AlertContent:
    """Gateway input for a stored message, with its type's configured color."""

    message_type = catalog.get_message_type(message.type_code)
    return AlertContent.from_message(message, color=message_type.color if message_type else None)
