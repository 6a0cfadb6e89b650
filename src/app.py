"""Application entry point for the alertrelay dispatcher."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.config_catalog import ConfigCatalog
from adapters.line_gateway import LineGateway
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_gateway import TelegramBotGateway
from adapters.telegram_gateway import TelegramUserGateway
from core.dispatcher import VALIDATION_ERROR, DispatchError, DispatchOrchestrator, DispatchRequest
from core.ledger import DeliveryLedger
from core.models import SourceInfo
from core.retry import RetryLoop
from core.sender import SenderLoop
from log_setup import configure_logging

NAME = "ALERTRELAY"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _build_ledger(storage: SQLiteStorage) -> DeliveryLedger:
    return DeliveryLedger(storage, settings.LEDGER)


async def _build_gateway():
    """Select the gateway adapter; returns (gateway, telethon client or None)."""

    load_dotenv()
    method = settings.GATEWAY_METHOD
    if method == "line":
        token = os.getenv("LINE_CHANNEL_ACCESS_TOKEN")
        if not token:
            raise RuntimeError("LINE_CHANNEL_ACCESS_TOKEN is required when gateway.method=line")
        return (
            LineGateway(
                token,
                message_format=settings.LINE_MESSAGE_FORMAT,
                timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
            ),
            None,
        )
    if method == "bot":
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when gateway.method=bot")
        return TelegramBotGateway(bot_token, timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS), None
    if method == "telegram":
        from client import build_client

        client = build_client()
        await client.connect()
        if not await client.is_user_authorized():
            await client.disconnect()
            raise RuntimeError("Telegram session is not authorized; run `alertrelay login` first")
        return TelegramUserGateway(client), client
    raise RuntimeError("gateway.method must be 'line', 'bot' or 'telegram'")


async def _serve() -> None:
    storage = _open_storage()
    if settings.RETENTION_DAYS > 0:
        removed = storage.cleanup_before(settings.RETENTION_DAYS)
        LOGGER.info("Retention cleanup removed %s messages", removed)

    catalog = ConfigCatalog.from_config(settings.CATALOG)
    LOGGER.info("Catalog loaded: %r", catalog)
    ledger = _build_ledger(storage)

    gateway, client = await _build_gateway()
    LOGGER.info("Selected gateway - %s", settings.GATEWAY_METHOD)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support.
            pass

    sender = SenderLoop(storage, catalog, ledger, gateway, settings.SENDER)
    retry = RetryLoop(storage, catalog, ledger, gateway, settings.RETRY)
    try:
        await asyncio.gather(sender.run(stop), retry.run(stop))
    finally:
        if client is not None:
            await client.disconnect()
    LOGGER.info("Shutdown complete")


def _run() -> None:
    _print_banner()
    configure_logging(settings.LOGGING, settings.PROJECT_ROOT)
    LOGGER.info("Starting alertrelay")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")


def _parse_meta(pairs: list[str]) -> dict[str, str]:
    metadata = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise DispatchError(VALIDATION_ERROR, f"metadata must be key=value, got '{pair}'")
        metadata[key] = value
    return metadata


def _send(args: argparse.Namespace) -> int:
    configure_logging(settings.LOGGING, settings.PROJECT_ROOT)
    storage = _open_storage()
    catalog = ConfigCatalog.from_config(settings.CATALOG)
    orchestrator = DispatchOrchestrator(catalog, storage, _build_ledger(storage), settings.DISPATCH)
    try:
        request = DispatchRequest(
            message_type=args.type,
            title=args.title,
            content=args.content,
            source=SourceInfo(host=args.host, service=args.service, ip=args.ip),
            target_groups=tuple(args.group or ()),
            priority=args.priority,
            metadata=_parse_meta(args.meta or []),
        )
        result = orchestrator.dispatch(request)
    except DispatchError as e:
        print(json.dumps({"error": e.code, "message": e.message}), file=sys.stderr)
        return 2
    print(json.dumps(result.to_dict()))
    return 0


def _status(args: argparse.Namespace) -> int:
    storage = _open_storage()
    message = storage.get_message(args.message_id)
    if message is None:
        print(f"Message {args.message_id} not found", file=sys.stderr)
        return 1
    counts = storage.delivery_counts(args.message_id)
    payload = {
        "messageId": message.id,
        "type": message.type_code,
        "title": message.title,
        "createdAt": message.created_at.isoformat(),
        "processedAt": message.processed_at.isoformat() if message.processed_at else None,
        "deliveries": {status.value: count for status, count in counts.items()},
    }
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


def _requeue(args: argparse.Namespace) -> int:
    configure_logging(settings.LOGGING, settings.PROJECT_ROOT)
    storage = _open_storage()
    if storage.get_message(args.message_id) is None:
        print(f"Message {args.message_id} not found", file=sys.stderr)
        return 1
    count = _build_ledger(storage).requeue_failed(args.message_id)
    print(f"Requeued {count} failed deliveries for message {args.message_id}")
    return 0


def _monitor() -> None:
    _print_banner()
    from frontend.app import MonitorApp

    storage = _open_storage()
    MonitorApp(storage, _build_ledger(storage), settings.DB_PATH).run()


def _login(args: argparse.Namespace) -> None:
    _print_banner()
    from client import login

    name = asyncio.run(login(args.method))
    print(f"Logged in as: {name}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="alertrelay")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the sender and retry loops")

    send_parser = subparsers.add_parser("send", help="Dispatch one alert")
    send_parser.add_argument("--type", required=True, help="Message type code, e.g. WARNING")
    send_parser.add_argument("--title", required=True)
    send_parser.add_argument("--content", required=True)
    send_parser.add_argument("--host")
    send_parser.add_argument("--service")
    send_parser.add_argument("--ip")
    send_parser.add_argument("--group", action="append", help="Restrict to a group code (repeatable)")
    send_parser.add_argument("--priority", choices=["high", "normal", "low"])
    send_parser.add_argument("--meta", action="append", help="Extra metadata as key=value (repeatable)")

    status_parser = subparsers.add_parser("status", help="Show delivery status of a message")
    status_parser.add_argument("message_id", type=int)

    requeue_parser = subparsers.add_parser("requeue", help="Reset failed deliveries of a message")
    requeue_parser.add_argument("message_id", type=int)

    subparsers.add_parser("monitor", help="Launch the monitoring TUI")

    login_parser = subparsers.add_parser("login", help="Authorize the Telegram user session")
    login_parser.add_argument("--method", choices=["qr", "phone"])

    args = parser.parse_args(argv)
    if args.command == "send":
        raise SystemExit(_send(args))
    if args.command == "status":
        raise SystemExit(_status(args))
    if args.command == "requeue":
        raise SystemExit(_requeue(args))
    if args.command == "monitor":
        _monitor()
        return
    if args.command == "login":
        _login(args)
        return
    _run()


if __name__ == "__main__":
    main()
