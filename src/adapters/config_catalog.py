"""Catalog adapter backed by the ``catalog`` section of config.json.

Message types, groups and recipients are managed outside this service; the
router only reads them. Keeping them in config.json makes edits quick and
keeps all routing rules in one place.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from core.models import Group, MessageType, Recipient


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def build_message_types(raw: Iterable[dict]) -> dict[str, MessageType]:
    types: dict[str, MessageType] = {}
    for entry in raw:
        code = _optional_str(entry.get("code"))
        if not code:
            raise ValueError("message_types entries require a code")
        if code in types:
            raise ValueError(f"Duplicate message type code: {code}")
        priority = entry.get("priority")
        if priority is not None:
            priority = int(priority)
            if not 1 <= priority <= 5:
                raise ValueError(f"Message type {code} priority must be between 1 and 5")
        types[code] = MessageType(
            code=code,
            name=entry.get("name") or code,
            priority=priority,
            color=_optional_str(entry.get("color")),
            active=bool(entry.get("active", True)),
        )
    return types


def build_recipients(raw: Iterable[dict]) -> dict[int, Recipient]:
    recipients: dict[int, Recipient] = {}
    for entry in raw:
        if "id" not in entry:
            raise ValueError("recipients entries require an id")
        recipient_id = int(entry["id"])
        if recipient_id in recipients:
            raise ValueError(f"Duplicate recipient id: {recipient_id}")
        recipients[recipient_id] = Recipient(
            id=recipient_id,
            name=entry.get("name") or str(recipient_id),
            address=_optional_str(entry.get("address")),
            active=bool(entry.get("active", True)),
        )
    return recipients


def build_groups(raw: Iterable[dict]) -> dict[str, Group]:
    groups: dict[str, Group] = {}
    for entry in raw:
        code = _optional_str(entry.get("code"))
        if not code:
            raise ValueError("groups entries require a code")
        if code in groups:
            raise ValueError(f"Duplicate group code: {code}")
        groups[code] = Group(
            code=code,
            name=entry.get("name") or code,
            members=tuple(int(member) for member in entry.get("members", [])),
            message_types=frozenset(entry.get("message_types", [])),
            host_filter=_optional_str(entry.get("host_filter")),
            service_filter=_optional_str(entry.get("service_filter")),
            receive_start=entry.get("receive_start") or "00:00",
            receive_end=entry.get("receive_end") or "24:00",
            mute_start=_optional_str(entry.get("mute_start")),
            mute_end=_optional_str(entry.get("mute_end")),
            suppress_duplicates=bool(entry.get("suppress_duplicates", False)),
            duplicate_interval_minutes=int(entry.get("duplicate_interval_minutes", 30)),
            active=bool(entry.get("active", True)),
        )
    return groups


class ConfigCatalog:
    """In-memory catalog that satisfies the CatalogPort contract."""

    def __init__(
        self,
        message_types: dict[str, MessageType],
        groups: dict[str, Group],
        recipients: dict[int, Recipient],
    ) -> None:
        self._message_types = message_types
        self._groups = groups
        self._recipients = recipients

    @classmethod
    def from_config(cls, catalog_config: dict) -> "ConfigCatalog":
        """Validate and index the raw catalog section."""

        return cls(
            message_types=build_message_types(catalog_config.get("message_types", [])),
            groups=build_groups(catalog_config.get("groups", [])),
            recipients=build_recipients(catalog_config.get("recipients", [])),
        )

    def get_message_type(self, code: str) -> Optional[MessageType]:
        return self._message_types.get(code)

    def groups_for_message_type(self, code: str) -> list[Group]:
        return [group for group in self._groups.values() if code in group.message_types]

    def get_recipient(self, recipient_id: int) -> Optional[Recipient]:
        return self._recipients.get(recipient_id)

    def __repr__(self) -> str:
        return (
            f"ConfigCatalog(types={len(self._message_types)}, groups={len(self._groups)}, "
            f"recipients={len(self._recipients)})"
        )
