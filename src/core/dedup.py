"""Duplicate suppression (core domain)."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Optional

from core.clock import Clock, utc_now
from core.models import Group
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)


def normalize_source_field(value: Optional[str]) -> Optional[str]:
    # Empty strings and missing values are the same "absent" source.
    if value is None:
        return None
    value = value.strip()
    return value or None


class Deduplicator:
    """Decide whether an alert repeats one seen recently for the same source.

    The check is an exact match on (type, host, service) against stored
    messages. It is not atomic with message creation, so two identical alerts
    arriving at the same instant can both get through.
    """

    def __init__(
        self,
        storage: StoragePort,
        window: timedelta = timedelta(minutes=5),
        clock: Clock = utc_now,
    ) -> None:
        self._storage = storage
        self._window = window
        self._clock = clock

    def is_duplicate(
        self,
        type_code: str,
        source_host: Optional[str],
        source_service: Optional[str],
        window: Optional[timedelta] = None,
    ) -> bool:
        window = self._window if window is None else window
        if window <= timedelta(0):
            return False
        since = self._clock() - window
        return self._storage.has_recent_message(
            type_code, normalize_source_field(source_host), normalize_source_field(source_service), since
        )

    def group_gate(
        self, type_code: str, source_host: Optional[str], source_service: Optional[str]
    ) -> Callable[[Group], bool]:
        """Build a matcher gate dropping groups that opted into duplicate suppression."""

        def _gate(group: Group) -> bool:
            if not group.suppress_duplicates:
                return True
            window = timedelta(minutes=group.duplicate_interval_minutes)
            if self.is_duplicate(type_code, source_host, source_service, window):
                LOGGER.info("Group %s suppresses repeat of %s", group.code, type_code)
                return False
            return True

        return _gate
