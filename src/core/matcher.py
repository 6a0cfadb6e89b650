"""Recipient matching (core domain).

Given a message type and an optional source, work out which recipients should
get the alert by combining catalog membership with each group's filters and
time windows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from core.models import Group, Recipient
from core.patterns import filter_allows
from core.ports import CatalogPort
from core.time_windows import is_within_receive_window

LOGGER = logging.getLogger(__name__)

GroupGate = Callable[[Group], bool]


@dataclass(frozen=True)
class RecipientMatch:
    """Matched recipients, split by whether they can be reached at all."""

    groups: List[str]
    deliverable: List[Recipient]
    undeliverable: List[Recipient]

    @property
    def recipients(self) -> List[Recipient]:
        return self.deliverable + self.undeliverable


def group_passes(
    group: Group,
    source_host: Optional[str],
    source_service: Optional[str],
    now: datetime,
) -> bool:
    """Apply the host, service and time-window gates to one group."""

    if not filter_allows(group.host_filter, source_host):
        LOGGER.debug("Group %s host filter %r rejects %r", group.code, group.host_filter, source_host)
        return False
    if not filter_allows(group.service_filter, source_service):
        LOGGER.debug(
            "Group %s service filter %r rejects %r", group.code, group.service_filter, source_service
        )
        return False
    if not is_within_receive_window(
        now,
        group.receive_start,
        group.receive_end,
        group.mute_start,
        group.mute_end,
    ):
        LOGGER.debug("Group %s is outside its receive window", group.code)
        return False
    return True


class RecipientMatcher:
    """Resolve eligible recipients through the catalog port."""

    def __init__(self, catalog: CatalogPort, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._catalog = catalog
        # Windows are local wall-clock, so the default clock is naive local time.
        self._clock = clock or datetime.now

    def candidate_groups(self, type_code: str, target_groups: Optional[Iterable[str]] = None) -> List[Group]:
        groups = [
            group
            for group in self._catalog.groups_for_message_type(type_code)
            if group.active and type_code in group.message_types
        ]
        if target_groups:
            wanted = {code for code in target_groups if code}
            dropped = wanted - {group.code for group in groups}
            if dropped:
                LOGGER.debug("Ignoring unknown target groups for %s: %s", type_code, sorted(dropped))
            groups = [group for group in groups if group.code in wanted]
        return groups

    def match(
        self,
        type_code: str,
        target_groups: Optional[Iterable[str]] = None,
        source_host: Optional[str] = None,
        source_service: Optional[str] = None,
        now: Optional[datetime] = None,
        extra_gate: Optional[GroupGate] = None,
    ) -> RecipientMatch:
        """Return the de-duplicated recipients for an alert.

        Only active recipients are returned. Members without a channel
        address land in ``undeliverable`` so the ledger can record them as
        skipped instead of silently dropping them.
        """

        moment = now or self._clock()
        groups = [
            group
            for group in self.candidate_groups(type_code, target_groups)
            if group_passes(group, source_host, source_service, moment)
        ]
        if extra_gate is not None:
            groups = [group for group in groups if extra_gate(group)]

        seen: set[int] = set()
        deliverable: List[Recipient] = []
        undeliverable: List[Recipient] = []
        for group in groups:
            for recipient_id in group.members:
                if recipient_id in seen:
                    continue
                recipient = self._catalog.get_recipient(recipient_id)
                if recipient is None or not recipient.active:
                    continue
                seen.add(recipient_id)
                if recipient.deliverable:
                    deliverable.append(recipient)
                else:
                    undeliverable.append(recipient)

        LOGGER.info(
            "Matched %s group(s) for %s: %s deliverable, %s without address",
            len(groups),
            type_code,
            len(deliverable),
            len(undeliverable),
        )
        return RecipientMatch(
            groups=[group.code for group in groups],
            deliverable=deliverable,
            undeliverable=undeliverable,
        )
