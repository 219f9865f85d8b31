"""Incremental, deduplicated reading of a stack's event log.

DescribeStackEvents returns events newest first, one page at a time, and
keeps every event the stack has ever emitted. Reading the whole history on
every poll gets slow and triggers API throttling as a stack ages, so the
ledger stops paging at the first page that reaches back past the start of
the current operation.
"""

from __future__ import annotations

import logging

from .control_plane import ControlPlaneClient, ThrottledError
from .models import Operation, StackEvent

logger = logging.getLogger(__name__)

# Upper bound on pages fetched per pull, in case the start marker is never reached
MAX_EVENT_PAGES_PER_PULL = 100


class EventLedger:
    """Tracks which events of one operation have already been surfaced.

    One ledger belongs to one Operation. Event ids are only unique within a
    stack's lifetime, so a ledger must never be reused across operations.
    """

    def __init__(self, client: ControlPlaneClient, operation: Operation) -> None:
        self._client = client
        self._operation = operation
        self._seen: set[str] = set()

    @property
    def seen_count(self) -> int:
        """Number of events surfaced so far."""
        return len(self._seen)

    def has_seen(self, event_id: str) -> bool:
        return event_id in self._seen

    def _fetch_relevant(self) -> list[StackEvent]:
        """Fetch pages until one reaches back before the operation started.

        Raises:
            StackNotFoundError: If the stack does not exist.
            ControlPlaneError: If a page fetch fails.
        """
        events: list[StackEvent] = []
        next_token: str | None = None

        for _ in range(MAX_EVENT_PAGES_PER_PULL):
            page = self._client.list_events_page(self._operation.stack_name, next_token)
            events.extend(page.events)
            next_token = page.next_token

            reached_start = any(
                not self._operation.is_current(event.timestamp) for event in page.events
            )
            if reached_start or not next_token:
                break
        else:
            logger.warning(
                "Event page limit reached before operation start",
                extra={
                    "stack_name": self._operation.stack_name,
                    "max_pages": MAX_EVENT_PAGES_PER_PULL,
                },
            )

        return events

    def pull(self) -> list[StackEvent]:
        """Return events not surfaced before, oldest first.

        Throttling is absorbed: the pull returns nothing and the next call
        picks up the same events.

        Raises:
            StackNotFoundError: If the stack does not exist.
            ControlPlaneError: If the event log cannot be read.
        """
        try:
            events = self._fetch_relevant()
        except ThrottledError:
            logger.warning(
                "CloudFormation API calls are throttling",
                extra={"stack_name": self._operation.stack_name},
            )
            return []

        fresh: dict[str, StackEvent] = {}
        for event in events:
            if event.event_id not in self._seen:
                fresh[event.event_id] = event

        self._seen.update(fresh)
        # Pages are newest first; reverse so equal timestamps keep causal order
        return sorted(reversed(list(fresh.values())), key=lambda event: event.timestamp)
