"""Bulk cleanup of stale stacks.

Finds settled stacks whose names match a pattern and that are older than a
threshold, then deletes them, oldest first. Intended for test and preview
environments that leave stacks behind.

Deletes are issued concurrently. A failed delete is logged and recorded
but never stops the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from .control_plane import ControlPlaneClient
from .models import CleanupCandidate, CleanupOptions, CleanupResult, StackOptions
from .reconciler import StackReconciler
from .status import CLEANUP_STATUSES

logger = logging.getLogger(__name__)

# Upper bound on ListStacks pages per scan
MAX_LIST_PAGES = 1000


class CleanupScanner:
    """Scans for and deletes stale stacks."""

    def __init__(self, client: ControlPlaneClient, reconciler: StackReconciler) -> None:
        self._client = client
        self._reconciler = reconciler

    async def find_candidates(
        self, options: CleanupOptions, now: datetime | None = None
    ) -> list[CleanupCandidate]:
        """List matching stacks older than the threshold, oldest first.

        The limit, if any, is applied after sorting. A limit of 0 means no limit.
        """
        cutoff = (now or datetime.now(UTC)) - timedelta(minutes=options.minutes_old)
        regex = options.regex
        loop = asyncio.get_running_loop()

        candidates: list[CleanupCandidate] = []
        next_token: str | None = None
        for _ in range(MAX_LIST_PAGES):
            page = await loop.run_in_executor(
                None, self._client.list_stacks_page, next_token, list(CLEANUP_STATUSES)
            )
            for stack in page.stacks:
                if regex.search(stack.name) and stack.creation_time < cutoff:
                    candidates.append(
                        CleanupCandidate(
                            name=stack.name,
                            creation_time=stack.creation_time,
                            status=stack.status,
                        )
                    )
            next_token = page.next_token
            if not next_token:
                break

        candidates.sort(key=lambda candidate: candidate.creation_time)
        if options.limit:
            candidates = candidates[: options.limit]
        return candidates

    async def run(self, options: CleanupOptions) -> CleanupResult:
        """Find stale stacks and delete them (or report them in dry-run mode)."""
        candidates = await self.find_candidates(options)
        result = CleanupResult(candidates=candidates, dry_run=options.dry_run)

        logger.info(
            "Cleanup scan complete",
            extra={
                "pattern": options.pattern,
                "minutes_old": options.minutes_old,
                "candidate_count": len(candidates),
                "stack_names": [candidate.name for candidate in candidates],
                "dry_run": options.dry_run,
            },
        )

        if options.dry_run:
            return result

        delete_options = StackOptions(asynchronous=options.asynchronous)
        outcomes = await asyncio.gather(
            *(self._reconciler.delete(candidate.name, delete_options) for candidate in candidates),
            return_exceptions=True,
        )

        for candidate, outcome in zip(candidates, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    "Delete failed",
                    extra={"stack_name": candidate.name, "error": str(outcome)},
                )
                result.failed[candidate.name] = str(outcome)
            else:
                result.deleted.append(candidate.name)

        return result
