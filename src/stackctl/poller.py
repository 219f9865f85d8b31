"""Polling a stack until its operation reaches a terminal state.

CloudFormation operations are asynchronous: CreateStack/UpdateStack/DeleteStack
return as soon as the request is accepted. The poller turns that into a
synchronous call by reading the stack's event log on a fixed interval,
surfacing new events as they appear, and completing a future once the
stack's own terminal event shows up.

One poller tracks one Operation. Ticks never overlap: if a page fetch is
still running when the next tick is due, that tick is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from .config import default_poll_interval
from .control_plane import ControlPlaneClient, StackNotFoundError
from .events import EventLedger
from .models import Operation, StackAction, StackEvent
from .status import decide

logger = logging.getLogger(__name__)

EventSink = Callable[[StackEvent, StackAction], None]


class PollState(str, Enum):
    """Lifecycle of a poller."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class OperationFailedError(Exception):
    """Raised when a stack operation ends in a failure state."""

    def __init__(self, stack_name: str, action: StackAction, reason: str | None = None) -> None:
        message = f"{stack_name} {action.value.upper()} Failed"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.stack_name = stack_name
        self.action = action
        self.reason = reason


class PollTimeoutError(Exception):
    """Raised when a stack operation does not finish within the poll timeout."""

    pass


def log_event(event: StackEvent, action: StackAction) -> None:
    """Default event sink: one log line per event."""
    logger.info(
        event.format_line(action),
        extra={
            "stack_name": event.stack_name,
            "resource_type": event.resource_type,
            "logical_id": event.logical_id,
            "status": event.status,
        },
    )


class StackPoller:
    """Polls one operation's events until it succeeds or fails."""

    def __init__(
        self,
        client: ControlPlaneClient,
        operation: Operation,
        interval_seconds: float | None = None,
        timeout_seconds: float | None = None,
        on_event: EventSink | None = None,
    ) -> None:
        """Initialize the poller.

        Args:
            client: Control plane used to read the event log.
            operation: The operation being tracked.
            interval_seconds: Seconds between ticks (default: process-wide default).
            timeout_seconds: Give up after this many seconds (default: never).
            on_event: Receives each new event of this operation, oldest first.
        """
        self._operation = operation
        self._ledger = EventLedger(client, operation)
        self._interval = interval_seconds if interval_seconds is not None else default_poll_interval()
        self._timeout = timeout_seconds
        self._on_event = on_event or log_event

        self._state = PollState.RUNNING
        self._done: asyncio.Future[None] | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._tick_count = 0
        self._skipped_ticks = 0

    @property
    def operation(self) -> Operation:
        return self._operation

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def tick_count(self) -> int:
        """Number of ticks that fetched events."""
        return self._tick_count

    @property
    def skipped_ticks(self) -> int:
        """Number of ticks skipped because the previous one was still running."""
        return self._skipped_ticks

    async def wait(self) -> None:
        """Poll until the operation reaches a terminal state.

        Cancelling the awaiting task stops polling.

        Raises:
            OperationFailedError: If the stack reached a failure state.
            PollTimeoutError: If the timeout elapsed first.
            ControlPlaneError: If reading the event log failed.
        """
        if self._done is not None:
            raise RuntimeError("StackPoller.wait() can only be called once")

        self._done = asyncio.get_running_loop().create_future()
        ticker = asyncio.create_task(self._run_ticks())

        try:
            if self._timeout is None:
                await self._done
            else:
                await asyncio.wait_for(asyncio.shield(self._done), timeout=self._timeout)
        except TimeoutError:
            self._state = PollState.TIMED_OUT
            logger.error(
                "Timed out waiting for stack operation",
                extra={
                    "stack_name": self._operation.stack_name,
                    "action": self._operation.action.value,
                    "timeout_seconds": self._timeout,
                },
            )
            raise PollTimeoutError(
                f"{self._operation.stack_name} {self._operation.action.value.upper()} "
                f"did not finish within {self._timeout}s"
            ) from None
        finally:
            ticker.cancel()
            if self._tick_task is not None:
                self._tick_task.cancel()

    async def _run_ticks(self) -> None:
        assert self._done is not None
        while not self._done.done():
            if self._tick_task is not None and not self._tick_task.done():
                self._skipped_ticks += 1
                logger.debug(
                    "Previous poll still in flight, skipping tick",
                    extra={"stack_name": self._operation.stack_name},
                )
            else:
                self._tick_task = asyncio.create_task(self._tick())
            await asyncio.sleep(self._interval)

    async def _tick(self) -> None:
        self._tick_count += 1
        loop = asyncio.get_running_loop()

        try:
            events = await loop.run_in_executor(None, self._ledger.pull)
            self._process(events)
        except StackNotFoundError:
            # The stack is gone: a delete has finished
            logger.debug(
                "Stack does not exist, treating as complete",
                extra={"stack_name": self._operation.stack_name},
            )
            self._succeed()
        except Exception as e:
            self._fail(e)

    def _process(self, events: list[StackEvent]) -> None:
        for event in events:
            if self._operation.is_current(event.timestamp):
                self._on_event(event, self._operation.action)

        decision = decide(events, self._operation)
        if decision is None:
            return

        if decision.succeeded:
            self._succeed()
        else:
            self._fail(
                OperationFailedError(
                    self._operation.stack_name,
                    self._operation.action,
                    decision.reason,
                )
            )

    def _succeed(self) -> None:
        if self._done is None or self._done.done():
            return
        self._state = PollState.SUCCEEDED
        self._done.set_result(None)

    def _fail(self, error: Exception) -> None:
        if self._done is None or self._done.done():
            return
        self._state = PollState.FAILED
        logger.debug(
            "Stack operation failed",
            extra={"stack_name": self._operation.stack_name, "error": str(error)},
        )
        self._done.set_exception(error)
