"""Recurring poll tasks for live processes.

One ``PollTask`` exists per registered live process. Every tick it:

1. Looks up the item it is bound to (self-cancels when the item is gone)
2. Flushes new output if the live stream is still available
3. Queries the process status; on a terminal status it flushes once more,
   finalizes the item, closes itself and notifies the view layer

Each task is a small state machine: ``polling -> finalized`` exactly once,
or ``polling -> cancelled`` when cancelled from outside before the process
ends. Cancellation never flushes nor finalizes. Tasks are handles owned by
the scheduler; an asyncio task drives ``tick()`` at a fixed period.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from ..models import Item, OutputSource, ProcessStatus
from .flusher import OutputFlusher

if TYPE_CHECKING:
    from ..registry import ItemStore

__all__ = [
    "PollBinding",
    "PollScheduler",
    "PollTask",
    "TaskState",
]

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0  # seconds between ticks


class TaskState(str, Enum):
    """Lifecycle of a poll task."""

    POLLING = "polling"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


@dataclass
class PollBinding:
    """What a poll task watches.

    Attributes:
        item_id: Registry key of the item (non-owning reference)
        process_handle: Host handle of the process
        status_probe: Returns the current process status
        output: Live output stream, None once torn down by the host
    """

    item_id: str
    process_handle: Hashable
    status_probe: Callable[[], ProcessStatus]
    output: OutputSource | None = None


@dataclass
class PollTask:
    """Cancellable recurring task handle."""

    binding: PollBinding
    state: TaskState = TaskState.POLLING
    ticks: int = 0
    driver: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def item_id(self) -> str:
        return self.binding.item_id

    @property
    def is_polling(self) -> bool:
        return self.state is TaskState.POLLING


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class PollScheduler:
    """Owns one poll task per live process.

    Example:
        scheduler = PollScheduler(store, OutputFlusher(), interval=1.0)
        task = scheduler.start(PollBinding(item_id, proc, proc.poll, proc.output))
        ...
        scheduler.cancel_all()
    """

    def __init__(
        self,
        store: ItemStore,
        flusher: OutputFlusher | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_finalized: Callable[[Item], None] | None = None,
    ) -> None:
        self.store = store
        self.flusher = flusher or OutputFlusher()
        self.interval = interval
        self._on_finalized = on_finalized
        self._tasks: dict[Hashable, PollTask] = {}

    def start(self, binding: PollBinding, *, autostart: bool = True) -> PollTask:
        """Create the poll task for a process.

        Args:
            binding: Item/process binding to watch
            autostart: Drive the task from the running event loop. When False
                (or no loop is running) ticks must be issued via ``tick()``.

        Returns:
            The new task handle
        """
        task = PollTask(binding=binding)
        self._tasks[binding.process_handle] = task

        if autostart:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                task.driver = loop.create_task(
                    self._drive(task), name=f"poll-{binding.item_id}"
                )

        logger.debug(
            f"Started poll task for {binding.item_id} "
            f"(interval={self.interval}s, driven={task.driver is not None})"
        )
        return task

    async def _drive(self, task: PollTask) -> None:
        while task.is_polling:
            await asyncio.sleep(self.interval)
            self.tick(task)

    def tick(self, task: PollTask) -> bool:
        """Run one poll tick.

        Args:
            task: The task to tick

        Returns:
            Whether the task is still polling afterwards
        """
        if not task.is_polling:
            return False
        task.ticks += 1

        item = self.store.get(task.item_id)
        if item is None:
            logger.debug(f"Poll task lost its item {task.item_id}, cancelling")
            self._close(task, TaskState.CANCELLED)
            return False
        if not item.is_live:
            self._close(task, TaskState.FINALIZED)
            return False

        self._flush(task, item)

        try:
            status = task.binding.status_probe()
        except Exception as e:
            logger.warning(f"Status probe failed for {item.item_id}: {e}")
            return True

        if not status.terminal:
            return True

        # Trailing output produced between the first flush and exit
        self._flush(task, item)
        self.store.finalize(item.item_id, status.code)
        self._close(task, TaskState.FINALIZED)
        logger.info(
            f"Command finished: {item.name!r} ({item.item_id}) "
            f"{status.state.value} code={status.code}"
        )

        if self._on_finalized:
            try:
                self._on_finalized(item)
            except Exception as e:
                logger.warning(f"Error in on_finalized callback: {e}")
        return False

    def flush_now(self, process_handle: Hashable) -> int:
        """Best-effort flush outside the regular tick (abrupt teardown)."""
        task = self._tasks.get(process_handle)
        if task is None:
            return 0
        item = self.store.get(task.item_id)
        if item is None:
            return 0
        return self._flush(task, item)

    def detach_output(self, process_handle: Hashable) -> None:
        """Mark the live output stream of a process as unavailable."""
        task = self._tasks.get(process_handle)
        if task is not None:
            task.binding.output = None

    def _flush(self, task: PollTask, item: Item) -> int:
        source = task.binding.output
        if source is None or item.log_path is None:
            return 0
        try:
            return self.flusher.flush(item, source, item.log_path)
        except Exception as e:
            logger.warning(f"Reading output of {item.item_id} failed: {e}")
            return 0

    def cancel(self, process_handle: Hashable) -> bool:
        """Cancel the task of a process without flushing or finalizing.

        Returns:
            Whether a polling task was cancelled
        """
        task = self._tasks.get(process_handle)
        if task is None or not task.is_polling:
            return False
        self._close(task, TaskState.CANCELLED)
        logger.debug(f"Cancelled poll task for {task.item_id}")
        return True

    def cancel_all(self) -> int:
        """Cancel every polling task.

        Returns:
            Number of tasks cancelled
        """
        cancelled = 0
        for handle in list(self._tasks):
            if self.cancel(handle):
                cancelled += 1
        return cancelled

    def _close(self, task: PollTask, state: TaskState) -> None:
        task.state = state
        self._tasks.pop(task.binding.process_handle, None)
        driver = task.driver
        if driver is not None and not driver.done() and driver is not _current_task():
            driver.cancel()

    def get(self, process_handle: Hashable) -> PollTask | None:
        return self._tasks.get(process_handle)

    def find_by_item(self, item_id: str) -> PollTask | None:
        """Return the polling task bound to an item, if any."""
        for task in self._tasks.values():
            if task.item_id == item_id:
                return task
        return None

    def active_tasks(self) -> list[PollTask]:
        return list(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, process_handle: Hashable) -> bool:
        return process_handle in self._tasks
