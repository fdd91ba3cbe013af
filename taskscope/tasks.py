"""Tasks observed in an instrumented runtime and their statistics."""

from __future__ import annotations

import logging
import weakref
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from .fields import (
    GREEN,
    Field,
    FieldValue,
    Metadata,
    Span,
    Visibility,
    format_location,
    make_formatted_fields,
)
from .messages import TaskMessage, TaskStatsMessage, TaskUpdate
from .store import Id, Ids, Store
from .util import percent_of

log = logging.getLogger(__name__)

_ZERO = timedelta(0)

TaskRef = weakref.ref


def _elapsed(later: datetime, earlier: datetime) -> timedelta:
    """Time from ``earlier`` to ``later``, or zero if ``later`` is earlier."""
    return max(later - earlier, _ZERO)


def _later(a: datetime | None, b: datetime | None) -> bool:
    """Compare optional timestamps, treating a missing one as earliest."""
    if a is None:
        return False
    if b is None:
        return True
    return a > b


def _duration(value: timedelta | None) -> timedelta:
    if value is None:
        return _ZERO
    if value < _ZERO:
        raise ValueError("duration should not be negative")
    return value


def _optional_key(value: Any) -> tuple:
    return (0,) if value is None else (1, value)


class TaskState(Enum):
    """What a task is doing; ordered completed, idle, running, scheduled."""

    COMPLETED = 0
    IDLE = 1
    RUNNING = 2
    SCHEDULED = 3

    def __lt__(self, other: TaskState) -> bool:
        if not isinstance(other, TaskState):
            return NotImplemented
        return self.value < other.value

    def render(self, utf8: bool) -> Span:
        """Return the styled symbol shown in the state column."""
        if self is TaskState.RUNNING:
            return Span("\u25B6" if utf8 else "BUSY", GREEN)
        if self is TaskState.SCHEDULED:
            return Span("\u23EB" if utf8 else "SCHED")
        if self is TaskState.IDLE:
            return Span("\u23F8" if utf8 else "IDLE")
        return Span("\u23F9" if utf8 else "DONE")


@dataclass
class TaskStats:
    """Statistics that change over a task's lifetime."""

    created_at: datetime
    polls: int = 0
    dropped_at: datetime | None = None
    busy: timedelta = _ZERO
    scheduled: timedelta = _ZERO
    last_poll_started: datetime | None = None
    last_poll_ended: datetime | None = None
    idle: timedelta | None = None
    total: timedelta | None = None
    wakes: int = 0
    waker_clones: int = 0
    waker_drops: int = 0
    last_wake: datetime | None = None
    self_wakes: int = 0

    @classmethod
    def from_message(cls, message: TaskStatsMessage) -> TaskStats:
        """Build stats from the wire; creation time and poll stats are required."""
        if message.created_at is None:
            raise ValueError("task span was never created")
        if message.poll_stats is None:
            raise ValueError("task should have poll stats")
        created_at = message.created_at
        dropped_at = message.dropped_at
        total = _elapsed(dropped_at, created_at) if dropped_at is not None else None
        poll_stats = message.poll_stats
        busy = _duration(poll_stats.busy_time)
        scheduled = _duration(message.scheduled_time)
        idle = None if total is None else max(total - (busy + scheduled), _ZERO)
        return cls(
            created_at=created_at,
            polls=poll_stats.polls,
            dropped_at=dropped_at,
            busy=busy,
            scheduled=scheduled,
            last_poll_started=poll_stats.last_poll_started,
            last_poll_ended=poll_stats.last_poll_ended,
            idle=idle,
            total=total,
            wakes=message.wakes,
            waker_clones=message.waker_clones,
            waker_drops=message.waker_drops,
            last_wake=message.last_wake,
            self_wakes=message.self_wakes,
        )


@dataclass
class Details:
    """Detail data for the task currently being inspected."""

    span_id: int = 0
    poll_times_histogram: Any = None
    scheduled_times_histogram: Any = None


@dataclass(eq=False)
class Task:
    """A task, identified locally by a sequential id."""

    id: Id
    span_id: int
    stats: TaskStats
    target: str
    task_id: int | None = None
    id_str: str = ""
    short_desc: str = ""
    formatted_fields: list[list[Span]] = field(default_factory=list)
    name: str | None = None
    warnings: list[Any] = field(default_factory=list)
    location: str = "<unknown location>"
    kind: str = ""
    size_bytes: int | None = None
    original_size_bytes: int | None = None

    def is_running(self) -> bool:
        """Whether the task is being polled right now."""
        return _later(self.stats.last_poll_started, self.stats.last_poll_ended)

    def is_scheduled(self) -> bool:
        return _later(self.stats.last_wake, self.stats.last_poll_started)

    def is_blocking(self) -> bool:
        return self.kind in ("block_on", "blocking")

    def is_completed(self) -> bool:
        return self.stats.total is not None

    def state(self) -> TaskState:
        if self.is_completed():
            return TaskState.COMPLETED
        if self.is_running():
            return TaskState.RUNNING
        if self.is_scheduled():
            return TaskState.SCHEDULED
        return TaskState.IDLE

    def total(self, since: datetime) -> timedelta:
        if self.stats.total is not None:
            return self.stats.total
        return _elapsed(since, self.stats.created_at)

    def busy(self, since: datetime) -> timedelta:
        started = self.stats.last_poll_started
        if started is not None and _later(started, self.stats.last_poll_ended):
            return self.stats.busy + _elapsed(since, started)
        return self.stats.busy

    def scheduled(self, since: datetime) -> timedelta:
        wake = self.stats.last_wake
        if wake is not None and _later(wake, self.stats.last_poll_started):
            return self.stats.scheduled + _elapsed(since, wake)
        return self.stats.scheduled

    def idle(self, since: datetime) -> timedelta:
        if self.stats.idle is not None:
            return self.stats.idle
        remaining = self.total(since) - (self.busy(since) + self.scheduled(since))
        return remaining if remaining >= _ZERO else _ZERO

    @property
    def total_polls(self) -> int:
        return self.stats.polls

    @property
    def last_wake(self) -> datetime | None:
        return self.stats.last_wake

    @property
    def waker_clones(self) -> int:
        return self.stats.waker_clones

    @property
    def waker_drops(self) -> int:
        return self.stats.waker_drops

    @property
    def wakes(self) -> int:
        return self.stats.wakes

    @property
    def self_wakes(self) -> int:
        return self.stats.self_wakes

    def since_wake(self, now: datetime) -> timedelta | None:
        """Time since the last wake, or ``None`` if never woken or woken after ``now``."""
        wake = self.stats.last_wake
        if wake is None or now < wake:
            return None
        return now - wake

    def waker_count(self) -> int:
        """Current number of wakers, never below zero."""
        return max(self.waker_clones - self.waker_drops, 0)

    def self_wake_percent(self) -> int:
        return percent_of(self.self_wakes, self.wakes)

    def is_awakened(self) -> bool:
        """Whether the task has been woken and not yet polled since."""
        return self.total_polls == 0 or _later(self.stats.last_wake, self.stats.last_poll_started)


class TaskSortBy(Enum):
    """Columns of the task table that tasks can be sorted by."""

    WARNS = 0
    TID = 1
    STATE = 2
    NAME = 3
    TOTAL = 4
    BUSY = 5
    SCHEDULED = 6
    IDLE = 7
    POLLS = 8
    TARGET = 9
    LOCATION = 10

    @classmethod
    def default(cls) -> TaskSortBy:
        return cls.TOTAL

    @classmethod
    def from_column(cls, column: int) -> TaskSortBy:
        try:
            return cls(column)
        except ValueError:
            raise ValueError(f"no task column with index {column}") from None

    @property
    def column(self) -> int:
        return self.value

    def _key(self, now: datetime) -> Callable[[Task], Any]:
        keys: dict[TaskSortBy, Callable[[Task], Any]] = {
            TaskSortBy.WARNS: lambda t: len(t.warnings),
            TaskSortBy.TID: lambda t: _optional_key(t.task_id),
            TaskSortBy.STATE: lambda t: t.state().value,
            TaskSortBy.NAME: lambda t: _optional_key(t.name),
            TaskSortBy.TOTAL: lambda t: t.total(now),
            TaskSortBy.BUSY: lambda t: t.busy(now),
            TaskSortBy.SCHEDULED: lambda t: t.scheduled(now),
            TaskSortBy.IDLE: lambda t: t.idle(now),
            TaskSortBy.POLLS: lambda t: t.stats.polls,
            TaskSortBy.TARGET: lambda t: t.target,
            TaskSortBy.LOCATION: lambda t: t.location,
        }
        return keys[self]

    def sort(self, now: datetime, tasks: list[weakref.ref]) -> None:
        """Sort weak task references in place; dropped references come first."""
        key = self._key(now)

        def ref_key(ref: weakref.ref) -> tuple:
            task = ref()
            return (0,) if task is None else (1, key(task))

        tasks.sort(key=ref_key)


class TasksState:
    """All known tasks and the bookkeeping around their updates."""

    def __init__(self) -> None:
        self._tasks: Store[Task] = Store()
        self.dropped_events = 0

    @property
    def ids(self) -> Ids:
        return self._tasks.ids

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return self._tasks.values()

    def take_new_tasks(self) -> list[weakref.ref]:
        """Return references to tasks added since the last call."""
        return self._tasks.take_new_items()

    def update_tasks(
        self,
        metas: Mapping[int, Metadata],
        update: TaskUpdate,
        visibility: Visibility,
    ) -> None:
        stats_update = dict(update.stats_update)

        def build(ids: Ids, message: TaskMessage) -> tuple[Id, Task] | None:
            return self._build_task(ids, message, metas, stats_update)

        self._tasks.insert_with(visibility, update.new_tasks, build)

        for stats, task in self._tasks.updated(stats_update):
            log.debug("processing stats update for task %s", task.id)
            task.stats = TaskStats.from_message(stats)

        self.dropped_events += update.dropped_events

    @staticmethod
    def _build_task(
        ids: Ids,
        message: TaskMessage,
        metas: Mapping[int, Metadata],
        stats_update: dict[int, TaskStatsMessage],
    ) -> tuple[Id, Task] | None:
        span_id = message.id
        if span_id is None:
            log.warning("task has no id, skipping: %r", message)
            return None
        if message.metadata_id is None:
            log.warning("task has no metadata id, skipping: %r", message)
            return None
        meta = metas.get(message.metadata_id)
        if meta is None:
            log.warning("no metadata %s for task, skipping", message.metadata_id)
            return None

        name: str | None = None
        task_id: int | None = None
        kind = ""
        size_bytes: int | None = None
        original_size_bytes: int | None = None
        fields: list[Field] = []
        for raw in message.fields:
            parsed = Field.from_message(raw, meta)
            if parsed is None:
                continue
            if parsed.name == Field.NAME:
                name = str(parsed.value)
            elif parsed.name == Field.TASK_ID:
                task_id = parsed.value.value if parsed.value.kind == "u64" else None
            elif parsed.name == Field.KIND:
                kind = str(parsed.value)
            elif parsed.name == Field.SIZE_BYTES:
                size_bytes = parsed.value.value if parsed.value.kind == "u64" else None
                fields.append(parsed)
            elif parsed.name == Field.ORIGINAL_SIZE_BYTES:
                original_size_bytes = (
                    parsed.value.value if parsed.value.kind == "u64" else None
                )
                fields.append(parsed)
            else:
                fields.append(parsed)
        fields.append(Field("target", FieldValue("str", meta.target)))
        formatted_fields = make_formatted_fields(fields)

        stats_message = stats_update.pop(span_id, None)
        if stats_message is None:
            return None
        stats = TaskStats.from_message(stats_message)
        location = format_location(message.location)
        id = ids.id_for(span_id)

        if task_id is not None and name is not None:
            short_desc = f"{task_id} ({name})"
        elif task_id is not None:
            short_desc = str(task_id)
        elif name is not None:
            short_desc = name
        else:
            short_desc = ""

        task = Task(
            id=id,
            span_id=span_id,
            stats=stats,
            target=meta.target,
            task_id=task_id,
            id_str="" if task_id is None else str(task_id),
            short_desc=short_desc,
            formatted_fields=formatted_fields,
            name=name,
            location=location,
            kind=kind,
            size_bytes=size_bytes,
            original_size_bytes=original_size_bytes,
        )
        return id, task

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Forget completed tasks that were dropped at least ``retain_for`` ago."""

        def keep(_id: Id, task: Task) -> bool:
            dropped_at = task.stats.dropped_at
            return dropped_at is None or retain_for > _elapsed(now, dropped_at)

        self._tasks.retain(keep)

    def task(self, id: Id) -> weakref.ref | None:
        found = self._tasks.get(id)
        return None if found is None else weakref.ref(found)