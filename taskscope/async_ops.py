"""Async operations performed on resources and their statistics."""

from __future__ import annotations

import logging
import weakref
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from .fields import Attribute, Metadata, Span, Visibility, make_formatted_attributes
from .messages import AsyncOpMessage, AsyncOpStatsMessage, AsyncOpUpdate
from .store import Id, Ids, Store

log = logging.getLogger(__name__)

_ZERO = timedelta(0)


def _elapsed(later: datetime, earlier: datetime) -> timedelta:
    """Time from ``earlier`` to ``later``, or zero if ``later`` is earlier."""
    return max(later - earlier, _ZERO)


def _duration(value: timedelta | None) -> timedelta:
    if value is None:
        return _ZERO
    if value < _ZERO:
        raise ValueError("duration should not be negative")
    return value


def _optional_key(value: Any) -> tuple:
    return (0,) if value is None else (1, value)


@dataclass
class AsyncOpStats:
    """Statistics that change over an async operation's lifetime."""

    created_at: datetime
    dropped_at: datetime | None = None
    polls: int = 0
    busy: timedelta = _ZERO
    last_poll_started: datetime | None = None
    last_poll_ended: datetime | None = None
    idle: timedelta | None = None
    total: timedelta | None = None
    task_id: Id | None = None
    task_id_str: str = "n/a"
    formatted_attributes: list[list[Span]] = field(default_factory=list)

    @classmethod
    def from_message(
        cls, message: AsyncOpStatsMessage, meta: Metadata, task_ids: Ids
    ) -> AsyncOpStats:
        """Build stats from the wire; creation time and poll stats are required."""
        attributes = [
            parsed
            for parsed in (Attribute.from_message(raw, meta) for raw in message.attributes)
            if parsed is not None
        ]
        if message.created_at is None:
            raise ValueError("async op span was never created")
        created_at = message.created_at
        dropped_at = message.dropped_at
        total = _elapsed(dropped_at, created_at) if dropped_at is not None else None
        if message.poll_stats is None:
            raise ValueError("async op should have poll stats")
        poll_stats = message.poll_stats
        busy = _duration(poll_stats.busy_time)
        idle = None if total is None else max(total - busy, _ZERO)
        formatted = make_formatted_attributes(attributes)
        task_id = None if message.task_id is None else task_ids.id_for(message.task_id)
        return cls(
            created_at=created_at,
            dropped_at=dropped_at,
            polls=poll_stats.polls,
            busy=busy,
            last_poll_started=poll_stats.last_poll_started,
            last_poll_ended=poll_stats.last_poll_ended,
            idle=idle,
            total=total,
            task_id=task_id,
            task_id_str="n/a" if task_id is None else str(task_id),
            formatted_attributes=formatted,
        )


@dataclass(eq=False)
class AsyncOp:
    """An async operation on a resource, identified locally by a sequential id."""

    id: Id
    parent_id: str
    resource_id: Id
    meta_id: int
    source: str
    stats: AsyncOpStats

    @property
    def task_id(self) -> Id | None:
        return self.stats.task_id

    @property
    def task_id_str(self) -> str:
        return self.stats.task_id_str

    @property
    def total_polls(self) -> int:
        return self.stats.polls

    @property
    def formatted_attributes(self) -> list[list[Span]]:
        return self.stats.formatted_attributes

    def total(self, since: datetime) -> timedelta:
        if self.stats.total is not None:
            return self.stats.total
        return _elapsed(since, self.stats.created_at)

    def busy(self, since: datetime) -> timedelta:
        """Busy time, including a poll still in progress at ``since``."""
        started = self.stats.last_poll_started
        if started is not None and self.stats.last_poll_ended is None:
            return self.stats.busy + _elapsed(since, started)
        return self.stats.busy

    def idle(self, since: datetime) -> timedelta:
        if self.stats.idle is not None:
            return self.stats.idle
        remaining = self.total(since) - self.busy(since)
        return remaining if remaining >= _ZERO else _ZERO

    def dropped(self) -> bool:
        return self.stats.total is not None


class AsyncOpSortBy(Enum):
    """Columns of the async op table that operations can be sorted by."""

    AID = 0
    TASK = 1
    SOURCE = 2
    TOTAL = 3
    BUSY = 4
    IDLE = 5
    POLLS = 6

    @classmethod
    def default(cls) -> AsyncOpSortBy:
        return cls.AID

    @classmethod
    def from_column(cls, column: int) -> AsyncOpSortBy:
        try:
            return cls(column)
        except ValueError:
            raise ValueError(f"no async op column with index {column}") from None

    @property
    def column(self) -> int:
        return self.value

    def _key(self, now: datetime) -> Callable[[AsyncOp], Any]:
        keys: dict[AsyncOpSortBy, Callable[[AsyncOp], Any]] = {
            AsyncOpSortBy.AID: lambda op: op.id,
            AsyncOpSortBy.TASK: lambda op: _optional_key(op.task_id),
            AsyncOpSortBy.SOURCE: lambda op: op.source,
            AsyncOpSortBy.TOTAL: lambda op: op.total(now),
            AsyncOpSortBy.BUSY: lambda op: op.busy(now),
            AsyncOpSortBy.IDLE: lambda op: op.idle(now),
            AsyncOpSortBy.POLLS: lambda op: op.stats.polls,
        }
        return keys[self]

    def sort(self, now: datetime, ops: list[weakref.ref]) -> None:
        """Sort weak op references in place; dropped references come first."""
        key = self._key(now)

        def ref_key(ref: weakref.ref) -> tuple:
            op = ref()
            return (0,) if op is None else (1, key(op))

        ops.sort(key=ref_key)


class AsyncOpsState:
    """All known async operations and the bookkeeping around their updates."""

    def __init__(self) -> None:
        self._async_ops: Store[AsyncOp] = Store()
        self.dropped_events = 0

    @property
    def ids(self) -> Ids:
        return self._async_ops.ids

    def __len__(self) -> int:
        return len(self._async_ops)

    def __iter__(self) -> Iterator[AsyncOp]:
        return self._async_ops.values()

    def take_new_async_ops(self) -> list[weakref.ref]:
        """Return references to ops added since the last call."""
        return self._async_ops.take_new_items()

    def async_ops(self) -> list[weakref.ref]:
        """Return references to all known ops."""
        return [weakref.ref(op) for op in self._async_ops.values()]

    def update_async_ops(
        self,
        metas: Mapping[int, Metadata],
        update: AsyncOpUpdate,
        resource_ids: Ids,
        task_ids: Ids,
        visibility: Visibility,
    ) -> None:
        stats_update = dict(update.stats_update)

        def build(ids: Ids, message: AsyncOpMessage) -> tuple[Id, AsyncOp] | None:
            span_id = message.id
            if span_id is None:
                log.warning("skipping async op with no id: %r", message)
                return None
            if message.metadata_id is None:
                log.warning("async op has no metadata id, skipping: %r", message)
                return None
            meta = metas.get(message.metadata_id)
            if meta is None:
                log.warning("no metadata %s for async op, skipping", message.metadata_id)
                return None
            stats_message = stats_update.pop(span_id, None)
            if stats_message is None:
                return None
            stats = AsyncOpStats.from_message(stats_message, meta, task_ids)
            id = ids.id_for(span_id)
            if message.resource_id is None:
                return None
            resource_id = resource_ids.id_for(message.resource_id)
            if message.parent_async_op_id is None:
                parent_id = "n/a"
            else:
                parent_id = str(ids.id_for(message.parent_async_op_id))
            op = AsyncOp(
                id=id,
                parent_id=parent_id,
                resource_id=resource_id,
                meta_id=message.metadata_id,
                source=message.source,
                stats=stats,
            )
            return id, op

        self._async_ops.insert_with(visibility, update.new_async_ops, build)

        for stats, op in self._async_ops.updated(stats_update):
            meta = metas.get(op.meta_id)
            if meta is not None:
                log.debug("processing stats update for async op %s", op.id)
                op.stats = AsyncOpStats.from_message(stats, meta, task_ids)

        self.dropped_events += update.dropped_events

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Forget ops that were dropped at least ``retain_for`` ago."""

        def keep(_id: Id, op: AsyncOp) -> bool:
            dropped_at = op.stats.dropped_at
            return dropped_at is None or retain_for > _elapsed(now, dropped_at)

        self._async_ops.retain(keep)