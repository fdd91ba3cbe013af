"""Messages received from an instrumented process."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

TIMER_KIND = 0
"""Numeric code of the well-known ``Timer`` resource kind."""


@dataclass
class Location:
    """Source location a task or resource was created from."""

    file: str | None = None
    module_path: str | None = None
    line: int | None = None
    column: int | None = None

    def __str__(self) -> str:
        text = self.file if self.file is not None else (self.module_path or "<unknown>")
        if self.line is not None:
            text += f":{self.line}"
            if self.column is not None:
                text += f":{self.column}"
        return text


_VALUE_SLOTS = ("bool_val", "str_val", "i64_val", "u64_val", "debug_val")


@dataclass
class FieldMessage:
    """A field as sent on the wire: named directly or by metadata index."""

    name: str | None = None
    name_index: int | None = None
    metadata_id: int | None = None
    bool_val: bool | None = None
    str_val: str | None = None
    i64_val: int | None = None
    u64_val: int | None = None
    debug_val: str | None = None

    def __post_init__(self) -> None:
        if self.name is not None and self.name_index is not None:
            raise ValueError("a field has either a name or a name index, not both")
        if sum(getattr(self, slot) is not None for slot in _VALUE_SLOTS) > 1:
            raise ValueError("a field carries at most one value")


@dataclass
class AttributeMessage:
    field: FieldMessage | None = None
    unit: str | None = None


@dataclass
class MetadataMessage:
    id: int | None = None
    target: str = ""
    field_names: list[str] = field(default_factory=list)


@dataclass
class PollStats:
    polls: int = 0
    first_poll: datetime | None = None
    last_poll_started: datetime | None = None
    last_poll_ended: datetime | None = None
    busy_time: timedelta | None = None


@dataclass
class TaskMessage:
    id: int | None = None
    metadata_id: int | None = None
    fields: list[FieldMessage] = field(default_factory=list)
    location: Location | None = None


@dataclass
class TaskStatsMessage:
    created_at: datetime | None = None
    dropped_at: datetime | None = None
    poll_stats: PollStats | None = None
    scheduled_time: timedelta | None = None
    last_wake: datetime | None = None
    wakes: int = 0
    waker_clones: int = 0
    waker_drops: int = 0
    self_wakes: int = 0


@dataclass
class TaskUpdate:
    new_tasks: list[TaskMessage] = field(default_factory=list)
    stats_update: dict[int, TaskStatsMessage] = field(default_factory=dict)
    dropped_events: int = 0


@dataclass
class ResourceMessage:
    """A new resource; ``kind`` is a known kind code (int) or a custom name (str)."""

    id: int | None = None
    metadata_id: int | None = None
    kind: int | str | None = None
    concrete_type: str = ""
    location: Location | None = None
    is_internal: bool = False
    parent_resource_id: int | None = None


@dataclass
class ResourceStatsMessage:
    created_at: datetime | None = None
    dropped_at: datetime | None = None
    attributes: list[AttributeMessage] = field(default_factory=list)


@dataclass
class ResourceUpdate:
    new_resources: list[ResourceMessage] = field(default_factory=list)
    stats_update: dict[int, ResourceStatsMessage] = field(default_factory=dict)
    dropped_events: int = 0


@dataclass
class AsyncOpMessage:
    id: int | None = None
    metadata_id: int | None = None
    source: str = ""
    parent_async_op_id: int | None = None
    resource_id: int | None = None


@dataclass
class AsyncOpStatsMessage:
    created_at: datetime | None = None
    dropped_at: datetime | None = None
    task_id: int | None = None
    poll_stats: PollStats | None = None
    attributes: list[AttributeMessage] = field(default_factory=list)


@dataclass
class AsyncOpUpdate:
    new_async_ops: list[AsyncOpMessage] = field(default_factory=list)
    stats_update: dict[int, AsyncOpStatsMessage] = field(default_factory=dict)
    dropped_events: int = 0


@dataclass
class Update:
    now: datetime | None = None
    new_metadata: list[MetadataMessage] | None = None
    task_update: TaskUpdate | None = None
    resource_update: ResourceUpdate | None = None
    async_op_update: AsyncOpUpdate | None = None