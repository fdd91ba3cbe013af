"""Resources observed in an instrumented runtime and their statistics."""

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
    RED,
    Attribute,
    Metadata,
    Span,
    Visibility,
    format_location,
    make_formatted_attributes,
)
from .messages import TIMER_KIND, ResourceMessage, ResourceStatsMessage, ResourceUpdate
from .store import Id, Ids, Store

log = logging.getLogger(__name__)

_ZERO = timedelta(0)


def _elapsed(later: datetime, earlier: datetime) -> timedelta:
    """Time from ``earlier`` to ``later``, or zero if ``later`` is earlier."""
    return max(later - earlier, _ZERO)


class TypeVisibility(Enum):
    """Whether a resource type is public or internal to the runtime."""

    PUBLIC = 0
    INTERNAL = 1

    def __lt__(self, other: TypeVisibility) -> bool:
        if not isinstance(other, TypeVisibility):
            return NotImplemented
        return self.value < other.value

    def render(self, utf8: bool) -> Span:
        """Return the styled marker shown in the visibility column."""
        if self is TypeVisibility.INTERNAL:
            return Span("\U0001F512" if utf8 else "INT", RED)
        return Span("\u2705" if utf8 else "PUB", GREEN)


@dataclass
class ResourceStats:
    """Statistics that change over a resource's lifetime."""

    created_at: datetime
    dropped_at: datetime | None = None
    total: timedelta | None = None
    formatted_attributes: list[list[Span]] = field(default_factory=list)

    @classmethod
    def from_message(cls, message: ResourceStatsMessage, meta: Metadata) -> ResourceStats:
        """Build stats from the wire; the creation time is required."""
        attributes = [
            parsed
            for parsed in (Attribute.from_message(raw, meta) for raw in message.attributes)
            if parsed is not None
        ]
        formatted = make_formatted_attributes(attributes)
        if message.created_at is None:
            raise ValueError("resource span was never created")
        created_at = message.created_at
        dropped_at = message.dropped_at
        total = _elapsed(dropped_at, created_at) if dropped_at is not None else None
        return cls(
            created_at=created_at,
            dropped_at=dropped_at,
            total=total,
            formatted_attributes=formatted,
        )


@dataclass(eq=False)
class Resource:
    """A resource, identified locally by a sequential id."""

    id: Id
    span_id: int
    stats: ResourceStats
    target: str
    meta_id: int
    kind: str
    concrete_type: str = ""
    id_str: str = ""
    parent: str = "n/a"
    parent_id: str = "n/a"
    location: str = "<unknown location>"
    visibility: TypeVisibility = TypeVisibility.PUBLIC

    @property
    def formatted_attributes(self) -> list[list[Span]]:
        return self.stats.formatted_attributes

    def total(self, since: datetime) -> timedelta:
        if self.stats.total is not None:
            return self.stats.total
        return _elapsed(since, self.stats.created_at)

    def dropped(self) -> bool:
        return self.stats.total is not None


def _first_attribute_key(resource: Resource) -> str | None:
    attrs = resource.formatted_attributes
    if not attrs or not attrs[0]:
        return None
    return attrs[0][0].content


class ResourceSortBy(Enum):
    """Columns of the resource table that resources can be sorted by."""

    ID = 0
    PARENT_ID = 1
    KIND = 2
    TOTAL = 3
    TARGET = 4
    CONCRETE_TYPE = 5
    VISIBILITY = 6
    LOCATION = 7
    ATTRIBUTES = 8

    @classmethod
    def default(cls) -> ResourceSortBy:
        return cls.ID

    @classmethod
    def from_column(cls, column: int) -> ResourceSortBy:
        try:
            return cls(column)
        except ValueError:
            raise ValueError(f"no resource column with index {column}") from None

    @property
    def column(self) -> int:
        return self.value

    def _key(self, now: datetime) -> Callable[[Resource], tuple]:
        keys: dict[ResourceSortBy, Callable[[Resource], Any]] = {
            ResourceSortBy.ID: lambda r: r.id,
            ResourceSortBy.PARENT_ID: lambda r: r.parent_id,
            ResourceSortBy.KIND: lambda r: r.kind,
            ResourceSortBy.TOTAL: lambda r: r.total(now),
            ResourceSortBy.TARGET: lambda r: r.target,
            ResourceSortBy.CONCRETE_TYPE: lambda r: r.concrete_type,
            ResourceSortBy.VISIBILITY: lambda r: r.visibility.value,
            ResourceSortBy.LOCATION: lambda r: r.location,
        }
        if self is ResourceSortBy.ATTRIBUTES:

            def attr_key(resource: Resource) -> tuple:
                first = _first_attribute_key(resource)
                return (0,) if first is None else (1, first)

            return attr_key
        plain = keys[self]
        return lambda r: (1, plain(r))

    def sort(self, now: datetime, resources: list[weakref.ref]) -> None:
        """Sort weak resource references in place; dropped references come first."""
        key = self._key(now)

        def ref_key(ref: weakref.ref) -> tuple:
            resource = ref()
            return (0,) if resource is None else key(resource)

        resources.sort(key=ref_key)


def kind_from_message(kind: int | str | None) -> str:
    """Return the display name of a resource kind.

    Raises ``ValueError`` for a missing kind or an unknown known-kind code.
    """
    if kind is None:
        raise ValueError("a resource should have a kind field")
    if isinstance(kind, str):
        return kind
    if kind == TIMER_KIND:
        return "Timer"
    raise ValueError(f"failed to parse known kind from {kind}")


class ResourcesState:
    """All known resources and the bookkeeping around their updates."""

    def __init__(self) -> None:
        self._resources: Store[Resource] = Store()
        self.dropped_events = 0

    @property
    def ids(self) -> Ids:
        return self._resources.ids

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self) -> Iterator[Resource]:
        return self._resources.values()

    def get_by_span(self, span_id: int) -> Resource | None:
        return self._resources.get_by_span(span_id)

    def take_new_resources(self) -> list[weakref.ref]:
        """Return references to resources added since the last call."""
        return self._resources.take_new_items()

    def update_resources(
        self,
        metas: Mapping[int, Metadata],
        update: ResourceUpdate,
        visibility: Visibility,
    ) -> None:
        parents: dict[Id, weakref.ref] = {}
        for message in update.new_resources:
            if message.parent_resource_id is None:
                continue
            parent = self._resources.get_by_span(message.parent_resource_id)
            if parent is not None:
                parents[parent.id] = weakref.ref(parent)

        stats_update = dict(update.stats_update)

        def build(ids: Ids, message: ResourceMessage) -> tuple[Id, Resource] | None:
            return self._build_resource(ids, message, metas, stats_update, parents)

        self._resources.insert_with(visibility, update.new_resources, build)

        self.dropped_events += update.dropped_events

        for stats, resource in self._resources.updated(stats_update):
            meta = metas.get(resource.meta_id)
            if meta is not None:
                log.debug("processing stats update for resource %s", resource.id)
                resource.stats = ResourceStats.from_message(stats, meta)

    @staticmethod
    def _build_resource(
        ids: Ids,
        message: ResourceMessage,
        metas: Mapping[int, Metadata],
        stats_update: dict[int, ResourceStatsMessage],
        parents: Mapping[Id, weakref.ref],
    ) -> tuple[Id, Resource] | None:
        span_id = message.id
        if span_id is None:
            log.warning("skipping resource with no id: %r", message)
            return None
        if message.metadata_id is None:
            log.warning("resource has no metadata id, skipping: %r", message)
            return None
        meta = metas.get(message.metadata_id)
        if meta is None:
            log.warning("no metadata %s for resource, skipping", message.metadata_id)
            return None
        if message.kind is None:
            return None
        try:
            kind = kind_from_message(message.kind)
        except ValueError as err:
            log.warning("resource kind cannot be parsed: %s", err)
            return None

        stats_message = stats_update.pop(span_id, None)
        if stats_message is None:
            return None
        stats = ResourceStats.from_message(stats_message, meta)

        id = ids.id_for(span_id)
        parent_id = (
            None if message.parent_resource_id is None else ids.id_for(message.parent_resource_id)
        )

        if parent_id is None:
            parent = "n/a"
        else:
            ref = parents.get(parent_id)
            found = ref() if ref is not None else None
            if found is not None:
                parent = f"{found.id} ({found.target}::{found.concrete_type})"
            else:
                parent = str(parent_id)

        resource = Resource(
            id=id,
            span_id=span_id,
            stats=stats,
            target=meta.target,
            meta_id=message.metadata_id,
            kind=kind,
            concrete_type=message.concrete_type,
            id_str=str(id),
            parent=parent,
            parent_id="n/a" if parent_id is None else str(parent_id),
            location=format_location(message.location),
            visibility=TypeVisibility.INTERNAL if message.is_internal else TypeVisibility.PUBLIC,
        )
        return id, resource

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Forget resources that were dropped at least ``retain_for`` ago."""

        def keep(_id: Id, resource: Resource) -> bool:
            dropped_at = resource.stats.dropped_at
            return dropped_at is None or retain_for > _elapsed(now, dropped_at)

        self._resources.retain(keep)