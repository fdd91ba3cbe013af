"""The console's view of everything reported by an instrumented process."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from .async_ops import AsyncOpsState
from .fields import Metadata, Temporality, Visibility
from .messages import Update
from .resources import ResourcesState
from .tasks import Details, TasksState

_TEMPORALITY_CODES = {0: Temporality.LIVE, 1: Temporality.PAUSED}


class ViewKind(Enum):
    """The screen currently shown, which decides what counts as visible."""

    TASKS_LIST = "tasks_list"
    TASK_INSTANCE = "task_instance"
    RESOURCES_LIST = "resources_list"
    RESOURCE_INSTANCE = "resource_instance"


def _visible_when(current: ViewKind, wanted: ViewKind) -> Visibility:
    return Visibility.SHOW if current is wanted else Visibility.HIDE


class State:
    """Tasks, resources and async ops, kept up to date from updates."""

    def __init__(self, retain_for: timedelta | None = None) -> None:
        self.metas: dict[int, Metadata] = {}
        self.last_updated_at: datetime | None = None
        self.temporality = Temporality.LIVE
        self.tasks_state = TasksState()
        self.resources_state = ResourcesState()
        self.async_ops_state = AsyncOpsState()
        self.task_details: Details | None = None
        self.retain_for = retain_for

    def update(self, current_view: ViewKind, update: Update) -> None:
        """Apply one update received from the instrumented process."""
        if update.now is not None:
            self.last_updated_at = update.now

        for meta in update.new_metadata or ():
            if meta.id is None:
                continue
            self.metas[meta.id] = Metadata(meta.id, meta.target, tuple(meta.field_names))

        if update.task_update is not None:
            self.tasks_state.update_tasks(
                self.metas,
                update.task_update,
                _visible_when(current_view, ViewKind.TASKS_LIST),
            )

        if update.resource_update is not None:
            self.resources_state.update_resources(
                self.metas,
                update.resource_update,
                _visible_when(current_view, ViewKind.RESOURCES_LIST),
            )

        if update.async_op_update is not None:
            self.async_ops_state.update_async_ops(
                self.metas,
                update.async_op_update,
                self.resources_state.ids,
                self.tasks_state.ids,
                _visible_when(current_view, ViewKind.RESOURCE_INSTANCE),
            )

    def retain_active(self) -> None:
        """Forget items dropped longer ago than ``retain_for``, unless paused."""
        if self.is_paused():
            return
        now, retain_for = self.last_updated_at, self.retain_for
        if now is None or retain_for is None:
            return
        self.tasks_state.retain_active(now, retain_for)
        self.resources_state.retain_active(now, retain_for)
        self.async_ops_state.retain_active(now, retain_for)

    def update_task_details(self, span_id: int | None) -> None:
        """Record details for the task with ``span_id``; ``None`` is ignored."""
        if span_id is None:
            return
        self.task_details = Details(span_id=span_id)

    def unset_task_details(self) -> None:
        self.task_details = None

    def start_unpausing(self) -> None:
        self.temporality = Temporality.UNPAUSING

    def start_pausing(self) -> None:
        self.temporality = Temporality.PAUSING

    def update_temporality(self, temporality: Temporality | int) -> None:
        """Set the temporality reported by the remote: live (0) or paused (1)."""
        if isinstance(temporality, Temporality):
            if temporality not in (Temporality.LIVE, Temporality.PAUSED):
                raise ValueError(f"invalid temporality: {temporality}")
            self.temporality = temporality
            return
        try:
            self.temporality = _TEMPORALITY_CODES[temporality]
        except KeyError:
            raise ValueError(f"invalid temporality: {temporality}") from None

    def is_paused(self) -> bool:
        return self.temporality in (Temporality.PAUSED, Temporality.PAUSING)