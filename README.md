# taskscope

`taskscope` keeps the state that a console for an instrumented async runtime
needs to show. It takes update messages describing an instrumented program and
turns them into views of its **tasks**, **resources** and **async operations**,
each with its timing statistics. It has no dependencies beyond the standard
library.

## What it tracks

- **Tasks** (`taskscope.tasks`): poll counts; busy, scheduled and idle time;
  wakes and self-wakes; waker clones and drops; and the task's state
  (`TaskState.RUNNING`, `SCHEDULED`, `IDLE` or `COMPLETED`). The `task.name`,
  `task.id` and `kind` fields get their own attributes; the other fields, plus
  the target, are pre-formatted as styled `Span`s.
- **Resources** (`taskscope.resources`): kind, concrete type, target, parent
  resource, location, public or internal visibility and formatted attributes.
- **Async operations** (`taskscope.async_ops`): the resource and task an
  operation belongs to, its parent operation, its source, and its busy, idle
  and total time.

Span ids from the remote process are renumbered into short sequential `Id`s
(starting at 1) by `taskscope.store.Ids`, and items are kept in a
`taskscope.store.Store`.

## Using it

Build messages from the classes in `taskscope.messages` and feed them to a
`taskscope.state.State`:

```python
from datetime import datetime, timedelta, timezone

from taskscope.messages import (
    FieldMessage, MetadataMessage, PollStats, TaskMessage,
    TaskStatsMessage, TaskUpdate, Update,
)
from taskscope.state import State, ViewKind
from taskscope.tasks import TaskSortBy

t0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
update = Update(
    now=t0 + timedelta(seconds=2),
    new_metadata=[MetadataMessage(id=1, target="app::worker")],
    task_update=TaskUpdate(
        new_tasks=[
            TaskMessage(
                id=42,
                metadata_id=1,
                fields=[FieldMessage(name="task.name", str_val="worker")],
            )
        ],
        stats_update={
            42: TaskStatsMessage(
                created_at=t0,
                poll_stats=PollStats(polls=3, busy_time=timedelta(milliseconds=500)),
            )
        },
    ),
)

state = State(retain_for=timedelta(seconds=6))
state.update(ViewKind.TASKS_LIST, update)

task = next(iter(state.tasks_state))
str(task.id)                        # '1'
task.name                           # 'worker'
task.state()                        # TaskState.IDLE
task.idle(state.last_updated_at)    # timedelta(seconds=1, microseconds=500000)

refs = state.tasks_state.take_new_tasks()        # weak references
TaskSortBy.from_column(4).sort(state.last_updated_at, refs)   # sort by total time

state.retain_active()   # forget items dropped longer ago than retain_for
```

The view passed to `State.update` decides which list counts as visible: new
items arriving while their list is shown replace the set returned by
`take_new_tasks`, `take_new_resources` or `take_new_async_ops`; otherwise they
accumulate until taken.

`TaskSortBy`, `ResourceSortBy` and `AsyncOpSortBy` sort a list of weak
references in place for a given moment; references to items that no longer
exist come first. `from_column` picks an ordering from a column index and
raises `ValueError` for an unknown one.

## Display helpers

`taskscope.fields` parses wire fields into `Field` and `Attribute` values,
orders them (the task name first, the spawn location last) and renders them
with `make_formatted_fields` and `make_formatted_attributes`. Spawn locations of
crates fetched by the package manager are shortened:

```python
from taskscope.fields import truncate_registry_path

truncate_registry_path(
    "/home/user/.cargo/registry/src/github.com-1ecc6299db9ec823/tokio-1.0.1/src/lib.rs"
)
# '<cargo>/tokio-1.0.1/src/lib.rs'
```

Windows paths are recognised by `is_windows_path` and keep their backslashes.
`format_location` renders a `Location`, or `'<unknown location>'` for `None`.

`taskscope.util.percent_of(amount, total)` gives a percentage, truncated to an
integer for integer inputs.

## Pausing

`State.start_pausing()` and `State.start_unpausing()` record a pause or resume
that has been asked for, and `State.update_temporality()` records what the
instrumented program reports (`Temporality.LIVE`/`0` or
`Temporality.PAUSED`/`1`; anything else raises `ValueError`). While the state is
pausing or paused, `retain_active()` removes nothing.

## What it does not do

`taskscope` is only the state model. It does not connect to an instrumented
program or decode its wire format: the caller builds the message objects. It
draws no terminal screen; the `Span` values and `render` methods only describe
styled text. `State.update_task_details` records which task is inspected but
does not decode poll-time histograms, and no linters are run over tasks.