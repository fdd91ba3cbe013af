import weakref
from datetime import datetime, timedelta

import pytest

from taskscope.fields import GREEN, RED, Metadata, Visibility
from taskscope.messages import (
    TIMER_KIND,
    AttributeMessage,
    FieldMessage,
    Location,
    ResourceMessage,
    ResourceStatsMessage,
    ResourceUpdate,
)
from taskscope.resources import (
    Resource,
    ResourceSortBy,
    ResourceStats,
    ResourcesState,
    TypeVisibility,
    kind_from_message,
)
from taskscope.store import Id

T0 = datetime(2024, 1, 1, 12, 0, 0)
META = Metadata(id=1, target="tokio::sync")
METAS = {1: META}


def stats_msg(created=T0, dropped=None, attrs=()):
    return ResourceStatsMessage(created_at=created, dropped_at=dropped, attributes=list(attrs))


def resource_msg(span_id, parent=None, kind="Mutex", concrete_type="Mutex", internal=False):
    return ResourceMessage(
        id=span_id,
        metadata_id=1,
        kind=kind,
        concrete_type=concrete_type,
        is_internal=internal,
        parent_resource_id=parent,
    )


def make_resource(n, **kwargs):
    stats = kwargs.pop("stats", ResourceStats(created_at=T0))
    return Resource(id=Id(n), span_id=n, stats=stats, target="t", meta_id=1, kind="k", **kwargs)


def test_kind_from_message():
    assert kind_from_message(TIMER_KIND) == "Timer"
    assert kind_from_message("Semaphore") == "Semaphore"
    with pytest.raises(ValueError, match="failed to parse known kind"):
        kind_from_message(TIMER_KIND + 7)
    with pytest.raises(ValueError):
        kind_from_message(None)


def test_type_visibility_render_and_order():
    assert TypeVisibility.INTERNAL.render(False).content == "INT"
    assert TypeVisibility.INTERNAL.render(True).color == RED
    assert TypeVisibility.PUBLIC.render(False).content == "PUB"
    assert TypeVisibility.PUBLIC.render(True).content == "\u2705"
    assert TypeVisibility.PUBLIC.render(True).color == GREEN
    assert TypeVisibility.PUBLIC < TypeVisibility.INTERNAL


def test_sort_by_from_column():
    assert ResourceSortBy.from_column(0) is ResourceSortBy.ID
    assert ResourceSortBy.from_column(8) is ResourceSortBy.ATTRIBUTES
    assert ResourceSortBy.default() is ResourceSortBy.ID
    for sort_by in ResourceSortBy:
        assert ResourceSortBy.from_column(sort_by.column) is sort_by
    with pytest.raises(ValueError):
        ResourceSortBy.from_column(9)


def test_stats_from_message():
    attr = AttributeMessage(FieldMessage(name="permits", u64_val=3), unit="ms")
    stats = ResourceStats.from_message(
        stats_msg(dropped=T0 + timedelta(seconds=5), attrs=[attr]), META
    )
    assert stats.total == timedelta(seconds=5)
    contents = [span.content for span in stats.formatted_attributes[0]]
    assert contents == ["permits", "=", "3", "ms", " "]


def test_stats_require_created_at():
    with pytest.raises(ValueError, match="never created"):
        ResourceStats.from_message(ResourceStatsMessage(), META)


def test_update_and_parent_description():
    state = ResourcesState()
    state.update_resources(
        METAS,
        ResourceUpdate(new_resources=[resource_msg(100)], stats_update={100: stats_msg()}),
        Visibility.SHOW,
    )
    parent = state.get_by_span(100)
    assert parent.id == Id(1)
    assert parent.parent == "n/a"
    assert parent.kind == "Mutex"

    state.update_resources(
        METAS,
        ResourceUpdate(
            new_resources=[resource_msg(200, parent=100, internal=True)],
            stats_update={200: stats_msg()},
            dropped_events=2,
        ),
        Visibility.SHOW,
    )
    child = state.get_by_span(200)
    assert child.parent == f"{parent.id} (tokio::sync::Mutex)"
    assert child.parent_id == str(parent.id)
    assert child.visibility is TypeVisibility.INTERNAL
    assert state.dropped_events == 2
    assert len(state) == 2


def test_parent_in_same_batch_is_shown_by_id():
    state = ResourcesState()
    state.update_resources(
        METAS,
        ResourceUpdate(
            new_resources=[resource_msg(1), resource_msg(2, parent=1)],
            stats_update={1: stats_msg(), 2: stats_msg()},
        ),
        Visibility.SHOW,
    )
    child = state.get_by_span(2)
    assert child.parent == child.parent_id == str(state.get_by_span(1).id)


def test_invalid_resources_are_skipped():
    state = ResourcesState()
    messages = [
        ResourceMessage(id=None, metadata_id=1, kind="a"),
        ResourceMessage(id=2, metadata_id=None, kind="a"),
        ResourceMessage(id=3, metadata_id=99, kind="a"),
        ResourceMessage(id=4, metadata_id=1, kind=None),
        ResourceMessage(id=5, metadata_id=1, kind=TIMER_KIND + 3),
        ResourceMessage(id=6, metadata_id=1, kind="a"),
        ResourceMessage(id=7, metadata_id=1, kind=TIMER_KIND, location=Location(file="x.rs", line=4)),
    ]
    stats = {i: stats_msg() for i in range(2, 8) if i != 6}
    state.update_resources(METAS, ResourceUpdate(messages, stats), Visibility.SHOW)
    assert len(state) == 1
    timer = state.get_by_span(7)
    assert timer.kind == "Timer"
    assert timer.location == "x.rs:4"


def test_stats_update_replaces_stats():
    state = ResourcesState()
    state.update_resources(
        METAS, ResourceUpdate([resource_msg(1)], {1: stats_msg()}), Visibility.SHOW
    )
    resource = state.get_by_span(1)
    assert not resource.dropped()
    dropped = T0 + timedelta(seconds=3)
    state.update_resources(METAS, ResourceUpdate([], {1: stats_msg(dropped=dropped)}), Visibility.SHOW)
    assert resource.dropped()
    assert resource.total(T0 + timedelta(hours=1)) == dropped - T0


def test_total_of_live_resource():
    resource = make_resource(1)
    assert resource.total(T0 + timedelta(seconds=2)) == timedelta(seconds=2)
    assert resource.total(T0 - timedelta(seconds=2)) == timedelta(0)


def test_take_new_resources_and_visibility():
    state = ResourcesState()
    state.update_resources(METAS, ResourceUpdate([resource_msg(1)], {1: stats_msg()}), Visibility.HIDE)
    state.update_resources(METAS, ResourceUpdate([resource_msg(2)], {2: stats_msg()}), Visibility.HIDE)
    assert [ref().span_id for ref in state.take_new_resources()] == [1, 2]
    assert state.take_new_resources() == []
    state.update_resources(METAS, ResourceUpdate([resource_msg(3)], {3: stats_msg()}), Visibility.HIDE)
    state.update_resources(METAS, ResourceUpdate([resource_msg(4)], {4: stats_msg()}), Visibility.SHOW)
    assert [ref().span_id for ref in state.take_new_resources()] == [4]


def test_retain_active():
    state = ResourcesState()
    dropped = T0 + timedelta(seconds=1)
    state.update_resources(
        METAS,
        ResourceUpdate(
            [resource_msg(1), resource_msg(2)],
            {1: stats_msg(), 2: stats_msg(dropped=dropped)},
        ),
        Visibility.SHOW,
    )
    state.retain_active(dropped + timedelta(seconds=5), timedelta(seconds=10))
    assert len(state) == 2
    state.retain_active(dropped + timedelta(seconds=10), timedelta(seconds=10))
    assert [r.span_id for r in state] == [1]


def test_sort_by_id_puts_dead_refs_first():
    a, b = make_resource(2), make_resource(1)
    gone = make_resource(3)
    refs = [weakref.ref(a), weakref.ref(gone), weakref.ref(b)]
    del gone
    ResourceSortBy.ID.sort(T0, refs)
    assert refs[0]() is None
    assert [r().id for r in refs[1:]] == [Id(1), Id(2)]


def test_sort_by_visibility_and_total():
    internal = make_resource(1, visibility=TypeVisibility.INTERNAL)
    public = make_resource(2, visibility=TypeVisibility.PUBLIC)
    refs = [weakref.ref(internal), weakref.ref(public)]
    ResourceSortBy.VISIBILITY.sort(T0, refs)
    assert [r() for r in refs] == [public, internal]

    long = make_resource(3, stats=ResourceStats(created_at=T0 - timedelta(seconds=9)))
    short = make_resource(4)
    refs = [weakref.ref(long), weakref.ref(short)]
    ResourceSortBy.TOTAL.sort(T0 + timedelta(seconds=1), refs)
    assert [r() for r in refs] == [short, long]


def test_sort_by_attributes():
    def with_attr(n, name):
        attr = AttributeMessage(FieldMessage(name=name, bool_val=True))
        return make_resource(n, stats=ResourceStats.from_message(stats_msg(attrs=[attr]), META))

    b, a, none = with_attr(1, "beta"), with_attr(2, "alpha"), make_resource(3)
    refs = [weakref.ref(b), weakref.ref(a), weakref.ref(none)]
    ResourceSortBy.ATTRIBUTES.sort(T0, refs)
    assert [r() for r in refs] == [none, a, b]
    assert a.formatted_attributes[0][2].content == "true"