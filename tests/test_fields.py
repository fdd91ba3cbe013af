import pytest

from taskscope.fields import (
    Attribute,
    Field,
    FieldValue,
    Metadata,
    Span,
    format_location,
    is_windows_path,
    make_formatted_attributes,
    make_formatted_fields,
    truncate_registry_path,
)
from taskscope.messages import AttributeMessage, FieldMessage, Location


@pytest.fixture
def meta():
    return Metadata(id=9, target="app", field_names=["alpha", "spawn.location"])


def test_format_location_linux():
    loc1 = Location(
        file="/home/user/.cargo/registry/src/github.com-1ecc6299db9ec823/tokio-1.0.1/src/lib.rs"
    )
    loc2 = Location(file="/home/user/.cargo/git/checkouts/tokio-1.0.1/src/lib.rs")
    loc3 = Location(file="/home/user/projects/tokio-1.0.1/src/lib.rs")
    assert format_location(loc1) == "<cargo>/tokio-1.0.1/src/lib.rs"
    assert format_location(loc2) == "<cargo>/tokio-1.0.1/src/lib.rs"
    assert format_location(loc3) == "/home/user/projects/tokio-1.0.1/src/lib.rs"
    assert format_location(None) == "<unknown location>"


def test_format_location_macos():
    loc1 = Location(
        file="/Users/user/.cargo/registry/src/github.com-1ecc6299db9ec823/tokio-1.0.1/src/lib.rs"
    )
    loc2 = Location(file="/Users/user/.cargo/git/checkouts/tokio-1.0.1/src/lib.rs")
    loc3 = Location(file="/Users/user/projects/tokio-1.0.1/src/lib.rs")
    assert format_location(loc1) == "<cargo>/tokio-1.0.1/src/lib.rs"
    assert format_location(loc2) == "<cargo>/tokio-1.0.1/src/lib.rs"
    assert format_location(loc3) == "/Users/user/projects/tokio-1.0.1/src/lib.rs"


def test_format_location_windows():
    loc1 = Location(
        file="C:\\Users\\user\\.cargo\\registry\\src\\github.com-1ecc6299db9ec823\\tokio-1.0.1\\src\\lib.rs"
    )
    loc2 = Location(file="C:\\Users\\user\\.cargo\\git\\checkouts\\tokio-1.0.1\\src\\lib.rs")
    loc3 = Location(file="C:\\Users\\user\\projects\\tokio-1.0.1\\src\\lib.rs")
    assert format_location(loc1) == "<cargo>\\tokio-1.0.1\\src\\lib.rs"
    assert format_location(loc2) == "<cargo>\\tokio-1.0.1\\src\\lib.rs"
    assert format_location(loc3) == "C:\\Users\\user\\projects\\tokio-1.0.1\\src\\lib.rs"


def test_format_location_does_not_modify_input():
    path = "/home/user/.cargo/git/checkouts/tokio-1.0.1/src/lib.rs"
    loc = Location(file=path)
    format_location(loc)
    assert loc.file == path


def test_is_windows_path():
    assert is_windows_path("C:\\Users\\user\\lib.rs")
    assert not is_windows_path("/home/user/lib.rs")
    assert not is_windows_path("C:/Users/user/lib.rs")


def test_truncate_registry_path_leaves_other_paths():
    assert truncate_registry_path("/srv/app/main.rs") == "/srv/app/main.rs"


def test_field_value_display():
    assert str(FieldValue("bool", True)) == "true"
    assert str(FieldValue("bool", False)) == "false"
    assert str(FieldValue("u64", 12)) == "12"


def test_field_value_rejects_unknown_kind():
    with pytest.raises(ValueError):
        FieldValue("float", 1.0)


def test_field_value_ordering_by_kind_then_value():
    values = [FieldValue("debug", "a"), FieldValue("u64", 2), FieldValue("bool", True), FieldValue("u64", 1)]
    assert sorted(values) == [
        FieldValue("bool", True),
        FieldValue("u64", 1),
        FieldValue("u64", 2),
        FieldValue("debug", "a"),
    ]


def test_ensure_nonempty():
    assert FieldValue("str", "").ensure_nonempty() is None
    assert FieldValue("debug", "").ensure_nonempty() is None
    value = FieldValue("str", "x")
    assert value.ensure_nonempty() == value


def test_truncate_registry_path_value_becomes_debug():
    value = FieldValue("str", "/home/user/.cargo/git/checkouts/tokio-1.0.1/src/lib.rs")
    assert value.truncate_registry_path() == FieldValue("debug", "<cargo>/tokio-1.0.1/src/lib.rs")
    number = FieldValue("u64", 3)
    assert number.truncate_registry_path() == number


def test_field_ordering_puts_name_first_and_location_last():
    v = FieldValue("u64", 1)
    fields = [Field("zeta", v), Field(Field.SPAWN_LOCATION, v), Field("alpha", v), Field(Field.NAME, v)]
    assert [f.name for f in sorted(fields)] == [Field.NAME, "alpha", "zeta", Field.SPAWN_LOCATION]


def test_field_from_message_by_name(meta):
    field = Field.from_message(FieldMessage(name="color", str_val="red"), meta)
    assert field == Field("color", FieldValue("str", "red"))


def test_field_from_message_by_index(meta):
    field = Field.from_message(FieldMessage(name_index=0, metadata_id=9, u64_val=5), meta)
    assert field == Field("alpha", FieldValue("u64", 5))


def test_field_from_message_metadata_mismatch(meta):
    assert Field.from_message(FieldMessage(name_index=0, metadata_id=3, u64_val=5), meta) is None


def test_field_from_message_index_out_of_range(meta):
    assert Field.from_message(FieldMessage(name_index=7, metadata_id=9, u64_val=5), meta) is None


def test_field_from_message_empty_or_missing_value(meta):
    assert Field.from_message(FieldMessage(name="x", str_val=""), meta) is None
    assert Field.from_message(FieldMessage(name="x"), meta) is None


def test_field_from_message_spawn_location_truncated(meta):
    path = "/home/user/.cargo/git/checkouts/tokio-1.0.1/src/lib.rs"
    field = Field.from_message(FieldMessage(name_index=1, metadata_id=9, str_val=path), meta)
    assert field.value == FieldValue("debug", "<cargo>/tokio-1.0.1/src/lib.rs")


def test_attribute_from_message(meta):
    attr = Attribute.from_message(AttributeMessage(FieldMessage(name="size", u64_val=4), "ms"), meta)
    assert attr == Attribute(Field("size", FieldValue("u64", 4)), "ms")
    assert Attribute.from_message(AttributeMessage(None, "ms"), meta) is None


def test_attribute_ordering_unit_breaks_ties():
    f = Field("size", FieldValue("u64", 4))
    attrs = [Attribute(f, "us"), Attribute(f, None), Attribute(f, "ms")]
    assert [a.unit for a in sorted(attrs)] == [None, "ms", "us"]


def test_make_formatted_fields():
    formatted = make_formatted_fields([Field("b", FieldValue("u64", 2)), Field(Field.NAME, FieldValue("str", "t"))])
    assert [spans[0].content for spans in formatted] == [Field.NAME, "b"]
    assert formatted[1][1].content == "="
    assert formatted[1][2].content == "2 "


def test_make_formatted_attributes_with_and_without_unit():
    formatted = make_formatted_attributes(
        [Attribute(Field("b", FieldValue("u64", 2)), "ms"), Attribute(Field("a", FieldValue("bool", True)))]
    )
    assert [s.content for s in formatted[0]] == ["a", "=", "true", " "]
    assert [s.content for s in formatted[1]] == ["b", "=", "2", "ms", " "]
    assert formatted[1][-1] == Span(" ")