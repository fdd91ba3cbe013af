"""Fields, attributes and their display formatting."""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from .messages import AttributeMessage, FieldMessage, Location

log = logging.getLogger(__name__)

LIGHT_BLUE = "light_blue"
YELLOW = "yellow"
RED = "red"
GREEN = "green"
BOLD = "bold"
DIM = "dim"


class Visibility(Enum):
    """Whether newly inserted items are currently on screen."""

    SHOW = "show"
    HIDE = "hide"


class Temporality(Enum):
    """Whether updates are flowing; the default is ``LIVE``."""

    UNPAUSING = "unpausing"
    LIVE = "live"
    PAUSING = "pausing"
    PAUSED = "paused"


@dataclass(frozen=True)
class Span:
    """A piece of styled text."""

    content: str
    color: str | None = None
    modifier: str | None = None


@dataclass(frozen=True)
class Metadata:
    id: int
    target: str
    field_names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "field_names", tuple(self.field_names))


_KIND_ORDER = {"bool": 0, "str": 1, "u64": 2, "i64": 3, "debug": 4}


@dataclass(frozen=True)
class FieldValue:
    """A typed field value: kind is one of bool, str, u64, i64 or debug."""

    kind: str
    value: bool | int | str

    def __post_init__(self) -> None:
        if self.kind not in _KIND_ORDER:
            raise ValueError(f"unknown field value kind: {self.kind!r}")

    def __lt__(self, other: FieldValue) -> bool:
        return (_KIND_ORDER[self.kind], self.value) < (_KIND_ORDER[other.kind], other.value)

    def __str__(self) -> str:
        if self.kind == "bool":
            return "true" if self.value else "false"
        return str(self.value)

    def truncate_registry_path(self) -> FieldValue:
        """Shorten crate-registry paths; string values become debug values."""
        if self.kind in ("str", "debug"):
            return FieldValue("debug", truncate_registry_path(self.value))
        return self

    def ensure_nonempty(self) -> FieldValue | None:
        """Return ``None`` for an empty string value, otherwise ``self``."""
        if self.kind in ("str", "debug") and self.value == "":
            return None
        return self


def _value_from_message(message: FieldMessage) -> FieldValue | None:
    if message.bool_val is not None:
        return FieldValue("bool", message.bool_val)
    if message.str_val is not None:
        return FieldValue("str", message.str_val)
    if message.i64_val is not None:
        return FieldValue("i64", message.i64_val)
    if message.u64_val is not None:
        return FieldValue("u64", message.u64_val)
    if message.debug_val is not None:
        return FieldValue("debug", message.debug_val)
    return None


@dataclass(frozen=True)
class Field:
    """A named value; ordered by name, with the task name first and the spawn location last."""

    SPAWN_LOCATION: ClassVar[str] = "spawn.location"
    KIND: ClassVar[str] = "kind"
    NAME: ClassVar[str] = "task.name"
    TASK_ID: ClassVar[str] = "task.id"
    SIZE_BYTES: ClassVar[str] = "size.bytes"
    ORIGINAL_SIZE_BYTES: ClassVar[str] = "original_size.bytes"

    name: str
    value: FieldValue

    def __lt__(self, other: Field) -> bool:
        return _name_key(self.name) < _name_key(other.name)

    @classmethod
    def from_message(cls, message: FieldMessage, meta: Metadata) -> Field | None:
        """Build a field from the wire, or ``None`` if it is malformed or empty."""
        if message.name is not None:
            name = message.name
        elif message.name_index is not None:
            idx = message.name_index
            if message.metadata_id != meta.id:
                log.warning(
                    "skipping malformed field name (metadata id mismatch): "
                    "meta_id=%s field_meta_id=%s index=%s",
                    meta.id,
                    message.metadata_id,
                    idx,
                )
                return None
            if not 0 <= idx < len(meta.field_names):
                log.warning("missing field name for index %s (meta_id=%s)", idx, meta.id)
                return None
            name = meta.field_names[idx]
        else:
            return None

        value = _value_from_message(message)
        if value is None:
            log.warning("missing field value for field %r", name)
            return None
        value = value.ensure_nonempty()
        if value is None:
            return None
        if name == cls.SPAWN_LOCATION:
            value = value.truncate_registry_path()
        return cls(name, value)


def _name_key(name: str) -> tuple[int, str]:
    if name == Field.NAME:
        return (0, "")
    if name == Field.SPAWN_LOCATION:
        return (2, "")
    return (1, name)


def _unit_key(unit: str | None) -> tuple[int, str]:
    return (0, "") if unit is None else (1, unit)


@dataclass(frozen=True)
class Attribute:
    """A field with an optional unit, ordered by field name then unit."""

    field: Field
    unit: str | None = None

    def __lt__(self, other: Attribute) -> bool:
        mine, theirs = _name_key(self.field.name), _name_key(other.field.name)
        if mine != theirs:
            return mine < theirs
        return _unit_key(self.unit) < _unit_key(other.unit)

    @classmethod
    def from_message(cls, message: AttributeMessage, meta: Metadata) -> Attribute | None:
        if message.field is None:
            return None
        parsed = Field.from_message(message.field, meta)
        if parsed is None:
            return None
        return cls(parsed, message.unit)


def make_formatted_fields(fields: list[Field]) -> list[list[Span]]:
    """Render sorted fields as ``key``, ``=``, ``value `` spans."""
    return [
        [
            Span(f.name, LIGHT_BLUE, BOLD),
            Span("=", LIGHT_BLUE, DIM),
            Span(f"{f.value} ", YELLOW),
        ]
        for f in sorted(fields)
    ]


def make_formatted_attributes(attributes: list[Attribute]) -> list[list[Span]]:
    """Render sorted attributes with an optional unit and a trailing space."""
    formatted = []
    for attr in sorted(attributes):
        spans = [
            Span(attr.field.name, LIGHT_BLUE, BOLD),
            Span("=", LIGHT_BLUE, DIM),
            Span(str(attr.field.value), YELLOW),
        ]
        if attr.unit is not None:
            spans.append(Span(attr.unit, LIGHT_BLUE))
        spans.append(Span(" "))
        formatted.append(spans)
    return formatted


_DRIVE_LETTER = re.compile(r"^[a-zA-Z]:\\")
_REGISTRY = re.compile(
    r".*[/\\]\.cargo[/\\](registry[/\\]src[/\\][^/\\]*[/\\]|git[/\\]checkouts[/\\])"
)


def is_windows_path(path: str) -> bool:
    """Guess whether a path is a Windows path: a drive letter and mostly backslashes."""
    return bool(_DRIVE_LETTER.match(path)) and path.count("\\") > path.count("/")


def truncate_registry_path(path: str) -> str:
    """Replace the crate registry or git checkout prefix with ``<cargo>``."""
    replacement = "<cargo>\\" if is_windows_path(path) else "<cargo>/"
    return _REGISTRY.sub(lambda _match: replacement, path, count=1)


def format_location(location: Location | None) -> str:
    if location is None:
        return "<unknown location>"
    if location.file is not None:
        location = dataclasses.replace(location, file=truncate_registry_path(location.file))
    return str(location)