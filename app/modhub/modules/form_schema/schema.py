"""
Per-game upload form definition.

A schema is an ordered list of FormField. Editing helpers never mutate their input;
each returns a new list whose `order` values match list positions.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import asdict, dataclass, replace
from typing import Any

from app.modhub.errors import ValidationError

FIELD_TYPES = ("text", "textarea", "select", "checkbox", "file", "static-text")
INPUT_FIELD_TYPES = ("text", "textarea", "select", "checkbox", "file")

DEFAULT_STATIC_TEXT = "Enter your text here"
DEFAULT_STATIC_COLOR = "#FFFFFF"

_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{3}([0-9a-fA-F]{3})?$")


@dataclass(frozen=True)
class FormField:
    id: str
    type: str
    label: str
    required: bool = False
    order: int = 0
    placeholder: str | None = None
    options: tuple[str, ...] | None = None
    content: str | None = None
    color: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if self.options is not None:
            d["options"] = list(self.options)
        return {k: v for k, v in d.items() if v is not None}


def new_field(field_type: str, order: int = 0) -> FormField:
    if field_type not in FIELD_TYPES:
        raise ValidationError(f"Unknown field type: {field_type}", {"type": [f"Must be one of: {', '.join(FIELD_TYPES)}"]})

    if field_type == "static-text":
        return FormField(
            id=str(uuid.uuid4()),
            type=field_type,
            label=DEFAULT_STATIC_TEXT,
            order=order,
            content=DEFAULT_STATIC_TEXT,
            color=DEFAULT_STATIC_COLOR,
        )

    placeholder = None
    if field_type == "text":
        placeholder = "Enter text..."
    elif field_type == "textarea":
        placeholder = "Enter description..."
    options = ("Option 1", "Option 2", "Option 3") if field_type == "select" else None
    return FormField(
        id=str(uuid.uuid4()),
        type=field_type,
        label=f"New {field_type} field",
        order=order,
        placeholder=placeholder,
        options=options,
    )


def _renumber(fields: list[FormField]) -> list[FormField]:
    return [f if f.order == i else replace(f, order=i) for i, f in enumerate(fields)]


def _check_index(schema: list[FormField], index: int) -> None:
    if index < 0 or index >= len(schema):
        raise ValidationError(f"Field index out of range: {index}")


def append_field(schema: list[FormField], field_type: str) -> list[FormField]:
    return _renumber([*schema, new_field(field_type, len(schema))])


def update_field(schema: list[FormField], index: int, field: FormField) -> list[FormField]:
    _check_index(schema, index)
    out = list(schema)
    out[index] = field
    return _renumber(out)


def remove_field(schema: list[FormField], index: int) -> list[FormField]:
    _check_index(schema, index)
    out = list(schema)
    del out[index]
    return _renumber(out)


def move_field(schema: list[FormField], index: int, direction: str) -> list[FormField]:
    if direction not in ("up", "down"):
        raise ValidationError("direction must be 'up' or 'down'", {"direction": ["Must be 'up' or 'down'"]})
    _check_index(schema, index)
    new_index = index - 1 if direction == "up" else index + 1
    if new_index < 0 or new_index >= len(schema):
        return list(schema)
    out = list(schema)
    moved = out.pop(index)
    out.insert(new_index, moved)
    return _renumber(out)


def index_of(schema: list[FormField], field_id: str) -> int:
    for i, f in enumerate(schema):
        if f.id == field_id:
            return i
    return -1


def parse_field(raw: Any, *, position: int = 0) -> tuple[FormField | None, list[str]]:
    """Returns (field, errors). Missing optional keys fall back to defaults."""
    if not isinstance(raw, dict):
        return None, ["Field must be an object"]

    errors: list[str] = []
    field_type = raw.get("type")
    if field_type not in FIELD_TYPES:
        errors.append(f"type must be one of: {', '.join(FIELD_TYPES)}")

    field_id = raw.get("id")
    if field_id is None or field_id == "":
        field_id = str(uuid.uuid4())
    elif not isinstance(field_id, str):
        errors.append("id must be a string")

    label = raw.get("label", "")
    if not isinstance(label, str):
        errors.append("label must be a string")

    required = raw.get("required", False)
    if not isinstance(required, bool):
        errors.append("required must be a boolean")

    order = raw.get("order", position)
    if isinstance(order, bool) or not isinstance(order, (int, float)):
        errors.append("order must be a number")

    placeholder = raw.get("placeholder")
    if placeholder is not None and not isinstance(placeholder, str):
        errors.append("placeholder must be a string")

    options = raw.get("options")
    if options is not None:
        if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
            errors.append("options must be a list of strings")
        else:
            options = tuple(o.strip() for o in options if o.strip())

    content = raw.get("content")
    if content is not None and not isinstance(content, str):
        errors.append("content must be a string")

    color = raw.get("color")
    if color is not None and (not isinstance(color, str) or not _COLOR_RE.match(color)):
        errors.append("color must be a hex color like #FFFFFF")

    if errors:
        return None, errors
    return (
        FormField(
            id=field_id,
            type=field_type,
            label=label,
            required=required,
            order=int(order),
            placeholder=placeholder,
            options=options,
            content=content,
            color=color,
        ),
        [],
    )


def parse_schema(raw: Any) -> list[FormField]:
    """
    Validates a JSON form schema (list of field objects). Raises ValidationError with
    per-field messages keyed "fields[<i>]". Result is sorted by order and renumbered.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("Form schema must be a list of fields", {"formSchema": ["Must be a list"]})

    fields: list[FormField] = []
    problems: dict[str, list[str]] = {}
    seen_ids: set[str] = set()
    for i, item in enumerate(raw):
        f, errs = parse_field(item, position=i)
        if f is not None and f.id in seen_ids:
            errs = [f"duplicate field id {f.id}"]
        if errs or f is None:
            problems[f"fields[{i}]"] = errs
            continue
        seen_ids.add(f.id)
        fields.append(f)
    if problems:
        raise ValidationError("Invalid form schema", problems)
    return _renumber(sorted(fields, key=lambda f: f.order))


def dump_schema(schema: list[FormField]) -> list[dict[str, Any]]:
    return [f.to_dict() for f in schema]


def validate_submission(schema: list[FormField], values: dict[str, Any] | None) -> dict[str, Any]:
    """
    Checks submitted values (keyed by field id) against the schema and returns the
    cleaned values. Unknown keys and static-text fields are dropped.
    """
    values = values or {}
    if not isinstance(values, dict):
        raise ValidationError("customFields must be an object", {"customFields": ["Must be an object"]})

    cleaned: dict[str, Any] = {}
    problems: dict[str, list[str]] = {}
    for f in schema:
        if f.type not in INPUT_FIELD_TYPES:
            continue
        value = values.get(f.id)

        if f.type == "checkbox":
            if value is None:
                value = False
            if not isinstance(value, bool):
                problems[f.id] = [f"{f.label} must be true or false"]
                continue
            if f.required and not value:
                problems[f.id] = [f"{f.label} is required"]
                continue
            cleaned[f.id] = value
            continue

        if value is not None and not isinstance(value, str):
            problems[f.id] = [f"{f.label} must be a string"]
            continue
        value = (value or "").strip()
        if not value:
            if f.required:
                problems[f.id] = [f"{f.label} is required"]
            continue
        if f.type == "select" and value not in (f.options or ()):
            problems[f.id] = [f"{f.label} must be one of: {', '.join(f.options or ())}"]
            continue
        cleaned[f.id] = value

    if problems:
        raise ValidationError("Invalid custom field values", problems)
    return cleaned
