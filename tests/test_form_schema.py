from pathlib import Path

import pytest
from flask import Flask

from app.modhub.errors import ValidationError
from app.modhub.modules.form_schema.render import render_editor, render_preview
from app.modhub.modules.form_schema.schema import (
    FormField,
    append_field,
    dump_schema,
    move_field,
    new_field,
    parse_schema,
    remove_field,
    update_field,
    validate_submission,
)

TEMPLATES = Path(__file__).resolve().parents[1] / "app" / "modhub" / "templates"


def _schema():
    schema: list[FormField] = []
    for t in ("text", "select", "checkbox"):
        schema = append_field(schema, t)
    return schema


def test_new_field_defaults():
    text = new_field("text")
    assert text.label == "New text field"
    assert text.placeholder == "Enter text..."
    assert new_field("textarea").placeholder == "Enter description..."
    assert new_field("select").options == ("Option 1", "Option 2", "Option 3")

    static = new_field("static-text")
    assert static.label == "Enter your text here"
    assert static.content == static.label
    assert static.color == "#FFFFFF"

    with pytest.raises(ValidationError):
        new_field("colour-picker")


def test_append_renumbers_and_does_not_mutate():
    schema = _schema()
    assert [f.order for f in schema] == [0, 1, 2]
    extended = append_field(schema, "file")
    assert len(schema) == 3
    assert [f.type for f in extended] == ["text", "select", "checkbox", "file"]
    assert extended[-1].order == 3


def test_move_up_at_start_and_down_at_end_are_noops():
    schema = _schema()
    assert move_field(schema, 0, "up") == schema
    assert move_field(schema, len(schema) - 1, "down") == schema


def test_move_swaps_neighbours():
    schema = _schema()
    moved = move_field(schema, 0, "down")
    assert [f.type for f in moved] == ["select", "text", "checkbox"]
    assert [f.order for f in moved] == [0, 1, 2]
    back = move_field(moved, 1, "up")
    assert [f.id for f in back] == [f.id for f in schema]


def test_move_rejects_bad_direction_and_index():
    schema = _schema()
    with pytest.raises(ValidationError):
        move_field(schema, 0, "sideways")
    with pytest.raises(ValidationError):
        move_field(schema, 5, "up")


def test_update_and_remove():
    schema = _schema()
    updated = update_field(schema, 1, FormField(id=schema[1].id, type="select", label="Loader", options=("Forge", "Fabric"), order=9))
    assert updated[1].label == "Loader"
    assert updated[1].order == 1

    removed = remove_field(updated, 0)
    assert [f.type for f in removed] == ["select", "checkbox"]
    assert [f.order for f in removed] == [0, 1]
    with pytest.raises(ValidationError):
        remove_field(removed, 2)


def test_parse_schema_sorts_and_validates():
    raw = [
        {"id": "b", "type": "text", "label": "Second", "order": 5},
        {"id": "a", "type": "checkbox", "label": "First", "order": 1, "required": True},
    ]
    schema = parse_schema(raw)
    assert [f.id for f in schema] == ["a", "b"]
    assert [f.order for f in schema] == [0, 1]
    assert parse_schema(dump_schema(schema)) == schema

    with pytest.raises(ValidationError) as exc:
        parse_schema([{"id": "x", "type": "nope", "label": "X"}, {"id": "y", "type": "text", "required": "yes"}])
    assert set(exc.value.fields) == {"fields[0]", "fields[1]"}

    with pytest.raises(ValidationError):
        parse_schema([{"id": "x", "type": "text"}, {"id": "x", "type": "text"}])

    with pytest.raises(ValidationError):
        parse_schema({"not": "a list"})


def test_validate_submission():
    schema = parse_schema(
        [
            {"id": "name", "type": "text", "label": "Name", "required": True},
            {"id": "loader", "type": "select", "label": "Loader", "options": ["Forge", "Fabric"]},
            {"id": "agree", "type": "checkbox", "label": "Agree", "required": True},
            {"id": "note", "type": "static-text", "label": "Note", "content": "Read me"},
        ]
    )
    cleaned = validate_submission(schema, {"name": " Mod ", "loader": "Forge", "agree": True, "note": "x", "extra": 1})
    assert cleaned == {"name": "Mod", "loader": "Forge", "agree": True}

    with pytest.raises(ValidationError) as exc:
        validate_submission(schema, {"loader": "Quilt", "agree": False})
    assert set(exc.value.fields) == {"name", "loader", "agree"}


def test_render_editor_and_preview():
    app = Flask(__name__, template_folder=str(TEMPLATES))
    schema = append_field(_schema(), "static-text")
    schema = update_field(schema, 3, FormField(id=schema[3].id, type="static-text", label="Note", content="<b>hi</b>"))
    with app.app_context():
        editor = render_editor(schema)
        preview = render_preview(schema)

    assert editor.count('class="field-editor"') == 4
    assert 'data-direction="up" title="Move up" disabled' in editor

    assert "Select an option..." in preview
    assert preview.count("disabled") >= 4
    # static text is escaped, not injected
    assert "&lt;b&gt;hi&lt;/b&gt;" in preview
    assert "<b>hi</b>" not in preview


def test_render_empty_preview():
    app = Flask(__name__, template_folder=str(TEMPLATES))
    with app.app_context():
        assert "Add fields to see a preview" in render_preview([])
