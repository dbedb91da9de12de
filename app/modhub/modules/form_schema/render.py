from __future__ import annotations

from flask import render_template

from app.modhub.modules.form_schema.schema import FormField


def render_editor(schema: list[FormField]) -> str:
    """One control group per field, with move/remove controls."""
    return render_template("form_schema/editor.html", fields=schema, last_index=len(schema) - 1)


def render_preview(schema: list[FormField]) -> str:
    """The end-user form as it will appear on the upload page, all controls disabled."""
    return render_template("form_schema/preview.html", fields=schema)
