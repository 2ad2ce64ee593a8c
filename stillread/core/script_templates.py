"""Jinja2 rendering of the scripts injected into rewritten documents."""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

# Values reach the scripts through the tojson filter, never raw
jinja = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def render_script(template_name: str, **ctx) -> str:
    template = jinja.get_template(template_name)
    return template.render(**ctx)
