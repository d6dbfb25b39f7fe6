# prompt_renderer.py
"""Utilities for rendering generation prompts from Jinja2 templates."""

import dataclasses
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from jinja2.utils import htmlsafe_json_dumps
from pydantic import BaseModel

PROMPTS_PATH = Path(__file__).parent / "prompts"
_env = Environment(
    loader=FileSystemLoader(PROMPTS_PATH),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)


def _default_json_serializer(value: Any) -> Any:
    """Serialize pydantic models and dataclasses for JSON output."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(
        f"Object of type {value.__class__.__name__} is not JSON serializable"
    )


def _tojson(value: Any, indent: int | None = None) -> str:
    """JSON filter that keeps CJK text readable."""
    dumps: Callable[..., str] = lambda obj, **kwargs: json.dumps(
        obj, default=_default_json_serializer, ensure_ascii=False, **kwargs
    )
    kwargs: dict[str, Any] = {}
    if indent is not None:
        kwargs["indent"] = indent
    return htmlsafe_json_dumps(value, dumps=dumps, **kwargs)


_env.filters["tojson"] = _tojson


def render_prompt(template_name: str, context: dict[str, Any] | Any) -> str:
    """Render a template from the prompts directory.

    ``context`` may be a mapping, a dataclass or a pydantic model; the
    latter two are flattened to their fields.
    """
    if isinstance(context, BaseModel):
        values = dict(context)
    elif dataclasses.is_dataclass(context) and not isinstance(context, type):
        values = {f.name: getattr(context, f.name) for f in dataclasses.fields(context)}
    else:
        values = dict(context)
    template = _env.get_template(template_name)
    return template.render(**values).strip()
