import prompt_renderer
from jinja2 import DictLoader, Environment
from pydantic import BaseModel

from models import GenerationRequest


def test_render_prompt_with_custom_env(monkeypatch):
    env = Environment(
        loader=DictLoader({"greet.j2": "Hello {{ name }}"}), autoescape=False
    )
    monkeypatch.setattr(prompt_renderer, "_env", env)
    result = prompt_renderer.render_prompt("greet.j2", {"name": "Bob"})
    assert result == "Hello Bob"


class Person(BaseModel):
    name: str


def test_render_prompt_with_pydantic_object(monkeypatch):
    env = Environment(
        loader=DictLoader({"greet.j2": "Hello {{ person.name }}"}), autoescape=False
    )
    monkeypatch.setattr(prompt_renderer, "_env", env)
    result = prompt_renderer.render_prompt("greet.j2", {"person": Person(name="Alice")})
    assert result == "Hello Alice"


def test_render_prompt_flattens_dataclass_context(monkeypatch):
    env = Environment(
        loader=DictLoader({"req.j2": "{{ item_id }}: {{ title }}"}), autoescape=False
    )
    monkeypatch.setattr(prompt_renderer, "_env", env)
    request = GenerationRequest(item_id="c01", title="启程", outline="出发")
    assert prompt_renderer.render_prompt("req.j2", request) == "c01: 启程"


def test_tojson_keeps_cjk_readable(monkeypatch):
    env = Environment(
        loader=DictLoader({"obj.j2": "{{ person | tojson }}"}),
        autoescape=False,
    )
    env.filters["tojson"] = prompt_renderer._tojson
    monkeypatch.setattr(prompt_renderer, "_env", env)
    result = prompt_renderer.render_prompt("obj.j2", {"person": Person(name="张三")})
    assert result == '{"name": "张三"}'


def test_bundled_templates_render():
    text = prompt_renderer.render_prompt(
        "pacing_analyzer/emotion_scoring.j2", {"content": "正文" * 10, "excerpt_chars": 4}
    )
    assert "正文正文" in text
    assert "正文" * 3 not in text
