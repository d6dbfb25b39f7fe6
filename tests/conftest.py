# tests/conftest.py
import json
import os
import sys

import pytest

# Ensure repository root is on PYTHONPATH for tests
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

# Ensure placeholder secrets do not trigger validators during tests
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from core.exceptions import GenerationError, StoreError  # noqa: E402

CALM_EMOTION = json.dumps({"emotion": "calm", "intensity": 5, "tension": 5, "hope": 0})
NO_EVENTS = json.dumps(
    {"death": False, "power_change": False, "plot_turn": False, "new_arc": False}
)


class FakeService:
    """Generation service double that answers by call purpose."""

    def __init__(self, body_text: str = "", fail_titles=(), summary_prefix: str = "summary"):
        self.calls: list[tuple[str, str]] = []
        self.body_text = body_text
        self.fail_titles = set(fail_titles)
        self.summary_prefix = summary_prefix
        self.classification = NO_EVENTS
        self.emotion = CALM_EMOTION
        self.fail_purposes: set[str] = set()

    def purposes(self) -> list[str]:
        return [purpose for purpose, _ in self.calls]

    def count(self, purpose: str) -> int:
        return self.purposes().count(purpose)

    async def complete(self, prompt, options):
        self.calls.append((options.purpose, prompt))
        if options.purpose in self.fail_purposes:
            raise GenerationError("forced failure", kind=GenerationError.TIMEOUT, purpose=options.purpose)
        if options.purpose == "item_body":
            for title in self.fail_titles:
                if f"Title: {title}\n" in prompt:
                    raise GenerationError("timed out", kind=GenerationError.TIMEOUT, purpose="item_body")
            n = self.count("item_body")
            return self.body_text or f"第{n}段正文。主角继续前行，风沙扑面。\n他没有回头。"
        if options.purpose == "event_classification":
            return self.classification
        if options.purpose == "emotion_scoring":
            return self.emotion
        if options.purpose == "summary_refresh":
            n = self.count("summary_refresh")
            return json.dumps(
                {
                    "main_plot": f"{self.summary_prefix} {n}",
                    "turning_points": [f"turn {n}"],
                    "entity_status": [],
                    "open_threads": [],
                },
                ensure_ascii=False,
            )
        return ""


class MemoryStore:
    def __init__(self, reject=()):
        self.saved: dict[str, str] = {}
        self.order: list[str] = []
        self.reject = set(reject)

    async def persist(self, item_id, content):
        if item_id in self.reject:
            raise StoreError(f"rejected {item_id}")
        self.saved[item_id] = content
        self.order.append(item_id)


@pytest.fixture
def fake_service():
    return FakeService()


@pytest.fixture
def memory_store():
    return MemoryStore()
