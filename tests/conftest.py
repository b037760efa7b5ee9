# tests/conftest.py
import os
import sys
from collections.abc import Callable

import pytest

# Ensure repository root is on PYTHONPATH for tests
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("NEO4J_PASSWORD", "test-password")
os.environ.setdefault("LOG_FILE", "")

from agents import motivation_agent, summary_agent  # noqa: E402
from core import llm_interface  # noqa: E402
from core.exceptions import ProviderError  # noqa: E402
from data_access.repository import InMemoryStoryRepository  # noqa: E402


class ScriptedProvider:
    """Provider double that answers from a script and records every call.

    ``responses`` items are returned in order; an exception instance is
    raised instead of returned. ``responder`` takes the user prompt and
    overrides the script when given.
    """

    def __init__(
        self,
        responses: list | None = None,
        responder: Callable[[str], str] | None = None,
        default: str | None = None,
    ) -> None:
        self.responses = list(responses or [])
        self.responder = responder
        self.default = default
        self.calls: list[tuple[str, str, object]] = []

    def _next(self, user_prompt: str) -> str:
        if self.responder is not None:
            return self.responder(user_prompt)
        if self.responses:
            item = self.responses.pop(0)
        elif self.default is not None:
            item = self.default
        else:
            raise ProviderError("script exhausted")
        if isinstance(item, BaseException):
            raise item
        return item

    async def async_complete(self, system_prompt, user_prompt, params):
        self.calls.append((system_prompt, user_prompt, params))
        return self._next(user_prompt)

    async def async_stream(self, system_prompt, user_prompt, params, on_chunk):
        self.calls.append((system_prompt, user_prompt, params))
        text = self._next(user_prompt)
        for piece in text.split(" "):
            result = on_chunk(piece + " ")
            if result is not None:
                await result
        return text


class StubOracle:
    """Completion oracle that replays fixed verdicts."""

    def __init__(self, verdicts: list[bool] | None = None, default: bool = False):
        self.verdicts = list(verdicts or [])
        self.default = default
        self.calls: list[tuple] = []

    async def is_stage_complete(self, stage, chapter_number, brief):
        self.calls.append((stage, chapter_number, brief))
        if self.verdicts:
            return self.verdicts.pop(0)
        return self.default


@pytest.fixture(autouse=True)
def _char_based_tokens(monkeypatch):
    monkeypatch.setattr(llm_interface, "_get_tokenizer", lambda _name: None)


@pytest.fixture(autouse=True)
def _clear_provider_caches():
    summary_agent._llm_summarize_chapter_text.cache_clear()
    motivation_agent._llm_extract_motivation.cache_clear()
    yield
    summary_agent._llm_summarize_chapter_text.cache_clear()
    motivation_agent._llm_extract_motivation.cache_clear()


@pytest.fixture
def repo():
    return InMemoryStoryRepository()


@pytest.fixture
def make_provider():
    return ScriptedProvider


@pytest.fixture
def make_oracle():
    return StubOracle
