"""Shared fixtures: a scripted LLM, stub tools and a recording sleep."""

import asyncio
from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

from agent import AgentConfig, LoopAgent, RetryCoordinator
from llm.base import BaseLLM
from llm.message_types import LLMMessage, LLMResponse, StopReason, TokenUsage, ToolCall
from llm.model_manager import ModelProfile
from tools.base import BaseTool


class ScriptedLLM(BaseLLM):
    """Fake LLM replaying a fixed script.

    Each script item is either an LLMResponse to return or an exception to raise.
    """

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls: List[Dict[str, Any]] = []

    async def chat(self, messages, tools=None, temperature=None, max_tokens=None):
        self.calls.append(
            {
                "messages": list(messages),
                "tools": tools,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if not self.script:
            raise RuntimeError("ScriptedLLM ran out of responses")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def count_tokens(self, messages: List[LLMMessage]) -> int:
        return sum(len(m.content or "") for m in messages) // 4


def reply(text: str, usage: Optional[TokenUsage] = None) -> LLMResponse:
    """A plain text response without tool calls."""
    return LLMResponse(content=text, finish_reason=StopReason.STOP, usage=usage)


def call_tools(*calls: ToolCall, text: str = "") -> LLMResponse:
    """A response requesting the given tool calls."""
    return LLMResponse(content=text, tool_calls=list(calls), finish_reason=StopReason.TOOL_CALLS)


class StubTool(BaseTool):
    """Tool returning a fixed result, optionally after a delay."""

    def __init__(self, tool_name: str, result: str = "ok", delay: float = 0):
        self._name = tool_name
        self._result = result
        self._delay = delay
        self.calls: List[Dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return f"stub {self._name}"

    @property
    def parameters(self):
        return {}

    async def execute(self, **kwargs) -> str:
        self.calls.append(kwargs)
        if self._delay:
            await asyncio.sleep(self._delay)
        return self._result


class FailingTool(StubTool):
    async def execute(self, **kwargs) -> str:
        raise RuntimeError("tool failed")


class EchoTool(BaseTool):
    """Tool with one required and one optional parameter."""

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echo the text back"

    @property
    def parameters(self):
        return {
            "text": {"type": "string", "description": "Text to echo"},
            "times": {"type": "integer", "description": "Repetitions", "default": 1},
        }

    async def execute(self, text: str, times: int = 1) -> str:
        return text * times


class SleepRecorder:
    """Drop-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingSink:
    """Status and trajectory sink keeping every call it receives."""

    def __init__(self):
        self.updates = []
        self.summaries = []
        self.steps = []
        self.executions = []

    async def update(self, step, execution) -> None:
        self.updates.append(step)

    async def summarize(self, execution) -> None:
        self.summaries.append(execution.status)

    async def record_step(self, step) -> None:
        self.steps.append(step)

    async def record_execution(self, execution) -> None:
        self.executions.append(execution.status)


@pytest.fixture
def profile():
    return ModelProfile(provider="openai", model="test-model", max_tokens=1024, temperature=0.2)


@pytest.fixture
def agent_config(profile):
    return AgentConfig(profile=profile, max_steps=10, max_reflection_depth=3)


@pytest.fixture
def fake_sleep():
    return SleepRecorder()


@pytest.fixture
def make_agent(agent_config, fake_sleep):
    """Build a LoopAgent around a ScriptedLLM.

    Usage:
        agent = make_agent([call_tools(...), reply("task completed")], tools=[...])
    """

    def _make(script, tools=(), max_steps=None, parallel=None, max_reflection_depth=None, **kwargs):
        config = agent_config
        if max_steps is not None:
            config = replace(config, max_steps=max_steps)
        if max_reflection_depth is not None:
            config = replace(config, max_reflection_depth=max_reflection_depth)
        if parallel is not None:
            config = replace(config, profile=replace(config.profile, parallel_tool_calls=parallel))
        kwargs.setdefault("coordinator", RetryCoordinator(sleep=fake_sleep))
        return LoopAgent(llm=ScriptedLLM(script), tools=list(tools), config=config, **kwargs)

    return _make
