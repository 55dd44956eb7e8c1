"""Tests for the LoopAgent state machine."""

import asyncio
from dataclasses import replace
from unittest.mock import patch

import pytest
from conftest import (
    FailingTool,
    RecordingSink,
    StubTool,
    call_tools,
    reply,
)

from agent import AgentState, AgentTask, ExecutionStatus, RecoveryAction, RecoveryActionType
from agent.reflection import FailureKind
from errors import (
    CriticalReflectionError,
    LLMInvalidResponseError,
    LLMNetworkError,
    LLMRateLimitError,
    MaxIterationsReachedError,
)
from llm import TokenUsage, ToolCall

# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ping_task_completes_in_two_steps(make_agent):
    ping = StubTool("ping", result="pong")
    agent = make_agent(
        [call_tools(ToolCall(id="call_1", name="ping")), reply("task completed")],
        tools=[ping],
    )

    result = await agent.run("ping the server")

    assert result == "task completed"
    execution = agent.last_execution
    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.final_result == "task completed"
    assert [s.step_number for s in execution.steps] == [1, 2]
    assert execution.steps[0].state == AgentState.CALLING_TOOL
    assert execution.steps[0].tool_results[0].content == "pong"
    assert execution.steps[0].tool_results[0].tool_call_id == "call_1"
    assert execution.steps[1].state == AgentState.COMPLETED
    assert agent.state == AgentState.COMPLETED
    assert len(ping.calls) == 1


@pytest.mark.asyncio
async def test_transcript_layout(make_agent):
    agent = make_agent(
        [call_tools(ToolCall(id="call_1", name="ping"), text="Let me ping."), reply("done")],
        tools=[StubTool("ping", result="pong")],
    )

    await agent.run("ping")

    transcript = agent.last_transcript
    assert [m.role for m in transcript] == ["system", "user", "assistant", "tool", "assistant"]
    assert transcript[0].content == agent.SYSTEM_PROMPT
    assert transcript[1].content == "ping"
    assert transcript[2].tool_calls[0].id == "call_1"
    assert transcript[3].tool_call_id == "call_1"
    assert transcript[3].content == "pong"


@pytest.mark.asyncio
async def test_llm_receives_profile_parameters_and_tool_schemas(make_agent):
    agent = make_agent([reply("task complete")], tools=[StubTool("ping")])

    await agent.run("anything")

    call = agent.llm.calls[0]
    assert call["temperature"] == 0.2
    assert call["max_tokens"] == 1024
    assert [t["function"]["name"] for t in call["tools"]] == ["ping"]


@pytest.mark.asyncio
async def test_no_tools_passes_none(make_agent):
    agent = make_agent([reply("finished")])
    await agent.run("anything")
    assert agent.llm.calls[0]["tools"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "text",
    ["Task Complete.", "All DONE here", "I have finished", "Work completed, see above"],
)
async def test_completion_indicators_are_case_insensitive(make_agent, text):
    agent = make_agent([reply(text)])
    assert await agent.run("anything") == text


@pytest.mark.asyncio
async def test_incomplete_reply_appends_continuation(make_agent):
    agent = make_agent([reply("Still working on it"), reply("task completed")])

    await agent.run("anything")

    transcript = agent.last_transcript
    assert transcript[3].role == "user"
    assert transcript[3].content == agent.CONTINUE_PROMPT
    steps = agent.last_execution.steps
    assert [s.state for s in steps] == [AgentState.THINKING, AgentState.COMPLETED]
    # The second LLM call sees the continuation prompt
    assert agent.llm.calls[1]["messages"][-1].content == agent.CONTINUE_PROMPT


@pytest.mark.asyncio
async def test_usage_is_accumulated(make_agent):
    agent = make_agent(
        [
            reply("Still working", usage=TokenUsage(input_tokens=10, output_tokens=5)),
            reply("done", usage=TokenUsage(input_tokens=20, output_tokens=7)),
        ]
    )

    await agent.run("anything")

    usage = agent.last_execution.usage
    assert usage.input_tokens == 30
    assert usage.output_tokens == 12
    assert agent.last_execution.steps[1].llm_usage.output_tokens == 7


@pytest.mark.asyncio
async def test_agent_task_config_overrides_agent_config(make_agent, agent_config):
    agent = make_agent([reply("Still working"), reply("done")])
    task = AgentTask(instruction="anything", config=replace(agent_config, max_steps=1))

    with pytest.raises(MaxIterationsReachedError):
        await agent.run(task)

    assert agent.last_execution.max_steps == 1


@pytest.mark.asyncio
async def test_agent_task_profile_drives_llm_and_tools(make_agent, agent_config):
    agent = make_agent(
        [
            call_tools(ToolCall(id="c1", name="ping"), ToolCall(id="c2", name="ping")),
            reply("done"),
        ],
        tools=[StubTool("ping")],
        parallel=False,
    )
    profile = replace(agent_config.profile, temperature=0.9, max_tokens=77, parallel_tool_calls=True)
    task = AgentTask(instruction="anything", config=replace(agent_config, profile=profile))

    with patch.object(agent.tool_executor, "execute", wraps=agent.tool_executor.execute) as execute:
        await agent.run(task)

    assert [(c["temperature"], c["max_tokens"]) for c in agent.llm.calls] == [(0.9, 77), (0.9, 77)]
    assert execute.await_args.kwargs["parallel"] is True


@pytest.mark.asyncio
async def test_agent_task_reflection_depth_applies(make_agent, agent_config):
    agent = make_agent([LLMNetworkError("reset"), reply("done")])
    task = AgentTask(
        instruction="anything", config=replace(agent_config, max_reflection_depth=0)
    )

    with pytest.raises(CriticalReflectionError):
        await agent.run(task)

    assert agent.reflector.max_reflection_depth == 3
    assert len(agent.llm.calls) == 1


@pytest.mark.asyncio
async def test_reflection_context_names_first_tool_of_last_tool_step(make_agent):
    agent = make_agent(
        [
            call_tools(ToolCall(id="c1", name="first"), ToolCall(id="c2", name="second")),
            LLMInvalidResponseError("empty"),
            reply('{"rootCause": "bad reply", "shouldRetry": false}'),
        ],
        tools=[StubTool("first"), StubTool("second")],
    )

    with pytest.raises(LLMInvalidResponseError):
        await agent.run("anything")

    prompt = agent.llm.calls[2]["messages"][1].content
    assert "- Last tool used: first" in prompt


# ---------------------------------------------------------------------------
# Tool failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unknown_tool_yields_not_found_result_and_loop_continues(make_agent):
    agent = make_agent(
        [call_tools(ToolCall(id="c1", name="frobnicate")), reply("done")],
        tools=[StubTool("ping")],
    )

    result = await agent.run("frobnicate something")

    assert result == "done"
    step = agent.last_execution.steps[0]
    assert step.tool_results[0].tool_call_id == "c1"
    assert step.tool_results[0].error == "tool not found"
    assert step.state == AgentState.REFLECTING
    assert step.reflection == (
        "I encountered issues with some tools: Tool c1: tool not found. "
        "Let me analyze the results and adjust my approach."
    )
    # Tool failures do not go through the error reflector
    assert agent.last_execution.reflections == []
    assert agent.last_execution.errors == []


@pytest.mark.asyncio
async def test_tool_failure_reflection_lists_every_failed_call(make_agent):
    agent = make_agent(
        [
            call_tools(
                ToolCall(id="a", name="broken"),
                ToolCall(id="b", name="ping"),
                ToolCall(id="c", name="missing"),
            ),
            reply("done"),
        ],
        tools=[FailingTool("broken"), StubTool("ping")],
    )

    await agent.run("anything")

    transcript = agent.last_transcript
    assert [m.role for m in transcript[2:7]] == ["assistant", "tool", "tool", "tool", "assistant"]
    assert transcript[6].content == (
        "I encountered issues with some tools: Tool a: execution failed: tool failed, "
        "Tool c: tool not found. Let me analyze the results and adjust my approach."
    )


# ---------------------------------------------------------------------------
# Error reflection and retry
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_rate_limit_then_success(make_agent, fake_sleep):
    agent = make_agent([LLMRateLimitError("429 Too Many Requests"), reply("task completed")])

    result = await agent.run("anything")

    assert result == "task completed"
    execution = agent.last_execution
    assert execution.status == ExecutionStatus.COMPLETED
    assert len(execution.reflections) == 1
    reflection = execution.reflections[0]
    assert reflection.should_retry is True
    assert reflection.retry_delay is not None
    assert fake_sleep.delays == [reflection.retry_delay]
    assert [s.step_number for s in execution.steps] == [1, 2]
    assert execution.steps[0].state == AgentState.ERROR
    assert execution.steps[0].extra["category"] == "rate-limit"
    assert agent.last_transcript[2].role == "assistant"
    assert agent.last_transcript[2].content.startswith(
        "I encountered an error but I'm attempting to recover: "
    )


@pytest.mark.asyncio
async def test_repeated_unrecoverable_errors_become_critical(make_agent, fake_sleep):
    errors = [LLMNetworkError(f"connection reset {i}") for i in range(4)]
    agent = make_agent(list(errors), max_reflection_depth=3)

    with pytest.raises(CriticalReflectionError) as exc_info:
        await agent.run("anything")

    assert exc_info.value.__cause__ is errors[3]
    assert exc_info.value.original_error is errors[3]
    execution = agent.last_execution
    assert execution.status == ExecutionStatus.ERROR
    assert execution.reflections[-1].failure_kind == FailureKind.CRITICAL
    # Fast path only; the critical reflection never asks the LLM
    assert len(agent.llm.calls) == 4
    assert fake_sleep.delays == [2.0, 4.0, 8.0]
    assert [s.step_number for s in execution.steps] == [1, 2, 3, 4]
    assert exc_info.value.diagnostics.step == 4


@pytest.mark.asyncio
async def test_unknown_error_escalates_to_llm(make_agent, fake_sleep):
    agent = make_agent(
        [
            ValueError("boom"),
            reply(
                '{"rootCause": "bad state", "shouldRetry": true, "retryDelay": 2, '
                '"recoveryActions": ["reset state"], "alternatives": ["ask user"], '
                '"confidence": 0.7}'
            ),
            reply("task completed"),
        ]
    )

    result = await agent.run("anything")

    assert result == "task completed"
    reflection = agent.last_execution.reflections[0]
    assert reflection.escalated is True
    assert reflection.root_cause == "bad state"
    assert reflection.recovery_actions == (RecoveryAction(RecoveryActionType.RESET_STATE),)
    assert fake_sleep.delays == [2.0]

    escalation = agent.llm.calls[1]
    assert escalation["temperature"] == 0.1
    assert escalation["max_tokens"] == 1000
    assert escalation["tools"] is None
    assert agent.last_transcript[2].content == (
        "I encountered an error but I'm attempting to recover: bad state. "
        "Let me try a different approach."
    )


@pytest.mark.asyncio
async def test_declined_retry_reraises_original_error(make_agent):
    error = ValueError("boom")
    agent = make_agent([error, reply('{"rootCause": "fatal", "shouldRetry": false}')])

    with pytest.raises(ValueError) as exc_info:
        await agent.run("anything")

    assert exc_info.value is error
    assert any("taskloop: failed at step 1" in note for note in exc_info.value.__notes__)
    assert any("fatal" in note for note in exc_info.value.__notes__)
    assert agent.last_execution.status == ExecutionStatus.ERROR


@pytest.mark.asyncio
async def test_failed_escalation_makes_original_error_terminal(make_agent):
    error = ValueError("boom")
    agent = make_agent([error, RuntimeError("llm down")])

    with pytest.raises(ValueError) as exc_info:
        await agent.run("anything")

    assert exc_info.value is error
    execution = agent.last_execution
    assert execution.reflections == []
    assert len(execution.steps) == 1
    assert execution.steps[0].state == AgentState.ERROR
    assert execution.steps[0].reflection is None


@pytest.mark.asyncio
async def test_malformed_escalation_reply_uses_fallback(make_agent):
    agent = make_agent([LLMInvalidResponseError("no choices"), reply("not json at all")])

    with pytest.raises(LLMInvalidResponseError) as exc_info:
        await agent.run("anything")

    reflection = agent.last_execution.reflections[0]
    assert reflection.should_retry is False
    assert reflection.retry_delay == 1.0
    assert exc_info.value.diagnostics.step == 1
    assert exc_info.value.diagnostics.root_cause == reflection.suggestion


@pytest.mark.asyncio
async def test_no_retry_when_budget_is_spent(make_agent, fake_sleep):
    error = LLMNetworkError("connection refused")
    agent = make_agent([error], max_steps=1)

    with pytest.raises(LLMNetworkError) as exc_info:
        await agent.run("anything")

    assert exc_info.value is error
    assert fake_sleep.delays == []
    assert len(agent.last_execution.steps) == 1


@pytest.mark.asyncio
async def test_one_error_step_per_failure(make_agent):
    agent = make_agent(
        [
            LLMNetworkError("timeout"),
            call_tools(ToolCall(id="c1", name="ping")),
            reply("Still working"),
            reply("task completed"),
        ],
        tools=[StubTool("ping")],
    )

    await agent.run("anything")

    steps = agent.last_execution.steps
    assert [s.step_number for s in steps] == [1, 2, 3, 4]
    assert [s.state for s in steps] == [
        AgentState.ERROR,
        AgentState.CALLING_TOOL,
        AgentState.THINKING,
        AgentState.COMPLETED,
    ]


# ---------------------------------------------------------------------------
# Step budget
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_never_completing_task_hits_max_steps(make_agent):
    agent = make_agent([reply("Still working on it")] * 3, max_steps=3)

    with pytest.raises(MaxIterationsReachedError) as exc_info:
        await agent.run("anything")

    execution = agent.last_execution
    assert execution.status == ExecutionStatus.MAX_STEPS_REACHED
    assert execution.current_step == 3
    assert len(execution.steps) == 3
    assert len(agent.llm.calls) == 3
    assert exc_info.value.max_steps == 3
    assert exc_info.value.diagnostics.step == 3
    assert exc_info.value.diagnostics.root_cause is None


# ---------------------------------------------------------------------------
# Parallel dispatch
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_parallel_results_keep_request_order(make_agent):
    tools = [
        StubTool("slow", result="slow_result", delay=0.05),
        StubTool("fast", result="fast_result", delay=0.01),
    ]
    agent = make_agent(
        [
            call_tools(ToolCall(id="call_1", name="slow"), ToolCall(id="call_2", name="fast")),
            reply("done"),
        ],
        tools=tools,
        parallel=True,
    )

    await agent.run("anything")

    results = agent.last_execution.steps[0].tool_results
    assert [r.tool_call_id for r in results] == ["call_1", "call_2"]
    assert [r.content for r in results] == ["slow_result", "fast_result"]
    assert [m.tool_call_id for m in agent.last_transcript[3:5]] == ["call_1", "call_2"]


@pytest.mark.asyncio
async def test_single_call_steps_match_with_or_without_parallel(make_agent):
    def script():
        return [
            call_tools(ToolCall(id="c1", name="ping")),
            call_tools(ToolCall(id="c2", name="missing")),
            reply("task completed"),
        ]

    def summary(agent):
        return [
            (s.step_number, s.state, [(r.tool_call_id, r.content, r.error) for r in s.tool_results or []])
            for s in agent.last_execution.steps
        ]

    sequential = make_agent(script(), tools=[StubTool("ping", "pong")], parallel=False)
    parallel = make_agent(script(), tools=[StubTool("ping", "pong")], parallel=True)
    await sequential.run("anything")
    await parallel.run("anything")

    assert summary(sequential) == summary(parallel)


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sinks_receive_each_step_once_and_one_summary(make_agent):
    sink = RecordingSink()
    agent = make_agent(
        [LLMRateLimitError("rate limit"), call_tools(ToolCall(id="c1", name="ping")), reply("done")],
        tools=[StubTool("ping")],
        status_sink=sink,
        trajectory_sink=sink,
    )

    await agent.run("anything")

    assert [s.step_number for s in sink.updates] == [1, 2, 3]
    assert [s.step_number for s in sink.steps] == [1, 2, 3]
    assert sink.summaries == [ExecutionStatus.COMPLETED]
    assert sink.executions == [ExecutionStatus.COMPLETED]


@pytest.mark.asyncio
async def test_sinks_get_summary_on_failure(make_agent):
    sink = RecordingSink()
    agent = make_agent([reply("Still working")], max_steps=1, status_sink=sink, trajectory_sink=sink)

    with pytest.raises(MaxIterationsReachedError):
        await agent.run("anything")

    assert sink.summaries == [ExecutionStatus.MAX_STEPS_REACHED]
    assert sink.executions == [ExecutionStatus.MAX_STEPS_REACHED]


class BrokenSink(RecordingSink):
    async def update(self, step, execution) -> None:
        raise RuntimeError("display crashed")

    async def record_execution(self, execution) -> None:
        raise OSError("disk full")


class SlowSink(RecordingSink):
    async def update(self, step, execution) -> None:
        await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_failing_sink_does_not_change_outcome(make_agent):
    sink = BrokenSink()
    agent = make_agent([reply("done")], status_sink=sink, trajectory_sink=sink)

    assert await agent.run("anything") == "done"
    assert len(sink.steps) == 1


@pytest.mark.asyncio
async def test_slow_sink_is_abandoned(make_agent):
    sink = SlowSink()
    agent = make_agent([reply("done")], status_sink=sink, sink_timeout=0.01)

    result = await asyncio.wait_for(agent.run("anything"), timeout=5)

    assert result == "done"
    assert sink.summaries == [ExecutionStatus.COMPLETED]


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class BlockingTool(StubTool):
    def __init__(self):
        super().__init__("block")
        self.started = asyncio.Event()

    async def execute(self, **kwargs) -> str:
        self.started.set()
        await asyncio.sleep(10)
        return "never"


@pytest.mark.asyncio
async def test_cancellation_leaves_no_partial_step(make_agent):
    tool = BlockingTool()
    sink = RecordingSink()
    agent = make_agent(
        [reply("Still working"), call_tools(ToolCall(id="c1", name="block"))],
        tools=[tool],
        status_sink=sink,
    )

    task = asyncio.create_task(agent.run("anything"))
    await asyncio.wait_for(tool.started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    execution = agent.last_execution
    assert execution.status == ExecutionStatus.CANCELLED
    assert [s.step_number for s in execution.steps] == [1]
    assert len(sink.updates) == 1
