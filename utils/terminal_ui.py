"""Terminal UI utilities using Rich library for readable output.

``ConsoleStatusSink`` plugs these helpers into the agent loop as its status
sink; the ``print_*`` functions are also used directly by ``main.py``.
"""

import json
from typing import Any, Dict, Optional

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from agent.state import AgentExecution, AgentState, AgentStep, ExecutionStatus
from llm.message_types import ToolCall, ToolResult

# Global console instance
console = Console()

PRIMARY = "cyan"
MUTED = "grey50"
SUCCESS = "green"
WARNING = "yellow"
ERROR = "red"


def print_header(title: str, subtitle: Optional[str] = None) -> None:
    """Print a formatted header panel.

    Args:
        title: Main title text
        subtitle: Optional subtitle text
    """
    content = f"[bold {PRIMARY}]{escape(title)}[/bold {PRIMARY}]"
    if subtitle:
        content += f"\n[{MUTED}]{escape(subtitle)}[/{MUTED}]"

    console.print(Panel(content, border_style=PRIMARY, box=box.DOUBLE, padding=(1, 2)))


def print_config(config: Dict[str, Any]) -> None:
    """Print configuration in a formatted table.

    Args:
        config: Dictionary of configuration key-value pairs
    """
    table = Table(show_header=False, box=box.SIMPLE, border_style=MUTED, padding=(0, 2))
    table.add_column("Key", style=f"{PRIMARY} bold")
    table.add_column("Value", style=SUCCESS)

    for key, value in config.items():
        table.add_row(escape(str(key)), escape(str(value)))

    console.print(table)


def print_tool_call(tool_call: ToolCall, target: Optional[Console] = None) -> None:
    """Print a tool call with its decoded arguments."""
    out = target or console
    try:
        arguments = json.loads(tool_call.arguments or "{}")
    except json.JSONDecodeError:
        arguments = {"(raw)": tool_call.arguments}
    if not isinstance(arguments, dict):
        arguments = {"(raw)": tool_call.arguments}

    args_lines = []
    for key, value in arguments.items():
        value_str = str(value)
        if len(value_str) > 100:
            value_str = value_str[:97] + "..."
        args_lines.append(f"  [{MUTED}]{escape(str(key))}:[/{MUTED}] {escape(value_str)}")

    out.print(
        Panel(
            "\n".join(args_lines),
            title=f"[{PRIMARY}]Tool: {escape(tool_call.name)}[/{PRIMARY}]",
            title_align="left",
            border_style=MUTED,
            box=box.ROUNDED,
            padding=(0, 1),
        )
    )


def print_tool_result(result: ToolResult, target: Optional[Console] = None) -> None:
    out = target or console
    if result.success:
        out.print(f"[{SUCCESS}]✓[/{SUCCESS}] {escape(result.name or result.tool_call_id)}")
    else:
        name = escape(result.name or result.tool_call_id)
        out.print(f"[{ERROR}]✗[/{ERROR}] {name}: {escape(result.error)}")


def print_final_answer(answer: str) -> None:
    """Print final answer in a formatted panel with Markdown rendering.

    Args:
        answer: Final answer text (supports Markdown)
    """
    console.print()
    console.print(
        Panel(
            Markdown(answer),
            title=f"[bold {SUCCESS}]Final Answer[/bold {SUCCESS}]",
            border_style=SUCCESS,
            box=box.DOUBLE,
            padding=(1, 2),
        )
    )


def print_error(message: str, title: str = "Error") -> None:
    """Print an error message.

    Args:
        message: Error message
        title: Error title (default: "Error")
    """
    console.print(
        Panel(
            f"[{ERROR}]{escape(message)}[/{ERROR}]",
            title=f"[bold {ERROR}]{escape(title)}[/bold {ERROR}]",
            border_style=ERROR,
            box=box.ROUNDED,
        )
    )


def print_warning(message: str) -> None:
    console.print(f"[{WARNING}]{escape(message)}[/{WARNING}]")


def print_log_location(log_file: str) -> None:
    """Print log file location.

    Args:
        log_file: Path to log file
    """
    console.print()
    console.print(f"[{MUTED}]Detailed logs: {escape(log_file)}[/{MUTED}]")


def print_execution_summary(execution: AgentExecution, target: Optional[Console] = None) -> None:
    """Print the outcome, step count and token usage of an execution."""
    out = target or console
    color = SUCCESS if execution.status == ExecutionStatus.COMPLETED else ERROR
    usage = execution.usage

    table = Table(
        show_header=True,
        header_style=f"bold {PRIMARY}",
        box=box.ROUNDED,
        border_style=MUTED,
        padding=(0, 1),
    )
    table.add_column("Metric", style=PRIMARY)
    table.add_column("Value", justify="right")

    table.add_row("Status", f"[{color}]{execution.status.value}[/{color}]")
    table.add_row("Steps", f"{execution.current_step}/{execution.max_steps}")
    table.add_row("Time", f"{execution.elapsed:.1f}s")
    table.add_row("Total Tokens", f"{usage.total_tokens:,}")
    table.add_row("├─ Input", f"{usage.input_tokens:,}")
    table.add_row("└─ Output", f"{usage.output_tokens:,}")
    table.add_row("Errors", str(len(execution.errors)))

    out.print()
    out.print(table)


class ConsoleStatusSink:
    """Status sink rendering each finalized step on the console."""

    def __init__(self, target: Optional[Console] = None):
        self.console = target or console

    async def update(self, step: AgentStep, execution: AgentExecution) -> None:
        self.console.print(
            f"[{MUTED}]── Step {step.step_number}/{execution.max_steps} "
            f"({step.state.value}) ──[/{MUTED}]"
        )
        if step.state == AgentState.ERROR:
            self.console.print(f"[{ERROR}]✗ {escape(step.error or '')}[/{ERROR}]")
            if step.reflection:
                self.console.print(f"[{WARNING}]↻ {escape(step.reflection)}[/{WARNING}]")
            return

        if step.thought and step.state != AgentState.COMPLETED:
            self.console.print(Markdown(step.thought))
        for tool_call, result in zip(step.tool_calls or [], step.tool_results or []):
            print_tool_call(tool_call, self.console)
            print_tool_result(result, self.console)
        if step.reflection:
            self.console.print(f"[{WARNING}]{escape(step.reflection)}[/{WARNING}]")

    async def summarize(self, execution: AgentExecution) -> None:
        print_execution_summary(execution, self.console)
