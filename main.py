"""Main entry point for taskloop: run one task and exit."""

import argparse
import asyncio
import importlib.metadata
import sys
import warnings

from agent import AgentConfig, LoopAgent
from config import Config
from errors import AgentError, ConfigurationError
from llm import ModelManager, create_llm
from tools import TaskDoneTool
from utils import get_log_file_path, setup_logger, terminal_ui
from utils.terminal_ui import ConsoleStatusSink
from utils.trajectory import TrajectoryRecorder

warnings.filterwarnings("ignore", message="Pydantic serializer warnings.*", category=UserWarning)


def format_failure(error: BaseException) -> str:
    """Error line plus diagnostics, whether attached as attribute or as notes."""
    lines = [f"{type(error).__name__}: {error}"]
    diagnostics = getattr(error, "diagnostics", None)
    if diagnostics is not None:
        lines.append(diagnostics.describe())
    lines.extend(getattr(error, "__notes__", []))
    return "\n".join(lines)


def create_agent(
    provider: str | None = None,
    model: str | None = None,
    max_steps: int | None = None,
    trajectory: str | None = None,
    quiet: bool = False,
) -> LoopAgent:
    """Factory function to create the agent for a single task.

    Args:
        provider: Provider name from models.yaml (defaults to its `default`)
        model: Optional model override for that provider
        max_steps: Optional step budget override
        trajectory: Trajectory file path; "auto" picks ~/.taskloop/trajectories/
        quiet: Suppress the console status display

    Returns:
        Configured LoopAgent instance

    Raises:
        AgentError: If the provider configuration is unusable
    """
    config = AgentConfig.from_config(
        provider=provider, model=model, manager=ModelManager(), max_steps=max_steps
    )
    llm = create_llm(config.profile)

    trajectory_sink = None
    if trajectory:
        trajectory_sink = TrajectoryRecorder(None if trajectory == "auto" else trajectory)

    return LoopAgent(
        llm=llm,
        tools=[TaskDoneTool()],
        config=config,
        status_sink=None if quiet else ConsoleStatusSink(),
        trajectory_sink=trajectory_sink,
    )


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Run an AI agent on a single task")

    try:
        version = importlib.metadata.version("taskloop")
    except importlib.metadata.PackageNotFoundError:
        version = "dev"
    parser.add_argument("--version", "-V", action="version", version=f"taskloop {version}")

    parser.add_argument("task", type=str, help="Task for the agent to complete")
    parser.add_argument(
        "--provider",
        "-p",
        type=str,
        help="Provider profile from ~/.taskloop/models.yaml (e.g. openai, anthropic)",
    )
    parser.add_argument("--model", "-m", type=str, help="Model override for the provider")
    parser.add_argument(
        "--max-steps",
        type=int,
        default=None,
        help=f"Maximum loop steps (default: {Config.MAX_STEPS})",
    )
    parser.add_argument(
        "--trajectory",
        nargs="?",
        const="auto",
        default=None,
        help="Write a JSON trajectory (optionally to the given path)",
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Print the final answer only")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging to ~/.taskloop/logs/",
    )

    args = parser.parse_args()

    # Initialize logging only in verbose mode
    if args.verbose:
        setup_logger()

    try:
        Config.validate()
    except ConfigurationError as e:
        terminal_ui.print_error(str(e), title="Configuration Error")
        sys.exit(2)

    try:
        agent = create_agent(
            provider=args.provider,
            model=args.model,
            max_steps=args.max_steps,
            trajectory=args.trajectory,
            quiet=args.quiet,
        )
    except AgentError as e:
        terminal_ui.print_error(str(e), title="Model Configuration Error")
        terminal_ui.console.print(
            "Edit `~/.taskloop/models.yaml` to configure a provider, "
            "or export its API key (e.g. OPENAI_API_KEY)."
        )
        sys.exit(2)

    if not args.quiet:
        profile = agent.config.profile
        terminal_ui.print_header("taskloop", subtitle=args.task)
        terminal_ui.print_config(
            {
                "Provider": profile.provider,
                "Model": profile.model,
                "Max steps": agent.config.max_steps,
                "Parallel tools": profile.parallel_tool_calls,
            }
        )

    try:
        result = asyncio.run(agent.run(args.task))
    except KeyboardInterrupt:
        terminal_ui.print_warning("Interrupted")
        sys.exit(130)
    except Exception as e:
        terminal_ui.print_error(format_failure(e), title="Task Failed")
        if args.verbose and get_log_file_path():
            terminal_ui.print_log_location(get_log_file_path())
        sys.exit(1)

    if args.quiet:
        print(result)
    else:
        terminal_ui.print_final_answer(result)
        if args.verbose and get_log_file_path():
            terminal_ui.print_log_location(get_log_file_path())


if __name__ == "__main__":
    main()
