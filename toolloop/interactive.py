#!/usr/bin/env python3
"""
ToolLoop Interactive CLI

A command-line chat with the bounded tool loop. Conversation history is
kept across messages; in explicit-control mode every batch of tool requests
is shown for approval before it runs.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from dataclasses import replace
from typing import Callable, Optional

from .cancellation import CancellationToken
from .config_loader import load_app_config
from .errors import OrchestrationError
from .models import AppConfig, ToolError, ToolInvocationResult
from .orchestration import LoopState, RunResult
from .orchestrator import Chat, build_orchestrator
from .tools import ToolRegistry, register_default_tools

# Global shutdown flag for signal handling
_shutdown_requested = threading.Event()
# Token of the run in progress; Ctrl+C cancels it
_active_token: Optional[CancellationToken] = None

logger = logging.getLogger(__name__)

DECLINED = "Declined"


def _signal_handler(signum: int, frame) -> None:
    """First Ctrl+C cancels the running query, a second one exits."""
    if _shutdown_requested.is_set():
        logger.debug("Force shutdown requested")
        sys.exit(1)
    _shutdown_requested.set()
    if _active_token is not None:
        _active_token.cancel()
        print("\n\nCancelling... (press Ctrl+C again to force)")
    else:
        print("\n\nShutting down... (press Ctrl+C again to force)")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def print_banner() -> None:
    """Print the welcome banner."""
    banner = """
╔════════════════════════════════════════════════════════════════╗
║                       ToolLoop Interactive                      ║
║                                                                 ║
║  Bounded tool-calling conversations with an LLM                 ║
╚════════════════════════════════════════════════════════════════╝

Available commands:
  /help      - Show this help message
  /history   - Show the conversation history
  /tools     - List available tools
  /explicit  - Toggle explicit control (approve tool calls)
  /clear     - Clear conversation history
  /quit      - Exit the CLI

Type your questions or tasks below.
"""
    print(banner)


def print_tools(registry: ToolRegistry) -> None:
    """Print available tools."""
    print("\nAvailable Tools:")
    print("─" * 64)
    summary = registry.get_tools_summary()
    print(summary if summary else "(none)")
    print()


def print_history(chat: Chat) -> None:
    """Print the conversation so far."""
    if not chat.history:
        print("\nNo history yet. Ask something first.\n")
        return

    print("\n" + "═" * 70)
    print(f"SESSION {chat.session.session_id}")
    print("═" * 70)
    for turn in chat.history:
        print(f"\n┌─ {turn.role.value}")
        if turn.text:
            text = turn.text if len(turn.text) <= 200 else turn.text[:200] + "..."
            print(f"│  {text}")
        for request in turn.tool_requests:
            print(f"│  → {request.name}({json.dumps(request.input)}) [{request.reference_id}]")
        for result in turn.tool_results:
            if result.error is not None:
                print(f"│  ✗ {result.name}: {result.error.kind}: {result.error.message}")
            else:
                output = json.dumps(result.output, default=str)
                if len(output) > 200:
                    output = output[:200] + "..."
                print(f"│  ← {result.name}: {output}")
        print("└" + "─" * 68)
    print()


def result_to_dict(query: str, result: RunResult) -> dict:
    """JSON-friendly summary of a run for scripting."""
    return {
        "query": query,
        "status": result.status.value,
        "answer": result.text,
        "turn_count": result.turn_count,
        "tools_used": result.tools_used,
        "session": {
            "session_id": result.session_id,
            "history": [turn.to_dict() for turn in result.history],
        },
    }


class InteractiveCLI:
    """Interactive CLI for ToolLoop."""

    def __init__(
        self,
        chat: Chat,
        verbose: bool = False,
        input_fn: Callable[[str], str] = input,
    ):
        self.chat = chat
        self.verbose = verbose
        self.input_fn = input_fn

    @property
    def explicit(self) -> bool:
        return self.chat.session.explicit_control

    def toggle_explicit(self) -> None:
        self.chat.session.explicit_control = not self.chat.session.explicit_control
        print(f"\nExplicit control: {'ON' if self.explicit else 'OFF'}\n")

    def clear_history(self) -> None:
        self.chat.reset()
        print("\nConversation history cleared.\n")

    def _approve_pending(self) -> list[ToolInvocationResult]:
        """Ask before running the pending tool requests."""
        requests = self.chat.pending_requests
        print("\nThe model wants to call:")
        for request in requests:
            print(f"  - {request.name}({json.dumps(request.input)})")
        answer = self.input_fn("Run these tools? [Y/n] ").strip().lower()
        if answer in ("", "y", "yes"):
            return self.chat.dispatch_pending(cancel_token=_active_token)
        return [
            ToolInvocationResult(
                name=request.name,
                reference_id=request.reference_id,
                error=ToolError(kind=DECLINED, message="The user declined to run this tool."),
            )
            for request in requests
        ]

    def process_query(self, query: str) -> bool:
        """Process a user query.

        Returns:
            True if should continue, False if shutdown requested
        """
        global _active_token
        print("\n" + "─" * 70)
        print("Processing query...")
        print("─" * 70 + "\n")

        _active_token = CancellationToken()
        try:
            result = self.chat.send(query, cancel_token=_active_token)
            while result.status is LoopState.SUSPENDED_FOR_CALLER:
                results = self._approve_pending()
                result = self.chat.send_tool_results(results, cancel_token=_active_token)

            if result.status is LoopState.CANCELLED:
                print("\nQuery cancelled.\n")
                _shutdown_requested.clear()
                return True

            print("\n" + "═" * 70)
            print("ANSWER" + ("  [PARTIAL: turn limit reached]" if result.is_partial else ""))
            print("═" * 70)
            print(result.text or "(no text)")
            print("═" * 70 + "\n")

            turns = result.turn_count
            print(f"(Completed in {turns} turn{'s' if turns != 1 else ''})")
            print("Use /history to see the full conversation.\n")

        except OrchestrationError as e:
            print(f"\nError: {e}\n")
            if self.verbose:
                import traceback

                traceback.print_exc()
        finally:
            _active_token = None

        return True

    def run(self) -> None:
        """Run the interactive CLI loop."""
        print_banner()

        while not _shutdown_requested.is_set():
            try:
                user_input = self.input_fn(">>> ").strip()

                if not user_input:
                    continue

                if user_input.startswith("/"):
                    command = user_input.lower()

                    if command in ("/quit", "/exit", "/q"):
                        print("\nGoodbye!\n")
                        break
                    elif command in ("/help", "/h", "/?"):
                        print_banner()
                    elif command == "/history":
                        print_history(self.chat)
                    elif command == "/tools":
                        print_tools(self.chat.registry)
                    elif command == "/explicit":
                        self.toggle_explicit()
                    elif command == "/clear":
                        self.clear_history()
                    else:
                        print(f"\nUnknown command: {user_input}")
                        print("Type /help for available commands.\n")
                elif not self.process_query(user_input):
                    break

            except KeyboardInterrupt:
                if _shutdown_requested.is_set():
                    print("\n")
                    break
                print("\n\nType /quit to exit.\n")
            except EOFError:
                print("\nGoodbye!\n")
                break


def _apply_overrides(app_config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Apply command-line overrides on top of the loaded configuration."""
    model = app_config.model
    if args.base_url:
        model = replace(model, base_url=args.base_url)
    if args.model:
        model = replace(model, model=args.model)
    orchestrator = app_config.orchestrator
    if args.max_turns:
        orchestrator = replace(orchestrator, max_turns=args.max_turns)
    if args.explicit:
        orchestrator = replace(orchestrator, explicit_control=True)
    return replace(app_config, model=model, orchestrator=orchestrator)


def main() -> None:
    """Main entry point."""
    signal.signal(signal.SIGINT, _signal_handler)

    parser = argparse.ArgumentParser(
        description="ToolLoop Interactive CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                   # Start interactive mode
  %(prog)s -v                                # Start with verbose logging
  %(prog)s -q "Weather in Baltimore?"        # Run a single query
  %(prog)s --explicit                        # Approve each tool call

Use /tools in interactive mode to see available tools.
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-q", "--query", type=str, help="Run a single query and exit")
    parser.add_argument(
        "--json", action="store_true", help="Output results as JSON (for scripting)"
    )
    parser.add_argument(
        "--explicit",
        action="store_true",
        help="Explicit control: confirm tool calls before they run",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=None,
        help="Model endpoint URL (default: from MODEL_BASE_URL or config.yaml)",
    )
    parser.add_argument("--model", type=str, default=None, help="Model name")
    parser.add_argument("--max-turns", type=int, default=None, help="Turn budget per query")
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")

    args = parser.parse_args()
    setup_logging(args.verbose)

    app_config = _apply_overrides(
        load_app_config(args.config, reload=args.config is not None), args
    )
    registry = register_default_tools(ToolRegistry(), app_config.tools)
    orchestrator = build_orchestrator(app_config)
    chat = Chat(orchestrator, registry)
    cli = InteractiveCLI(chat, verbose=args.verbose)

    try:
        if args.query:
            if args.explicit:
                cli.process_query(args.query)
                return
            try:
                result = chat.send(args.query)
            except OrchestrationError as e:
                print(f"Error: {e}", file=sys.stderr)
                sys.exit(1)
            if args.json:
                print(json.dumps(result_to_dict(args.query, result), indent=2, default=str))
            else:
                print(result.text)
        else:
            cli.run()
    finally:
        orchestrator.endpoint.close()


if __name__ == "__main__":
    main()
