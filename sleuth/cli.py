import argparse
import sys

from sleuth import __version__
from sleuth.approval import ModelApprover, PolicyApprover, UserApprover
from sleuth.config import Config, load_config
from sleuth.console import RichReporter, console, setup_logging
from sleuth.deadline import Deadline
from sleuth.errors import ConfigError, SleuthError
from sleuth.executor import CommandExecutor
from sleuth.llm import ChatModel
from sleuth.session import DiagnosticAgent, InteractiveAgent
from sleuth.validator import get_policy

EXIT_COMMANDS = ("exit", "quit")
RESET_COMMAND = "reset"


class SleuthCLI:
    def __init__(self, config: Config, reporter: RichReporter | None = None):
        self.config = config
        self.reporter = reporter or RichReporter()
        self.policy = get_policy(config.session.policy)
        self.validation_model: ChatModel | None = None

    def _agent_model(self) -> ChatModel:
        return ChatModel(self.config.agent.to_settings())

    def _approver(self, assume_yes: bool):
        if self.config.use_model_for_validation():
            if self.validation_model is None:
                self.validation_model = ChatModel(self.config.validation.to_settings())
            return ModelApprover(self.policy, self.validation_model)
        if assume_yes:
            return PolicyApprover(self.policy)
        return UserApprover(self.policy)

    def _print_usage(self, models: list[ChatModel]) -> None:
        self.reporter.cost_breakdown([model.log_usage() for model in models])

    def ask(
        self,
        query: str,
        show_usage: bool = False,
        timeout: float | None = None,
        max_iterations: int | None = None,
        assume_yes: bool = False,
    ) -> int:
        """Run one diagnostic session and print its result."""
        session_config = self.config.session
        agent = DiagnosticAgent(
            self._agent_model(),
            reporter=self.reporter,
            max_iterations=(
                max_iterations if max_iterations is not None else session_config.max_iterations
            ),
            correction_attempts=session_config.correction_attempts,
        )
        approver = self._approver(assume_yes)
        deadline = Deadline(timeout if timeout is not None else session_config.timeout)

        try:
            answer = agent.start_session(deadline, approver, CommandExecutor(), query)
        except SleuthError as e:
            self.reporter.error(str(e))
            return 1
        finally:
            if show_usage:
                models = [agent.model]
                if self.validation_model is not None:
                    models.append(self.validation_model)
                self._print_usage(models)

        self.reporter.result(answer)
        return 0

    def chat(self, assume_yes: bool = False) -> int:
        """Conversational loop; ``reset`` clears history, ``exit`` quits."""
        session_config = self.config.session
        agent = InteractiveAgent(
            self._agent_model(), correction_attempts=session_config.correction_attempts
        )
        approver = self._approver(assume_yes)
        executor = CommandExecutor()

        console.print("[bold]Sleuth chat[/bold] (type 'reset' to start over, 'exit' to quit)")
        while True:
            try:
                prompt = console.input("[bold cyan]> [/bold cyan]").strip()
            except (EOFError, KeyboardInterrupt):
                console.print()
                break

            if not prompt:
                continue
            if prompt.lower() in EXIT_COMMANDS:
                break
            if prompt.lower() == RESET_COMMAND:
                agent.reset()
                executor = CommandExecutor()
                self.reporter.info("Conversation reset.")
                continue

            try:
                self._chat_turn(agent, approver, executor, prompt)
            except SleuthError as e:
                self.reporter.error(str(e))

        self._print_usage([agent.model])
        return 0

    def _chat_turn(self, agent, approver, executor, prompt: str) -> None:
        deadline = Deadline(self.config.session.timeout)
        for _ in range(self.config.session.max_iterations):
            with self.reporter.thinking():
                response = agent.iterate(deadline, prompt)
            if response.answer:
                self.reporter.result(response.answer)
            if not response.command:
                return

            command = response.command
            if response.reason_for_command:
                self.reporter.info(f"Reason: {response.reason_for_command}")
            self.reporter.info(f"Model asks to run command: `{command}`")
            decision = approver.approve(deadline, command)
            if decision.error is not None:
                prompt = f"Failed to validate command: {decision.error}"
                continue
            if not decision.approved:
                prompt = decision.reason
                continue

            with self.reporter.thinking("Running command..."):
                result = executor.run(deadline, command)
            if result.ok:
                prompt = result.output or "No output"
            else:
                prompt = f"Command failed: {result.error}"
        self.reporter.info("Reached maximum number of commands for this question.")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="sleuth",
        description="Read-only diagnostic assistant driven by a language model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sleuth ask "why is my nginx pod crashlooping?"
  sleuth ask "which nodes are under memory pressure?" --usage
  sleuth chat

Environment Variables:
  SLEUTH_AGENT_TOKEN        API token for the agent model
  SLEUTH_VALIDATION_TOKEN   API token for the validation model
        """,
    )
    parser.add_argument("--config", help="Path to the config file")
    parser.add_argument(
        "--debug", action="store_true", help="Write debug logs to the sleuth.debug file"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ask_parser = subparsers.add_parser("ask", help="Investigate a question")
    ask_parser.add_argument("query", help="Question in natural language")
    ask_parser.add_argument("--usage", action="store_true", help="Show token usage and cost")
    ask_parser.add_argument("--timeout", type=float, help="Session deadline in seconds")
    ask_parser.add_argument("--max-iterations", type=int, help="Maximum number of model queries")
    ask_parser.add_argument(
        "--yes", action="store_true", help="Run policy-approved commands without asking"
    )

    chat_parser = subparsers.add_parser("chat", help="Start an interactive conversation")
    chat_parser.add_argument(
        "--yes", action="store_true", help="Run policy-approved commands without asking"
    )

    subparsers.add_parser("version", help="Show the version")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "version":
        console.print(f"sleuth {__version__}")
        return 0

    setup_logging(debug=args.debug)

    reporter = RichReporter()
    try:
        config = load_config(args.config)
    except ConfigError as e:
        reporter.error(str(e))
        return 1

    if getattr(args, "max_iterations", None) is not None and args.max_iterations < 1:
        reporter.error("--max-iterations must be at least 1")
        return 1

    if getattr(args, "timeout", None) is not None and args.timeout <= 0:
        reporter.error("--timeout must be positive")
        return 1

    cli = SleuthCLI(config, reporter)
    try:
        if args.command == "ask":
            return cli.ask(
                args.query,
                show_usage=args.usage,
                timeout=args.timeout,
                max_iterations=args.max_iterations,
                assume_yes=args.yes,
            )
        elif args.command == "chat":
            return cli.chat(assume_yes=args.yes)
        else:
            parser.print_help()
            return 1
    except KeyboardInterrupt:
        reporter.error("Operation cancelled by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
