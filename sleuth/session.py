"""Diagnostic sessions: the query / approve / execute loop around the model.

A session alternates between asking the model for its next step and acting
on the command it proposes. It ends with a final answer, with the fixed
max-queries notice once the iteration budget is spent, or with an error when
the model cannot be reached, never produces a valid reply, or the deadline
passes.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from sleuth.approval import ApprovalDecision
from sleuth.console import NullReporter
from sleuth.deadline import Deadline
from sleuth.errors import DeadlineExceeded, SchemaError, SleuthError, TransportError
from sleuth.executor import ExecutionResult
from sleuth.llm import ChatModel
from sleuth.schemas import AgentResponse, InteractiveResponse
from sleuth.structured import guided_ask

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 7
MODEL_CORRECTION_ATTEMPTS = 3

NEED_COMMAND_PROMPT = "Please suggest a command to run or end the session."
MAX_ITERATIONS_MESSAGE = "Analysis incomplete. Reached maximum number of queries."
NO_OUTPUT = "No output"

DIAGNOSTIC_SYSTEM_PROMPT = """You are an expert Kubernetes (K8s) troubleshooting assistant. You help users find
the root cause of problems in their clusters by gathering evidence one command at a time.

Rules you must follow:
1. Every response is a single JSON object in exactly this format:
   {
     "final_answer": string,
     "run_command": string,
     "need_more_data": bool,
     "reason_for_command": string
   }
2. Do not write anything outside the JSON object.
3. Only give a final answer once you have verified the cause with real data. Never guess the
   state of the cluster.
4. Ask for one read-only kubectl command at a time and justify it in "reason_for_command".
   You may get, list and describe any resource except secrets, and read pod logs.
   Examples:
   - kubectl get pods -A
   - kubectl describe deployment myapp -n mynamespace
   - kubectl logs mypod -n mynamespace --tail=150
5. Limit logs to at most 150 lines with '--tail=150'.
6. Never run write or mutation commands (create, apply, edit, patch, scale, delete) and never
   switch contexts; all commands run against the current context.
7. Search across all namespaces with '-A' unless the user named a namespace.
8. You may only pipe into grep, awk, sort, uniq, head, tail or cut. Command chaining,
   substitution and redirection are rejected.
9. When a command is rejected or fails, you receive the reason; pick another command.
10. When data for several resources is needed, go through them sequentially.
11. If the question is not about Kubernetes, end the session with a short final answer."""

INTERACTIVE_SYSTEM_PROMPT = """You are an expert Kubernetes (K8s) troubleshooting assistant working with a user in
an interactive session. You help them understand and resolve issues in their clusters step by step.

Rules you must follow:
1. Every response is a single JSON object in exactly this format:
   {
     "answer": string,
     "run_command": string,
     "reason_for_command": string
   }
2. Put explanations, questions to the user and final conclusions in "answer".
3. To gather data, put one read-only kubectl command in "run_command" and justify it in
   "reason_for_command". Leave "run_command" empty when no command is needed.
4. You may get, list and describe any resource except secrets and read pod logs. Use
   '--since=4h' for logs unless the user asks for more, and '-p' for previous containers.
5. Never run write or mutation commands and never switch contexts. If the user asks for a
   change, explain in "answer" how they can do it themselves.
6. Review the conversation so far and do not repeat commands that already ran.
7. If the question is not about Kubernetes, say so politely in "answer"."""


class Approver(Protocol):
    def approve(self, deadline: Deadline, command: str) -> ApprovalDecision: ...


class Executor(Protocol):
    def run(self, deadline: Deadline, command: str) -> ExecutionResult: ...


class SessionPhase(str, Enum):
    QUERYING = "querying"
    DECIDING_ON_COMMAND = "deciding_on_command"
    EXECUTING = "executing"
    TERMINAL = "terminal"


class OutcomeKind(str, Enum):
    ANSWER = "answer"
    MAX_ITERATIONS = "max_iterations"
    ERROR = "error"


@dataclass(frozen=True)
class SessionOutcome:
    kind: OutcomeKind
    text: str = ""
    error: SleuthError | None = None


@dataclass
class SessionState:
    """Mutable state owned by exactly one session."""

    iteration: int = 0
    cache: dict[str, str] = field(default_factory=dict)
    outcome: SessionOutcome | None = None


class Session:
    """One bounded run from the user's query to a terminal outcome.

    Sessions are single use. Their cache and iteration counter are never
    shared; start a new session to start over.
    """

    def __init__(
        self,
        model: ChatModel,
        approver: Approver,
        executor: Executor,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        correction_attempts: int = MODEL_CORRECTION_ATTEMPTS,
        reporter: NullReporter | None = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.model = model
        self.approver = approver
        self.executor = executor
        self.max_iterations = max_iterations
        self.correction_attempts = correction_attempts
        self.reporter = reporter or NullReporter()
        self.state = SessionState()
        self.phase = SessionPhase.QUERYING
        self._started = False

    def run(self, deadline: Deadline, query: str) -> SessionOutcome:
        """Drive the session to a terminal outcome."""
        if self._started:
            raise RuntimeError("Session already ran; create a new session")
        self._started = True

        prompt = query
        command = ""
        while self.phase != SessionPhase.TERMINAL:
            if self.phase == SessionPhase.QUERYING:
                prompt, command = self._query(deadline, prompt)
            elif self.phase == SessionPhase.DECIDING_ON_COMMAND:
                prompt = self._decide(deadline, command)
            elif self.phase == SessionPhase.EXECUTING:
                prompt = self._execute(deadline, command)

        return self.state.outcome

    def _finish(self, outcome: SessionOutcome) -> None:
        self.state.outcome = outcome
        self.phase = SessionPhase.TERMINAL

    def _query(self, deadline: Deadline, prompt: str) -> tuple[str, str]:
        if self.state.iteration >= self.max_iterations:
            logger.debug(f"Reached maximum number of queries ({self.max_iterations})")
            self._finish(SessionOutcome(OutcomeKind.MAX_ITERATIONS, MAX_ITERATIONS_MESSAGE))
            return prompt, ""

        try:
            deadline.check()
        except DeadlineExceeded as e:
            self._finish(SessionOutcome(OutcomeKind.ERROR, error=e))
            return prompt, ""

        self.state.iteration += 1
        logger.debug(f"Query count: {self.state.iteration}")
        logger.debug(f"Prompt:\n{prompt}")
        try:
            with self.reporter.thinking():
                response = guided_ask(
                    self.model, deadline, prompt, self.correction_attempts, AgentResponse
                )
        except (TransportError, SchemaError, DeadlineExceeded) as e:
            self._finish(SessionOutcome(OutcomeKind.ERROR, error=e))
            return prompt, ""

        logger.debug(f"Model response:\n{response.to_wire()}")
        if not response.needs_more_data:
            self._finish(SessionOutcome(OutcomeKind.ANSWER, response.final_answer or ""))
            return prompt, ""
        if response.command:
            self.phase = SessionPhase.DECIDING_ON_COMMAND
            return prompt, response.command
        return NEED_COMMAND_PROMPT, ""

    def _decide(self, deadline: Deadline, command: str) -> str:
        self.phase = SessionPhase.QUERYING
        cached = self.state.cache.get(command)
        if cached is not None:
            logger.debug(f"Command already executed: `{command}`")
            return cached

        self.reporter.info(f"Model asks to run command: `{command}`")
        decision = self.approver.approve(deadline, command)
        if decision.error is not None:
            return f"Failed to validate command: {decision.error}"
        if not decision.approved:
            return decision.reason

        self.phase = SessionPhase.EXECUTING
        return ""

    def _execute(self, deadline: Deadline, command: str) -> str:
        self.phase = SessionPhase.QUERYING
        logger.debug(f"Executing command: `{command}`")
        with self.reporter.thinking("Running command..."):
            result = self.executor.run(deadline, command)
        if not result.ok:
            return f"Command failed: {result.error}"

        output = result.output or NO_OUTPUT
        self.state.cache[command] = output
        return output


class DiagnosticAgent:
    """Multi-turn agent that investigates a question until it can answer it."""

    def __init__(
        self,
        model: ChatModel,
        reporter: NullReporter | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        correction_attempts: int = MODEL_CORRECTION_ATTEMPTS,
    ):
        if model is None:
            raise ValueError("agent model is required")
        self.model = model
        self.reporter = reporter or NullReporter()
        self.max_iterations = max_iterations
        self.correction_attempts = correction_attempts
        self.model.set_system_prompt(DIAGNOSTIC_SYSTEM_PROMPT)

    def new_session(self, approver: Approver, executor: Executor) -> Session:
        return Session(
            self.model,
            approver,
            executor,
            max_iterations=self.max_iterations,
            correction_attempts=self.correction_attempts,
            reporter=self.reporter,
        )

    def start_session(
        self, deadline: Deadline, approver: Approver, executor: Executor, query: str
    ) -> str:
        """Run a full session for ``query`` and return the final answer.

        Returns the max-queries notice if the budget runs out first.

        Raises:
            TransportError: If the model could not be reached
            SchemaError: If the model never produced a valid reply
            DeadlineExceeded: If the deadline passed before a model call
        """
        logger.debug(f"Agent model: {self.model.name}")
        logger.debug(f"Query: {query}")
        self.reporter.info("Analyzing your issue...")

        self.model.reset()
        outcome = self.new_session(approver, executor).run(deadline, query)
        if outcome.kind == OutcomeKind.ERROR:
            raise outcome.error
        if outcome.kind == OutcomeKind.ANSWER:
            self.reporter.success("Analysis complete.")
        return outcome.text

    def log_usage(self) -> str:
        return self.model.log_usage()


class InteractiveAgent:
    """Conversational agent; the caller decides what to do with each reply."""

    def __init__(self, model: ChatModel, correction_attempts: int = MODEL_CORRECTION_ATTEMPTS):
        if model is None:
            raise ValueError("agent model is required")
        self.model = model
        self.correction_attempts = correction_attempts
        self.model.set_system_prompt(INTERACTIVE_SYSTEM_PROMPT)

    def iterate(self, deadline: Deadline, prompt: str) -> InteractiveResponse:
        if not prompt:
            raise ValueError("prompt is required")
        return guided_ask(
            self.model, deadline, prompt, self.correction_attempts, InteractiveResponse
        )

    def reset(self) -> None:
        self.model.reset()

    def log_usage(self) -> str:
        return self.model.log_usage()
