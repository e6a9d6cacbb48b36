"""Approval collaborators deciding whether a proposed command may run.

Every approver checks the command against its static policy first and fails
closed; only commands that pass are offered to a human or a model.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sleuth.deadline import Deadline
from sleuth.errors import SleuthError
from sleuth.llm import ChatModel
from sleuth.schemas import ValidationVerdict
from sleuth.structured import guided_ask
from sleuth.validator import CommandPolicy, CommandValidator

logger = logging.getLogger(__name__)

VALIDATION_CORRECTION_ATTEMPTS = 3

VALIDATION_SYSTEM_PROMPT = """You are a command safety reviewer for a read-only diagnostic assistant.
You receive a single shell command and decide whether running it can modify any state
(files, processes, cluster resources, configuration, credentials) or expose secrets.

Always answer with this exact JSON format and nothing else:
{
  "is_read_only": bool,
  "reason": string
}

Set "is_read_only" to true only if the command is strictly read-only. When it is not,
explain in "reason" why it was rejected and suggest a read-only alternative."""

ConfirmCallback = Callable[[str], bool]


@dataclass(frozen=True)
class ApprovalDecision:
    """Result of an approval check.

    ``error`` is set when the approver itself failed; the command is then
    not approved.
    """

    approved: bool
    reason: str = ""
    error: str | None = None


class PolicyApprover:
    """Approves exactly the commands the static policy accepts."""

    def __init__(self, policy: CommandPolicy):
        self.validator = CommandValidator(policy)

    def approve(self, deadline: Deadline, command: str) -> ApprovalDecision:
        result = self.validator.validate(command)
        if not result.ok:
            logger.debug(f"Command rejected by policy ({result.kind.value}): {command}")
            return ApprovalDecision(False, f"Command rejected: {result.reason}")
        return ApprovalDecision(True)


def _confirm_with_rich(command: str) -> bool:
    from rich.markup import escape
    from rich.prompt import Confirm

    return Confirm.ask(f"Model asks to run [bold]{escape(command)}[/bold]. Allow?", default=False)


class UserApprover(PolicyApprover):
    """Asks a human to confirm each command the policy accepts."""

    def __init__(self, policy: CommandPolicy, confirm: ConfirmCallback | None = None):
        super().__init__(policy)
        self.confirm = confirm or _confirm_with_rich

    def approve(self, deadline: Deadline, command: str) -> ApprovalDecision:
        decision = super().approve(deadline, command)
        if not decision.approved:
            return decision
        try:
            allowed = self.confirm(command)
        except (EOFError, KeyboardInterrupt):
            allowed = False
        if not allowed:
            return ApprovalDecision(
                False, f"The user declined to run `{command}`. Suggest a different command."
            )
        return ApprovalDecision(True)


class ModelApprover(PolicyApprover):
    """Asks a secondary model to classify each command the policy accepts.

    The classifier keeps no conversation between commands; its history is
    reset before every check.
    """

    def __init__(self, policy: CommandPolicy, model: ChatModel):
        super().__init__(policy)
        self.model = model
        self.model.set_system_prompt(VALIDATION_SYSTEM_PROMPT)

    def approve(self, deadline: Deadline, command: str) -> ApprovalDecision:
        decision = super().approve(deadline, command)
        if not decision.approved:
            return decision

        self.model.reset()
        try:
            verdict = guided_ask(
                self.model,
                deadline,
                f"Command: {command}",
                VALIDATION_CORRECTION_ATTEMPTS,
                ValidationVerdict,
            )
        except SleuthError as e:
            return ApprovalDecision(False, error=str(e))

        if not verdict.is_read_only:
            return ApprovalDecision(False, verdict.reason or f"Command rejected: {command}")
        return ApprovalDecision(True)
