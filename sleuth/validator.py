"""Static safety validation for model-proposed shell commands.

Commands are checked syntactically against an allow-list policy before
anything runs. Unknown constructs fail closed: a command is accepted only
when every stage starts with an allowed program and no token carries
chaining, substitution or redirection outside of quotes.
"""

from dataclasses import dataclass, field
from enum import Enum


class RejectionKind(str, Enum):
    """Why a command was rejected."""

    EMPTY_COMMAND = "empty_command"
    COMMAND_CHAINING = "command_chaining"
    COMMAND_SUBSTITUTION = "command_substitution"
    REDIRECTION = "redirection"
    UNMATCHED_QUOTE = "unmatched_quote"
    INVALID_MAIN_COMMAND = "invalid_main_command"
    COMMAND_NOT_ALLOWED = "command_not_allowed"
    SUB_COMMAND_NOT_ALLOWED = "sub_command_not_allowed"


REJECTION_MESSAGES: dict[RejectionKind, str] = {
    RejectionKind.EMPTY_COMMAND: "command is empty",
    RejectionKind.COMMAND_CHAINING: "command chaining is not allowed",
    RejectionKind.COMMAND_SUBSTITUTION: "command substitution is not allowed",
    RejectionKind.REDIRECTION: "redirection is not allowed",
    RejectionKind.UNMATCHED_QUOTE: "unmatched quote in argument",
    RejectionKind.INVALID_MAIN_COMMAND: "main command is not valid",
    RejectionKind.COMMAND_NOT_ALLOWED: "command is not allowed",
    RejectionKind.SUB_COMMAND_NOT_ALLOWED: "sub command is not allowed",
}

_QUOTES = ("'", '"')
_LINE_BREAKS = ("\n", "\r")


@dataclass(frozen=True)
class CommandPolicy:
    """Allow-lists governing which programs a command may invoke.

    Attributes:
        allowed_commands: Programs permitted as the first word of the command
        allowed_subcommands: When non-empty, the second word must be one of these
        allowed_piped_commands: Programs permitted after a pipe
    """

    allowed_commands: frozenset[str]
    allowed_subcommands: frozenset[str] = frozenset()
    allowed_piped_commands: frozenset[str] = frozenset()

    @classmethod
    def create(
        cls,
        allowed_commands,
        allowed_subcommands=(),
        allowed_piped_commands=(),
    ) -> "CommandPolicy":
        return cls(
            allowed_commands=frozenset(allowed_commands),
            allowed_subcommands=frozenset(allowed_subcommands),
            allowed_piped_commands=frozenset(allowed_piped_commands),
        )

    @property
    def checks_subcommands(self) -> bool:
        return bool(self.allowed_subcommands)


KUBERNETES_POLICY = CommandPolicy.create(
    allowed_commands=["kubectl"],
    allowed_subcommands=["get", "describe", "logs", "top", "explain"],
    allowed_piped_commands=["grep", "awk", "sort", "uniq", "head", "tail", "cut"],
)

POLICIES: dict[str, CommandPolicy] = {
    "kubernetes": KUBERNETES_POLICY,
}


def get_policy(name: str) -> CommandPolicy:
    """Look up a named policy preset."""
    try:
        return POLICIES[name]
    except KeyError as exc:
        valid = ", ".join(sorted(POLICIES))
        raise ValueError(f"Unknown command policy '{name}'. Valid policies are: {valid}") from exc


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one command."""

    kind: RejectionKind | None = None
    detail: str = ""
    stages: tuple[tuple[str, ...], ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.kind is None

    @property
    def reason(self) -> str:
        if self.kind is None:
            return ""
        message = REJECTION_MESSAGES[self.kind]
        return f"{message}: {self.detail}" if self.detail else message


class _QuoteState:
    """Tracks quote and escape state while scanning characters."""

    def __init__(self):
        self.quote = ""
        self.escaped = False

    @property
    def quoted(self) -> bool:
        return self.quote != ""

    def feed(self, char: str) -> bool:
        """Consume a character; return True if it is unquoted and unescaped syntax."""
        if self.escaped:
            self.escaped = False
            return False
        # backslash is literal inside single quotes
        if char == "\\" and self.quote != "'":
            self.escaped = True
            return False
        if char in _QUOTES:
            if not self.quote:
                self.quote = char
                return False
            if self.quote == char:
                self.quote = ""
                return False
        return not self.quoted


def split_stages(command: str) -> list[str]:
    """Split a command line into pipe-separated stages.

    Pipes inside quotes or escaped with a backslash do not split. Each stage
    is returned with surrounding whitespace trimmed, empty stages included.
    """
    stages: list[str] = []
    current: list[str] = []
    state = _QuoteState()

    for char in command:
        if state.feed(char) and char == "|":
            stages.append("".join(current).strip())
            current = []
            continue
        current.append(char)

    stages.append("".join(current).strip())
    return stages


def split_tokens(stage: str) -> list[str]:
    """Split one stage into tokens on unquoted whitespace.

    Quotes and escapes are kept in the token text. Line breaks are never
    token boundaries so that the argument scan can reject them.
    """
    tokens: list[str] = []
    current: list[str] = []
    state = _QuoteState()

    for char in stage:
        syntax = state.feed(char)
        if syntax and char.isspace() and char not in _LINE_BREAKS:
            if current:
                tokens.append("".join(current))
                current = []
            continue
        current.append(char)

    if current:
        tokens.append("".join(current))
    return tokens


def _scan_token(token: str) -> RejectionKind | None:
    state = _QuoteState()
    for index, char in enumerate(token):
        escaped = state.escaped
        syntax = state.feed(char)
        # sh still expands substitutions inside double quotes
        if not escaped and state.quote != "'":
            if char == "`" or (char == "$" and token[index + 1 : index + 2] == "("):
                return RejectionKind.COMMAND_SUBSTITUTION
        if not syntax:
            continue
        if char in (";", "&") or char in _LINE_BREAKS:
            return RejectionKind.COMMAND_CHAINING
        if char in (">", "<"):
            return RejectionKind.REDIRECTION

    if state.quoted:
        return RejectionKind.UNMATCHED_QUOTE
    return None


def _validate_stage(tokens: list[str], policy: CommandPolicy, is_main: bool) -> ValidationResult:
    if not tokens:
        return ValidationResult(RejectionKind.EMPTY_COMMAND)

    if is_main:
        min_tokens = 2 if policy.checks_subcommands else 1
        if len(tokens) < min_tokens:
            return ValidationResult(RejectionKind.INVALID_MAIN_COMMAND, tokens[0])
        if tokens[0] not in policy.allowed_commands:
            return ValidationResult(RejectionKind.COMMAND_NOT_ALLOWED, tokens[0])
        if policy.checks_subcommands and tokens[1] not in policy.allowed_subcommands:
            return ValidationResult(RejectionKind.SUB_COMMAND_NOT_ALLOWED, tokens[1])
    elif tokens[0] not in policy.allowed_piped_commands:
        return ValidationResult(RejectionKind.COMMAND_NOT_ALLOWED, tokens[0])

    for token in tokens:
        kind = _scan_token(token)
        if kind is not None:
            return ValidationResult(kind, token)
    return ValidationResult()


def validate_command(command: str, policy: CommandPolicy) -> ValidationResult:
    """Validate a command against a policy.

    Args:
        command: The literal command line proposed by the model
        policy: Allow-lists to enforce

    Returns:
        ValidationResult; ``ok`` is True when the command may run. Otherwise
        ``kind`` holds the first violation found scanning left to right.
    """
    if command == "":
        return ValidationResult(RejectionKind.EMPTY_COMMAND)

    stages = [split_tokens(stage) for stage in split_stages(command)]
    for index, tokens in enumerate(stages):
        result = _validate_stage(tokens, policy, is_main=index == 0)
        if not result.ok:
            return result

    return ValidationResult(stages=tuple(tuple(tokens) for tokens in stages))


class CommandValidator:
    """Validates commands against a fixed policy."""

    def __init__(self, policy: CommandPolicy):
        self.policy = policy

    def validate(self, command: str) -> ValidationResult:
        return validate_command(command, self.policy)
