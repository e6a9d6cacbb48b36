"""Structured response schemas exchanged with the model.

Field names are part of the wire format the system prompts describe and must
not change. Optional fields that are unset are omitted on serialization.
"""

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for schemas parsed from model output.

    Types are strict so that e.g. ``"need_more_data": "yes"`` fails the
    parse instead of being coerced. Unknown keys are ignored.
    """

    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)

    def to_wire(self) -> str:
        return self.model_dump_json(exclude_none=True)


class AgentResponse(WireModel):
    """Reply of the multi-turn diagnostic agent."""

    final_answer: str | None = Field(default=None, description="Final answer to the user")
    run_command: str | None = Field(default=None, description="Next command to run")
    need_more_data: bool | None = Field(
        default=None, description="True while the agent needs more evidence"
    )
    reason_for_command: str = Field(default="", description="Why the command is needed")

    @property
    def needs_more_data(self) -> bool:
        return bool(self.need_more_data)

    @property
    def command(self) -> str:
        return self.run_command or ""


class InteractiveResponse(WireModel):
    """Reply of the conversational agent."""

    answer: str | None = Field(default=None, description="Explanation or final answer")
    run_command: str | None = Field(default=None, description="Command to run, if any")
    reason_for_command: str = Field(default="", description="Why the command is needed")

    @property
    def command(self) -> str:
        return self.run_command or ""


class ValidationVerdict(WireModel):
    """Reply of the model that classifies proposed commands."""

    is_read_only: bool = Field(description="True when the command cannot modify anything")
    reason: str = Field(default="", description="Explanation shown when rejected")
