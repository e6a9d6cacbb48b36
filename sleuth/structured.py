"""Guided asking: force model replies into a typed schema with bounded retries."""

import logging
import re
from typing import Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from sleuth.deadline import Deadline
from sleuth.errors import SchemaError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

CORRECTION_TEMPLATE = (
    "Error: Failed to parse your response. Answer only with the requested JSON format. "
    "The error was: {error}\n\n"
    "Original prompt: {prompt}\n"
    "Do not apologize or mention the formatting error in your response"
)


class AskModel(Protocol):
    def ask(self, deadline: Deadline, prompt: str) -> str: ...


def _extract_json_content(content: str) -> str:
    """Extract JSON content from a reply, handling markdown fences."""
    content = content.strip()
    if content.startswith("```"):
        match = re.search(r"```(?:\w+)?\s*\n?(.*?)```", content, re.DOTALL)
        if match:
            content = match.group(1).strip()
    return content


def parse_structured_response(content: str, schema: type[T]) -> T:
    """Parse a raw model reply into ``schema``.

    Raises:
        pydantic.ValidationError: If the reply is not valid JSON for the schema
    """
    return schema.model_validate_json(_extract_json_content(content))


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'response'}: {err['msg']}"
        for err in error.errors()
    )


def guided_ask(
    model: AskModel,
    deadline: Deadline,
    prompt: str,
    max_attempts: int,
    schema: type[T],
) -> T:
    """Ask the model and parse its reply, re-prompting on malformed output.

    Each failed parse sends a corrective prompt carrying the parse error and
    the original prompt. Transport errors are not retried.

    Args:
        model: Anything with ``ask(deadline, prompt) -> str``
        deadline: Governs every model call
        prompt: Prompt for the first attempt
        max_attempts: Total number of model calls allowed
        schema: Pydantic model the reply must satisfy

    Returns:
        The parsed reply

    Raises:
        SchemaError: If no reply satisfied the schema within ``max_attempts``
        TransportError: If a model call fails
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    current_prompt = prompt
    attempt = 0
    while attempt < max_attempts:
        attempt += 1
        reply = model.ask(deadline, current_prompt)
        try:
            return parse_structured_response(reply, schema)
        except ValidationError as e:
            error = _describe(e)
            logger.debug(f"Attempt {attempt}/{max_attempts} returned invalid {schema.__name__}: {error}")
            current_prompt = CORRECTION_TEMPLATE.format(error=error, prompt=prompt)

    raise SchemaError(
        f"failed to parse model response after {max_attempts} attempts: {error}",
        attempts=max_attempts,
    )
