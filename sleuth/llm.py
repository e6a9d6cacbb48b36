"""Model transport: one chat model, its conversation history and token usage."""

import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

import requests

from sleuth.deadline import Deadline
from sleuth.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 45.0
MAX_TOKENS = 1000


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, prompt_tokens: int, completion_tokens: int) -> None:
        self.prompt_tokens += prompt_tokens
        self.completion_tokens += completion_tokens
        self.total_tokens += prompt_tokens + completion_tokens


@dataclass(frozen=True)
class Pricing:
    """Price in dollars per 1K tokens."""

    input: float = 0.0
    output: float = 0.0


@dataclass
class ModelSettings:
    """Connection settings for one model."""

    name: str
    provider: str = "openai"
    base_url: str = ""
    auth_token: str = ""
    azure_api_version: str = ""
    pricing: Pricing = field(default_factory=Pricing)
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


class ChatModel:
    """A chat model reached through one provider.

    The model owns its conversation history: every successful ``ask``
    appends the prompt and the reply, so follow-up prompts are answered with
    the whole session in context.
    """

    PROVIDERS = ("openai", "claude", "ollama", "fake")

    def __init__(self, settings: ModelSettings, fake_responses: Iterable[str] | None = None):
        self.settings = settings
        self.name = settings.name
        self.provider = settings.provider.lower()
        self.history: list[Message] = []
        self.usage = Usage()
        self._fake_responses = list(fake_responses or [])
        self._initialize_client()

    def _initialize_client(self):
        if self.provider == "openai":
            try:
                from openai import AzureOpenAI, OpenAI
            except ImportError:
                raise ImportError("OpenAI package not installed. Run: pip install openai")

            if self.settings.azure_api_version:
                self.client = AzureOpenAI(
                    api_key=self.settings.auth_token,
                    api_version=self.settings.azure_api_version,
                    azure_endpoint=self.settings.base_url,
                )
            else:
                self.client = OpenAI(
                    api_key=self.settings.auth_token or None,
                    base_url=self.settings.base_url or None,
                )
        elif self.provider == "claude":
            try:
                from anthropic import Anthropic
            except ImportError:
                raise ImportError("Anthropic package not installed. Run: pip install anthropic")

            # Suppress noisy retry logging from anthropic client
            logging.getLogger("anthropic").setLevel(logging.WARNING)
            self.client = Anthropic(api_key=self.settings.auth_token or None)
        elif self.provider == "ollama":
            self.ollama_url = self.settings.base_url or os.environ.get(
                "OLLAMA_HOST", "http://localhost:11434"
            )
            self.client = None
        elif self.provider == "fake":
            self.client = None
        else:
            raise ValueError(f"Unsupported provider: {self.provider}")

    @property
    def system_prompt(self) -> str | None:
        if self.history and self.history[0].role == Role.SYSTEM:
            return self.history[0].content
        return None

    def set_system_prompt(self, prompt: str) -> None:
        """Set or replace the system prompt at the head of the history."""
        message = Message(Role.SYSTEM, prompt)
        if self.history and self.history[0].role == Role.SYSTEM:
            self.history[0] = message
        else:
            self.history.insert(0, message)

    def reset(self) -> None:
        """Drop the conversation, keeping only the system prompt."""
        system_prompt = self.system_prompt
        self.history = [] if system_prompt is None else [Message(Role.SYSTEM, system_prompt)]

    def ask(self, deadline: Deadline, prompt: str) -> str:
        """Send a prompt with the conversation so far and return the reply text.

        Raises:
            DeadlineExceeded: If the deadline passed before the call
            TransportError: If the provider call fails
        """
        deadline.check()
        timeout = deadline.remaining()
        if timeout is None or timeout > self.settings.request_timeout:
            timeout = self.settings.request_timeout

        messages = [*self.history, Message(Role.USER, prompt)]
        logger.debug(f"Asking model {self.name}: {prompt}")
        try:
            content, prompt_tokens, completion_tokens = self._call(messages, timeout)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"failed to interact with the model: {e}") from e

        logger.debug(f"Model {self.name} responded: {content}")
        self.history.append(Message(Role.USER, prompt))
        self.history.append(Message(Role.ASSISTANT, content))
        self.usage.add(prompt_tokens, completion_tokens)
        return content

    def _call(self, messages: list[Message], timeout: float) -> tuple[str, int, int]:
        if self.provider == "openai":
            return self._call_openai(messages, timeout)
        if self.provider == "claude":
            return self._call_claude(messages, timeout)
        if self.provider == "ollama":
            return self._call_ollama(messages, timeout)
        return self._call_fake(messages)

    def _call_openai(self, messages: list[Message], timeout: float) -> tuple[str, int, int]:
        response = self.client.chat.completions.create(
            model=self.name,
            messages=[m.to_dict() for m in messages],
            temperature=0,
            timeout=timeout,
        )
        if not response.choices:
            raise TransportError("model returned no choices")
        content = response.choices[0].message.content or ""
        usage = response.usage
        if usage is None:
            return content, 0, 0
        return content, usage.prompt_tokens, usage.completion_tokens

    def _call_claude(self, messages: list[Message], timeout: float) -> tuple[str, int, int]:
        system = "\n\n".join(m.content for m in messages if m.role == Role.SYSTEM)
        response = self.client.messages.create(
            model=self.name,
            max_tokens=MAX_TOKENS,
            temperature=0,
            system=system,
            messages=[m.to_dict() for m in messages if m.role != Role.SYSTEM],
            timeout=timeout,
        )
        if not response.content:
            raise TransportError("model returned no content")
        text = getattr(response.content[0], "text", None) or ""
        return text, response.usage.input_tokens, response.usage.output_tokens

    def _call_ollama(self, messages: list[Message], timeout: float) -> tuple[str, int, int]:
        response = requests.post(
            f"{self.ollama_url.rstrip('/')}/api/chat",
            json={
                "model": self.name,
                "messages": [m.to_dict() for m in messages],
                "stream": False,
                "options": {"temperature": 0},
            },
            timeout=timeout,
        )
        if response.status_code != 200:
            raise TransportError(
                f"unexpected status code: {response.status_code}\n{response.text}"
            )
        result = response.json()
        content = result.get("message", {}).get("content", "")
        return content, result.get("prompt_eval_count", 0), result.get("eval_count", 0)

    def _call_fake(self, messages: list[Message]) -> tuple[str, int, int]:
        if self._fake_responses:
            return self._fake_responses.pop(0), 0, 0
        fake_response = os.environ.get("SLEUTH_FAKE_RESPONSE", "")
        if fake_response:
            return fake_response, 0, 0
        return json.dumps({"final_answer": "Test mode response", "reason_for_command": ""}), 0, 0

    def cost(self) -> tuple[float, float]:
        """Return (input, output) cost in dollars for the usage so far."""
        pricing = self.settings.pricing
        return (
            pricing.input * self.usage.prompt_tokens / 1000,
            pricing.output * self.usage.completion_tokens / 1000,
        )

    def log_usage(self) -> str:
        input_cost, output_cost = self.cost()
        return (
            f"{self.name}: {input_cost:.4f}$ for input({self.usage.prompt_tokens}), "
            f"{output_cost:.4f}$ for output({self.usage.completion_tokens})"
        )
