"""Tests for the model transport."""

import json
import os
import unittest
from unittest.mock import MagicMock, patch

from sleuth.deadline import Deadline
from sleuth.errors import DeadlineExceeded, TransportError
from sleuth.llm import ChatModel, ModelSettings, Pricing, Role


class TestChatModelHistory(unittest.TestCase):
    def setUp(self):
        self.model = ChatModel(
            ModelSettings(name="fake", provider="fake"), fake_responses=["one", "two"]
        )

    def test_ask_appends_history(self):
        self.model.set_system_prompt("system")
        self.assertEqual(self.model.ask(Deadline(10), "first"), "one")
        self.assertEqual(
            [(m.role, m.content) for m in self.model.history],
            [(Role.SYSTEM, "system"), (Role.USER, "first"), (Role.ASSISTANT, "one")],
        )

    def test_set_system_prompt_replaces(self):
        self.model.set_system_prompt("a")
        self.model.set_system_prompt("b")
        self.assertEqual(len(self.model.history), 1)
        self.assertEqual(self.model.system_prompt, "b")

    def test_reset_without_system_prompt(self):
        self.model.ask(Deadline(10), "first")
        self.model.reset()
        self.assertEqual(self.model.history, [])

    def test_expired_deadline(self):
        with self.assertRaises(DeadlineExceeded):
            self.model.ask(Deadline(0), "first")
        self.assertEqual(self.model.history, [])

    @patch.dict(os.environ, {"SLEUTH_FAKE_RESPONSE": '{"final_answer": "env"}'})
    def test_fake_env_response(self):
        model = ChatModel(ModelSettings(name="fake", provider="fake"))
        self.assertEqual(json.loads(model.ask(Deadline(10), "q"))["final_answer"], "env")

    def test_unsupported_provider(self):
        with self.assertRaises(ValueError):
            ChatModel(ModelSettings(name="x", provider="palm"))


class TestChatModelProviders(unittest.TestCase):
    @patch("openai.OpenAI")
    def test_openai(self, mock_openai):
        client = mock_openai.return_value
        client.chat.completions.create.return_value = MagicMock(
            choices=[MagicMock(message=MagicMock(content="hello"))],
            usage=MagicMock(prompt_tokens=100, completion_tokens=20),
        )
        model = ChatModel(
            ModelSettings(
                name="gpt-4o-mini",
                base_url="https://api.openai.com/v1",
                auth_token="sk-test",
                pricing=Pricing(input=0.00015, output=0.0006),
            )
        )

        self.assertEqual(model.ask(Deadline(10), "hi"), "hello")
        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o-mini")
        self.assertEqual(kwargs["messages"], [{"role": "user", "content": "hi"}])
        self.assertLessEqual(kwargs["timeout"], 10)
        self.assertEqual(model.usage.total_tokens, 120)
        self.assertEqual(
            model.log_usage(), "gpt-4o-mini: 0.0000$ for input(100), 0.0000$ for output(20)"
        )

    @patch("openai.AzureOpenAI")
    def test_azure(self, mock_azure):
        ChatModel(
            ModelSettings(
                name="gpt-4o",
                base_url="https://example.openai.azure.com",
                auth_token="key",
                azure_api_version="2024-06-01",
            )
        )
        mock_azure.assert_called_once_with(
            api_key="key",
            api_version="2024-06-01",
            azure_endpoint="https://example.openai.azure.com",
        )

    @patch("openai.OpenAI")
    def test_provider_failure_is_transport_error(self, mock_openai):
        mock_openai.return_value.chat.completions.create.side_effect = RuntimeError("503")
        model = ChatModel(ModelSettings(name="gpt-4o-mini"))

        with self.assertRaises(TransportError) as ctx:
            model.ask(Deadline(10), "hi")
        self.assertIn("503", str(ctx.exception))
        self.assertEqual(model.history, [])

    @patch("anthropic.Anthropic")
    def test_claude_sends_system_separately(self, mock_anthropic):
        client = mock_anthropic.return_value
        client.messages.create.return_value = MagicMock(
            content=[MagicMock(text="hello")],
            usage=MagicMock(input_tokens=10, output_tokens=5),
        )
        model = ChatModel(ModelSettings(name="claude-sonnet-4", provider="claude"))
        model.set_system_prompt("be brief")

        self.assertEqual(model.ask(Deadline(10), "hi"), "hello")
        kwargs = client.messages.create.call_args.kwargs
        self.assertEqual(kwargs["system"], "be brief")
        self.assertEqual(kwargs["messages"], [{"role": "user", "content": "hi"}])
        self.assertEqual(model.usage.prompt_tokens, 10)

    @patch("requests.post")
    def test_ollama(self, mock_post):
        mock_post.return_value = MagicMock(
            status_code=200,
            json=MagicMock(
                return_value={
                    "message": {"content": "hello"},
                    "prompt_eval_count": 7,
                    "eval_count": 3,
                }
            ),
        )
        model = ChatModel(
            ModelSettings(name="llama3", provider="ollama", base_url="http://localhost:11434/")
        )

        self.assertEqual(model.ask(Deadline(10), "hi"), "hello")
        self.assertEqual(mock_post.call_args.args[0], "http://localhost:11434/api/chat")
        self.assertEqual(model.usage.completion_tokens, 3)

    @patch("requests.post")
    def test_ollama_bad_status(self, mock_post):
        mock_post.return_value = MagicMock(status_code=500, text="model not found")
        model = ChatModel(
            ModelSettings(name="llama3", provider="ollama", base_url="http://localhost:11434")
        )
        with self.assertRaises(TransportError) as ctx:
            model.ask(Deadline(10), "hi")
        self.assertIn("500", str(ctx.exception))


class TestCost(unittest.TestCase):
    def test_cost(self):
        model = ChatModel(
            ModelSettings(name="fake", provider="fake", pricing=Pricing(input=1.0, output=2.0))
        )
        model.usage.add(1500, 500)
        self.assertEqual(model.cost(), (1.5, 1.0))
        self.assertEqual(model.log_usage(), "fake: 1.5000$ for input(1500), 1.0000$ for output(500)")


if __name__ == "__main__":
    unittest.main()
