"""
Tests for the completion provider wrappers (SDK clients are mocked)
"""

import unittest
import sys
import os
from types import SimpleNamespace
from unittest.mock import patch
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import anthropic
from openai import OpenAIError

from llm_provider import SYSTEM_PROMPT, CompletionError, build_user_prompt, complete
from settings import ApiConfig


def _openai_response(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def _claude_response(*texts):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=t) for t in texts])


class TestOpenAICompletion(unittest.TestCase):

    def setUp(self):
        self.config = ApiConfig().with_api_key("sk-test")

    @patch("llm_provider.OpenAI")
    def test_returns_message_content(self, mock_openai):
        client = mock_openai.return_value
        client.chat.completions.create.return_value = _openai_response("1. Executive Summary")

        text = complete(SYSTEM_PROMPT, "prompt", config=self.config)

        self.assertEqual(text, "1. Executive Summary")
        mock_openai.assert_called_once_with(api_key="sk-test")
        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o")
        self.assertEqual(kwargs["max_tokens"], 1500)
        self.assertEqual(kwargs["messages"][0], {"role": "system", "content": SYSTEM_PROMPT})
        self.assertEqual(kwargs["messages"][1], {"role": "user", "content": "prompt"})

    @patch("llm_provider.OpenAI")
    def test_explicit_model_and_budget(self, mock_openai):
        client = mock_openai.return_value
        client.chat.completions.create.return_value = _openai_response("text")

        complete(SYSTEM_PROMPT, "prompt", model="gpt-4o-mini", max_tokens=400, config=self.config)

        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o-mini")
        self.assertEqual(kwargs["max_tokens"], 400)

    @patch("llm_provider.OpenAI")
    def test_sdk_error_becomes_completion_error(self, mock_openai):
        mock_openai.return_value.chat.completions.create.side_effect = OpenAIError("rate limited")

        with self.assertRaises(CompletionError) as ctx:
            complete(SYSTEM_PROMPT, "prompt", config=self.config)
        self.assertIn("rate limited", str(ctx.exception))

    @patch("llm_provider.OpenAI")
    def test_empty_completion(self, mock_openai):
        mock_openai.return_value.chat.completions.create.return_value = _openai_response(None)

        with self.assertRaises(CompletionError):
            complete(SYSTEM_PROMPT, "prompt", config=self.config)


class TestClaudeCompletion(unittest.TestCase):

    def setUp(self):
        self.config = ApiConfig(provider="anthropic").with_api_key("sk-ant-test")

    @patch("llm_provider.anthropic.Anthropic")
    def test_joins_text_blocks(self, mock_anthropic):
        client = mock_anthropic.return_value
        client.messages.create.return_value = _claude_response("1. Executive ", "Summary")

        text = complete(SYSTEM_PROMPT, "prompt", config=self.config)

        self.assertEqual(text, "1. Executive Summary")
        kwargs = client.messages.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "claude-3-5-sonnet-20241022")
        self.assertEqual(kwargs["system"], SYSTEM_PROMPT)
        self.assertEqual(kwargs["messages"], [{"role": "user", "content": "prompt"}])

    @patch("llm_provider.anthropic.Anthropic")
    def test_sdk_error_becomes_completion_error(self, mock_anthropic):
        mock_anthropic.return_value.messages.create.side_effect = anthropic.AnthropicError("overloaded")

        with self.assertRaises(CompletionError) as ctx:
            complete(SYSTEM_PROMPT, "prompt", config=self.config)
        self.assertIn("overloaded", str(ctx.exception))


class TestCompleteGuards(unittest.TestCase):

    def test_no_credential(self):
        with patch("llm_provider.OpenAI") as mock_openai:
            with self.assertRaises(CompletionError):
                complete(SYSTEM_PROMPT, "prompt", config=ApiConfig())
            mock_openai.assert_not_called()

    def test_user_prompt_names_address_and_layout(self):
        prompt = build_user_prompt("10 Test Street, London")
        self.assertTrue(prompt.startswith(
            "Create a comprehensive property analysis for this address: 10 Test Street, London"
        ))
        for heading in ("Executive Summary", "Property Appraisal", "Feasibility Study", "Planning Opportunities"):
            self.assertIn(heading, prompt)


def run_tests():
    """Run all tests and report results"""
    loader = unittest.TestLoader()
    suite = loader.loadTestsFromModule(sys.modules[__name__])
    runner = unittest.TextTestRunner(verbosity=2)
    return runner.run(suite).wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
