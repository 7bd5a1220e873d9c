"""Tests for LLM routing, timeouts and structured-output parsing."""

import threading
from unittest.mock import MagicMock, patch

import pytest

from opportunity_graph.llm_router import (
    LLMResult,
    extract_json,
    llm_call,
    parse_json_response,
    provider_key,
    provider_key_status,
    repair_json,
)


# =============================================================================
# ROUTING
# =============================================================================

class TestRouting:
    @patch("opportunity_graph.llm_router._call_openai")
    @patch("opportunity_graph.llm_router._call_gemini")
    def test_model_prefix_selects_provider(self, mock_gemini, mock_openai):
        mock_gemini.return_value = LLMResult(text="g")
        mock_openai.return_value = LLMResult(text="o")
        assert llm_call("gemini-2.0-flash", "hi").text == "g"
        assert llm_call("gpt-4.1-mini", "hi").text == "o"

    @patch("opportunity_graph.llm_router.provider_key", return_value=None)
    def test_missing_key_is_an_error_result(self, _key):
        result = llm_call("gpt-4.1-mini", "hi")
        assert result.ok is False
        assert result.error == "OPENAI_API_KEY not set"

    @patch("opportunity_graph.llm_router._call_gemini")
    def test_timeout_returns_timed_out_result(self, mock_gemini):
        release = threading.Event()

        def slow(*args):
            release.wait(5)
            return LLMResult(text="late")

        mock_gemini.side_effect = slow
        try:
            result = llm_call("gemini-2.0-flash", "hi", timeout_s=0.05)
        finally:
            release.set()
        assert result.timed_out is True
        assert result.ok is False
        assert "timeout" in result.error

    @patch("opportunity_graph.llm_router.provider_key", return_value="sk-test")
    def test_provider_exception_is_captured(self, _key):
        with patch("openai.OpenAI") as mock_client:
            mock_client.return_value.responses.create.side_effect = RuntimeError("quota exceeded")
            result = llm_call("gpt-4.1-mini", "hi")
        assert result.error == "quota exceeded"

    @patch("opportunity_graph.llm_router.provider_key", return_value="sk-test")
    def test_openai_json_mode_request(self, _key):
        with patch("openai.OpenAI") as mock_client:
            response = MagicMock(output_text='{"a": 1}')
            response.usage.input_tokens = 10
            response.usage.output_tokens = 3
            mock_client.return_value.responses.create.return_value = response
            result = llm_call("gpt-4.1-mini", "hi", temperature=0.1, max_output_tokens=50)

        kwargs = mock_client.return_value.responses.create.call_args.kwargs
        assert kwargs["text"] == {"format": {"type": "json_object"}}
        assert kwargs["max_output_tokens"] == 50
        assert result.text == '{"a": 1}'
        assert result.input_tokens == 10

    @patch("opportunity_graph.llm_router.provider_key", return_value="sk-test")
    def test_openai_client_carries_the_deadline(self, _key):
        with patch("openai.OpenAI") as mock_client:
            mock_client.return_value.responses.create.return_value = MagicMock(output_text="{}")
            llm_call("gpt-4.1-mini", "hi", timeout_s=5)
        assert mock_client.call_args.kwargs["timeout"] == 5
        assert mock_client.call_args.kwargs["max_retries"] == 0

    @patch("opportunity_graph.llm_router.provider_key", return_value="g-test")
    def test_gemini_client_carries_the_deadline(self, _key):
        with patch("google.genai.Client") as mock_client:
            mock_client.return_value.models.generate_content.return_value = MagicMock(text="{}")
            llm_call("gemini-2.0-flash", "hi", timeout_s=2.5)
        assert mock_client.call_args.kwargs["http_options"].timeout == 2500


class TestProviderKeys:
    def test_gemini_falls_back_to_google_key(self):
        with patch.dict("os.environ", {"GEMINI_API_KEY": "", "GOOGLE_API_KEY": "AIza-google-key"}):
            assert provider_key("gemini") == "AIza-google-key"

    def test_unknown_provider(self):
        assert provider_key("anthropic") is None

    def test_status_is_masked(self):
        env = {"OPENAI_API_KEY": "sk-abcdefghijklmnop", "GEMINI_API_KEY": "short", "GOOGLE_API_KEY": ""}
        with patch.dict("os.environ", env):
            status = {s.provider: s for s in provider_key_status()}
        assert status["openai"].masked_key == "sk-a...mnop"
        assert status["gemini"].masked_key == "***"
        assert status["gemini"].env_var == "GEMINI_API_KEY"

    def test_unset_provider_is_not_configured(self):
        with patch.dict("os.environ", {"OPENAI_API_KEY": ""}):
            status = {s.provider: s for s in provider_key_status()}
        assert status["openai"].configured is False
        assert status["openai"].masked_key is None


# =============================================================================
# JSON PARSING
# =============================================================================

class TestExtractJson:
    def test_code_fence(self):
        assert extract_json('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_chatter_around_object(self):
        assert extract_json('Here you go: {"a": {"b": 2}} hope it helps') == '{"a": {"b": 2}}'

    def test_empty(self):
        assert extract_json(None) == ""


class TestParseJsonResponse:
    def test_object(self):
        assert parse_json_response('{"query": "MATCH (n) RETURN n"}') == {"query": "MATCH (n) RETURN n"}

    def test_truncated_object_is_repaired(self):
        assert parse_json_response('{"items": ["a", "b"') == {"items": ["a", "b"]}

    @pytest.mark.parametrize("text", ["", "no json at all", "[1, 2]", '{"a": '])
    def test_unusable(self, text):
        assert parse_json_response(text) is None

    def test_repair_rejects_non_objects(self):
        assert repair_json("[1, 2") is None
