"""Unified LLM Router — dual-provider abstraction for Gemini + OpenAI.

Routes LLM calls to Google Gemini or OpenAI GPT based on model prefix (gpt-* / gemini-*):
  - gemini-* → Google GenAI SDK
  - gpt-*   → OpenAI Responses API

All callers use a single `llm_call()` function with a unified response format.
Calls never raise: provider errors, missing keys and timeouts come back as
`LLMResult.error` so the pipeline can degrade instead of failing the request.
Keys come from the environment only and are reported masked.
"""

import json
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))

logger = logging.getLogger(__name__)

# Available models for the UI switcher
AVAILABLE_MODELS = [
    {"id": "gemini-2.0-flash", "label": "Gemini 2.0 Flash", "provider": "gemini"},
    {"id": "gpt-4.1-mini", "label": "GPT-4.1 mini", "provider": "openai"},
]

DEFAULT_MODEL = os.getenv("LLM_MODEL", "gemini-2.0-flash")

# Environment variables per provider, first one set wins
PROVIDER_KEY_VARS = {
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "openai": ("OPENAI_API_KEY",),
}

# Backstop for the caller's deadline. The SDK clients carry the same timeout,
# so a worker is released when the provider gives up.
_LLM_POOL = ThreadPoolExecutor(max_workers=8, thread_name_prefix="llm")


@dataclass
class LLMResult:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    duration_s: float = 0.0
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.text)


class ProviderKeyStatus(BaseModel):
    provider: str
    configured: bool
    env_var: Optional[str] = None
    masked_key: Optional[str] = None


def _provider_key_var(provider: str) -> Optional[str]:
    for env_var in PROVIDER_KEY_VARS.get(provider, ()):
        if os.getenv(env_var):
            return env_var
    return None


def provider_key(provider: str) -> Optional[str]:
    env_var = _provider_key_var(provider)
    return os.getenv(env_var) if env_var else None


def _mask(key: str) -> str:
    return f"{key[:4]}...{key[-4:]}" if len(key) > 8 else "***"


def provider_key_status() -> list[ProviderKeyStatus]:
    """Which providers can be called, with the key masked for display."""
    statuses = []
    for provider in PROVIDER_KEY_VARS:
        env_var = _provider_key_var(provider)
        key = os.getenv(env_var) if env_var else None
        statuses.append(ProviderKeyStatus(
            provider=provider,
            configured=key is not None,
            env_var=env_var,
            masked_key=_mask(key) if key else None,
        ))
    return statuses


def _call_gemini(
    model: str,
    system_prompt: Optional[str],
    user_prompt: str,
    json_mode: bool,
    temperature: float,
    max_output_tokens: Optional[int],
    timeout_s: Optional[float] = None,
) -> LLMResult:
    from google import genai
    from google.genai import types

    api_key = provider_key("gemini")
    if not api_key:
        return LLMResult(text="", error="GEMINI_API_KEY not set")

    http_options = types.HttpOptions(timeout=int(timeout_s * 1000)) if timeout_s else None
    client = genai.Client(api_key=api_key, http_options=http_options)
    t0 = time.time()

    config_kwargs: dict = {}
    if system_prompt:
        config_kwargs["system_instruction"] = system_prompt
    if json_mode:
        config_kwargs["response_mime_type"] = "application/json"
    config_kwargs["temperature"] = temperature
    if max_output_tokens:
        config_kwargs["max_output_tokens"] = max_output_tokens

    try:
        response = client.models.generate_content(
            model=model,
            contents=[
                types.Content(
                    role="user",
                    parts=[types.Part.from_text(text=user_prompt)],
                )
            ],
            config=types.GenerateContentConfig(**config_kwargs),
        )

        text = response.text or ""
        usage = getattr(response, "usage_metadata", None)
        input_tokens = getattr(usage, "prompt_token_count", 0) if usage else 0
        output_tokens = getattr(usage, "candidates_token_count", 0) if usage else 0

        return LLMResult(
            text=text,
            input_tokens=input_tokens or 0,
            output_tokens=output_tokens or 0,
            duration_s=round(time.time() - t0, 2),
        )
    except Exception as e:
        logger.error(f"Gemini API error ({model}): {e}")
        return LLMResult(
            text="",
            error=str(e),
            duration_s=round(time.time() - t0, 2),
        )


def _call_openai(
    model: str,
    system_prompt: Optional[str],
    user_prompt: str,
    json_mode: bool,
    temperature: float,
    max_output_tokens: Optional[int],
    timeout_s: Optional[float] = None,
) -> LLMResult:
    from openai import OpenAI

    api_key = provider_key("openai")
    if not api_key:
        return LLMResult(text="", error="OPENAI_API_KEY not set")

    client_kwargs: dict = {"api_key": api_key, "max_retries": 0}
    if timeout_s:
        client_kwargs["timeout"] = timeout_s
    client = OpenAI(**client_kwargs)
    t0 = time.time()

    kwargs: dict = {
        "model": model,
        "input": [{"role": "user", "content": [{"type": "input_text", "text": user_prompt}]}],
        "temperature": temperature,
    }
    if system_prompt:
        kwargs["instructions"] = system_prompt
    if json_mode:
        kwargs["text"] = {"format": {"type": "json_object"}}
    if max_output_tokens:
        kwargs["max_output_tokens"] = max_output_tokens

    try:
        response = client.responses.create(**kwargs)

        text = response.output_text or ""
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "input_tokens", 0) if usage else 0
        output_tokens = getattr(usage, "output_tokens", 0) if usage else 0

        return LLMResult(
            text=text,
            input_tokens=input_tokens or 0,
            output_tokens=output_tokens or 0,
            duration_s=round(time.time() - t0, 2),
        )
    except Exception as e:
        logger.error(f"OpenAI API error ({model}): {e}")
        return LLMResult(
            text="",
            error=str(e),
            duration_s=round(time.time() - t0, 2),
        )


def llm_call(
    model: str,
    user_prompt: str,
    system_prompt: Optional[str] = None,
    json_mode: bool = True,
    temperature: float = 0.0,
    max_output_tokens: Optional[int] = None,
    timeout_s: Optional[float] = None,
) -> LLMResult:
    """Route an LLM call to the appropriate provider based on model name.

    With ``timeout_s`` set, the call is abandoned after that many seconds and
    an ``LLMResult`` with ``timed_out=True`` is returned. No retries.
    """
    call = _call_openai if model.startswith("gpt-") else _call_gemini
    args = (model, system_prompt, user_prompt, json_mode, temperature, max_output_tokens, timeout_s)
    if not timeout_s:
        return call(*args)

    t0 = time.time()
    future = _LLM_POOL.submit(call, *args)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError:
        # Only a call still queued is cancelled; a running one ends at the SDK timeout.
        future.cancel()
        logger.warning(f"LLM call timed out after {timeout_s}s ({model})")
        return LLMResult(
            text="",
            error=f"timeout after {timeout_s}s",
            timed_out=True,
            duration_s=round(time.time() - t0, 2),
        )


# =============================================================================
# STRUCTURED OUTPUT PARSING
# =============================================================================

def extract_json(text: str) -> str:
    """Extract JSON from response, removing markdown code blocks and chatter."""
    text = (text or "").strip()

    # Remove markdown code blocks
    if text.startswith("```"):
        first_newline = text.find("\n")
        if first_newline != -1:
            text = text[first_newline + 1:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

    # "Here is the JSON: {...}": keep the outermost object
    if not text.startswith("{"):
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            text = text[start:end + 1]

    return text


def repair_json(raw: str) -> Optional[dict]:
    """Minimal JSON repair for truncated output: close open brackets."""
    if not raw:
        return None
    repaired = raw.rstrip().rstrip(",")
    open_braces = repaired.count("{") - repaired.count("}")
    open_brackets = repaired.count("[") - repaired.count("]")
    for _ in range(open_brackets):
        repaired += "]"
    for _ in range(open_braces):
        repaired += "}"
    try:
        data = json.loads(repaired)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_json_response(text: str) -> Optional[dict]:
    """Parse an LLM response into a dict, or None when it is not structured data."""
    cleaned = extract_json(text)
    if not cleaned:
        return None
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return repair_json(cleaned)
    return data if isinstance(data, dict) else None
