"""
LLM Client Wrapper for CareerChat

Provides one completion interface over several hosted models:
- Claude (Anthropic)
- OpenAI chat completions
- Google Gemini
- Cloudflare Workers AI (gpt-oss-120b over REST)
- Mock (tests and offline development)

Every provider accepts the same canonical message list
[{"role": "system"|"user"|"assistant", "content": "..."}] and translates it
into its native request shape. Responses come back as plain text, either
whole (complete) or as fragments (complete_streaming).

Usage:
    from careerchat.core.llm_client import build_provider_chain

    primary, *fallback = build_provider_chain(get_settings())
    text = await primary.complete(messages)
"""

import json
import logging
from typing import Optional, Dict, Any, List, AsyncIterator

import httpx

from careerchat.core.exceptions import CompletionError

logger = logging.getLogger(__name__)

PARSE_FAILURE_TEXT = "Sorry, I couldn't parse the response from the AI model."

# Payloads longer than this are not echoed back as text
_MAX_DUMP_LENGTH = 1000

# Streamed event type carrying reply text (reasoning deltas use another type)
OUTPUT_TEXT_DELTA = "response.output_text.delta"


# ============================================================================
# Response Parsing
# ============================================================================

def _join_text_blocks(blocks: List[Any]) -> str:
    parts = []
    for block in blocks:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict):
            if isinstance(block.get("text"), str):
                parts.append(block["text"])
            elif isinstance(block.get("content"), list):
                parts.append(_join_text_blocks(block["content"]))
    return "".join(parts)


def _output_message_text(output: List[Any]) -> str:
    """
    Text of the assistant message items in a Responses-style output list.

    Reasoning items carry the model's hidden chain of thought and are skipped.
    """
    parts = []
    for item in output:
        if isinstance(item, str):
            parts.append(item)
            continue
        if not isinstance(item, dict) or item.get("type", "message") != "message":
            continue
        content = item.get("content")
        if isinstance(content, str):
            parts.append(content)
        elif isinstance(content, list):
            parts.append(_join_text_blocks(
                [b for b in content
                 if not isinstance(b, dict) or b.get("type", "output_text") in ("output_text", "text")]
            ))
    return "".join(parts)


def extract_response_text(payload: Any) -> str:
    """
    Pull the generated text out of a provider payload.

    Known shapes, in order:
    - plain string
    - {"response": "..."}
    - {"choices": [{"message": {"content": "..."}}]} or {"choices": [{"text": "..."}]}
    - {"text": "..."}
    - {"content": "..."} or {"content": [{"type": "text", "text": "..."}]}
    - {"output": [{"type": "message", "content": [{"type": "output_text", "text": "..."}]}]}
      (reasoning items are skipped)
    - {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
    - {"description": "..."}
    - {"result": <any of the above>}
    - a list whose first element is any of the above
    - small objects, echoed as JSON

    Never raises. Anything else becomes PARSE_FAILURE_TEXT.
    """
    if isinstance(payload, str):
        return payload

    if isinstance(payload, dict):
        if isinstance(payload.get("response"), str):
            return payload["response"]

        choices = payload.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            choice = choices[0]
            message = choice.get("message")
            if isinstance(message, dict) and message.get("content"):
                return message["content"]
            if choice.get("text"):
                return choice["text"]

        if isinstance(payload.get("text"), str) and payload["text"]:
            return payload["text"]

        content = payload.get("content")
        if isinstance(content, str) and content:
            return content
        if isinstance(content, list):
            text = _join_text_blocks(content)
            if text:
                return text

        output = payload.get("output")
        if isinstance(output, list):
            text = _output_message_text(output)
            if text:
                return text

        candidates = payload.get("candidates")
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
            parts = (candidates[0].get("content") or {}).get("parts")
            if isinstance(parts, list):
                text = _join_text_blocks(parts)
                if text:
                    return text

        if isinstance(payload.get("description"), str) and payload["description"]:
            return payload["description"]

        if "result" in payload and payload["result"] is not None:
            return extract_response_text(payload["result"])

    if isinstance(payload, list) and payload:
        return extract_response_text(payload[0])

    if isinstance(payload, (dict, list)):
        try:
            dumped = json.dumps(payload)
            if len(dumped) < _MAX_DUMP_LENGTH:
                return dumped
        except (TypeError, ValueError):
            pass

    logger.error(f"Unable to extract text from response: {str(payload)[:200]}")
    return PARSE_FAILURE_TEXT


def messages_to_prompt(messages: List[Dict[str, str]]) -> str:
    """Flatten a message list into one 'Role: content' prompt string."""
    labels = {"system": "System", "assistant": "Assistant"}
    return "\n\n".join(
        f"{labels.get(m['role'], 'User')}: {m['content']}" for m in messages
    )


def split_system_prompt(messages: List[Dict[str, str]]):
    """Return (system_text or None, remaining messages with same-role runs merged)."""
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    turns: List[Dict[str, str]] = []
    for m in messages:
        if m["role"] == "system":
            continue
        if turns and turns[-1]["role"] == m["role"]:
            turns[-1] = {"role": m["role"], "content": turns[-1]["content"] + "\n\n" + m["content"]}
        else:
            turns.append({"role": m["role"], "content": m["content"]})
    system = "\n\n".join(system_parts) if system_parts else None
    return system, turns


# ============================================================================
# Provider Interface
# ============================================================================

class CompletionProvider:
    """
    Base class for completion backends.

    Subclasses implement complete() and, when supports_streaming is True,
    complete_streaming().
    """

    name = "base"
    supports_streaming = False

    @property
    def configured(self) -> bool:
        """Whether credentials are present. Unconfigured providers fail on use."""
        return True

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        raise NotImplementedError

    def complete_streaming(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        raise NotImplementedError(f"{self.name} does not stream")

    def _require(self, value: Optional[str], env_var: str):
        if not value:
            raise CompletionError(
                f"{self.name} API key required. Set {env_var}.", provider=self.name
            )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class ClaudeProvider(CompletionProvider):
    """
    Claude (Anthropic) provider.

    Uses the Anthropic Python SDK. The system prompt travels in the
    dedicated system parameter; consecutive same-role turns are merged
    because the Messages API requires alternation.
    """

    name = "claude"
    supports_streaming = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 4096,
        temperature: float = 0.3,
        timeout: float = 60.0
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            self._require(self.api_key, "LLM_ANTHROPIC_API_KEY")
            import anthropic
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
            logger.info(f"Claude client initialized with model: {self.model}")
        return self._client

    def _request(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        system, turns = split_system_prompt(messages)
        request = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": turns,
        }
        if system:
            request["system"] = system
        return request

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        client = self._get_client()
        response = await client.messages.create(**self._request(messages))
        return extract_response_text(response.model_dump())

    async def complete_streaming(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        client = self._get_client()
        async with client.messages.stream(**self._request(messages)) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text


class OpenAIProvider(CompletionProvider):
    """OpenAI chat completions provider. Takes canonical messages as-is."""

    name = "openai"
    supports_streaming = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        max_tokens: int = 4096,
        temperature: float = 0.3,
        timeout: float = 60.0
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            self._require(self.api_key, "LLM_OPENAI_API_KEY")
            import openai
            self._client = openai.AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
            logger.info(f"OpenAI client initialized with model: {self.model}")
        return self._client

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return extract_response_text(response.model_dump())

    async def complete_streaming(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        client = self._get_client()
        stream = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=True,
        )
        async for event in stream:
            if not event.choices:
                continue
            delta = event.choices[0].delta.content
            if delta:
                yield delta


class GeminiProvider(CompletionProvider):
    """
    Google Gemini provider.

    Gemini has its own chat shape: roles are "user" and "model", text lives
    in "parts", and the system prompt is a model-level system_instruction.
    All but the last turn become chat history; the last is sent.
    """

    name = "gemini"
    supports_streaming = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gemini-1.5-flash",
        max_tokens: int = 4096,
        temperature: float = 0.3
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._genai = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def to_native(messages: List[Dict[str, str]]):
        """Translate canonical messages to (system_instruction, history, last_parts)."""
        system, turns = split_system_prompt(messages)
        native = [
            {"role": "user" if m["role"] == "user" else "model", "parts": [m["content"]]}
            for m in turns
        ]
        if not native or native[-1]["role"] != "user":
            raise CompletionError("Gemini requests must end with a user turn", provider="gemini")
        return system, native[:-1], native[-1]["parts"]

    def _start_chat(self, messages: List[Dict[str, str]]):
        self._require(self.api_key, "LLM_GEMINI_API_KEY")
        if self._genai is None:
            import google.generativeai as genai
            genai.configure(api_key=self.api_key)
            self._genai = genai
            logger.info(f"Gemini provider initialized: {self.model}")

        system, history, parts = self.to_native(messages)
        model = self._genai.GenerativeModel(self.model, system_instruction=system)
        chat = model.start_chat(history=history)
        config = {"temperature": self.temperature, "max_output_tokens": self.max_tokens}
        return chat, parts, config

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        chat, parts, config = self._start_chat(messages)
        response = await chat.send_message_async(parts, generation_config=config)
        try:
            return response.text
        except ValueError:
            return extract_response_text(response.to_dict())

    async def complete_streaming(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        chat, parts, config = self._start_chat(messages)
        response = await chat.send_message_async(parts, generation_config=config, stream=True)
        async for chunk in response:
            try:
                text = chunk.text
            except ValueError:
                # Chunks without text parts (safety or finish metadata)
                continue
            if text:
                yield text


class WorkersAIProvider(CompletionProvider):
    """
    Cloudflare Workers AI over the REST API.

    gpt-oss-120b takes a single "input" prompt, so the message list is
    flattened to "Role: content" paragraphs. Streaming responses are SSE
    ("data: {...}" lines ending with "data: [DONE]").
    """

    name = "workers_ai"
    supports_streaming = True

    BASE_URL = "https://api.cloudflare.com/client/v4/accounts/{account_id}/ai/run/{model}"

    def __init__(
        self,
        account_id: Optional[str] = None,
        api_token: Optional[str] = None,
        model: str = "@cf/openai/gpt-oss-120b",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.account_id = account_id
        self.api_token = api_token
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.account_id and self.api_token)

    def _client(self) -> httpx.AsyncClient:
        self._require(self.account_id, "LLM_CLOUDFLARE_ACCOUNT_ID")
        self._require(self.api_token, "LLM_CLOUDFLARE_API_TOKEN")
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_token}"},
            transport=self._transport,
        )

    @property
    def url(self) -> str:
        return self.BASE_URL.format(account_id=self.account_id, model=self.model)

    def _check_envelope(self, body: Any):
        if isinstance(body, dict) and body.get("success") is False:
            errors = body.get("errors") or []
            detail = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e)
                               for e in errors) or "unknown error"
            raise CompletionError(f"Workers AI error: {detail}", provider=self.name)

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        async with self._client() as client:
            response = await client.post(self.url, json={"input": messages_to_prompt(messages)})
            response.raise_for_status()
            body = response.json()
        self._check_envelope(body)
        return extract_response_text(body)

    async def complete_streaming(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        payload = {"input": messages_to_prompt(messages), "stream": True}
        async with self._client() as client:
            async with client.stream("POST", self.url, json=payload) as response:
                response.raise_for_status()

                if "text/event-stream" not in response.headers.get("content-type", ""):
                    # Model answered without streaming
                    body = json.loads(await response.aread())
                    self._check_envelope(body)
                    yield extract_response_text(body)
                    return

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if not data:
                        continue
                    if data == "[DONE]":
                        break
                    text = _stream_delta(json.loads(data))
                    if text:
                        yield text


def _stream_delta(event: Any) -> str:
    """Text carried by one streamed SSE event, or empty string."""
    if not isinstance(event, dict):
        return ""
    event_type = event.get("type")
    if event_type is not None:
        # Responses-style events: only output text deltas are user-facing
        if event_type == OUTPUT_TEXT_DELTA and isinstance(event.get("delta"), str):
            return event["delta"]
        return ""
    if isinstance(event.get("response"), str):
        return event["response"]
    if isinstance(event.get("delta"), str):
        return event["delta"]
    choices = event.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta") or {}
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]
    return ""


class MockProvider(CompletionProvider):
    """
    Mock provider for testing without API calls.

    Returns a fixed reply, optionally as word-sized stream fragments, and can
    be told to fail with a given error.
    """

    def __init__(
        self,
        reply: str = "This is a mock response for testing.",
        streaming: bool = False,
        fail_with: Optional[BaseException] = None,
        name: str = "mock"
    ):
        self.reply = reply
        self.supports_streaming = streaming
        self.fail_with = fail_with
        self.name = name
        self.calls: List[List[Dict[str, str]]] = []

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        self.calls.append(messages)
        if self.fail_with is not None:
            raise self.fail_with
        return self.reply

    async def complete_streaming(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        self.calls.append(messages)
        if self.fail_with is not None:
            raise self.fail_with
        words = self.reply.split(" ")
        for i, word in enumerate(words):
            yield word + (" " if i < len(words) - 1 else "")


# ============================================================================
# Factory Functions
# ============================================================================

def build_provider(name: str, settings) -> CompletionProvider:
    """
    Build one provider from settings.

    Args:
        name: claude, openai, gemini, workers_ai or mock
        settings: Settings instance

    Returns:
        CompletionProvider
    """
    llm = settings.llm
    name = name.lower()

    if name == "claude":
        return ClaudeProvider(
            api_key=llm.anthropic_api_key,
            model=llm.claude_model,
            max_tokens=llm.max_tokens,
            temperature=llm.temperature,
            timeout=llm.request_timeout,
        )
    if name == "openai":
        return OpenAIProvider(
            api_key=llm.openai_api_key,
            model=llm.openai_model,
            max_tokens=llm.max_tokens,
            temperature=llm.temperature,
            timeout=llm.request_timeout,
        )
    if name == "gemini":
        return GeminiProvider(
            api_key=llm.gemini_api_key,
            model=llm.gemini_model,
            max_tokens=llm.max_tokens,
            temperature=llm.temperature,
        )
    if name == "workers_ai":
        return WorkersAIProvider(
            account_id=llm.cloudflare_account_id,
            api_token=llm.cloudflare_api_token,
            model=llm.workers_ai_model,
            timeout=llm.request_timeout,
        )
    if name == "mock":
        return MockProvider()

    raise ValueError(f"Unsupported provider: {name}")


def build_provider_chain(settings) -> List[CompletionProvider]:
    """
    Ranked providers: the primary, then the fallback if it is configured.

    The primary is always returned so its failure is reported; a fallback
    without credentials is left out.
    """
    primary = build_provider(settings.llm.default_provider, settings)
    chain = [primary]

    fallback_name = settings.llm.fallback_provider
    if fallback_name and fallback_name.lower() != primary.name:
        fallback = build_provider(fallback_name, settings)
        if fallback.configured:
            chain.append(fallback)
        else:
            logger.info(f"Fallback provider {fallback_name} has no credentials, disabled")

    return chain
