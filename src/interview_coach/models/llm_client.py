"""
LLM client abstraction.

Provides a unified interface for the text-completion capability used by
question generation and feedback scoring. The default client talks to an
Ollama-compatible HTTP endpoint (`POST /api/chat`).
"""

import ast
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel, Field

from interview_coach.config import get_settings

logger = logging.getLogger(__name__)


class Message(BaseModel):
    """A message in a conversation."""

    role: str = Field(..., description="Role of the speaker (system, user, assistant)")
    content: str = Field(..., description="Message content")


class LLMResponse(BaseModel):
    """Response from an LLM."""

    content: str = Field(..., description="Generated text content")
    finish_reason: str = Field(default="stop", description="Reason for completion")
    usage: dict[str, int] = Field(
        default_factory=dict,
        description="Token usage information",
    )
    model: str = Field(default="", description="Model used for generation")
    raw_response: dict[str, Any] = Field(
        default_factory=dict,
        description="Raw response from the API",
    )

    @property
    def ok(self) -> bool:
        return self.finish_reason != "error" and bool(self.content.strip())


class CompletionError(Exception):
    """Exception raised when the completion endpoint fails."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class LLMClientBase(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: Conversation history.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens to generate.
            **kwargs: Additional model-specific parameters.

        Returns:
            Generated response. Failures are reported with
            `finish_reason="error"` rather than raised.
        """
        ...

    async def complete(
        self,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a text completion for a single prompt.

        Args:
            prompt: Input prompt.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens to generate.
            **kwargs: Additional model-specific parameters.

        Returns:
            Generated response.
        """
        return await self.chat([Message(role="user", content=prompt)], temperature, max_tokens, **kwargs)

    async def chat_with_json(
        self,
        messages: list[Message],
        schema: dict[str, Any] | None = None,
        temperature: float = 0.2,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Generate a chat completion with JSON structured output.

        Args:
            messages: Conversation history.
            schema: Optional JSON schema for expected output.
            temperature: Sampling temperature (lower for more deterministic).
            **kwargs: Additional parameters.

        Returns:
            Parsed JSON object (a top-level array is wrapped as `{"items": [...]}`),
            or an empty dict on error.
        """
        instruction = "You must respond with valid JSON only. No additional text or explanation."
        if schema:
            instruction += f" Your response must match this JSON schema: {json.dumps(schema)}"
        augmented_messages = [Message(role="system", content=instruction)] + messages

        response = await self.chat(augmented_messages, temperature, **kwargs)

        if response.finish_reason == "error" or not response.content:
            logger.warning("JSON chat failed, returning empty dict")
            return {}

        parsed = extract_json(response.content)
        if isinstance(parsed, dict):
            return parsed
        if isinstance(parsed, list):
            return {"items": parsed}

        logger.warning("Failed to parse JSON from response")
        logger.debug(f"Response content: {response.content[:500]}")
        return {}

    async def close(self) -> None:
        """Close the client and release resources."""


class LLMClient(LLMClientBase):
    """
    Ollama HTTP client.

    Sends non-streaming requests to `{base_url}/api/chat` and retries
    transport failures and 5xx responses up to `max_retries` times.
    """

    def __init__(
        self,
        model: str | None = None,
        base_url: str | None = None,
        max_retries: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            model: Model name (defaults to the configured model).
            base_url: Endpoint root (defaults to the configured URL).
            max_retries: Number of retries on failure.
            timeout: Timeout in seconds per request.
            transport: Custom httpx transport (used by tests).
        """
        settings = get_settings()
        self._model = model or settings.llm_model_name
        self._base_url = (base_url or settings.llm_base_url).rstrip("/")
        self._max_retries = settings.llm_max_retries if max_retries is None else max_retries
        self._timeout = float(timeout or settings.llm_timeout)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(f"Initialized LLM client model={self._model} endpoint={self._base_url}")

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_payload(
        self,
        messages: list[Message],
        temperature: float,
        max_tokens: int | None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {"temperature": temperature}
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        for key in ("top_p", "num_ctx"):
            if kwargs.get(key) is not None:
                options[key] = kwargs[key]

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [m.model_dump() for m in messages],
            "stream": False,
            "options": options,
        }
        if kwargs.get("json_mode"):
            payload["format"] = "json"
        return payload

    async def _post_chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST the payload with retry logic.

        Raises:
            CompletionError: If the endpoint fails after all retries.
        """
        client = await self._get_client()
        last_error: CompletionError | None = None
        attempts = 0

        while attempts <= self._max_retries:
            attempts += 1
            try:
                logger.debug(f"POST /api/chat (attempt {attempts}) model={self._model}")
                response = await client.post("/api/chat", json=payload)
                if response.status_code >= 500:
                    logger.warning(f"LLM endpoint returned {response.status_code} (attempt {attempts})")
                    last_error = CompletionError(
                        f"LLM endpoint returned {response.status_code}",
                        status_code=response.status_code,
                        body=response.text,
                    )
                    continue
                if response.status_code >= 400:
                    raise CompletionError(
                        f"LLM endpoint rejected request with {response.status_code}",
                        status_code=response.status_code,
                        body=response.text,
                    )
                return response.json()

            except httpx.TimeoutException:
                logger.warning(f"LLM request timed out after {self._timeout}s (attempt {attempts})")
                last_error = CompletionError(f"LLM request timed out after {self._timeout} seconds")

            except httpx.RequestError as e:
                logger.warning(f"LLM transport error (attempt {attempts}): {e}")
                last_error = CompletionError(f"Could not reach LLM endpoint at {self._base_url}: {e}")

            except ValueError as e:
                # Response body was not JSON.
                raise CompletionError(f"LLM endpoint returned invalid JSON: {e}") from e

        raise last_error or CompletionError("LLM request failed after all retries")

    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a chat completion using the HTTP endpoint.

        Args:
            messages: Conversation history.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens to generate.
            **kwargs: Additional parameters (top_p, num_ctx, json_mode).

        Returns:
            Generated response.
        """
        payload = self._build_payload(messages, temperature, max_tokens, **kwargs)

        try:
            data = await self._post_chat(payload)
        except CompletionError as e:
            logger.error(f"LLM chat failed: {e}")
            return LLMResponse(
                content="",
                finish_reason="error",
                usage={},
                model=self._model,
                raw_response={"error": str(e)},
            )

        message = data.get("message") or {}
        content = str(message.get("content") or "").strip()
        usage = {
            key: int(data[src])
            for key, src in (("prompt_tokens", "prompt_eval_count"), ("completion_tokens", "eval_count"))
            if isinstance(data.get(src), int)
        }
        logger.debug(f"LLM response length: {len(content)} chars")

        return LLMResponse(
            content=content,
            finish_reason=str(data.get("done_reason") or "stop"),
            usage=usage,
            model=str(data.get("model") or self._model),
            raw_response=data,
        )


# ----------------------------------------------------------------------
# JSON repair helpers
# ----------------------------------------------------------------------

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_JSON_PREFIX_RE = re.compile(r"^\s*json\s*:\s*", re.IGNORECASE)


def fix_json_string(json_str: str) -> str:
    """
    Attempt to fix common JSON issues from LLM output.

    Args:
        json_str: Raw JSON string that may have issues.

    Returns:
        Cleaned JSON string.
    """
    if not json_str:
        return ""

    result = json_str.strip()

    # Strip common fenced blocks.
    result = _FENCE_OPEN_RE.sub("", result)
    result = _FENCE_CLOSE_RE.sub("", result)

    # Normalize curly quotes.
    result = (
        result.replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )

    # Remove trailing commas before closing braces/brackets.
    result = re.sub(r",(\s*[}\]])", r"\1", result)

    # Convert Python literals to JSON literals.
    result = re.sub(r"\bNone\b", "null", result)
    result = re.sub(r"\bTrue\b", "true", result)
    result = re.sub(r"\bFalse\b", "false", result)

    # Quote bare keys ({foo: "bar"}), only right after { or ,
    result = re.sub(
        r"([\{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)",
        r'\1"\2"\3',
        result,
    )

    # Python-style dict with single quotes only.
    if result.count("'") > 0 and result.count('"') == 0:
        result = result.replace("'", '"')

    return result


def coerce_to_json_types(obj: Any) -> Any:
    """Coerce a Python object (from `ast.literal_eval`) to JSON-safe types."""
    if obj is ...:
        return None
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, dict):
        return {str(k): coerce_to_json_types(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [coerce_to_json_types(v) for v in obj]
    return str(obj)


def parse_json_loose(raw: str) -> dict[str, Any] | list[Any] | None:
    """Parse JSON with best-effort repair.

    Returns a dict/list on success, else None.
    """
    if not raw:
        return None

    cleaned = fix_json_string(raw)
    try:
        parsed = json.loads(cleaned)
        return parsed if isinstance(parsed, (dict, list)) else None
    except json.JSONDecodeError:
        pass

    # Fallback: Python literal (single quotes, trailing commas), round-tripped through json.
    try:
        obj = ast.literal_eval(raw.strip())
    except Exception:
        try:
            obj = ast.literal_eval(cleaned)
        except Exception:
            return None

    if not isinstance(obj, (dict, list, tuple, set)):
        return None

    try:
        return json.loads(json.dumps(coerce_to_json_types(obj)))
    except (TypeError, ValueError):
        return None


def find_json_span(content: str, opener: str) -> str | None:
    """Return the first balanced `{...}` or `[...]` block in `content`."""
    closer = "}" if opener == "{" else "]"
    start = content.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(content)):
        char = content[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return content[start : i + 1]

    # Unbalanced: hand back the tail and let the repair pass try.
    return content[start:]


def extract_json(text: str, *, prefer: str | None = None) -> dict[str, Any] | list[Any] | None:
    """
    Pull a JSON value out of free-form model output.

    Handles markdown fences, a leading "JSON:" label and prose around the
    payload.

    Args:
        text: Raw model output.
        prefer: "object" or "array" to search for that shape first.

    Returns:
        Parsed dict or list, or None if nothing parseable was found.
    """
    if not text:
        return None

    content = _JSON_PREFIX_RE.sub("", fix_json_string(text)).strip()

    parsed = parse_json_loose(content)
    if parsed is not None and (
        prefer is None
        or (prefer == "object" and isinstance(parsed, dict))
        or (prefer == "array" and isinstance(parsed, list))
    ):
        return parsed

    openers = ["[", "{"] if prefer == "array" else ["{", "["]
    for opener in openers:
        span = find_json_span(content, opener)
        if span is None:
            continue
        candidate = parse_json_loose(span)
        if candidate is not None:
            return candidate

    return parsed
