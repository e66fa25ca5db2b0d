"""OpenAI-compatible chat completions for transcript summaries.

POST {base_url}/chat/completions, non-streaming. Only the first choice's
message content is used; the provider request ID (x-request-id header,
else body id) is kept for log correlation.

Every failure surfaces as LLMError with a normalized class:
- 401/403            -> INVALID_KEY
- 429                -> RATE_LIMIT
- 404                -> MODEL_NOT_AVAILABLE
- 400 + context size -> CONTEXT_TOO_LARGE
- timeout            -> TIMEOUT
- anything else      -> PROVIDER_DOWN

No retries here: an augmentation whose summary failed writes no record
and is picked up again by the next album refresh. Request and response
bodies are never logged (transcripts are user content).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal

import httpx

OPENAI_BASE_URL = "https://api.openai.com/v1"


class LLMErrorClass(str, Enum):
    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"


class LLMError(Exception):
    def __init__(self, error_class: LLMErrorClass, message: str, provider: str = "openai"):
        self.error_class = error_class
        self.message = message
        self.provider = provider
        super().__init__(message)


def classify_provider_error(
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None,
) -> LLMErrorClass:
    if isinstance(exception, httpx.TimeoutException):
        return LLMErrorClass.TIMEOUT
    if status_code in (401, 403):
        return LLMErrorClass.INVALID_KEY
    if status_code == 429:
        return LLMErrorClass.RATE_LIMIT
    if status_code == 404:
        return LLMErrorClass.MODEL_NOT_AVAILABLE
    if status_code == 400 and json_body:
        error = json_body.get("error") or {}
        if error.get("code") == "context_length_exceeded":
            return LLMErrorClass.CONTEXT_TOO_LARGE
        if "maximum context length" in str(error.get("message", "")).lower():
            return LLMErrorClass.CONTEXT_TOO_LARGE
    return LLMErrorClass.PROVIDER_DOWN


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class ChatRequest:
    """One completion request.

    Attributes:
        model_name: Model identifier, e.g. "gpt-4o-mini".
        messages: System message first.
        max_tokens: Completion token cap.
        temperature: None leaves the provider default.
    """

    model_name: str
    messages: list[ChatMessage]
    max_tokens: int
    temperature: float | None = None


@dataclass(frozen=True)
class ChatCompletion:
    text: str
    total_tokens: int | None
    provider_request_id: str | None


class OpenAIChatClient:
    """Chat completions over the shared httpx client.

    Args:
        client: Shared httpx.AsyncClient.
        api_key: Bearer key.
        timeout_s: Whole-request timeout.
        base_url: Any OpenAI-compatible endpoint root.
    """

    provider = "openai"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        timeout_s: float,
        base_url: str = OPENAI_BASE_URL,
    ):
        self._client = client
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout_s, connect=10.0)
        self._url = base_url.rstrip("/") + "/chat/completions"

    async def complete(self, req: ChatRequest) -> ChatCompletion:
        """Run one completion.

        Raises:
            LLMError: Any transport, HTTP or response-shape failure.
        """
        try:
            response = await self._client.post(
                self._url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json=self._request_body(req),
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise LLMError(
                classify_provider_error(e.response.status_code, _json_or_none(e.response), e),
                f"Provider returned status {e.response.status_code}",
            ) from e
        except httpx.HTTPError as e:
            raise LLMError(classify_provider_error(None, None, e), type(e).__name__) from e
        except ValueError as e:
            raise LLMError(LLMErrorClass.PROVIDER_DOWN, "Provider returned invalid JSON") from e

        choices = data.get("choices") or []
        if not choices:
            raise LLMError(LLMErrorClass.PROVIDER_DOWN, "Provider response missing choices")

        usage = data.get("usage") or {}
        return ChatCompletion(
            text=(choices[0].get("message") or {}).get("content") or "",
            total_tokens=usage.get("total_tokens"),
            provider_request_id=response.headers.get("x-request-id") or data.get("id"),
        )

    @staticmethod
    def _request_body(req: ChatRequest) -> dict:
        body: dict = {
            "model": req.model_name,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "max_tokens": req.max_tokens,
            "stream": False,
        }
        if req.temperature is not None:
            body["temperature"] = req.temperature
        return body


def _json_or_none(response: httpx.Response) -> dict | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None
