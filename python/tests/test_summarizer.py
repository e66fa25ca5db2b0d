"""Tests for transcript summarization over the chat-completion client."""

import httpx
import pytest
import respx

from photofeed.services.augmentation.summarizer import (
    CONSERVATIVE_INSTRUCTION,
    INSUFFICIENT_CONTENT,
    LLMSummarizer,
)
from photofeed.services.llm import LLMError, LLMErrorClass, OpenAIChatClient

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def _completion(content: str) -> dict:
    return {"id": "chatcmpl-1", "choices": [{"message": {"content": content}}]}


@pytest.fixture
def summarizer(httpx_client) -> LLMSummarizer:
    return LLMSummarizer(
        OpenAIChatClient(httpx_client, api_key="sk-test", timeout_s=30),
        model_name="gpt-4o-mini",
        max_tokens=200,
        conservative_words=60,
    )


class TestBuildRequest:
    def test_short_transcripts_get_conservative_instruction(self, summarizer):
        req = summarizer.build_request("we are at the beach", meaningful_words=12)

        assert CONSERVATIVE_INSTRUCTION in req.messages[0].content

    def test_long_transcripts_use_plain_prompt(self, summarizer):
        req = summarizer.build_request("long transcript", meaningful_words=200)

        assert CONSERVATIVE_INSTRUCTION not in req.messages[0].content
        assert req.messages[1].content == "Transcript:\nlong transcript"
        assert req.model_name == "gpt-4o-mini"


class TestSummarize:
    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_summary(self, summarizer):
        respx.post(OPENAI_URL).respond(200, json=_completion("  A family swims.  "))

        assert await summarizer.summarize("transcript", 100) == "A family swims."

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize("content", [INSUFFICIENT_CONTENT, f"{INSUFFICIENT_CONTENT}.", ""])
    async def test_sentinel_and_empty_replies(self, summarizer, content):
        respx.post(OPENAI_URL).respond(200, json=_completion(content))

        assert await summarizer.summarize("transcript", 100) == INSUFFICIENT_CONTENT

    @pytest.mark.asyncio
    @respx.mock
    async def test_status_errors_classified(self, summarizer):
        respx.post(OPENAI_URL).respond(429, json={"error": {"code": "rate_limit_exceeded"}})

        with pytest.raises(LLMError) as exc_info:
            await summarizer.summarize("transcript", 100)

        assert exc_info.value.error_class == LLMErrorClass.RATE_LIMIT
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_classified(self, summarizer):
        respx.post(OPENAI_URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(LLMError) as exc_info:
            await summarizer.summarize("transcript", 100)

        assert exc_info.value.error_class == LLMErrorClass.TIMEOUT
