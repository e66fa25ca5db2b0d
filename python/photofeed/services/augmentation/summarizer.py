"""Transcript summarization through a chat-completion model.

The model must answer with prose, or with the exact sentinel
INSUFFICIENT_CONTENT when the transcript does not carry enough material
to summarize without inventing content. Short transcripts (meaningful
word hint below conservative_words) get an extra instruction to stay
strictly within what was said.
"""

from photofeed.logging import get_logger
from photofeed.services.llm import ChatMessage, ChatRequest, OpenAIChatClient

logger = get_logger(__name__)

INSUFFICIENT_CONTENT = "INSUFFICIENT_CONTENT"

SYSTEM_PROMPT = (
    "You write short descriptions of home videos from their speech transcripts. "
    "Write two to four sentences of plain prose in the third person describing what "
    "is said and what is happening. Do not use lists, headings or quotation marks. "
    "If the transcript does not contain enough spoken content to describe, reply with "
    f"exactly {INSUFFICIENT_CONTENT} and nothing else."
)

CONSERVATIVE_INSTRUCTION = (
    "This transcript is very short. Describe only what is explicitly said. "
    "Do not guess at settings, people, or events that are not mentioned. "
    f"If in doubt, reply with {INSUFFICIENT_CONTENT}."
)


class LLMSummarizer:
    """Summarize transcripts through a chat-completion model.

    Args:
        chat: Chat-completion client.
        model_name: Model identifier.
        max_tokens: Completion token cap.
        conservative_words: Below this meaningful-word hint the prompt asks
            the model not to embellish.
    """

    def __init__(
        self,
        chat: OpenAIChatClient,
        *,
        model_name: str,
        max_tokens: int,
        conservative_words: int,
    ):
        self.chat = chat
        self.model_name = model_name
        self.max_tokens = max_tokens
        self.conservative_words = conservative_words

    def build_request(self, transcript: str, meaningful_words: int) -> ChatRequest:
        system = SYSTEM_PROMPT
        if meaningful_words < self.conservative_words:
            system = f"{SYSTEM_PROMPT}\n\n{CONSERVATIVE_INSTRUCTION}"
        return ChatRequest(
            model_name=self.model_name,
            messages=[
                ChatMessage(role="system", content=system),
                ChatMessage(role="user", content=f"Transcript:\n{transcript}"),
            ],
            max_tokens=self.max_tokens,
            temperature=0.3,
        )

    async def summarize(self, transcript: str, meaningful_words: int) -> str:
        """Return the summary text, or INSUFFICIENT_CONTENT.

        Raises:
            LLMError: Provider failure (classified).
        """
        completion = await self.chat.complete(self.build_request(transcript, meaningful_words))

        text = completion.text.strip()
        if not text or INSUFFICIENT_CONTENT in text:
            return INSUFFICIENT_CONTENT

        logger.info(
            "summary_generated",
            model=self.model_name,
            provider_request_id=completion.provider_request_id,
            total_tokens=completion.total_tokens,
            chars=len(text),
        )
        return text
